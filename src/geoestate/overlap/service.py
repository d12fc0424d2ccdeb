"""Overlap service: the operations exposed to the admin layer.

Wires the scanner, classifier, resolution workflow and reporting surface to
the parcel store and audit log. Works with both the in-memory store and the
SQL repositories through :func:`geoestate.repositories.resolve`.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable

from geoestate.core.config import OverlapConfig
from geoestate.core.types import AuditActionType, AuditLogEntry, ResolutionState
from geoestate.geometry.kernel import GeometryKernel
from geoestate.overlap.classifier import OverlapClassifier
from geoestate.overlap.models import OverlapRecord, ResolutionResult, ScanResult
from geoestate.overlap.reporting import OverlapFilter, OverlapStats, compute_stats, filter_overlaps
from geoestate.overlap.resolution import ResolutionWorkflow
from geoestate.overlap.scanner import OverlapScanner
from geoestate.parcels.models import ParcelSummary
from geoestate.repositories import resolve
from geoestate.repositories.protocols import AuditRepository, ParcelRepository

logger = logging.getLogger(__name__)


class OverlapService:
    """Runs scans and applies resolution decisions.

    The service holds the records of the most recent scan. A new scan
    replaces them wholesale; an aborted scan leaves the previous set in place.
    """

    def __init__(
        self,
        store: ParcelRepository,
        audit: AuditRepository,
        kernel: GeometryKernel | None = None,
        config: OverlapConfig | None = None,
    ) -> None:
        self._store = store
        self._audit = audit
        self._config = config or OverlapConfig()
        self._kernel = kernel or GeometryKernel.from_config(self._config)
        self._classifier = OverlapClassifier.from_config(self._config)
        self._scanner = OverlapScanner(self._kernel, self._classifier, self._config)
        self._workflow = ResolutionWorkflow(store, audit)
        self._last_scan: ScanResult | None = None

    @property
    def classifier(self) -> OverlapClassifier:
        return self._classifier

    @property
    def workflow(self) -> ResolutionWorkflow:
        return self._workflow

    @property
    def last_scan(self) -> ScanResult | None:
        return self._last_scan

    @property
    def records(self) -> list[OverlapRecord]:
        return list(self._last_scan.records) if self._last_scan else []

    async def run_scan(self, actor_id: str = "system") -> ScanResult:
        """Scan a snapshot of the eligible parcels.

        Raises:
            StoreUnavailable: If the parcel or audit store cannot be reached.
                The previous record set is kept.
        """
        parcels = await resolve(self._store.list_eligible_parcels())
        result = await asyncio.to_thread(self._scanner.scan, parcels)

        await resolve(
            self._audit.log(
                AuditLogEntry(
                    action_type=AuditActionType.OVERLAP_SCAN_COMPLETED,
                    actor_id=actor_id,
                    details={
                        "records": len(result.records),
                        "warnings": len(result.warnings),
                        "parcels_scanned": result.stats.parcels_scanned,
                        "parcels_skipped": result.stats.parcels_skipped,
                        "duration_ms": round(result.stats.duration_ms, 3),
                    },
                )
            )
        )
        self._last_scan = result
        self._workflow.set_records(result.records)
        return result

    async def list_overlaps(self, filters: OverlapFilter | None = None) -> list[OverlapRecord]:
        records = self.records
        summaries: dict[str, ParcelSummary] = {}
        if filters is not None and filters.search:
            summaries = await self._summaries(records)
        return filter_overlaps(records, filters, summaries, self._workflow.states())

    async def _summaries(self, records: Iterable[OverlapRecord]) -> dict[str, ParcelSummary]:
        summaries: dict[str, ParcelSummary] = {}
        for record in records:
            for parcel_id in (record.parcel_a_id, record.parcel_b_id):
                if parcel_id in summaries:
                    continue
                parcel = await resolve(self._store.get(parcel_id))
                if parcel is None:
                    continue
                owner = await resolve(self._store.get_owner(parcel_id))
                summaries[parcel_id] = ParcelSummary(
                    parcel_id=parcel_id,
                    title=parcel.title,
                    region=parcel.region,
                    district=parcel.district,
                    owner_name=owner.name if owner else "",
                )
        return summaries

    def stats(self) -> OverlapStats:
        return compute_stats(self.records)

    def state_of(self, overlap_id: str) -> ResolutionState:
        return self._workflow.state_of(overlap_id)

    async def archive(
        self,
        overlap_id: str,
        target_parcel_id: str,
        reason: str = "",
        actor_id: str = "system",
    ) -> ResolutionResult:
        return await self._workflow.archive(overlap_id, target_parcel_id, reason, actor_id)

    async def delete(
        self,
        overlap_id: str,
        target_parcel_id: str,
        reason: str,
        actor_id: str = "system",
    ) -> ResolutionResult:
        return await self._workflow.delete(overlap_id, target_parcel_id, reason, actor_id)

    async def ignore(
        self,
        overlap_id: str,
        reason: str = "",
        actor_id: str = "system",
    ) -> ResolutionResult:
        return await self._workflow.ignore(overlap_id, reason, actor_id)

    async def get_audit_history(
        self,
        action_types: Iterable[AuditActionType | str] | None = None,
        limit: int | None = None,
    ) -> list[AuditLogEntry]:
        """Audit entries, newest first."""
        return await resolve(self._audit.query(action_types=action_types, limit=limit))
