"""Pairwise overlap scanner over a snapshot of eligible parcels.

Each parcel is prepared once (validity, shape, bounding box, area). Candidate
pairs come either from an STRtree query or from the full i < j loop; every
candidate is deduplicated by its canonical pair key and cheaply rejected by
bounding box before the exact intersection is computed. Intersections can be
spread over a thread pool; the merged output is sorted so that it does not
depend on worker scheduling.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Iterator

from shapely.geometry.base import BaseGeometry
from shapely.strtree import STRtree

from geoestate.core.config import OverlapConfig
from geoestate.core.errors import IntersectionComputationFailed, InvalidGeometry
from geoestate.geometry.kernel import GeometryKernel, bounding_box, boxes_disjoint
from geoestate.geometry.models import BoundingBox
from geoestate.overlap.classifier import OverlapClassifier
from geoestate.overlap.models import (
    OverlapRecord,
    PairKey,
    ScanResult,
    ScanStats,
    ScanWarning,
    ScanWarningKind,
)
from geoestate.parcels.models import Parcel

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PreparedParcel:
    """A parcel with its geometry derived once per scan."""

    parcel: Parcel
    shape: BaseGeometry
    bbox: BoundingBox
    area_m2: float


@dataclass
class _PairOutcome:
    records: list[OverlapRecord]
    warnings: list[ScanWarning]
    tests: int


class OverlapScanner:
    """Find every pair of parcels overlapping by at least the reportable threshold."""

    def __init__(
        self,
        kernel: GeometryKernel,
        classifier: OverlapClassifier | None = None,
        config: OverlapConfig | None = None,
    ) -> None:
        self._kernel = kernel
        self._config = config or OverlapConfig()
        self._classifier = classifier or OverlapClassifier.from_config(self._config)

    @property
    def kernel(self) -> GeometryKernel:
        return self._kernel

    def prepare(self, parcel: Parcel) -> PreparedParcel:
        """Derive the shape, bounding box and area of a parcel.

        Raises:
            InvalidGeometry: If the boundary is invalid or has no area.
        """
        if not self._kernel.is_valid(parcel.boundary):
            raise InvalidGeometry(f"Parcel {parcel.id!r} has an invalid boundary", parcel.id)
        shape = self._kernel.to_shape(parcel.boundary)
        area = self._kernel.shape_area(shape)
        if area <= 0:
            raise InvalidGeometry(f"Parcel {parcel.id!r} has a degenerate boundary", parcel.id)
        return PreparedParcel(parcel=parcel, shape=shape, bbox=bounding_box(parcel.boundary), area_m2=area)

    def scan(
        self,
        parcels: Iterable[Parcel],
        discovered_at: datetime | None = None,
    ) -> ScanResult:
        """Scan a snapshot of parcels and return records sorted by percentage, descending."""
        started_at = datetime.now(timezone.utc)
        discovered_at = discovered_at or started_at
        t0 = time.perf_counter()
        snapshot = list(parcels)
        stats = ScanStats(parcels_total=len(snapshot))

        prepared: list[PreparedParcel] = []
        warnings: list[ScanWarning] = []
        for parcel in snapshot:
            if not parcel.is_eligible:
                continue
            try:
                prepared.append(self.prepare(parcel))
            except InvalidGeometry as exc:
                logger.warning("Skipping parcel %s: %s", parcel.id, exc)
                warnings.append(
                    ScanWarning(
                        kind=ScanWarningKind.INVALID_GEOMETRY,
                        parcel_ids=(parcel.id,),
                        message=str(exc),
                    )
                )
        stats.parcels_scanned = len(prepared)
        stats.parcels_skipped = len(warnings)

        pairs = list(self._candidate_pairs(prepared, stats))
        outcome = self._measure_all(pairs, discovered_at)

        records = sorted(
            outcome.records,
            key=lambda r: (-r.overlap_percentage, r.parcel_a_id, r.parcel_b_id),
        )
        warnings.extend(sorted(outcome.warnings, key=lambda w: w.parcel_ids))
        stats.intersection_tests = outcome.tests
        stats.records_emitted = len(records)
        stats.duration_ms = (time.perf_counter() - t0) * 1000.0

        logger.info(
            "Overlap scan: %d parcels, %d candidate pairs, %d intersections, %d records, %d warnings",
            stats.parcels_scanned,
            stats.candidate_pairs,
            stats.intersection_tests,
            stats.records_emitted,
            len(warnings),
        )
        return ScanResult(
            records=records,
            warnings=warnings,
            stats=stats,
            started_at=started_at,
            completed_at=datetime.now(timezone.utc),
        )

    # -- Candidate generation --

    def _neighbours(self, prepared: list[PreparedParcel]) -> Iterator[tuple[int, int]]:
        n = len(prepared)
        if self._config.use_spatial_index and n > 1:
            tree = STRtree([p.shape for p in prepared])
            for i, item in enumerate(prepared):
                for j in sorted(int(k) for k in tree.query(item.shape)):
                    if j > i:
                        yield i, j
        else:
            for i in range(n):
                for j in range(i + 1, n):
                    yield i, j

    def _candidate_pairs(
        self,
        prepared: list[PreparedParcel],
        stats: ScanStats,
    ) -> Iterator[tuple[PairKey, PreparedParcel, PreparedParcel]]:
        processed: set[PairKey] = set()
        for i, j in self._neighbours(prepared):
            a, b = prepared[i], prepared[j]
            if a.parcel.id == b.parcel.id:
                stats.duplicate_pairs_skipped += 1
                continue
            key = PairKey.of(a.parcel.id, b.parcel.id)
            if key in processed:
                stats.duplicate_pairs_skipped += 1
                continue
            processed.add(key)
            stats.candidate_pairs += 1
            if boxes_disjoint(a.bbox, b.bbox):
                stats.bbox_rejections += 1
                continue
            if a.parcel.id != key.first:
                a, b = b, a
            yield key, a, b

    # -- Measurement --

    def _measure_all(
        self,
        pairs: list[tuple[PairKey, PreparedParcel, PreparedParcel]],
        discovered_at: datetime,
    ) -> _PairOutcome:
        workers = max(1, self._config.scan_workers)
        if workers == 1 or len(pairs) < 2:
            return self._measure_chunk(pairs, discovered_at)

        chunks = [pairs[k::workers] for k in range(workers)]
        merged = _PairOutcome(records=[], warnings=[], tests=0)
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = [executor.submit(self._measure_chunk, chunk, discovered_at) for chunk in chunks]
            for future in futures:
                part = future.result()
                merged.records.extend(part.records)
                merged.warnings.extend(part.warnings)
                merged.tests += part.tests
        return merged

    def _measure_chunk(
        self,
        pairs: list[tuple[PairKey, PreparedParcel, PreparedParcel]],
        discovered_at: datetime,
    ) -> _PairOutcome:
        out = _PairOutcome(records=[], warnings=[], tests=0)
        threshold = self._config.min_reportable_threshold
        for key, a, b in pairs:
            out.tests += 1
            try:
                measure = self._kernel.measure_shapes(a.shape, b.shape, a.area_m2, b.area_m2)
            except IntersectionComputationFailed as exc:
                logger.warning("Skipping pair %s: intersection failed: %s", key.record_id, exc)
                out.warnings.append(
                    ScanWarning(
                        kind=ScanWarningKind.INTERSECTION_FAILED,
                        parcel_ids=(key.first, key.second),
                        message=str(exc),
                    )
                )
                continue
            pct = measure.overlap_percentage
            if pct <= 0.0 or pct < threshold:
                continue
            out.records.append(
                OverlapRecord(
                    id=key.record_id,
                    parcel_a_id=key.first,
                    parcel_b_id=key.second,
                    overlap_percentage=pct,
                    overlap_area_m2=measure.intersection_area_m2,
                    area_a_m2=a.area_m2,
                    area_b_m2=b.area_m2,
                    intersection_geometry=measure.geometry,
                    same_owner=a.parcel.owner_id == b.parcel.owner_id,
                    severity=self._classifier.classify(pct),
                    label=self._classifier.label(pct),
                    discovered_at=discovered_at,
                )
            )
        return out
