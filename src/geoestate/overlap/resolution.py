"""Resolution workflow for overlap records.

An overlap record moves from OPEN to exactly one terminal state (ARCHIVED,
DELETED or IGNORED). Archive and delete act on one side of the pair through
the parcel store; ignore only records the decision. Records themselves are
derived from a scan and never mutated here: an archived or deleted parcel
simply stops appearing in the next scan.

If the audit entry for an applied action cannot be written, the parcel is
restored to its prior state and the store error propagates; the record stays
OPEN and the action can be retried.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable

from geoestate.core.errors import AlreadyResolved, MissingReason
from geoestate.core.types import (
    AuditActionType,
    AuditLogEntry,
    ResolutionActionType,
    ResolutionState,
)
from geoestate.overlap.models import (
    OverlapRecord,
    ResolutionAction,
    ResolutionOutcome,
    ResolutionResult,
)
from geoestate.parcels.models import Parcel
from geoestate.repositories import resolve
from geoestate.repositories.protocols import AuditRepository, ParcelRepository

logger = logging.getLogger(__name__)

_STATE_FOR_ACTION = {
    ResolutionActionType.ARCHIVE: ResolutionState.ARCHIVED,
    ResolutionActionType.DELETE: ResolutionState.DELETED,
    ResolutionActionType.RESOLVE: ResolutionState.IGNORED,
}

_AUDIT_FOR_ACTION = {
    ResolutionActionType.ARCHIVE: AuditActionType.ARCHIVE_DUPLICATE_LISTING,
    ResolutionActionType.DELETE: AuditActionType.DELETE_DUPLICATE_LISTING,
    ResolutionActionType.RESOLVE: AuditActionType.RESOLVE_OVERLAP,
}


class ResolutionWorkflow:
    """Applies archive / delete / ignore decisions to overlap records.

    Transitions are serialized by an ``asyncio.Lock``; the parcel store
    serializes the underlying status change on its own, so a racing archive
    and delete on the same parcel leave one applied action and one recorded
    conflict.
    """

    def __init__(self, store: ParcelRepository, audit: AuditRepository) -> None:
        self._store = store
        self._audit = audit
        self._records: dict[str, OverlapRecord] = {}
        self._ledger: dict[str, list[ResolutionAction]] = {}
        self._lock = asyncio.Lock()

    # -- Record set --

    def set_records(self, records: Iterable[OverlapRecord]) -> None:
        """Replace the current record set with the output of a new scan.

        The ledger is kept: a pair resolved before the rescan stays resolved.
        """
        self._records = {r.id: r for r in records}

    def get_record(self, overlap_record_id: str) -> OverlapRecord:
        try:
            return self._records[overlap_record_id]
        except KeyError:
            raise KeyError(f"Overlap record '{overlap_record_id}' not found.") from None

    def state_of(self, overlap_record_id: str) -> ResolutionState:
        actions = self._ledger.get(overlap_record_id)
        if not actions:
            return ResolutionState.OPEN
        return _STATE_FOR_ACTION[actions[-1].action]

    def states(self) -> dict[str, ResolutionState]:
        return {record_id: self.state_of(record_id) for record_id in self._records}

    def history(self, overlap_record_id: str) -> list[ResolutionAction]:
        return list(self._ledger.get(overlap_record_id, ()))

    # -- Transitions --

    async def archive(
        self,
        overlap_record_id: str,
        target_parcel_id: str,
        reason: str = "",
        actor_id: str = "system",
    ) -> ResolutionResult:
        """Archive one side of the pair. The reason may be empty."""
        return await self._apply(
            ResolutionActionType.ARCHIVE, overlap_record_id, target_parcel_id, reason, actor_id
        )

    async def delete(
        self,
        overlap_record_id: str,
        target_parcel_id: str,
        reason: str,
        actor_id: str = "system",
    ) -> ResolutionResult:
        """Hard-delete one side of the pair. Irreversible.

        Raises:
            MissingReason: If ``reason`` is blank. Nothing is mutated.
        """
        if not reason or not reason.strip():
            raise MissingReason("A reason is required to delete a parcel.")
        return await self._apply(
            ResolutionActionType.DELETE, overlap_record_id, target_parcel_id, reason, actor_id
        )

    async def ignore(
        self,
        overlap_record_id: str,
        reason: str = "",
        actor_id: str = "system",
    ) -> ResolutionResult:
        """Accept the overlap as legitimate without touching either parcel."""
        return await self._apply(
            ResolutionActionType.RESOLVE, overlap_record_id, None, reason, actor_id
        )

    async def _apply(
        self,
        action_type: ResolutionActionType,
        overlap_record_id: str,
        target_parcel_id: str | None,
        reason: str,
        actor_id: str,
    ) -> ResolutionResult:
        record = self.get_record(overlap_record_id)
        if target_parcel_id is not None and not record.involves(target_parcel_id):
            raise ValueError(
                f"Parcel '{target_parcel_id}' is not part of overlap '{overlap_record_id}'."
            )

        async with self._lock:
            current = self.state_of(overlap_record_id)
            if current != ResolutionState.OPEN:
                return await self._conflict(
                    action_type,
                    record,
                    target_parcel_id,
                    actor_id,
                    current,
                    f"Overlap '{overlap_record_id}' is already {current}.",
                )

            previous: Parcel | None = None
            try:
                if action_type == ResolutionActionType.ARCHIVE:
                    previous = await resolve(self._store.get(target_parcel_id))
                    await resolve(self._store.archive(target_parcel_id))
                elif action_type == ResolutionActionType.DELETE:
                    previous = await resolve(self._store.delete(target_parcel_id))
            except AlreadyResolved as exc:
                state = ResolutionState.DELETED if exc.state == "deleted" else ResolutionState.ARCHIVED
                return await self._conflict(
                    action_type, record, target_parcel_id, actor_id, state, str(exc)
                )

            action = ResolutionAction(
                overlap_record_id=overlap_record_id,
                action=action_type,
                target_parcel_id=target_parcel_id,
                actor_id=actor_id,
                reason=reason,
            )
            entry = AuditLogEntry(
                action_type=_AUDIT_FOR_ACTION[action_type],
                actor_id=actor_id,
                subject_ids=_subjects(record, target_parcel_id),
                details={
                    "overlap_record_id": overlap_record_id,
                    "target_parcel_id": target_parcel_id,
                    "reason": reason,
                    "overlap_percentage": record.overlap_percentage,
                    "severity": record.severity.value,
                },
            )
            try:
                await resolve(self._audit.log(entry))
            except Exception:
                # A parcel change is never left in place without its audit entry.
                if previous is not None:
                    await self._undo(previous)
                raise
            self._ledger.setdefault(overlap_record_id, []).append(action)

        logger.info(
            "Overlap %s %s by %s (target=%s)",
            overlap_record_id,
            _STATE_FOR_ACTION[action_type],
            actor_id,
            target_parcel_id,
        )
        return ResolutionResult(
            outcome=ResolutionOutcome.APPLIED,
            overlap_record_id=overlap_record_id,
            state=_STATE_FOR_ACTION[action_type],
            action=action,
        )

    async def _undo(self, parcel: Parcel) -> None:
        try:
            await resolve(self._store.restore(parcel))
        except Exception:
            logger.exception("Could not restore parcel %s after a failed audit write", parcel.id)
        else:
            logger.warning("Restored parcel %s after a failed audit write", parcel.id)

    async def _conflict(
        self,
        action_type: ResolutionActionType,
        record: OverlapRecord,
        target_parcel_id: str | None,
        actor_id: str,
        state: ResolutionState,
        message: str,
    ) -> ResolutionResult:
        logger.info("Resolution conflict on %s: %s", record.id, message)
        await resolve(
            self._audit.log(
                AuditLogEntry(
                    action_type=AuditActionType.RESOLUTION_CONFLICT,
                    actor_id=actor_id,
                    subject_ids=_subjects(record, target_parcel_id),
                    details={
                        "overlap_record_id": record.id,
                        "attempted_action": action_type.value,
                        "target_parcel_id": target_parcel_id,
                        "state": state.value,
                        "message": message,
                    },
                )
            )
        )
        return ResolutionResult(
            outcome=ResolutionOutcome.ALREADY_RESOLVED,
            overlap_record_id=record.id,
            state=state,
            message=message,
        )


def _subjects(record: OverlapRecord, target_parcel_id: str | None) -> tuple[str, ...]:
    ids = [record.id, *record.pair]
    if target_parcel_id is not None and target_parcel_id not in ids:
        ids.append(target_parcel_id)
    return tuple(ids)
