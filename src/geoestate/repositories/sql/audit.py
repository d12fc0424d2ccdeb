"""SQL audit repository preserving hash chain integrity."""

from __future__ import annotations

import asyncio
import json
from typing import Iterable

from sqlalchemy import func, select

from geoestate.core.config import AuditConfig
from geoestate.core.types import AuditActionType, AuditLogEntry
from geoestate.db.engine import DatabaseManager
from geoestate.db.models import AuditEventRow
from geoestate.governance.audit import (
    AuditRecord,
    compute_chain_hash,
    compute_genesis_hash,
    matches_filters,
)
from geoestate.repositories.sql import as_utc, translate_store_errors


class SqlAuditRepository:
    """SQL-backed audit log with the same tamper-evident chain as the JSONL logger.

    Rows are ordered by a monotonically increasing ``seq``; each row's
    ``previous_hash`` is the ``entry_hash`` of the row before it.
    """

    def __init__(self, db: DatabaseManager, config: AuditConfig | None = None) -> None:
        self._db = db
        self._config = config or AuditConfig()
        self._algorithm = self._config.hash_algorithm
        self._lock = asyncio.Lock()

    async def _chain_head(self, db) -> tuple[int, str]:
        result = await db.execute(select(AuditEventRow).order_by(AuditEventRow.seq.desc()).limit(1))
        row = result.scalar_one_or_none()
        if row is None:
            return 0, compute_genesis_hash(self._algorithm)
        return row.seq, row.entry_hash

    async def log(self, entry: AuditLogEntry) -> AuditRecord:
        entry_json = entry.model_dump_json()
        data = json.loads(entry_json)
        async with self._lock:
            with translate_store_errors("audit"):
                async with self._db.session() as db:
                    seq, previous_hash = await self._chain_head(db)
                    entry_hash = compute_chain_hash(previous_hash, entry_json, self._algorithm)
                    db.add(
                        AuditEventRow(
                            entry_id=entry.entry_id,
                            seq=seq + 1,
                            created_at=entry.created_at,
                            action_type=entry.action_type.value,
                            actor_id=entry.actor_id,
                            subject_ids=data["subject_ids"],
                            details=data["details"],
                            previous_hash=previous_hash,
                            entry_hash=entry_hash,
                        )
                    )
                    await db.commit()
        return AuditRecord(entry=entry, previous_hash=previous_hash, entry_hash=entry_hash)

    async def verify_chain(self) -> bool:
        """Verify hash chain linkage.

        Each row's previous_hash must equal the preceding row's entry_hash,
        and the first row's previous_hash must equal the genesis hash.
        """
        with translate_store_errors("audit"):
            async with self._db.session() as db:
                result = await db.execute(select(AuditEventRow).order_by(AuditEventRow.seq))
                rows = result.scalars().all()

        expected_previous = compute_genesis_hash(self._algorithm)
        for row in rows:
            if row.previous_hash != expected_previous or not row.entry_hash:
                return False
            expected_previous = row.entry_hash
        return True

    async def query(
        self,
        action_types: Iterable[AuditActionType | str] | None = None,
        actor_id: str | None = None,
        subject_id: str | None = None,
        limit: int | None = None,
    ) -> list[AuditLogEntry]:
        """Return matching entries, newest first."""
        stmt = select(AuditEventRow).order_by(AuditEventRow.seq.desc())
        if action_types is not None:
            stmt = stmt.where(AuditEventRow.action_type.in_([str(a) for a in action_types]))
        if actor_id is not None:
            stmt = stmt.where(AuditEventRow.actor_id == actor_id)
        if limit is not None and subject_id is None:
            stmt = stmt.limit(limit)

        with translate_store_errors("audit"):
            async with self._db.session() as db:
                rows = (await db.execute(stmt)).scalars().all()

        entries = [self._row_to_entry(r) for r in rows]
        if subject_id is not None:
            entries = [e for e in entries if matches_filters(e, subject_id=subject_id)]
        return entries[:limit] if limit is not None else entries

    async def count(self) -> int:
        with translate_store_errors("audit"):
            async with self._db.session() as db:
                return (await db.execute(select(func.count()).select_from(AuditEventRow))).scalar_one()

    @staticmethod
    def _row_to_entry(row: AuditEventRow) -> AuditLogEntry:
        return AuditLogEntry(
            entry_id=row.entry_id,
            action_type=AuditActionType(row.action_type),
            actor_id=row.actor_id,
            subject_ids=tuple(row.subject_ids or ()),
            details=row.details or {},
            created_at=as_utc(row.created_at),
        )
