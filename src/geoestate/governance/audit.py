"""Hash-chained audit log for overlap decisions.

Every resolution, conflict, auto-rejection and scan is appended as one JSONL
line. A line stores its entry together with ``previous_hash`` and
``entry_hash = H(previous_hash + entry_json)``, so editing or removing any
line invalidates every hash after it. The first entry links to a fixed
genesis hash.
"""

from __future__ import annotations

import hashlib
import logging
import threading
from pathlib import Path
from typing import Iterable, Iterator

from pydantic import BaseModel

from geoestate.core.config import AuditConfig
from geoestate.core.types import AuditActionType, AuditLogEntry

logger = logging.getLogger(__name__)

GENESIS_SEED = b"geoestate-genesis"


class AuditRecord(BaseModel):
    """An entry plus its position in the chain."""

    model_config = {"frozen": True}

    entry: AuditLogEntry
    previous_hash: str
    entry_hash: str


def compute_genesis_hash(algorithm: str = "sha256") -> str:
    return hashlib.new(algorithm, GENESIS_SEED).hexdigest()


def compute_chain_hash(previous_hash: str, entry_json: str, algorithm: str = "sha256") -> str:
    return hashlib.new(algorithm, f"{previous_hash}{entry_json}".encode("utf-8")).hexdigest()


def matches_filters(
    entry: AuditLogEntry,
    action_types: Iterable[AuditActionType | str] | None = None,
    actor_id: str | None = None,
    subject_id: str | None = None,
) -> bool:
    """Shared by the JSONL and SQL audit stores."""
    if action_types is not None and entry.action_type not in {str(a) for a in action_types}:
        return False
    if actor_id is not None and entry.actor_id != actor_id:
        return False
    return subject_id is None or subject_id in entry.subject_ids


class AuditLogger:
    """Append-only JSONL audit log.

    Appends are serialized by a lock, so concurrent resolution attempts are
    all recorded and chained in arrival order. Reopening an existing file
    continues its chain.

    Args:
        config: Directory and hash algorithm. Defaults to ``AuditConfig()``,
            which reads ``GEOESTATE_AUDIT_*`` environment variables.
        log_file: File name inside ``config.log_dir``.
    """

    def __init__(
        self,
        config: AuditConfig | None = None,
        log_file: str = "audit.jsonl",
    ) -> None:
        config = config or AuditConfig()
        self._algorithm = config.hash_algorithm
        log_dir = Path(config.log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        self._log_path = log_dir / log_file
        self._lock = threading.Lock()

        self._last_hash = compute_genesis_hash(self._algorithm)
        for record in self._records():
            self._last_hash = record.entry_hash

    @property
    def log_path(self) -> Path:
        return self._log_path

    @property
    def last_hash(self) -> str:
        """Hash of the newest entry, or the genesis hash for an empty log."""
        return self._last_hash

    def _records(self) -> Iterator[AuditRecord]:
        if not self._log_path.exists():
            return
        with open(self._log_path) as fh:
            for line in fh:
                if line.strip():
                    yield AuditRecord.model_validate_json(line)

    def log(self, entry: AuditLogEntry) -> AuditRecord:
        """Chain ``entry`` onto the log and return its record."""
        entry_json = entry.model_dump_json()
        with self._lock:
            record = AuditRecord(
                entry=entry,
                previous_hash=self._last_hash,
                entry_hash=compute_chain_hash(self._last_hash, entry_json, self._algorithm),
            )
            with open(self._log_path, "a") as fh:
                fh.write(record.model_dump_json() + "\n")
            self._last_hash = record.entry_hash
        logger.debug("Audit %s by %s", entry.action_type, entry.actor_id)
        return record

    def verify_chain(self) -> bool:
        """Recompute every hash from genesis. False on the first broken link."""
        expected_previous = compute_genesis_hash(self._algorithm)
        for record in self._records():
            recomputed = compute_chain_hash(
                expected_previous, record.entry.model_dump_json(), self._algorithm
            )
            if record.previous_hash != expected_previous or record.entry_hash != recomputed:
                logger.warning("Audit chain broken at entry %s", record.entry.entry_id)
                return False
            expected_previous = record.entry_hash
        return True

    def query(
        self,
        action_types: Iterable[AuditActionType | str] | None = None,
        actor_id: str | None = None,
        subject_id: str | None = None,
        limit: int | None = None,
    ) -> list[AuditLogEntry]:
        """Matching entries, newest first.

        ``subject_id`` matches an overlap record id or either parcel id named
        by the entry.
        """
        types = list(action_types) if action_types is not None else None
        matches = [
            record.entry
            for record in self._records()
            if matches_filters(record.entry, types, actor_id, subject_id)
        ]
        matches.reverse()
        return matches[:limit] if limit is not None else matches
