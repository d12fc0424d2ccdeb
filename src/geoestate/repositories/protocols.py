"""Protocol definitions for the stores the overlap engine consumes.

Each protocol mirrors the public methods of the in-memory implementation
exactly. SQL repositories implement the same methods as coroutines; callers
go through :func:`geoestate.repositories.resolve` to support both.
"""

from __future__ import annotations

from typing import Iterable, Protocol, runtime_checkable

from geoestate.core.types import AuditActionType, AuditLogEntry
from geoestate.governance.audit import AuditRecord
from geoestate.parcels.models import OwnerInfo, Parcel


@runtime_checkable
class ParcelRepository(Protocol):
    """Protocol for the parcel/listing store."""

    def add(self, parcel: Parcel) -> Parcel: ...

    def get(self, parcel_id: str) -> Parcel | None: ...

    def list_all(self) -> list[Parcel]: ...

    def list_eligible_parcels(self) -> list[Parcel]: ...

    def archive(self, parcel_id: str) -> Parcel: ...

    def delete(self, parcel_id: str) -> Parcel: ...

    def restore(self, parcel: Parcel) -> Parcel: ...

    def save_owner(self, owner: OwnerInfo) -> OwnerInfo: ...

    def get_owner(self, parcel_id: str) -> OwnerInfo | None: ...


@runtime_checkable
class AuditRepository(Protocol):
    """Protocol for audit logging."""

    def log(self, entry: AuditLogEntry) -> AuditRecord: ...

    def verify_chain(self) -> bool: ...

    def query(
        self,
        action_types: Iterable[AuditActionType | str] | None = None,
        actor_id: str | None = None,
        subject_id: str | None = None,
        limit: int | None = None,
    ) -> list[AuditLogEntry]: ...
