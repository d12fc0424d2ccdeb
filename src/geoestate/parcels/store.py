"""In-memory parcel store."""

from __future__ import annotations

import threading

from geoestate.core.errors import AlreadyResolved
from geoestate.core.types import ParcelStatus
from geoestate.parcels.models import OwnerInfo, Parcel


class ParcelStore:
    """In-memory dict store for parcels and their owners.

    Status changes and deletions are serialized by a re-entrant lock, so a
    racing archive and delete on the same parcel both see a consistent state.
    Reads return copies so that a scan works on a stable snapshot.
    """

    def __init__(self) -> None:
        self._parcels: dict[str, Parcel] = {}
        self._owners: dict[str, OwnerInfo] = {}
        self._deleted: set[str] = set()
        self._lock = threading.RLock()

    # -- Parcels --

    def add(self, parcel: Parcel) -> Parcel:
        with self._lock:
            if parcel.id in self._parcels:
                raise ValueError(f"Parcel {parcel.id!r} already exists.")
            self._parcels[parcel.id] = parcel.model_copy()
            self._deleted.discard(parcel.id)
            return parcel

    def get(self, parcel_id: str) -> Parcel | None:
        with self._lock:
            parcel = self._parcels.get(parcel_id)
            return parcel.model_copy() if parcel else None

    def list_all(self) -> list[Parcel]:
        with self._lock:
            return [p.model_copy() for p in self._parcels.values()]

    def list_eligible_parcels(self) -> list[Parcel]:
        """Parcels whose status is neither draft nor archived."""
        with self._lock:
            return [p.model_copy() for p in self._parcels.values() if p.is_eligible]

    def archive(self, parcel_id: str) -> Parcel:
        """Set the parcel status to archived.

        Raises:
            KeyError: If the parcel never existed.
            AlreadyResolved: If it is already archived or has been deleted.
        """
        with self._lock:
            parcel = self._require(parcel_id)
            if parcel.status == ParcelStatus.ARCHIVED:
                raise AlreadyResolved(parcel_id, "archived")
            archived = parcel.model_copy(update={"status": ParcelStatus.ARCHIVED})
            self._parcels[parcel_id] = archived
            return archived.model_copy()

    def delete(self, parcel_id: str) -> Parcel:
        """Hard-delete a parcel together with its boundary.

        Raises:
            KeyError: If the parcel never existed.
            AlreadyResolved: If it has already been deleted.
        """
        with self._lock:
            parcel = self._require(parcel_id)
            del self._parcels[parcel_id]
            self._deleted.add(parcel_id)
            return parcel

    def restore(self, parcel: Parcel) -> Parcel:
        """Put ``parcel`` back exactly as given, undoing an archive or delete."""
        with self._lock:
            self._parcels[parcel.id] = parcel.model_copy()
            self._deleted.discard(parcel.id)
            return parcel

    def _require(self, parcel_id: str) -> Parcel:
        if parcel_id in self._deleted:
            raise AlreadyResolved(parcel_id, "deleted")
        if parcel_id not in self._parcels:
            raise KeyError(f"Parcel '{parcel_id}' not found.")
        return self._parcels[parcel_id]

    # -- Owners --

    def save_owner(self, owner: OwnerInfo) -> OwnerInfo:
        with self._lock:
            self._owners[owner.owner_id] = owner
            return owner

    def get_owner(self, parcel_id: str) -> OwnerInfo | None:
        """Owner contact details for a parcel, if both are known."""
        with self._lock:
            parcel = self._parcels.get(parcel_id)
            if parcel is None:
                return None
            return self._owners.get(parcel.owner_id)

    @property
    def count(self) -> int:
        return len(self._parcels)
