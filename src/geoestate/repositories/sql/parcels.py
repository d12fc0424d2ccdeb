"""SQL parcel repository."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Iterable

from sqlalchemy import select

from geoestate.core.errors import AlreadyResolved, InvalidGeometry
from geoestate.core.types import INELIGIBLE_STATUSES, ParcelStatus
from geoestate.db.engine import DatabaseManager
from geoestate.db.models import DeletedParcelRow, OwnerRow, ParcelRow
from geoestate.geometry.models import Polygon
from geoestate.parcels.models import OwnerInfo, Parcel
from geoestate.repositories.sql import as_utc, translate_store_errors

logger = logging.getLogger(__name__)


class SqlParcelRepository:
    """SQL-backed parcel and owner storage.

    Archive and delete lock the parcel row (``SELECT ... FOR UPDATE``) where
    the backend supports it, so concurrent resolutions of the same parcel
    are serialized by the database.
    """

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    # -- Parcels --

    async def add(self, parcel: Parcel) -> Parcel:
        with translate_store_errors("parcel"):
            async with self._db.session() as db:
                if await db.get(ParcelRow, parcel.id) is not None:
                    raise ValueError(f"Parcel {parcel.id!r} already exists.")
                tombstone = await db.get(DeletedParcelRow, parcel.id)
                if tombstone is not None:
                    await db.delete(tombstone)
                db.add(self._parcel_to_row(parcel))
                await db.commit()
        return parcel

    async def get(self, parcel_id: str) -> Parcel | None:
        with translate_store_errors("parcel"):
            async with self._db.session() as db:
                row = await db.get(ParcelRow, parcel_id)
                return self._row_to_parcel(row) if row else None

    async def list_all(self) -> list[Parcel]:
        with translate_store_errors("parcel"):
            async with self._db.session() as db:
                result = await db.execute(select(ParcelRow).order_by(ParcelRow.id))
                return self._load_rows(result.scalars().all())

    async def list_eligible_parcels(self) -> list[Parcel]:
        """Parcels whose status is neither draft nor archived, in one query."""
        excluded = [s.value for s in INELIGIBLE_STATUSES]
        with translate_store_errors("parcel"):
            async with self._db.session() as db:
                result = await db.execute(
                    select(ParcelRow).where(ParcelRow.status.not_in(excluded)).order_by(ParcelRow.id)
                )
                return self._load_rows(result.scalars().all())

    async def archive(self, parcel_id: str) -> Parcel:
        with translate_store_errors("parcel"):
            async with self._db.session() as db:
                row = await self._lock_row(db, parcel_id)
                if row.status == ParcelStatus.ARCHIVED.value:
                    raise AlreadyResolved(parcel_id, "archived")
                row.status = ParcelStatus.ARCHIVED.value
                row.updated_at = datetime.now(timezone.utc)
                await db.commit()
                return self._row_to_parcel(row)

    async def delete(self, parcel_id: str) -> Parcel:
        with translate_store_errors("parcel"):
            async with self._db.session() as db:
                row = await self._lock_row(db, parcel_id)
                parcel = self._row_to_parcel(row)
                await db.delete(row)
                db.add(DeletedParcelRow(parcel_id=parcel_id))
                await db.commit()
                return parcel

    async def restore(self, parcel: Parcel) -> Parcel:
        """Write ``parcel`` back exactly as given, undoing an archive or delete."""
        with translate_store_errors("parcel"):
            async with self._db.session() as db:
                tombstone = await db.get(DeletedParcelRow, parcel.id)
                if tombstone is not None:
                    await db.delete(tombstone)
                await db.merge(self._parcel_to_row(parcel))
                await db.commit()
        return parcel

    async def _lock_row(self, db, parcel_id: str) -> ParcelRow:
        stmt = select(ParcelRow).where(ParcelRow.id == parcel_id)
        if self._db.supports_row_locks:
            stmt = stmt.with_for_update()
        row = (await db.execute(stmt)).scalar_one_or_none()
        if row is not None:
            return row
        if await db.get(DeletedParcelRow, parcel_id) is not None:
            raise AlreadyResolved(parcel_id, "deleted")
        raise KeyError(f"Parcel '{parcel_id}' not found.")

    # -- Owners --

    async def save_owner(self, owner: OwnerInfo) -> OwnerInfo:
        with translate_store_errors("parcel"):
            async with self._db.session() as db:
                existing = await db.get(OwnerRow, owner.owner_id)
                if existing:
                    existing.name = owner.name
                    existing.email = owner.email
                    existing.phone = owner.phone
                else:
                    db.add(
                        OwnerRow(
                            owner_id=owner.owner_id,
                            name=owner.name,
                            email=owner.email,
                            phone=owner.phone,
                        )
                    )
                await db.commit()
        return owner

    async def get_owner(self, parcel_id: str) -> OwnerInfo | None:
        with translate_store_errors("parcel"):
            async with self._db.session() as db:
                result = await db.execute(
                    select(OwnerRow)
                    .join(ParcelRow, ParcelRow.owner_id == OwnerRow.owner_id)
                    .where(ParcelRow.id == parcel_id)
                )
                row = result.scalar_one_or_none()
                if row is None:
                    return None
                return OwnerInfo(owner_id=row.owner_id, name=row.name, email=row.email, phone=row.phone)

    @staticmethod
    def _parcel_to_row(parcel: Parcel) -> ParcelRow:
        return ParcelRow(
            id=parcel.id,
            owner_id=parcel.owner_id,
            status=parcel.status.value,
            boundary=parcel.boundary.to_geojson(),
            area_m2=parcel.area_m2,
            title=parcel.title,
            region=parcel.region,
            district=parcel.district,
            created_at=parcel.created_at,
            updated_at=datetime.now(timezone.utc),
        )

    def _load_rows(self, rows: Iterable[ParcelRow]) -> list[Parcel]:
        """Convert rows, leaving out any whose boundary or status no longer parses."""
        parcels: list[Parcel] = []
        for row in rows:
            try:
                parcels.append(self._row_to_parcel(row))
            except (InvalidGeometry, ValueError) as exc:
                logger.warning("Skipping stored parcel %s: %s", row.id, exc)
        return parcels

    @staticmethod
    def _row_to_parcel(row: ParcelRow) -> Parcel:
        return Parcel(
            id=row.id,
            owner_id=row.owner_id,
            status=ParcelStatus(row.status),
            boundary=Polygon.from_geojson(row.boundary),
            area_m2=row.area_m2,
            title=row.title,
            region=row.region,
            district=row.district,
            created_at=as_utc(row.created_at),
        )
