"""Parcel data models."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, Field, field_validator

from geoestate.core.types import INELIGIBLE_STATUSES, PAIR_SEPARATOR, ParcelStatus
from geoestate.geometry.models import Polygon


def check_parcel_id(value: str) -> str:
    """Reject ids that would make two overlap record ids collide."""
    if not value or not value.strip():
        raise ValueError("parcel id must not be blank")
    if PAIR_SEPARATOR in value:
        raise ValueError(f"parcel id must not contain {PAIR_SEPARATOR!r}")
    return value


class Parcel(BaseModel):
    """A listed land parcel and its boundary."""

    id: str
    owner_id: str
    status: ParcelStatus = ParcelStatus.PUBLISHED
    boundary: Polygon
    area_m2: float | None = None
    title: str = ""
    region: str | None = None
    district: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("id")
    @classmethod
    def _valid_id(cls, value: str) -> str:
        return check_parcel_id(value)

    @property
    def is_eligible(self) -> bool:
        """Whether the parcel takes part in overlap scanning."""
        return self.status not in INELIGIBLE_STATUSES


class OwnerInfo(BaseModel):
    """Contact details of a parcel owner, for report rendering."""

    owner_id: str
    name: str = ""
    email: str = ""
    phone: str = ""


class ParcelSummary(BaseModel):
    """Searchable descriptors of a parcel used by the reporting surface."""

    parcel_id: str
    title: str = ""
    region: str | None = None
    district: str | None = None
    owner_name: str = ""

    def matches(self, text: str) -> bool:
        needle = text.lower()
        haystack = (self.parcel_id, self.title, self.region or "", self.district or "", self.owner_name)
        return any(needle in value.lower() for value in haystack)
