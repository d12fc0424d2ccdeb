"""Overlap records, scan results and resolution models."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import StrEnum
from typing import NamedTuple

from pydantic import BaseModel, Field

from geoestate.core.types import (
    PAIR_SEPARATOR,
    PolicyAction,
    ResolutionActionType,
    ResolutionState,
    Severity,
    SeverityLabel,
)
from geoestate.geometry.models import MultiPolygon, Polygon


class PairKey(NamedTuple):
    """Canonical unordered pair of parcel ids, ordered lexicographically."""

    first: str
    second: str

    @classmethod
    def of(cls, a: str, b: str) -> PairKey:
        """Order ``a`` and ``b``.

        Raises:
            ValueError: If either id contains the separator, which would make
                the record id ambiguous.
        """
        if PAIR_SEPARATOR in a or PAIR_SEPARATOR in b:
            raise ValueError(f"Parcel ids must not contain {PAIR_SEPARATOR!r}: {a!r}, {b!r}")
        return cls(a, b) if a <= b else cls(b, a)

    @classmethod
    def parse(cls, record_id: str) -> PairKey:
        """Inverse of :attr:`record_id`.

        Raises:
            ValueError: If ``record_id`` does not name exactly two parcels.
        """
        parts = record_id.split(PAIR_SEPARATOR)
        if len(parts) != 2 or not all(parts):
            raise ValueError(f"Invalid overlap id {record_id!r}")
        return cls.of(parts[0], parts[1])

    @property
    def record_id(self) -> str:
        return f"{self.first}{PAIR_SEPARATOR}{self.second}"


class OverlapRecord(BaseModel):
    """A pair of parcels that overlap by at least the reportable threshold.

    Records are derived and recomputable; they are never mutated by the
    resolution workflow.
    """

    model_config = {"frozen": True}

    id: str
    parcel_a_id: str
    parcel_b_id: str
    overlap_percentage: float = Field(ge=0.0, le=100.0)
    overlap_area_m2: float = Field(ge=0.0)
    area_a_m2: float = 0.0
    area_b_m2: float = 0.0
    intersection_geometry: Polygon | MultiPolygon | None = None
    same_owner: bool
    severity: Severity
    label: SeverityLabel
    discovered_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def pair(self) -> PairKey:
        return PairKey(self.parcel_a_id, self.parcel_b_id)

    def involves(self, parcel_id: str) -> bool:
        return parcel_id in (self.parcel_a_id, self.parcel_b_id)


class ScanWarningKind(StrEnum):
    INVALID_GEOMETRY = "invalid_geometry"
    INTERSECTION_FAILED = "intersection_failed"


class ScanWarning(BaseModel):
    """A parcel or pair skipped during a scan."""

    kind: ScanWarningKind
    parcel_ids: tuple[str, ...]
    message: str


class ScanStats(BaseModel):
    parcels_total: int = 0
    parcels_scanned: int = 0
    parcels_skipped: int = 0
    candidate_pairs: int = 0
    bbox_rejections: int = 0
    intersection_tests: int = 0
    duplicate_pairs_skipped: int = 0
    records_emitted: int = 0
    duration_ms: float = 0.0


class ScanResult(BaseModel):
    """Output of one scanner invocation."""

    records: list[OverlapRecord] = Field(default_factory=list)
    warnings: list[ScanWarning] = Field(default_factory=list)
    stats: ScanStats = Field(default_factory=ScanStats)
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: datetime | None = None

    @property
    def skipped_parcel_count(self) -> int:
        return sum(1 for w in self.warnings if w.kind == ScanWarningKind.INVALID_GEOMETRY)


class ResolutionAction(BaseModel):
    """Append-only ledger entry for an action taken on an overlap."""

    model_config = {"frozen": True}

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    overlap_record_id: str
    action: ResolutionActionType
    target_parcel_id: str | None = None
    actor_id: str
    reason: str = ""
    acted_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ResolutionOutcome(StrEnum):
    APPLIED = "applied"
    ALREADY_RESOLVED = "already_resolved"


class ResolutionResult(BaseModel):
    outcome: ResolutionOutcome
    overlap_record_id: str
    state: ResolutionState
    action: ResolutionAction | None = None
    message: str = ""


class OverlappingParcel(BaseModel):
    parcel_id: str
    title: str = ""
    overlap_percentage: float
    overlap_area_m2: float


class OverlapCheckResult(BaseModel):
    """Result of checking a proposed boundary against the live parcel set."""

    can_proceed: bool
    has_overlaps: bool
    max_overlap_percentage: float = 0.0
    overlapping_parcels: list[OverlappingParcel] = Field(default_factory=list)
    message: str = ""


class SubmissionResult(BaseModel):
    parcel_id: str
    accepted: bool
    action: PolicyAction
    check: OverlapCheckResult


class FraudSignalType(StrEnum):
    DUPLICATE_POLYGON = "duplicate_polygon"
    SIMILAR_POLYGON = "similar_polygon"
    SELF_INTERSECTING_POLYGON = "self_intersecting_polygon"


class FraudSignal(BaseModel):
    """One suspicious property of a submitted boundary, with its score."""

    parcel_id: str
    user_id: str
    signal_type: FraudSignalType
    signal_score: int
    details: str
    related_parcel_id: str | None = None
    overlap_percentage: float | None = None
