"""Read-side filtering and aggregates over the current overlap records.

Everything here is pure: functions take the live record list and return new
lists or stats, so nothing is ever cached between calls.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Iterable, Mapping

from pydantic import BaseModel, Field

from geoestate.core.types import ResolutionState, Severity, SeverityLabel
from geoestate.overlap.models import OverlapRecord
from geoestate.parcels.models import ParcelSummary


class OverlapSortKey(StrEnum):
    PERCENTAGE = "percentage"
    AREA = "area"
    DISCOVERED_AT = "discovered_at"


class OverlapFilter(BaseModel):
    severity: Severity | None = None
    label: SeverityLabel | None = None
    same_owner: bool | None = None
    search: str | None = None
    min_percentage: float | None = None
    include_resolved: bool = True
    sort_by: OverlapSortKey = OverlapSortKey.PERCENTAGE
    descending: bool = True
    limit: int | None = Field(default=None, ge=1)


class OverlapStats(BaseModel):
    total: int = 0
    by_severity: dict[str, int] = Field(default_factory=dict)
    by_label: dict[str, int] = Field(default_factory=dict)
    same_owner: int = 0
    different_owner: int = 0
    blocking: int = 0
    total_overlap_area_m2: float = 0.0
    max_overlap_percentage: float = 0.0


def _sort_value(record: OverlapRecord, key: OverlapSortKey):
    if key == OverlapSortKey.AREA:
        return record.overlap_area_m2
    if key == OverlapSortKey.DISCOVERED_AT:
        return record.discovered_at
    return record.overlap_percentage


def _matches_search(
    record: OverlapRecord,
    text: str,
    summaries: Mapping[str, ParcelSummary],
) -> bool:
    needle = text.lower()
    for parcel_id in (record.parcel_a_id, record.parcel_b_id):
        summary = summaries.get(parcel_id)
        if summary is not None:
            if summary.matches(text):
                return True
        elif needle in parcel_id.lower():
            return True
    return False


def filter_overlaps(
    records: Iterable[OverlapRecord],
    filters: OverlapFilter | None = None,
    summaries: Mapping[str, ParcelSummary] | None = None,
    states: Mapping[str, ResolutionState] | None = None,
) -> list[OverlapRecord]:
    """Filter and sort overlap records.

    Args:
        records: The current record set. Not modified.
        filters: Criteria; ``None`` returns every record sorted by percentage.
        summaries: Searchable descriptors keyed by parcel id. Parcels without
            a summary are matched on their id only.
        states: Resolution state per record id; records missing from it are
            treated as open.
    """
    filters = filters or OverlapFilter()
    summaries = summaries or {}
    states = states or {}

    selected: list[OverlapRecord] = []
    for record in records:
        if filters.severity is not None and record.severity != filters.severity:
            continue
        if filters.label is not None and record.label != filters.label:
            continue
        if filters.same_owner is not None and record.same_owner != filters.same_owner:
            continue
        if filters.min_percentage is not None and record.overlap_percentage < filters.min_percentage:
            continue
        if not filters.include_resolved and states.get(record.id, ResolutionState.OPEN) != ResolutionState.OPEN:
            continue
        if filters.search and not _matches_search(record, filters.search, summaries):
            continue
        selected.append(record)

    # Secondary key keeps ties in a stable, id-based order.
    selected.sort(key=lambda r: r.id)
    selected.sort(key=lambda r: _sort_value(r, filters.sort_by), reverse=filters.descending)
    if filters.limit is not None:
        selected = selected[: filters.limit]
    return selected


def compute_stats(records: Iterable[OverlapRecord]) -> OverlapStats:
    stats = OverlapStats(
        by_severity={s.value: 0 for s in Severity},
        by_label={label.value: 0 for label in SeverityLabel},
    )
    for record in records:
        stats.total += 1
        stats.by_severity[record.severity.value] += 1
        stats.by_label[record.label.value] += 1
        if record.same_owner:
            stats.same_owner += 1
        else:
            stats.different_owner += 1
        if record.severity == Severity.BLOCKED:
            stats.blocking += 1
        stats.total_overlap_area_m2 += record.overlap_area_m2
        stats.max_overlap_percentage = max(stats.max_overlap_percentage, record.overlap_percentage)
    return stats


def format_area(area_m2: float) -> str:
    """Human-readable area: m² below one hectare, ha below one km², km² above."""
    if area_m2 < 10_000:
        return f"{area_m2:.2f} m²"
    if area_m2 < 1_000_000:
        return f"{area_m2 / 10_000:.2f} ha"
    return f"{area_m2 / 1_000_000:.2f} km²"
