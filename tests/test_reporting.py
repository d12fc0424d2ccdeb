"""Tests for overlap filtering, aggregates and area formatting."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from geoestate.core.types import ResolutionState, Severity, SeverityLabel
from geoestate.overlap.classifier import OverlapClassifier
from geoestate.overlap.models import OverlapRecord, PairKey
from geoestate.overlap.reporting import (
    OverlapFilter,
    OverlapSortKey,
    compute_stats,
    filter_overlaps,
    format_area,
)
from geoestate.parcels.models import ParcelSummary

_T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _record(a: str, b: str, pct: float, same_owner: bool = False, area: float | None = None, age: int = 0) -> OverlapRecord:
    classifier = OverlapClassifier()
    key = PairKey.of(a, b)
    return OverlapRecord(
        id=key.record_id,
        parcel_a_id=key.first,
        parcel_b_id=key.second,
        overlap_percentage=pct,
        overlap_area_m2=area if area is not None else pct * 100,
        same_owner=same_owner,
        severity=classifier.classify(pct),
        label=classifier.label(pct),
        discovered_at=_T0 + timedelta(minutes=age),
    )


@pytest.fixture()
def records() -> list[OverlapRecord]:
    return [
        _record("p1", "p2", 12.0, same_owner=True, age=3),
        _record("p3", "p4", 25.0, area=100.0, age=1),
        _record("p5", "p6", 75.0, age=2),
        _record("p7", "p8", 15.0, same_owner=True, area=9_000.0, age=0),
    ]


@pytest.fixture()
def summaries() -> dict[str, ParcelSummary]:
    return {
        "p1": ParcelSummary(parcel_id="p1", title="Mbezi Beach Plot", region="Dar es Salaam", owner_name="Asha"),
        "p4": ParcelSummary(parcel_id="p4", title="Farm", region="Arusha", district="Meru"),
        "p6": ParcelSummary(parcel_id="p6", title="Shamba", region="Dodoma", owner_name="Juma Hassan"),
    }


class TestFilter:
    def test_default_sorts_by_percentage(self, records) -> None:
        result = filter_overlaps(records)
        assert [r.overlap_percentage for r in result] == [75.0, 25.0, 15.0, 12.0]

    def test_by_severity(self, records) -> None:
        result = filter_overlaps(records, OverlapFilter(severity=Severity.HIGH))
        assert {r.id for r in result} == {"p1~p2", "p7~p8"}

    def test_by_label(self, records) -> None:
        result = filter_overlaps(records, OverlapFilter(label=SeverityLabel.CRITICAL))
        assert [r.id for r in result] == ["p5~p6"]

    def test_by_owner(self, records) -> None:
        same = filter_overlaps(records, OverlapFilter(same_owner=True))
        different = filter_overlaps(records, OverlapFilter(same_owner=False))
        assert {r.id for r in same} == {"p1~p2", "p7~p8"}
        assert {r.id for r in different} == {"p3~p4", "p5~p6"}

    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("mbezi", {"p1~p2"}),
            ("ARUSHA", {"p3~p4"}),
            ("meru", {"p3~p4"}),
            ("juma", {"p5~p6"}),
            ("p8", {"p7~p8"}),
            ("nowhere", set()),
        ],
    )
    def test_search(self, records, summaries, text, expected) -> None:
        result = filter_overlaps(records, OverlapFilter(search=text), summaries)
        assert {r.id for r in result} == expected

    def test_exclude_resolved(self, records) -> None:
        states = {"p5~p6": ResolutionState.ARCHIVED, "p1~p2": ResolutionState.IGNORED}
        result = filter_overlaps(records, OverlapFilter(include_resolved=False), states=states)
        assert {r.id for r in result} == {"p3~p4", "p7~p8"}

    def test_sort_by_area_ascending(self, records) -> None:
        result = filter_overlaps(records, OverlapFilter(sort_by=OverlapSortKey.AREA, descending=False))
        assert [r.id for r in result] == ["p3~p4", "p1~p2", "p5~p6", "p7~p8"]

    def test_sort_by_discovered_at(self, records) -> None:
        result = filter_overlaps(records, OverlapFilter(sort_by=OverlapSortKey.DISCOVERED_AT))
        assert [r.id for r in result] == ["p1~p2", "p5~p6", "p3~p4", "p7~p8"]

    def test_min_percentage_and_limit(self, records) -> None:
        result = filter_overlaps(records, OverlapFilter(min_percentage=15.0, limit=2))
        assert [r.overlap_percentage for r in result] == [75.0, 25.0]

    def test_does_not_mutate_input(self, records) -> None:
        before = list(records)
        filter_overlaps(records, OverlapFilter(severity=Severity.BLOCKED, limit=1))
        assert records == before


class TestStats:
    def test_counts(self, records) -> None:
        stats = compute_stats(records)
        assert stats.total == 4
        assert stats.same_owner == 2
        assert stats.different_owner == 2
        assert stats.by_severity == {"low": 0, "high": 2, "blocked": 2}
        assert stats.by_label["critical"] == 1
        assert stats.blocking == 2
        assert stats.max_overlap_percentage == 75.0
        assert stats.total_overlap_area_m2 == pytest.approx(1_200.0 + 100.0 + 7_500.0 + 9_000.0)

    def test_recomputed_from_live_list(self, records) -> None:
        assert compute_stats(records).total == 4
        assert compute_stats(records[:1]).total == 1

    def test_empty(self) -> None:
        stats = compute_stats([])
        assert stats.total == 0
        assert stats.max_overlap_percentage == 0.0


class TestFormatArea:
    @pytest.mark.parametrize(
        ("area", "expected"),
        [
            (0.0, "0.00 m²"),
            (9_999.5, "9999.50 m²"),
            (10_000.0, "1.00 ha"),
            (250_000.0, "25.00 ha"),
            (1_000_000.0, "1.00 km²"),
            (12_345_678.0, "12.35 km²"),
        ],
    )
    def test_units(self, area: float, expected: str) -> None:
        assert format_area(area) == expected
