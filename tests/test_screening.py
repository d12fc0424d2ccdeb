"""Tests for creation-time overlap checks and the auto-reject path."""

from __future__ import annotations

import pytest

from geoestate.core.config import FraudConfig, OverlapConfig
from geoestate.core.errors import InvalidGeometry, StoreUnavailable
from geoestate.core.types import AuditActionType, PolicyAction
from geoestate.geometry.models import Polygon
from geoestate.notifications.engine import NotificationEngine
from geoestate.notifications.service import MockNotificationService
from geoestate.overlap.models import FraudSignalType
from geoestate.overlap.screening import ParcelScreening
from geoestate.parcels.models import Parcel

from conftest import FailingAudit, make_parcel, square


class ExplodingService:
    def send(self, notification):
        raise ConnectionError("smtp down")

    def list_for_recipient(self, recipient):
        return []


@pytest.fixture()
def notifications() -> NotificationEngine:
    return NotificationEngine(service=MockNotificationService())


@pytest.fixture()
def screening(store, audit_logger, kernel, overlap_config, notifications) -> ParcelScreening:
    store.add(make_parcel("existing", 0, 0, title="Kinondoni Plot 12"))
    return ParcelScreening(
        store=store,
        audit=audit_logger,
        kernel=kernel,
        config=overlap_config,
        notifications=notifications,
        admin_ids=["admin-1", "admin-2"],
    )


class TestCheckOverlap:
    async def test_no_overlap(self, screening) -> None:
        result = await screening.check_overlap(square(500, 500))
        assert result.can_proceed is True
        assert result.has_overlaps is False
        assert result.message == "No overlaps detected."

    async def test_minor_overlap_is_reported(self, screening) -> None:
        result = await screening.check_overlap(square(95, 0))
        assert result.can_proceed is True
        assert result.has_overlaps is True
        assert result.max_overlap_percentage == pytest.approx(5.0)
        assert result.overlapping_parcels[0].title == "Kinondoni Plot 12"
        assert result.message.startswith("Warning")

    async def test_sub_one_percent_is_not_reported(self, screening) -> None:
        result = await screening.check_overlap(square(99.5, 0))
        assert result.has_overlaps is False

    async def test_blocking_overlap(self, screening) -> None:
        result = await screening.check_overlap(square(50, 0))
        assert result.can_proceed is False
        assert result.max_overlap_percentage == pytest.approx(50.0)
        assert "50.0%" in result.message

    async def test_exclude_parcel_for_edits(self, screening) -> None:
        result = await screening.check_overlap(square(0, 0), exclude_parcel_id="existing")
        assert result.has_overlaps is False
        assert result.can_proceed is True

    async def test_top_overlaps_are_capped(self, store, audit_logger, kernel) -> None:
        for i in range(8):
            store.add(make_parcel(f"p{i}", 0, 0))
        screening = ParcelScreening(
            store, audit_logger, kernel, config=OverlapConfig(source_crs=None, max_reported_overlaps=5)
        )
        result = await screening.check_overlap(square(0, 0))
        assert len(result.overlapping_parcels) == 5

    async def test_invalid_polygon(self, screening) -> None:
        with pytest.raises(InvalidGeometry):
            await screening.check_overlap(Polygon(exterior=((0, 0), (10, 10), (10, 0), (0, 10))))


class TestSubmitParcel:
    async def test_auto_reject_deletes_and_notifies(
        self, screening, store, audit_logger, notifications
    ) -> None:
        # 25% overlap with the existing 100 x 100 parcel.
        result = await screening.submit_parcel(make_parcel("new", 75, 0, owner_id="seller-9"), "seller-9")
        assert result.accepted is False
        assert result.action == PolicyAction.AUTO_REJECT
        assert store.get("new") is None
        assert store.get("existing") is not None

        entries = audit_logger.query(action_types=[AuditActionType.AUTO_DELETE_OVERLAP])
        assert len(entries) == 1
        assert entries[0].subject_ids == ("new", "existing")
        assert entries[0].details["overlap_percentage"] == pytest.approx(25.0)

        [event] = notifications.events
        assert event.type == "overlap_auto_rejected"
        assert event.submitter_id == "seller-9"
        assert event.admin_ids == ["admin-1", "admin-2"]
        assert event.rejected_parcel_id == "new"
        assert event.overlap_percentage == pytest.approx(25.0)

    async def test_warning_keeps_parcel_and_flags(self, screening, store, audit_logger) -> None:
        result = await screening.submit_parcel(make_parcel("new", 85, 0), "seller-1")
        assert result.accepted is True
        assert result.action == PolicyAction.WARN
        assert store.get("new") is not None
        assert len(audit_logger.query(action_types=[AuditActionType.OVERLAP_FLAGGED])) == 1

    async def test_clean_submission(self, screening, store, audit_logger, notifications) -> None:
        result = await screening.submit_parcel(make_parcel("new", 300, 0), "seller-1")
        assert result.accepted is True
        assert result.action == PolicyAction.ALLOW
        assert audit_logger.query() == []
        assert notifications.events == []

    async def test_invalid_boundary_is_not_stored(self, screening, store) -> None:
        parcel = make_parcel("tiny", 300, 0, size=1.0)
        with pytest.raises(InvalidGeometry):
            await screening.submit_parcel(parcel, "seller-1")
        assert store.get("tiny") is None

    async def test_notification_failure_does_not_block(self, store, audit_logger, kernel, overlap_config) -> None:
        store.add(make_parcel("existing", 0, 0))
        screening = ParcelScreening(
            store,
            audit_logger,
            kernel,
            config=overlap_config,
            notifications=NotificationEngine(service=ExplodingService()),
            admin_ids=["admin-1"],
        )
        result = await screening.submit_parcel(make_parcel("new", 50, 0), "seller-1")
        assert result.action == PolicyAction.AUTO_REJECT
        assert store.get("new") is None


class TestSubmissionAuditFailure:
    @pytest.fixture()
    def failing_audit(self, audit_logger) -> FailingAudit:
        return FailingAudit(audit_logger)

    @pytest.fixture()
    def flaky(self, store, failing_audit, kernel, overlap_config, notifications) -> ParcelScreening:
        store.add(make_parcel("existing", 0, 0))
        return ParcelScreening(
            store,
            failing_audit,
            kernel,
            config=overlap_config,
            notifications=notifications,
            admin_ids=["admin-1"],
        )

    async def test_auto_reject_without_audit_stores_nothing(
        self, flaky, store, audit_logger, notifications
    ) -> None:
        with pytest.raises(StoreUnavailable):
            await flaky.submit_parcel(make_parcel("new", 50, 0), "seller-1")
        assert store.get("new") is None
        assert store.get("existing") is not None
        assert audit_logger.query() == []
        assert notifications.events == []

    async def test_warning_without_audit_withdraws_parcel(self, flaky, store, audit_logger) -> None:
        with pytest.raises(StoreUnavailable):
            await flaky.submit_parcel(make_parcel("new", 85, 0), "seller-1")
        assert store.get("new") is None
        assert audit_logger.query() == []

    async def test_resubmission_after_recovery(self, flaky, store, failing_audit, audit_logger) -> None:
        with pytest.raises(StoreUnavailable):
            await flaky.submit_parcel(make_parcel("new", 85, 0), "seller-1")
        failing_audit.failing = False
        result = await flaky.submit_parcel(make_parcel("new", 85, 0), "seller-1")
        assert result.action == PolicyAction.WARN
        assert store.get("new") is not None
        assert len(audit_logger.query(action_types=[AuditActionType.OVERLAP_FLAGGED])) == 1


class TestFraudSignals:
    async def test_exact_duplicate(self, screening, audit_logger) -> None:
        signals = await screening.detect_fraud_signals(make_parcel("copy", 0, 0), "seller-4")
        [signal] = signals
        assert signal.signal_type == FraudSignalType.DUPLICATE_POLYGON
        assert signal.signal_score == 20
        assert signal.related_parcel_id == "existing"
        assert signal.user_id == "seller-4"

        [entry] = audit_logger.query(action_types=[AuditActionType.FRAUD_SIGNALS_DETECTED])
        assert entry.subject_ids == ("copy", "existing")
        assert entry.details["total_score"] == 20
        assert entry.details["user_id"] == "seller-4"

    @pytest.mark.parametrize(
        "offset, score",
        [
            (10, 18),  # 90% of the new parcel
            (50, 12),  # 50%
            (90, 5),  # 10%
        ],
    )
    async def test_similarity_tiers(self, screening, offset, score) -> None:
        [signal] = await screening.detect_fraud_signals(make_parcel("near", offset, 0), "seller-4")
        assert signal.signal_type == FraudSignalType.SIMILAR_POLYGON
        assert signal.signal_score == score
        assert signal.overlap_percentage == pytest.approx(100 - offset)
        assert "overlap with parcel existing" in signal.details

    async def test_small_overlap_raises_nothing(self, screening, audit_logger) -> None:
        assert await screening.detect_fraud_signals(make_parcel("near", 97, 0), "seller-4") == []
        assert audit_logger.query() == []

    async def test_share_is_of_the_new_parcel(self, screening) -> None:
        # A small plot fully inside the existing one is 100% covered.
        [signal] = await screening.detect_fraud_signals(make_parcel("inner", 10, 10, size=20), "seller-4")
        assert signal.signal_type == FraudSignalType.SIMILAR_POLYGON
        assert signal.signal_score == 18

    async def test_self_intersecting_boundary(self, screening) -> None:
        bowtie = Parcel(
            id="bowtie",
            owner_id="seller-4",
            boundary=Polygon(exterior=((500, 500), (510, 510), (510, 500), (500, 510))),
        )
        [signal] = await screening.detect_fraud_signals(bowtie, "seller-4")
        assert signal.signal_type == FraudSignalType.SELF_INTERSECTING_POLYGON
        assert signal.signal_score == 15

    async def test_stored_parcel_is_not_compared_with_itself(self, screening, store) -> None:
        existing = store.get("existing")
        assert await screening.detect_fraud_signals(existing, existing.owner_id) == []

    async def test_ineligible_parcels_are_ignored(self, screening, store) -> None:
        store.archive("existing")
        assert await screening.detect_fraud_signals(make_parcel("copy", 0, 0), "seller-4") == []

    async def test_custom_tiers(self, store, audit_logger, kernel, overlap_config) -> None:
        store.add(make_parcel("existing", 0, 0))
        screening = ParcelScreening(
            store,
            audit_logger,
            kernel,
            config=overlap_config,
            fraud_config=FraudConfig(duplicate_score=50, similarity_tiers=[(5.0, 1), (40.0, 9)]),
        )
        [similar] = await screening.detect_fraud_signals(make_parcel("near", 50, 0), "seller-4")
        assert similar.signal_score == 9
        [duplicate] = await screening.detect_fraud_signals(make_parcel("copy", 0, 0), "seller-4")
        assert duplicate.signal_score == 50
