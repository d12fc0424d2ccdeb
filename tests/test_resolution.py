"""Tests for the resolution workflow state machine."""

from __future__ import annotations

import asyncio

import pytest

from geoestate.core.errors import MissingReason, StoreUnavailable
from geoestate.core.types import AuditActionType, ParcelStatus, ResolutionState
from geoestate.governance.audit import AuditLogger
from geoestate.overlap.models import ResolutionOutcome
from geoestate.overlap.scanner import OverlapScanner
from geoestate.overlap.resolution import ResolutionWorkflow
from geoestate.parcels.store import ParcelStore

from conftest import FailingAudit, make_parcel


@pytest.fixture()
def populated(store: ParcelStore) -> ParcelStore:
    store.add(make_parcel("A", 0, 0))
    store.add(make_parcel("B", 50, 0, owner_id="owner-2"))
    store.add(make_parcel("C", 1_000, 0))
    store.add(make_parcel("D", 1_000, 0, owner_id="owner-3"))
    return store


@pytest.fixture()
def scanner(kernel, overlap_config) -> OverlapScanner:
    return OverlapScanner(kernel, config=overlap_config)


@pytest.fixture()
def workflow(populated: ParcelStore, audit_logger: AuditLogger, scanner: OverlapScanner) -> ResolutionWorkflow:
    wf = ResolutionWorkflow(populated, audit_logger)
    wf.set_records(scanner.scan(populated.list_eligible_parcels()).records)
    return wf


class TestArchive:
    async def test_archive_sets_status_and_audits(self, workflow, populated, audit_logger) -> None:
        result = await workflow.archive("A~B", "B", reason="duplicate listing", actor_id="admin-1")
        assert result.outcome == ResolutionOutcome.APPLIED
        assert result.state == ResolutionState.ARCHIVED
        assert populated.get("B").status == ParcelStatus.ARCHIVED
        entries = audit_logger.query(action_types=[AuditActionType.ARCHIVE_DUPLICATE_LISTING])
        assert len(entries) == 1
        assert entries[0].actor_id == "admin-1"
        assert entries[0].details["reason"] == "duplicate listing"
        assert "B" in entries[0].subject_ids

    async def test_archive_allows_empty_reason(self, workflow) -> None:
        result = await workflow.archive("A~B", "A")
        assert result.outcome == ResolutionOutcome.APPLIED

    async def test_archive_twice_is_already_resolved(self, workflow, populated, audit_logger) -> None:
        await workflow.archive("A~B", "B", actor_id="admin-1")
        second = await workflow.archive("A~B", "B", actor_id="admin-2")
        assert second.outcome == ResolutionOutcome.ALREADY_RESOLVED
        assert second.state == ResolutionState.ARCHIVED
        assert len(audit_logger.query(action_types=[AuditActionType.ARCHIVE_DUPLICATE_LISTING])) == 1
        assert len(audit_logger.query(action_types=[AuditActionType.RESOLUTION_CONFLICT])) == 1
        assert len(workflow.history("A~B")) == 1

    async def test_archived_parcel_drops_out_of_next_scan(self, workflow, populated, scanner) -> None:
        await workflow.archive("A~B", "B")
        records = scanner.scan(populated.list_eligible_parcels()).records
        assert all(not r.involves("B") for r in records)

    async def test_unknown_record(self, workflow) -> None:
        with pytest.raises(KeyError):
            await workflow.archive("X~Y", "X")

    async def test_target_must_be_in_pair(self, workflow) -> None:
        with pytest.raises(ValueError):
            await workflow.archive("A~B", "C")


class TestDelete:
    async def test_delete_requires_reason(self, workflow, populated, audit_logger) -> None:
        with pytest.raises(MissingReason):
            await workflow.delete("A~B", "B", reason="   ")
        assert populated.get("B") is not None
        assert audit_logger.query() == []

    async def test_delete_is_irreversible(self, workflow, populated, scanner, audit_logger) -> None:
        result = await workflow.delete("A~B", "B", reason="fraudulent duplicate", actor_id="admin-1")
        assert result.outcome == ResolutionOutcome.APPLIED
        assert result.state == ResolutionState.DELETED
        assert populated.get("B") is None
        assert all(p.id != "B" for p in populated.list_eligible_parcels())
        records = scanner.scan(populated.list_eligible_parcels()).records
        assert all(not r.involves("B") for r in records)
        assert len(audit_logger.query(action_types=[AuditActionType.DELETE_DUPLICATE_LISTING])) == 1

    async def test_delete_after_delete_reports_conflict(self, workflow) -> None:
        await workflow.delete("A~B", "B", reason="dup")
        second = await workflow.delete("A~B", "B", reason="dup again")
        assert second.outcome == ResolutionOutcome.ALREADY_RESOLVED
        assert second.state == ResolutionState.DELETED

    async def test_racing_archive_and_delete(self, workflow, populated, audit_logger) -> None:
        results = await asyncio.gather(
            workflow.archive("C~D", "D", actor_id="officer-1"),
            workflow.delete("C~D", "D", reason="duplicate", actor_id="officer-2"),
        )
        outcomes = sorted(r.outcome for r in results)
        assert outcomes == [ResolutionOutcome.ALREADY_RESOLVED, ResolutionOutcome.APPLIED]
        # Both attempts are recorded durably.
        actors = {e.actor_id for e in audit_logger.query(subject_id="C~D")}
        assert actors == {"officer-1", "officer-2"}
        assert audit_logger.verify_chain()


class TestIgnore:
    async def test_ignore_leaves_parcels_untouched(self, workflow, populated, audit_logger) -> None:
        result = await workflow.ignore("A~B", reason="adjacent subdivision", actor_id="analyst")
        assert result.state == ResolutionState.IGNORED
        assert populated.get("A").status == ParcelStatus.PUBLISHED
        assert populated.get("B").status == ParcelStatus.PUBLISHED
        assert len(audit_logger.query(action_types=[AuditActionType.RESOLVE_OVERLAP])) == 1

    async def test_state_survives_rescan(self, workflow, populated, scanner) -> None:
        await workflow.ignore("A~B")
        workflow.set_records(scanner.scan(populated.list_eligible_parcels()).records)
        assert workflow.state_of("A~B") == ResolutionState.IGNORED
        second = await workflow.archive("A~B", "A")
        assert second.outcome == ResolutionOutcome.ALREADY_RESOLVED

    async def test_open_by_default(self, workflow) -> None:
        assert workflow.state_of("A~B") == ResolutionState.OPEN
        assert workflow.states() == {"A~B": ResolutionState.OPEN, "C~D": ResolutionState.OPEN}


class TestAuditFailure:
    @pytest.fixture()
    def failing_audit(self, audit_logger: AuditLogger) -> FailingAudit:
        return FailingAudit(audit_logger)

    @pytest.fixture()
    def flaky_workflow(self, populated, failing_audit, scanner) -> ResolutionWorkflow:
        wf = ResolutionWorkflow(populated, failing_audit)
        wf.set_records(scanner.scan(populated.list_eligible_parcels()).records)
        return wf

    async def test_archive_is_undone(self, flaky_workflow, populated, failing_audit, audit_logger) -> None:
        with pytest.raises(StoreUnavailable):
            await flaky_workflow.archive("A~B", "B", actor_id="admin-1")
        assert populated.get("B").status == ParcelStatus.PUBLISHED
        assert flaky_workflow.state_of("A~B") == ResolutionState.OPEN
        assert flaky_workflow.history("A~B") == []
        assert audit_logger.query() == []

        failing_audit.failing = False
        retry = await flaky_workflow.archive("A~B", "B", actor_id="admin-1")
        assert retry.outcome == ResolutionOutcome.APPLIED
        assert populated.get("B").status == ParcelStatus.ARCHIVED
        assert len(audit_logger.query(action_types=[AuditActionType.ARCHIVE_DUPLICATE_LISTING])) == 1

    async def test_delete_is_undone(self, flaky_workflow, populated, failing_audit, audit_logger) -> None:
        with pytest.raises(StoreUnavailable):
            await flaky_workflow.delete("A~B", "B", reason="duplicate", actor_id="admin-1")
        restored = populated.get("B")
        assert restored is not None
        assert restored.owner_id == "owner-2"
        assert "B" in {p.id for p in populated.list_eligible_parcels()}
        assert flaky_workflow.state_of("A~B") == ResolutionState.OPEN

        failing_audit.failing = False
        retry = await flaky_workflow.delete("A~B", "B", reason="duplicate", actor_id="admin-1")
        assert retry.outcome == ResolutionOutcome.APPLIED
        assert populated.get("B") is None
        assert len(audit_logger.query(action_types=[AuditActionType.DELETE_DUPLICATE_LISTING])) == 1

    async def test_ignore_leaves_record_open(self, flaky_workflow, populated) -> None:
        with pytest.raises(StoreUnavailable):
            await flaky_workflow.ignore("A~B", reason="adjacent")
        assert flaky_workflow.state_of("A~B") == ResolutionState.OPEN
        assert populated.get("A").status == ParcelStatus.PUBLISHED
