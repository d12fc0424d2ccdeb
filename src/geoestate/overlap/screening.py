"""Creation-time overlap screening.

A proposed boundary is measured against every eligible parcel. Overlaps above
the creation report threshold are reported to the submitter; an overlap in
the blocked tier rejects the submission and deletes the just-stored parcel.
Fraud scoring reuses the same comparisons to flag duplicated or copied
boundaries.
"""

from __future__ import annotations

import logging

from shapely.errors import GEOSException
from shapely.geometry.base import BaseGeometry

from geoestate.core.config import FraudConfig, OverlapConfig, ValidationConfig
from geoestate.core.errors import AlreadyResolved, IntersectionComputationFailed, InvalidGeometry
from geoestate.core.types import AuditActionType, AuditLogEntry, PolicyAction, PolicyContext
from geoestate.geometry.kernel import GeometryKernel, bounding_box, boxes_disjoint
from geoestate.geometry.models import Polygon
from geoestate.geometry.validation import has_self_intersection, validate_polygon
from geoestate.notifications.engine import NotificationEngine
from geoestate.notifications.models import OverlapAutoRejectedEvent
from geoestate.overlap.classifier import OverlapClassifier
from geoestate.overlap.models import (
    FraudSignal,
    FraudSignalType,
    OverlapCheckResult,
    OverlappingParcel,
    SubmissionResult,
)
from geoestate.parcels.models import Parcel
from geoestate.repositories import resolve
from geoestate.repositories.protocols import AuditRepository, ParcelRepository

logger = logging.getLogger(__name__)


class ParcelScreening:
    """Checks new or edited boundaries against the live parcel set."""

    def __init__(
        self,
        store: ParcelRepository,
        audit: AuditRepository,
        kernel: GeometryKernel,
        classifier: OverlapClassifier | None = None,
        config: OverlapConfig | None = None,
        validation_config: ValidationConfig | None = None,
        notifications: NotificationEngine | None = None,
        admin_ids: list[str] | None = None,
        fraud_config: FraudConfig | None = None,
    ) -> None:
        self._store = store
        self._audit = audit
        self._kernel = kernel
        self._config = config or OverlapConfig()
        self._classifier = classifier or OverlapClassifier.from_config(self._config)
        self._validation_config = validation_config or ValidationConfig()
        self._notifications = notifications
        self._admin_ids = list(admin_ids or [])
        self._fraud_config = fraud_config or FraudConfig()

    async def check_overlap(
        self,
        polygon: Polygon,
        exclude_parcel_id: str | None = None,
    ) -> OverlapCheckResult:
        """Measure ``polygon`` against every eligible parcel.

        Args:
            polygon: The proposed boundary.
            exclude_parcel_id: Parcel being edited; it is not compared with
                itself.

        Raises:
            InvalidGeometry: If ``polygon`` cannot be measured.
        """
        if not self._kernel.is_valid(polygon):
            raise InvalidGeometry("Proposed boundary is not a valid polygon")
        shape = self._kernel.to_shape(polygon)
        area = self._kernel.shape_area(shape)
        if area <= 0:
            raise InvalidGeometry("Proposed boundary has no area")
        box = bounding_box(polygon)

        existing = await resolve(self._store.list_eligible_parcels())
        overlaps: list[OverlappingParcel] = []
        for parcel in existing:
            if parcel.id == exclude_parcel_id:
                continue
            if boxes_disjoint(box, bounding_box(parcel.boundary)):
                continue
            try:
                other = self._kernel.to_shape(parcel.boundary)
                if not self._kernel.shape_is_valid(other):
                    continue
                measure = self._kernel.measure_shapes(shape, other, area, self._kernel.shape_area(other))
            except (InvalidGeometry, IntersectionComputationFailed) as exc:
                logger.warning("Skipping comparison with parcel %s: %s", parcel.id, exc)
                continue
            if measure.overlap_percentage > self._config.creation_report_threshold:
                overlaps.append(
                    OverlappingParcel(
                        parcel_id=parcel.id,
                        title=parcel.title or "Unknown Property",
                        overlap_percentage=measure.overlap_percentage,
                        overlap_area_m2=measure.intersection_area_m2,
                    )
                )

        overlaps.sort(key=lambda o: (-o.overlap_percentage, o.parcel_id))
        max_pct = overlaps[0].overlap_percentage if overlaps else 0.0
        action = self._classifier.decide(max_pct, PolicyContext.CREATION)
        can_proceed = action != PolicyAction.AUTO_REJECT

        if not can_proceed:
            message = (
                f"This property overlaps {max_pct:.1f}% with an existing listing. "
                f"Properties cannot overlap {self._classifier.block_threshold:g}% or more."
            )
        elif overlaps:
            message = f"Warning: overlap detected ({max_pct:.1f}%) with existing properties."
        else:
            message = "No overlaps detected."

        return OverlapCheckResult(
            can_proceed=can_proceed,
            has_overlaps=bool(overlaps),
            max_overlap_percentage=max_pct,
            overlapping_parcels=overlaps[: self._config.max_reported_overlaps],
            message=message,
        )

    async def submit_parcel(self, parcel: Parcel, submitter_id: str) -> SubmissionResult:
        """Validate, store and screen a new parcel.

        A blocked overlap hard-deletes the parcel again, records
        ``AUTO_DELETE_OVERLAP`` and notifies the submitter and admins. A
        warning-tier overlap keeps the parcel and records ``OVERLAP_FLAGGED``.
        If screening or its audit entry fails, the parcel is withdrawn before
        the error propagates, so a failed submission stores nothing.

        Raises:
            InvalidGeometry: If the boundary fails validation. Nothing is stored.
            ValueError: If a parcel with the same id already exists.
            StoreUnavailable: If the store or audit log fails after the parcel
                was stored.
        """
        report = validate_polygon(parcel.boundary, self._kernel, self._validation_config)
        if not report.is_valid:
            raise InvalidGeometry("; ".join(report.errors), parcel.id)

        await resolve(self._store.add(parcel))
        try:
            check = await self.check_overlap(parcel.boundary, exclude_parcel_id=parcel.id)
            action = self._classifier.decide(check.max_overlap_percentage, PolicyContext.CREATION)
            if action == PolicyAction.AUTO_REJECT:
                await resolve(self._store.delete(parcel.id))
                await self._log_decision(AuditActionType.AUTO_DELETE_OVERLAP, parcel, check, submitter_id)
            elif action == PolicyAction.WARN:
                await self._log_decision(AuditActionType.OVERLAP_FLAGGED, parcel, check, submitter_id)
        except Exception:
            await self._withdraw(parcel.id)
            raise

        if action != PolicyAction.AUTO_REJECT:
            return SubmissionResult(parcel_id=parcel.id, accepted=True, action=action, check=check)

        worst = check.overlapping_parcels[0]
        logger.warning(
            "Auto-rejected parcel %s: %.1f%% overlap with %s",
            parcel.id,
            check.max_overlap_percentage,
            worst.parcel_id,
        )
        if self._notifications is not None:
            self._notifications.publish_auto_rejected(
                OverlapAutoRejectedEvent(
                    submitter_id=submitter_id,
                    admin_ids=self._admin_ids,
                    overlap_percentage=check.max_overlap_percentage,
                    rejected_parcel_id=parcel.id,
                    conflicting_parcel_id=worst.parcel_id,
                )
            )
        return SubmissionResult(parcel_id=parcel.id, accepted=False, action=action, check=check)

    async def _log_decision(
        self,
        action_type: AuditActionType,
        parcel: Parcel,
        check: OverlapCheckResult,
        submitter_id: str,
    ) -> None:
        worst = check.overlapping_parcels[0]
        await resolve(
            self._audit.log(
                AuditLogEntry(
                    action_type=action_type,
                    actor_id="system",
                    subject_ids=(parcel.id, worst.parcel_id),
                    details={
                        "submitter_id": submitter_id,
                        "overlap_percentage": check.max_overlap_percentage,
                        "conflicting_parcel_id": worst.parcel_id,
                    },
                )
            )
        )

    async def _withdraw(self, parcel_id: str) -> None:
        try:
            await resolve(self._store.delete(parcel_id))
        except (KeyError, AlreadyResolved):
            # Already removed by the auto-reject path.
            return
        except Exception:
            logger.exception("Could not withdraw parcel %s after a failed submission", parcel_id)
            return
        logger.warning("Withdrew parcel %s after a failed submission", parcel_id)

    # -- Fraud signals --

    async def detect_fraud_signals(self, parcel: Parcel, user_id: str) -> list[FraudSignal]:
        """Score suspicious properties of ``parcel``'s boundary.

        Signals:

        * ``self_intersecting_polygon`` when the boundary crosses itself.
        * ``duplicate_polygon`` for every live parcel with the same shape.
        * ``similar_polygon`` for every live parcel covering more than a
          configured share of this parcel's own area; the highest matching
          tier sets the score.

        Signals found are recorded as one ``FRAUD_SIGNALS_DETECTED`` audit
        entry. Comparisons that fail are logged and skipped.
        """
        signals: list[FraudSignal] = []
        try:
            shape = self._kernel.to_shape(parcel.boundary)
        except InvalidGeometry as exc:
            raise InvalidGeometry(str(exc), parcel.id) from exc

        if has_self_intersection(shape):
            signals.append(
                FraudSignal(
                    parcel_id=parcel.id,
                    user_id=user_id,
                    signal_type=FraudSignalType.SELF_INTERSECTING_POLYGON,
                    signal_score=self._fraud_config.self_intersection_score,
                    details="Polygon intersects itself - invalid geometry",
                )
            )

        own_area = self._kernel.area(parcel.boundary)
        box = bounding_box(parcel.boundary)
        for other in await resolve(self._store.list_eligible_parcels()):
            if other.id == parcel.id or boxes_disjoint(box, bounding_box(other.boundary)):
                continue
            try:
                signal = self._compare_for_fraud(parcel, shape, own_area, other, user_id)
            except (InvalidGeometry, IntersectionComputationFailed, GEOSException) as exc:
                logger.warning("Fraud check of %s against %s failed: %s", parcel.id, other.id, exc)
                continue
            if signal is not None:
                signals.append(signal)

        if signals:
            related = sorted({s.related_parcel_id for s in signals if s.related_parcel_id})
            await resolve(
                self._audit.log(
                    AuditLogEntry(
                        action_type=AuditActionType.FRAUD_SIGNALS_DETECTED,
                        actor_id="system",
                        subject_ids=(parcel.id, *related),
                        details={
                            "user_id": user_id,
                            "total_score": sum(s.signal_score for s in signals),
                            "signals": [s.model_dump(mode="json") for s in signals],
                        },
                    )
                )
            )
            logger.info("Parcel %s raised %d fraud signal(s)", parcel.id, len(signals))
        return signals

    def _compare_for_fraud(
        self,
        parcel: Parcel,
        shape: BaseGeometry,
        own_area: float,
        other: Parcel,
        user_id: str,
    ) -> FraudSignal | None:
        if shape.equals(self._kernel.to_shape(other.boundary)):
            return FraudSignal(
                parcel_id=parcel.id,
                user_id=user_id,
                signal_type=FraudSignalType.DUPLICATE_POLYGON,
                signal_score=self._fraud_config.duplicate_score,
                details=f"Exact duplicate of parcel {other.id}",
                related_parcel_id=other.id,
                overlap_percentage=100.0,
            )
        if own_area <= 0:
            return None
        shared = self._kernel.intersection_area(parcel.boundary, other.boundary)
        percentage = min(shared / own_area * 100.0, 100.0)
        for threshold, score in self._fraud_config.similarity_tiers:
            if percentage > threshold:
                return FraudSignal(
                    parcel_id=parcel.id,
                    user_id=user_id,
                    signal_type=FraudSignalType.SIMILAR_POLYGON,
                    signal_score=score,
                    details=f"{percentage:.1f}% overlap with parcel {other.id}",
                    related_parcel_id=other.id,
                    overlap_percentage=percentage,
                )
        return None
