"""Severity tiers and policy decisions for overlap percentages."""

from __future__ import annotations

from geoestate.core.config import OverlapConfig
from geoestate.core.types import PolicyAction, PolicyContext, Severity, SeverityLabel


class OverlapClassifier:
    """Maps an overlap percentage to a severity tier and a policy action.

    A percentage equal to a threshold belongs to the higher tier. The
    critical threshold only affects the display label.
    """

    def __init__(
        self,
        warning_threshold: float = 10.0,
        block_threshold: float = 20.0,
        critical_threshold: float = 50.0,
    ) -> None:
        if not 0.0 <= warning_threshold <= block_threshold <= critical_threshold <= 100.0:
            raise ValueError(
                "Thresholds must satisfy 0 <= warning <= block <= critical <= 100, got "
                f"{warning_threshold}, {block_threshold}, {critical_threshold}"
            )
        self.warning_threshold = warning_threshold
        self.block_threshold = block_threshold
        self.critical_threshold = critical_threshold

    @classmethod
    def from_config(cls, config: OverlapConfig) -> OverlapClassifier:
        return cls(
            warning_threshold=config.warning_threshold,
            block_threshold=config.block_threshold,
            critical_threshold=config.critical_threshold,
        )

    def classify(self, overlap_percentage: float) -> Severity:
        if overlap_percentage >= self.block_threshold:
            return Severity.BLOCKED
        if overlap_percentage >= self.warning_threshold:
            return Severity.HIGH
        return Severity.LOW

    def label(self, overlap_percentage: float) -> SeverityLabel:
        if overlap_percentage >= self.critical_threshold:
            return SeverityLabel.CRITICAL
        return SeverityLabel(self.classify(overlap_percentage).value)

    def decide(self, overlap_percentage: float, context: PolicyContext) -> PolicyAction:
        return policy_action(self.classify(overlap_percentage), context)


def policy_action(severity: Severity, context: PolicyContext) -> PolicyAction:
    """Decide the automatic action for a severity tier.

    Blocked overlaps are only auto-rejected when a new parcel is being
    created; in a retrospective scan both parcels are already live and the
    pair is surfaced to administrators instead.
    """
    if severity == Severity.LOW:
        return PolicyAction.ALLOW
    if severity == Severity.BLOCKED and context == PolicyContext.CREATION:
        return PolicyAction.AUTO_REJECT
    return PolicyAction.WARN


_default = OverlapClassifier()


def classify(overlap_percentage: float) -> Severity:
    """Classify with the default 10% / 20% thresholds."""
    return _default.classify(overlap_percentage)
