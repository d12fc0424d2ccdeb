"""Core type definitions shared across all GeoEstate modules."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class ParcelStatus(StrEnum):
    """Lifecycle status of a listed parcel."""

    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"
    CLOSED = "closed"


# Parcels in these states never take part in overlap scanning.
INELIGIBLE_STATUSES = frozenset({ParcelStatus.DRAFT, ParcelStatus.ARCHIVED})

# Joins the two parcel ids of an overlap record id; never allowed inside a parcel id.
PAIR_SEPARATOR = "~"


class Severity(StrEnum):
    """Policy tier of an overlap."""

    LOW = "low"
    HIGH = "high"
    BLOCKED = "blocked"


class SeverityLabel(StrEnum):
    """Display label of an overlap. CRITICAL carries no extra policy."""

    LOW = "low"
    HIGH = "high"
    BLOCKED = "blocked"
    CRITICAL = "critical"


class PolicyContext(StrEnum):
    """When a policy decision is being made."""

    CREATION = "creation"
    RETROSPECTIVE = "retrospective"


class PolicyAction(StrEnum):
    ALLOW = "allow"
    WARN = "warn"
    AUTO_REJECT = "auto_reject"


class ResolutionActionType(StrEnum):
    ARCHIVE = "archive"
    DELETE = "delete"
    RESOLVE = "resolve"


class ResolutionState(StrEnum):
    """Resolution state of an overlap record. Everything but OPEN is terminal."""

    OPEN = "open"
    ARCHIVED = "archived"
    DELETED = "deleted"
    IGNORED = "ignored"


class AuditActionType(StrEnum):
    AUTO_DELETE_OVERLAP = "AUTO_DELETE_OVERLAP"
    ARCHIVE_DUPLICATE_LISTING = "ARCHIVE_DUPLICATE_LISTING"
    DELETE_DUPLICATE_LISTING = "DELETE_DUPLICATE_LISTING"
    RESOLVE_OVERLAP = "RESOLVE_OVERLAP"
    RESOLUTION_CONFLICT = "RESOLUTION_CONFLICT"
    OVERLAP_FLAGGED = "OVERLAP_FLAGGED"
    OVERLAP_SCAN_COMPLETED = "OVERLAP_SCAN_COMPLETED"
    FRAUD_SIGNALS_DETECTED = "FRAUD_SIGNALS_DETECTED"


class AuditLogEntry(BaseModel):
    """Immutable, append-only audit record."""

    model_config = {"frozen": True}

    entry_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    action_type: AuditActionType
    actor_id: str
    subject_ids: tuple[str, ...] = ()
    details: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class HealthStatus(BaseModel):
    """Health check response for any service."""

    service: str
    healthy: bool
    details: dict[str, Any] = Field(default_factory=dict)
