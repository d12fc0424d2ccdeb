"""Overlap events and the notifications rendered from them."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, Field


def _now() -> datetime:
    return datetime.now(timezone.utc)


class NotificationChannel(StrEnum):
    EMAIL = "email"
    IN_APP = "in_app"


class NotificationStatus(StrEnum):
    PENDING = "pending"
    DELIVERED = "delivered"


class NotificationPriority(StrEnum):
    NORMAL = "normal"
    HIGH = "high"


class OverlapAutoRejectedEvent(BaseModel):
    """Emitted after a new parcel was deleted for a blocked-tier overlap.

    ``admin_ids`` is the audience besides the submitter. The conflicting
    parcel can be unknown when the event is rebuilt from an audit entry.
    """

    type: Literal["overlap_auto_rejected"] = "overlap_auto_rejected"
    submitter_id: str
    admin_ids: list[str] = Field(default_factory=list)
    overlap_percentage: float
    rejected_parcel_id: str
    conflicting_parcel_id: str | None = None
    created_at: datetime = Field(default_factory=_now)


class NotificationTemplate(BaseModel):
    id: str
    subject: str
    body: str
    channel: NotificationChannel = NotificationChannel.EMAIL


class Notification(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    recipient: str = ""
    channel: NotificationChannel = NotificationChannel.EMAIL
    priority: NotificationPriority = NotificationPriority.NORMAL
    template_id: str | None = None
    subject: str = ""
    body: str = ""
    # Rendering context, kept so a delivered message can be traced to its event.
    metadata: dict[str, Any] = Field(default_factory=dict)
    status: NotificationStatus = NotificationStatus.PENDING
    created_at: datetime = Field(default_factory=_now)
    delivered_at: datetime | None = None

    @property
    def rejected_parcel_id(self) -> str | None:
        return self.metadata.get("rejected_parcel_id")
