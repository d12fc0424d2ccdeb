"""Delivery seam for notifications.

Message delivery itself is out of scope; ``MockNotificationService`` marks
every message delivered and keeps it in a :class:`NotificationStore`.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Protocol, runtime_checkable

from geoestate.notifications.models import Notification, NotificationStatus
from geoestate.notifications.store import NotificationStore


@runtime_checkable
class NotificationService(Protocol):
    def send(self, notification: Notification) -> Notification: ...

    def list_for_recipient(self, recipient: str) -> list[Notification]: ...


class MockNotificationService:
    def __init__(self, store: NotificationStore | None = None) -> None:
        self.store = store or NotificationStore()

    def send(self, notification: Notification) -> Notification:
        delivered = notification.model_copy(
            update={
                "status": NotificationStatus.DELIVERED,
                "delivered_at": datetime.now(timezone.utc),
            }
        )
        return self.store.save(delivered)

    def list_for_recipient(self, recipient: str) -> list[Notification]:
        return self.store.list_for_recipient(recipient)
