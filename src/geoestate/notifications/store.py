"""In-memory record of sent overlap notifications."""

from __future__ import annotations

from geoestate.notifications.models import Notification


class NotificationStore:
    def __init__(self) -> None:
        self._notifications: dict[str, Notification] = {}

    def save(self, notification: Notification) -> Notification:
        self._notifications[notification.id] = notification
        return notification

    def get(self, notification_id: str) -> Notification | None:
        return self._notifications.get(notification_id)

    def list_for_recipient(self, recipient: str) -> list[Notification]:
        return [n for n in self._notifications.values() if n.recipient == recipient]

    def list_for_parcel(self, parcel_id: str) -> list[Notification]:
        """Notifications about the auto-rejection of ``parcel_id``."""
        return [n for n in self._notifications.values() if n.rejected_parcel_id == parcel_id]

    @property
    def count(self) -> int:
        return len(self._notifications)
