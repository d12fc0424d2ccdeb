"""Publishes overlap events as templated notifications."""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any

import yaml

from geoestate.notifications.models import (
    Notification,
    NotificationPriority,
    NotificationTemplate,
    OverlapAutoRejectedEvent,
)
from geoestate.notifications.service import NotificationService

logger = logging.getLogger(__name__)

_DEFAULT_TEMPLATES_PATH = Path(__file__).resolve().parents[3] / "config" / "notification_templates.yml"
_PLACEHOLDER = re.compile(r"\{(\w+)\}")

SUBMITTER_TEMPLATE = "overlap_auto_rejected_submitter"
ADMIN_TEMPLATE = "overlap_auto_rejected_admin"


def load_templates(path: Path) -> dict[str, NotificationTemplate]:
    """Read the ``templates:`` mapping of a YAML file. A missing file yields none."""
    if not path.exists():
        logger.warning("Notification templates not found at %s; using fallbacks", path)
        return {}
    raw = yaml.safe_load(path.read_text()) or {}
    return {
        template_id: NotificationTemplate(id=template_id, **fields)
        for template_id, fields in (raw.get("templates") or {}).items()
    }


def render(text: str, context: dict[str, Any]) -> str:
    """Substitute ``{key}`` placeholders once. Unknown keys stay as written."""
    return _PLACEHOLDER.sub(
        lambda m: str(context[m.group(1)]) if m.group(1) in context else m.group(0),
        text,
    )


class NotificationEngine:
    """Fire-and-forget publisher for overlap events.

    Delivery failures are logged and never reach the caller.
    """

    def __init__(
        self,
        service: NotificationService,
        templates_path: str | Path | None = None,
    ) -> None:
        self._service = service
        self._templates = load_templates(Path(templates_path or _DEFAULT_TEMPLATES_PATH))
        self._events: list[OverlapAutoRejectedEvent] = []

    @property
    def templates(self) -> dict[str, NotificationTemplate]:
        return dict(self._templates)

    @property
    def events(self) -> list[OverlapAutoRejectedEvent]:
        """Events published so far, oldest first."""
        return list(self._events)

    def publish_auto_rejected(self, event: OverlapAutoRejectedEvent) -> list[Notification]:
        """Notify the submitter and every admin about an auto-rejected parcel.

        Returns the notifications that were delivered.
        """
        self._events.append(event)
        context = event.model_dump(mode="json")
        context["overlap_percentage"] = f"{event.overlap_percentage:.1f}"
        context["conflicting_parcel_id"] = event.conflicting_parcel_id or "unknown"

        audience = [(event.submitter_id, SUBMITTER_TEMPLATE)]
        audience.extend((admin_id, ADMIN_TEMPLATE) for admin_id in event.admin_ids)

        delivered = []
        for recipient, template_id in audience:
            notification = self._build(template_id, recipient, context)
            try:
                delivered.append(self._service.send(notification))
            except Exception:
                logger.exception("Failed to deliver %s to %s", template_id, recipient)
        return delivered

    def _build(self, template_id: str, recipient: str, context: dict[str, Any]) -> Notification:
        template = self._templates.get(template_id) or NotificationTemplate(
            id=template_id,
            subject=template_id.replace("_", " ").title(),
            body=f"Notification: {template_id}",
        )
        return Notification(
            recipient=recipient,
            channel=template.channel,
            priority=NotificationPriority.HIGH,
            template_id=template_id,
            subject=render(template.subject, context),
            body=render(template.body, context),
            metadata=context,
        )
