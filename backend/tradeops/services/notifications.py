"""Fire-and-forget notification fan-out to roles."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Protocol
from uuid import UUID

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EntityRef:
    entity_type: str
    entity_id: UUID
    state: str | None = None
    state_entered_at: datetime | None = None


@dataclass(frozen=True)
class QueuedNotification:
    """Notification computed inside a transaction and dispatched after commit."""

    target_roles: tuple[str, ...]
    title: str
    message: str
    notification_type: str = "state_transition"
    priority: str = "normal"


class NotificationSender(Protocol):
    def send(
        self,
        *,
        org_id: UUID | None,
        target_roles: Iterable[str],
        title: str,
        message: str,
        entity_ref: EntityRef,
        notification_type: str = "state_transition",
        priority: str = "normal",
    ) -> None:
        ...


def build_payload(
    *,
    org_id: UUID | None,
    target_roles: Iterable[str],
    title: str,
    message: str,
    entity_ref: EntityRef,
    notification_type: str,
    priority: str,
) -> dict:
    return {
        "org_id": str(org_id) if org_id else None,
        "target_roles": [str(getattr(role, "value", role)) for role in target_roles],
        "title": title,
        "message": message,
        "type": notification_type,
        "priority": priority,
        "entity_type": entity_ref.entity_type,
        "entity_id": str(entity_ref.entity_id),
        "state": entity_ref.state,
        "state_entered_at": entity_ref.state_entered_at.isoformat() if entity_ref.state_entered_at else None,
    }


class CeleryNotificationSender:
    """Hands notifications to the Celery outbox writer; never raises into the caller."""

    def send(
        self,
        *,
        org_id: UUID | None,
        target_roles: Iterable[str],
        title: str,
        message: str,
        entity_ref: EntityRef,
        notification_type: str = "state_transition",
        priority: str = "normal",
    ) -> None:
        payload = build_payload(
            org_id=org_id,
            target_roles=target_roles,
            title=title,
            message=message,
            entity_ref=entity_ref,
            notification_type=notification_type,
            priority=priority,
        )
        if not payload["target_roles"]:
            return
        try:
            from ..celery_app import queue_role_notifications

            queue_role_notifications.delay(payload)
        except Exception:
            logger.exception(
                "Failed to queue %s notification for %s %s",
                notification_type,
                entity_ref.entity_type,
                entity_ref.entity_id,
            )


def dispatch_queued(
    sender: NotificationSender,
    *,
    org_id: UUID | None,
    entity_ref: EntityRef,
    notifications: Iterable[QueuedNotification],
) -> None:
    """Send notifications collected during a committed mutation."""
    for notification in notifications:
        try:
            sender.send(
                org_id=org_id,
                target_roles=notification.target_roles,
                title=notification.title,
                message=notification.message,
                entity_ref=entity_ref,
                notification_type=notification.notification_type,
                priority=notification.priority,
            )
        except Exception:
            logger.exception("Notification sender failed for %s %s", entity_ref.entity_type, entity_ref.entity_id)
