"""
shared/outbox.py
Per-request list of activity log entries and notifications.

Workflows queue their side effects on an Outbox instead of writing them
inline. The caller flushes the outbox into the open transaction, commits,
and then publishes it so that e-mail delivery of the new notifications is
handed to Celery only once the rows are durable.
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from shared.models.models import ActivityLog, ActivityType, Notification, NotificationStatus

logger = logging.getLogger(__name__)


@dataclass
class Outbox:
    """
    Explicit context for one workflow invocation.
    actor_id is the authenticated user performing the action (None for
    anonymous callers such as a registering agent before the account exists).
    """
    actor_id: Optional[uuid.UUID] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    activities: list[ActivityLog] = field(default_factory=list)
    notifications: list[Notification] = field(default_factory=list)
    _flushed: list[uuid.UUID] = field(default_factory=list, repr=False)

    @classmethod
    def for_request(cls, request: Optional[Request], actor_id: Optional[uuid.UUID] = None) -> "Outbox":
        if request is None:
            return cls(actor_id=actor_id)
        return cls(
            actor_id=actor_id,
            ip_address=request.client.host if request.client else None,
            user_agent=(request.headers.get("user-agent") or "")[:500] or None,
        )

    def log_activity(
        self,
        activity_type: ActivityType,
        description: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[Any] = None,
        metadata: Optional[dict] = None,
    ) -> ActivityLog:
        """Queue one audit row tagged with the actor."""
        entry = ActivityLog(
            id=uuid.uuid4(),
            user_id=self.actor_id,
            activity_type=activity_type,
            description=description,
            entity_type=entity_type,
            entity_id=str(entity_id) if entity_id is not None else None,
            activity_metadata=metadata or {},
            ip_address=self.ip_address,
            user_agent=self.user_agent,
        )
        self.activities.append(entry)
        return entry

    def notify(
        self,
        recipient_id: uuid.UUID,
        title: str,
        message: str,
        related_type: Optional[str] = None,
        related_id: Optional[Any] = None,
        action_url: Optional[str] = None,
    ) -> Notification:
        """Queue one unread notification sent by the actor."""
        notification = Notification(
            id=uuid.uuid4(),
            recipient_id=recipient_id,
            sender_id=self.actor_id,
            title=title,
            message=message,
            status=NotificationStatus.UNREAD,
            related_type=related_type,
            related_id=str(related_id) if related_id is not None else None,
            action_url=action_url,
            sent_email=False,
        )
        self.notifications.append(notification)
        return notification

    def __len__(self) -> int:
        return len(self.activities) + len(self.notifications)

    async def flush(self, db: AsyncSession) -> None:
        """Write every queued row into the current transaction."""
        db.add_all(self.activities)
        db.add_all(self.notifications)
        await db.flush()
        self._flushed.extend(n.id for n in self.notifications)
        self.activities = []
        self.notifications = []

    def publish(self) -> int:
        """
        Queue e-mail delivery for flushed notifications. Call after commit.
        Broker failures are logged; the in-app notification already exists.
        """
        ids, self._flushed = [str(i) for i in self._flushed], []
        if not ids or not settings.NOTIFICATION_EMAILS_ENABLED:
            return 0

        from tasks.notification_tasks import deliver_notification_emails

        try:
            deliver_notification_emails.delay(ids)
        except Exception as e:
            logger.error(f"Failed to queue notification e-mails {ids}: {e}")
            return 0
        return len(ids)
