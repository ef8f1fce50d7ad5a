"""
tests/test_outbox.py
Tests for the per-request activity / notification outbox.
"""

import uuid

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from shared.models.models import ActivityLog, ActivityType, Notification, NotificationStatus, User
from shared.outbox import Outbox


class FakeTask:
    def __init__(self, fail: bool = False):
        self.calls = []
        self.fail = fail

    def delay(self, ids):
        if self.fail:
            raise ConnectionError("broker unreachable")
        self.calls.append(ids)


@pytest.mark.asyncio
async def test_flush_writes_rows_tagged_with_actor(db: AsyncSession, admin_user: User, user: User):
    outbox = Outbox(actor_id=admin_user.id, ip_address="10.0.0.1")
    outbox.log_activity(ActivityType.LOGIN, "hello", entity_type="user", entity_id=user.id)
    outbox.notify(user.id, "Hi", "There", related_id=42)
    assert len(outbox) == 2

    await outbox.flush(db)
    await db.commit()
    assert len(outbox) == 0

    log = await db.scalar(select(ActivityLog))
    assert log.user_id == admin_user.id
    assert log.entity_id == str(user.id)
    assert log.ip_address == "10.0.0.1"
    assert log.activity_metadata == {}

    notification = await db.scalar(select(Notification))
    assert notification.sender_id == admin_user.id
    assert notification.status == NotificationStatus.UNREAD
    assert notification.related_id == "42"
    assert notification.sent_email is False


@pytest.mark.asyncio
async def test_nothing_is_written_without_flush(db: AsyncSession, user: User):
    outbox = Outbox()
    outbox.notify(user.id, "Hi", "There")
    await db.commit()
    assert await db.scalar(select(func.count()).select_from(Notification)) == 0


@pytest.mark.asyncio
async def test_publish_disabled_queues_nothing(db: AsyncSession, user: User, monkeypatch):
    fake = FakeTask()
    monkeypatch.setattr("tasks.notification_tasks.deliver_notification_emails", fake)
    monkeypatch.setattr(settings, "NOTIFICATION_EMAILS_ENABLED", False)

    outbox = Outbox()
    outbox.notify(user.id, "Hi", "There")
    await outbox.flush(db)
    assert outbox.publish() == 0
    assert fake.calls == []


@pytest.mark.asyncio
async def test_publish_queues_flushed_ids_once(db: AsyncSession, user: User, monkeypatch):
    fake = FakeTask()
    monkeypatch.setattr("tasks.notification_tasks.deliver_notification_emails", fake)
    monkeypatch.setattr(settings, "NOTIFICATION_EMAILS_ENABLED", True)

    outbox = Outbox()
    first = outbox.notify(user.id, "One", "1")
    second = outbox.notify(user.id, "Two", "2")
    outbox.log_activity(ActivityType.LOGIN, "not e-mailed")
    await outbox.flush(db)
    await db.commit()

    assert outbox.publish() == 2
    assert fake.calls == [[str(first.id), str(second.id)]]
    assert outbox.publish() == 0


@pytest.mark.asyncio
async def test_publish_survives_broker_failure(db: AsyncSession, user: User, monkeypatch):
    monkeypatch.setattr("tasks.notification_tasks.deliver_notification_emails", FakeTask(fail=True))
    monkeypatch.setattr(settings, "NOTIFICATION_EMAILS_ENABLED", True)

    outbox = Outbox()
    outbox.notify(user.id, "Hi", "There")
    await outbox.flush(db)
    assert outbox.publish() == 0


def test_for_request_without_request():
    actor = uuid.uuid4()
    outbox = Outbox.for_request(None, actor_id=actor)
    assert outbox.actor_id == actor
    assert outbox.ip_address is None
