"""
tasks/notification_tasks.py
Celery tasks for e-mail delivery of in-app notifications.

The Notification rows already exist when these tasks run; delivery only
sends the e-mail copy and flips Notification.sent_email, so re-running a
task never mails anyone twice.

Usage (see shared.outbox.Outbox.publish):
    deliver_notification_emails.delay([str(notification.id), ...])
"""

import html
import logging
import uuid
from typing import Callable

from celery import Task
from pybreaker import CircuitBreaker, CircuitBreakerError
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from tenacity import retry, stop_after_attempt, wait_exponential

from config.settings import settings
from tasks.celery_app import celery_app

logger = logging.getLogger(__name__)

# Open after 5 consecutive Resend failures; try again after 60 seconds
email_breaker = CircuitBreaker(fail_max=5, reset_timeout=60, name="resend")


def sync_database_url(url: str) -> str:
    """Celery runs sync: postgresql+asyncpg → postgresql+psycopg2, sqlite+aiosqlite → sqlite."""
    return url.replace("+asyncpg", "+psycopg2").replace("+aiosqlite", "")


# ── Base Task with DB session ──────────────────────────────────────────────────

class DatabaseTask(Task):
    """Base class that provides a synchronous DB session for tasks."""
    abstract = True
    _sessionmaker = None

    def get_session(self) -> Session:
        if DatabaseTask._sessionmaker is None:
            engine = create_engine(sync_database_url(settings.DATABASE_URL), pool_pre_ping=True)
            DatabaseTask._sessionmaker = sessionmaker(bind=engine)
        return DatabaseTask._sessionmaker()


# ── Core Delivery ──────────────────────────────────────────────────────────────

@retry(stop=stop_after_attempt(3), wait=wait_exponential(multiplier=1, min=1, max=10), reraise=True)
def _resend_send(payload: dict) -> None:
    import resend
    resend.api_key = settings.RESEND_API_KEY
    resend.Emails.send(payload)


def _send_email(to_email: str, to_name: str, subject: str, html_body: str) -> bool:
    """Send transactional email via Resend. Returns True on success."""
    try:
        email_breaker.call(_resend_send, {
            "from": f"{settings.EMAIL_FROM_NAME} <{settings.EMAIL_FROM}>",
            "to": [f"{to_name} <{to_email}>"],
            "subject": subject,
            "html": html_body,
        })
        return True
    except CircuitBreakerError:
        logger.warning(f"Email to {to_email} skipped: Resend circuit open")
        return False
    except Exception as e:
        logger.warning(f"Email send failed for {to_email}: {e}")
        return False


def render_email(title: str, message: str, recipient_name: str, action_url: str | None) -> str:
    """HTML body for a notification e-mail."""
    button = ""
    if action_url:
        link = html.escape(f"{settings.FRONTEND_URL.rstrip('/')}{action_url}", quote=True)
        button = (
            f'<p><a href="{link}" style="background: #0F766E; color: white; padding: 10px 18px; '
            f'border-radius: 6px; text-decoration: none;">Open dashboard</a></p>'
        )
    return f"""
    <div style="font-family: sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
        <div style="background: #0F766E; padding: 20px; border-radius: 8px 8px 0 0; text-align: center;">
            <h1 style="color: white; margin: 0;">{html.escape(settings.EMAIL_FROM_NAME)}</h1>
        </div>
        <div style="background: white; padding: 24px; border: 1px solid #eee; border-radius: 0 0 8px 8px;">
            <p style="color: #333;">Hi {html.escape(recipient_name)},</p>
            <h2 style="color: #333;">{html.escape(title)}</h2>
            <p style="color: #666; line-height: 1.6;">{html.escape(message)}</p>
            {button}
        </div>
    </div>
    """


def deliver_pending(
    db: Session,
    notification_ids: list[str],
    send: Callable[[str, str, str, str], bool] = _send_email,
) -> list[str]:
    """
    E-mail every listed notification not yet sent. Commits after each
    successful send. Returns the ids that still need delivery.
    """
    from shared.models.models import Notification, User

    ids = [uuid.UUID(i) for i in notification_ids]
    rows = db.execute(
        select(Notification, User)
        .join(User, User.id == Notification.recipient_id)
        .where(Notification.id.in_(ids), Notification.sent_email == False)  # noqa: E712
    ).all()

    failed = []
    for notification, recipient in rows:
        body = render_email(
            notification.title, notification.message, recipient.name, notification.action_url
        )
        if send(recipient.email, recipient.name, notification.title, body):
            notification.sent_email = True
            db.commit()
        else:
            failed.append(str(notification.id))
    return failed


# ── Tasks ──────────────────────────────────────────────────────────────────────

@celery_app.task(bind=True, base=DatabaseTask, max_retries=3, default_retry_delay=60)
def deliver_notification_emails(self, notification_ids: list[str]):
    """E-mail copies of freshly created notifications, retrying the failures."""
    if not settings.RESEND_API_KEY:
        logger.info(f"RESEND_API_KEY not set; skipping e-mail for {len(notification_ids)} notifications")
        return

    db = self.get_session()
    try:
        failed = deliver_pending(db, notification_ids)
    except Exception as e:
        db.rollback()
        logger.exception(f"deliver_notification_emails failed: {e}")
        raise self.retry(exc=e, countdown=60 * (2 ** self.request.retries))
    finally:
        db.close()

    if failed:
        logger.warning(f"{len(failed)} notification e-mails failed, retrying")
        raise self.retry(args=[failed], countdown=60 * (2 ** self.request.retries))
