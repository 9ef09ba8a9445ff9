"""
Celery worker: role notification outbox (SELECT FOR UPDATE SKIP LOCKED) and the periodic SLA sweep.
"""
from celery import Celery
from sqlalchemy import text
from datetime import datetime, timedelta, timezone
from uuid import UUID
import requests
import logging
from .config import settings
from .database import SessionLocal
from .models import NotificationOutbox, Organization

logger = logging.getLogger(__name__)

celery_app = Celery(
    "tradeops",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND
)

celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def build_idempotency_key(payload: dict, role: str) -> str:
    """type:entity_id:role:state_entered_at - one delivery per role per state entry."""
    return f"{payload['type']}:{payload['entity_id']}:{role}:{payload.get('state_entered_at') or ''}"


def deliver_webhook(notification: NotificationOutbox) -> tuple[bool, str | None]:
    """POST one outbox row to the configured webhook."""
    if not settings.NOTIFICATION_WEBHOOK_URL:
        return False, "NO_WEBHOOK"

    try:
        response = requests.post(
            settings.NOTIFICATION_WEBHOOK_URL,
            json={
                "id": str(notification.id),
                "orgId": str(notification.org_id) if notification.org_id else None,
                "type": notification.type,
                "priority": notification.priority,
                "targetRole": notification.target_role,
                "entityType": notification.entity_type,
                "entityId": str(notification.entity_id),
                "title": notification.title,
                "message": notification.message,
                "metadata": notification.meta_data or {},
            },
            timeout=10,
        )
    except requests.RequestException as e:
        return False, f"EXCEPTION: {e}"

    if response.status_code < 300:
        return True, None
    if response.status_code == 429:
        retry_after = response.headers.get("Retry-After", "60")
        return False, f"RATE_LIMIT:{retry_after if retry_after.isdigit() else 60}"
    return False, f"HTTP_{response.status_code}: {response.text[:200]}"


def _apply_delivery_result(notification: NotificationOutbox, success: bool, error: str | None, now: datetime) -> bool:
    if success:
        notification.status = 'sent'
        notification.sent_at = now
        notification.last_error = None
        logger.info("Sent notification %s", notification.id)
        return True

    notification.attempts = (notification.attempts or 0) + 1
    notification.last_error = error

    if error and error.startswith("RATE_LIMIT:"):
        retry_after = int(error.split(":")[1])
        notification.next_retry_at = now + timedelta(seconds=retry_after)
        logger.warning("Rate limited for %ss: %s", retry_after, notification.id)
    elif notification.attempts >= settings.NOTIFICATION_MAX_ATTEMPTS:
        notification.status = 'failed'
        notification.failed_at = now
        logger.error("Failed after %s attempts: %s, error: %s", notification.attempts, notification.id, error)
    else:
        # 2min, 4min, 8min...
        backoff_seconds = 2 ** notification.attempts * 60
        notification.next_retry_at = now + timedelta(seconds=backoff_seconds)
        logger.warning(
            "Retry %s/%s in %ss: %s",
            notification.attempts, settings.NOTIFICATION_MAX_ATTEMPTS, backoff_seconds, notification.id,
        )
    return False


@celery_app.task(name="process_notification_outbox")
def process_notification_outbox(batch_size: int | None = None):
    """
    Deliver pending notifications using SELECT FOR UPDATE SKIP LOCKED.

    Concurrent workers never pick up the same row.
    """
    if not settings.NOTIFICATION_WEBHOOK_URL:
        logger.debug("NOTIFICATION_WEBHOOK_URL not set; outbox delivery skipped")
        return {"processed": 0, "total_locked": 0}

    db = SessionLocal()
    processed_count = 0
    notification_ids: list = []

    try:
        query = text("""
            SELECT id
            FROM notification_outbox
            WHERE status = 'pending'
              AND (next_retry_at IS NULL OR next_retry_at <= NOW())
            ORDER BY created_at
            LIMIT :batch_size
            FOR UPDATE SKIP LOCKED
        """)

        result = db.execute(query, {"batch_size": batch_size or settings.OUTBOX_BATCH_SIZE})
        notification_ids = [row[0] for row in result.fetchall()]
        logger.info("Locked %s notifications for processing", len(notification_ids))

        for notif_id in notification_ids:
            notification = db.query(NotificationOutbox).filter(NotificationOutbox.id == notif_id).first()
            if notification is None:
                continue
            success, error = deliver_webhook(notification)
            if _apply_delivery_result(notification, success, error, _utcnow()):
                processed_count += 1

        db.commit()
        logger.info("Processed %s/%s notifications", processed_count, len(notification_ids))

    except Exception:
        db.rollback()
        logger.exception("Error processing outbox")
        raise

    finally:
        db.close()

    return {"processed": processed_count, "total_locked": len(notification_ids)}


@celery_app.task(name="queue_role_notifications")
def queue_role_notifications(payload: dict):
    """
    Create notification outbox entries, one per target role.
    """
    db = SessionLocal()
    created = 0

    try:
        for role in payload.get("target_roles", []):
            idempotency_key = build_idempotency_key(payload, role)

            existing = db.query(NotificationOutbox).filter(
                NotificationOutbox.idempotency_key == idempotency_key
            ).first()
            if existing:
                logger.info("Skipping duplicate notification: %s", idempotency_key)
                continue

            db.add(
                NotificationOutbox(
                    org_id=UUID(payload["org_id"]) if payload.get("org_id") else None,
                    type=payload["type"],
                    priority=payload.get("priority") or "normal",
                    entity_type=payload["entity_type"],
                    entity_id=UUID(payload["entity_id"]),
                    target_role=role,
                    title=payload["title"],
                    message=payload["message"],
                    meta_data={"state": payload.get("state"), "stateEnteredAt": payload.get("state_entered_at")},
                    idempotency_key=idempotency_key,
                    status='pending',
                    attempts=0,
                )
            )
            created += 1

        db.commit()
        logger.info(
            "Created %s outbox entries for %s %s", created, payload.get("entity_type"), payload.get("entity_id")
        )

    except Exception:
        db.rollback()
        logger.exception("Error creating notifications")
        raise

    finally:
        db.close()

    return {"created": created}


@celery_app.task(name="run_sla_monitor")
def run_sla_monitor():
    """Sweep every active organization; one failing organization does not stop the rest."""
    from .use_cases.sla_monitor import monitor_sla_status

    db = SessionLocal()
    totals = {"organizations": 0, "checked": 0, "warned": 0, "breached": 0, "failed": 0}

    try:
        org_ids = [row.id for row in db.query(Organization.id).filter(Organization.is_active.is_(True)).all()]
        for org_id in org_ids:
            try:
                result = monitor_sla_status(db=db, org_id=org_id)
            except Exception:
                db.rollback()
                totals["failed"] += 1
                logger.exception("SLA sweep failed for org %s", org_id)
                continue
            totals["organizations"] += 1
            totals["checked"] += result.checked
            totals["warned"] += result.warned
            totals["breached"] += result.breached
    finally:
        db.close()

    logger.info("SLA sweep finished: %s", totals)
    return totals


# Schedule periodic processing
celery_app.conf.beat_schedule = {
    'process-outbox-every-30s': {
        'task': 'process_notification_outbox',
        'schedule': 30.0,
    },
    'sla-monitor': {
        'task': 'run_sla_monitor',
        'schedule': float(settings.SLA_MONITOR_INTERVAL_SECONDS),
    },
}
