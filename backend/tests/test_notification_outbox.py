from __future__ import annotations

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from uuid import uuid4

import requests

from tradeops import celery_app as worker
from tradeops.config import settings

NOW = datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc)


def _notification(**overrides):
    values = dict(
        id=uuid4(),
        org_id=uuid4(),
        type="sla_breach",
        priority="high",
        target_role="DIRECTOR",
        entity_type="order_item",
        entity_id=uuid4(),
        title="SLA BREACH",
        message="deadline exceeded",
        meta_data=None,
        status="pending",
        attempts=0,
        last_error=None,
        next_retry_at=None,
        sent_at=None,
        failed_at=None,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


class _Response:
    def __init__(self, status_code, headers=None, text=""):
        self.status_code = status_code
        self.headers = headers or {}
        self.text = text


def test_idempotency_key_is_scoped_to_role_and_state_entry() -> None:
    payload = {"type": "sla_warning", "entity_id": "abc", "state_entered_at": "2026-03-02T09:00:00+00:00"}

    assert worker.build_idempotency_key(payload, "TECH_LEAD") == (
        "sla_warning:abc:TECH_LEAD:2026-03-02T09:00:00+00:00"
    )
    assert worker.build_idempotency_key({"type": "t", "entity_id": "x"}, "MD") == "t:x:MD:"


def test_successful_delivery_marks_sent() -> None:
    notification = _notification(attempts=2, last_error="HTTP_500: boom")

    assert worker._apply_delivery_result(notification, True, None, NOW) is True

    assert notification.status == "sent"
    assert notification.sent_at == NOW
    assert notification.last_error is None


def test_failure_backs_off_exponentially() -> None:
    notification = _notification(attempts=1)

    assert worker._apply_delivery_result(notification, False, "HTTP_500: boom", NOW) is False

    assert notification.attempts == 2
    assert notification.status == "pending"
    assert notification.next_retry_at == NOW + timedelta(minutes=4)


def test_rate_limit_honours_retry_after() -> None:
    notification = _notification()

    worker._apply_delivery_result(notification, False, "RATE_LIMIT:90", NOW)

    assert notification.next_retry_at == NOW + timedelta(seconds=90)
    assert notification.status == "pending"


def test_last_attempt_marks_failed() -> None:
    notification = _notification(attempts=settings.NOTIFICATION_MAX_ATTEMPTS - 1)

    worker._apply_delivery_result(notification, False, "EXCEPTION: timeout", NOW)

    assert notification.status == "failed"
    assert notification.failed_at == NOW


def test_webhook_delivery_posts_camel_case_payload(monkeypatch) -> None:
    sent = {}

    def _post(url, json, timeout):
        sent.update(url=url, json=json, timeout=timeout)
        return _Response(202)

    monkeypatch.setattr(settings, "NOTIFICATION_WEBHOOK_URL", "http://hooks.local/notify")
    monkeypatch.setattr(worker.requests, "post", _post)
    notification = _notification()

    assert worker.deliver_webhook(notification) == (True, None)
    assert sent["url"] == "http://hooks.local/notify"
    assert sent["json"]["targetRole"] == "DIRECTOR"
    assert sent["json"]["entityId"] == str(notification.entity_id)
    assert sent["json"]["metadata"] == {}


def test_webhook_rate_limit_and_transport_errors(monkeypatch) -> None:
    monkeypatch.setattr(settings, "NOTIFICATION_WEBHOOK_URL", "http://hooks.local/notify")

    monkeypatch.setattr(worker.requests, "post", lambda *a, **k: _Response(429, {"Retry-After": "120"}))
    assert worker.deliver_webhook(_notification()) == (False, "RATE_LIMIT:120")

    def _boom(*_args, **_kwargs):
        raise requests.ConnectionError("refused")

    monkeypatch.setattr(worker.requests, "post", _boom)
    ok, error = worker.deliver_webhook(_notification())
    assert ok is False
    assert error.startswith("EXCEPTION:")


def test_no_webhook_means_no_delivery(monkeypatch) -> None:
    monkeypatch.setattr(settings, "NOTIFICATION_WEBHOOK_URL", None)

    assert worker.deliver_webhook(_notification()) == (False, "NO_WEBHOOK")
    assert worker.process_notification_outbox() == {"processed": 0, "total_locked": 0}
