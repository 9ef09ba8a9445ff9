from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace
from uuid import uuid4

import pytest
from sqlalchemy.orm.exc import StaleDataError

from tradeops.domain_errors import DomainError
from tradeops.models import AuditLog, OrderItem, RelatedRecordRequest, RfqItem, User
from tradeops.schemas import TransitionRequest
from tradeops.use_cases.item_transitions import (
    RequestMeta,
    TransitionHooks,
    execute_transition_use_case,
    get_available_transitions_use_case,
)
from tradeops.states import ItemKind

NOW = datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc)
ENTERED = NOW - timedelta(hours=3)


class _QueryStub:
    def __init__(self, first_result=None):
        self._first_result = first_result

    def filter(self, *_args, **_kwargs):
        return self

    def order_by(self, *_args, **_kwargs):
        return self

    def first(self):
        return self._first_result


class _SessionStub:
    def __init__(self, *, rows=None, commit_error=None):
        self._rows = rows or {}
        self._commit_error = commit_error
        self.added: list = []
        self.commits = 0
        self.rollbacks = 0

    def query(self, model):
        if model in (RfqItem, OrderItem, User):
            return _QueryStub(self._rows.get(model))
        raise AssertionError(f"Unexpected query model: {model}")

    def add(self, obj):
        self.added.append(obj)

    def commit(self):
        if self._commit_error is not None:
            raise self._commit_error
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1


class _RecordingNotifier:
    def __init__(self, *, fail: bool = False):
        self.fail = fail
        self.calls: list[dict] = []

    def send(self, **kwargs):
        self.calls.append(kwargs)
        if self.fail:
            raise RuntimeError("broker down")


class _Collaborators:
    def __init__(self, *, answer: bool = True):
        self.answer = answer

    def product_active(self, product_id):
        return self.answer

    def quantity_within_constraints(self, product_id, quantity):
        return self.answer

    def has_evidence(self, check, kind, item_id):
        return self.answer


def _rfq_item(**overrides):
    values = dict(
        id=uuid4(),
        org_id=uuid4(),
        rfq_id=uuid4(),
        state="DRAFT",
        state_entered_at=ENTERED,
        version=1,
        owner_id=None,
        updated_by=None,
        product_id=uuid4(),
        quantity=Decimal("120"),
        unit_of_measure="MTR",
        sla_due_at=ENTERED + timedelta(hours=24),
        sla_warning=False,
        sla_breached=False,
        at_risk_reason=None,
        order_item_id=None,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


def _user(org_id, role="SALES_EXECUTIVE"):
    return SimpleNamespace(id=uuid4(), org_id=org_id, role=role, name="Asha Rao")


def _hooks(notifier=None, collaborators=None):
    return TransitionHooks(
        collaborators_factory=lambda: collaborators or _Collaborators(),
        notifier=notifier or _RecordingNotifier(),
        now_utc=lambda: NOW,
        min_margin_pct=5.0,
    )


def _run(db, item, user, to_state, hooks=None, **request):
    return execute_transition_use_case(
        db=db,
        kind=ItemKind.RFQ_ITEM,
        item_id=item.id,
        data=TransitionRequest(to_state=to_state, **request),
        current_user=user,
        request_meta=RequestMeta(ip_address="10.0.0.7", user_agent="pytest"),
        hooks=hooks or _hooks(),
    )


def _assert_untouched(item, db) -> None:
    assert item.state == "DRAFT"
    assert item.version == 1
    assert item.state_entered_at == ENTERED
    assert db.added == []
    assert db.commits == 0


def test_submit_draft_moves_state_and_writes_audit() -> None:
    item = _rfq_item()
    user = _user(item.org_id)
    db = _SessionStub(rows={RfqItem: item})
    notifier = _RecordingNotifier()

    result = _run(db, item, user, "RFQ_SUBMITTED", hooks=_hooks(notifier), notes="first pass")

    assert result.item is item
    assert item.state == "RFQ_SUBMITTED"
    assert item.state_entered_at == NOW
    assert item.version == 2
    assert item.owner_id == user.id
    assert item.updated_by == user.id
    assert item.sla_due_at == NOW + timedelta(hours=2)
    assert item.sla_warning is False
    assert db.commits == 1

    [audit] = [obj for obj in db.added if isinstance(obj, AuditLog)]
    assert result.audit_log_id == audit.id
    assert audit.action == "STATE_TRANSITION"
    assert audit.old_values["state"] == "DRAFT"
    assert audit.old_values["version"] == 1
    assert audit.new_values["state"] == "RFQ_SUBMITTED"
    assert audit.new_values["version"] == 2
    assert audit.notes == "first pass"
    assert audit.ip_address == "10.0.0.7"

    [call] = notifier.calls
    assert tuple(call["target_roles"]) == ("SALES_MANAGER",)
    assert call["entity_ref"].state == "RFQ_SUBMITTED"
    assert call["entity_ref"].state_entered_at == NOW


def test_terminal_item_is_closed() -> None:
    item = _rfq_item(state="RFQ_CLOSED")
    db = _SessionStub(rows={RfqItem: item})

    with pytest.raises(DomainError) as exc:
        _run(db, item, _user(item.org_id), "DRAFT")

    assert exc.value.code == "ITEM_CLOSED"
    assert db.commits == 0


def test_missing_item_is_not_found() -> None:
    item = _rfq_item()

    with pytest.raises(DomainError) as exc:
        _run(_SessionStub(), item, _user(item.org_id), "RFQ_SUBMITTED")

    assert exc.value.code == "ITEM_NOT_FOUND"
    assert exc.value.http_status == 404


def test_edge_missing_from_catalog_is_invalid() -> None:
    item = _rfq_item()
    db = _SessionStub(rows={RfqItem: item})

    with pytest.raises(DomainError) as exc:
        _run(db, item, _user(item.org_id), "QUOTE_SENT")

    assert exc.value.code == "INVALID_TRANSITION"
    _assert_untouched(item, db)


def test_role_outside_edge_is_rejected() -> None:
    item = _rfq_item()
    db = _SessionStub(rows={RfqItem: item})

    with pytest.raises(DomainError) as exc:
        _run(db, item, _user(item.org_id, role="TECH_ENGINEER"), "RFQ_SUBMITTED")

    assert exc.value.code == "UNAUTHORIZED_TRANSITION"
    assert exc.value.http_status == 403
    _assert_untouched(item, db)


def test_internal_user_can_fire_auto_edge() -> None:
    item = _rfq_item(state="RFQ_SUBMITTED")
    db = _SessionStub(rows={RfqItem: item})

    result = _run(db, item, _user(item.org_id, role="SALES_EXECUTIVE"), "SALES_REVIEW")

    assert result.descriptor.to_state == "SALES_REVIEW"
    assert item.state == "SALES_REVIEW"
    assert item.version == 2
    assert db.commits == 1


def test_auto_edge_rejects_external_roles() -> None:
    item = _rfq_item(state="RFQ_SUBMITTED")
    db = _SessionStub(rows={RfqItem: item})

    with pytest.raises(DomainError) as exc:
        _run(db, item, _user(item.org_id, role="CUSTOMER"), "SALES_REVIEW")

    assert exc.value.code == "UNAUTHORIZED_TRANSITION"
    assert item.state == "RFQ_SUBMITTED"
    assert db.commits == 0


def test_reason_is_required_for_closing_a_draft() -> None:
    item = _rfq_item()
    db = _SessionStub(rows={RfqItem: item})

    with pytest.raises(DomainError) as exc:
        _run(db, item, _user(item.org_id), "RFQ_CLOSED", reason="   ")

    assert exc.value.code == "REASON_REQUIRED"
    _assert_untouched(item, db)


def test_required_fields_are_reported() -> None:
    item = _rfq_item(product_id=None, unit_of_measure="")
    db = _SessionStub(rows={RfqItem: item})

    with pytest.raises(DomainError) as exc:
        _run(db, item, _user(item.org_id), "RFQ_SUBMITTED")

    assert exc.value.code == "REQUIRED_FIELD_MISSING"
    assert exc.value.details == {"fields": ["product_id", "unit_of_measure"]}
    _assert_untouched(item, db)


def test_failed_validation_leaves_item_unchanged() -> None:
    item = _rfq_item(quantity=Decimal("0"))
    db = _SessionStub(rows={RfqItem: item})
    notifier = _RecordingNotifier()

    with pytest.raises(DomainError) as exc:
        _run(db, item, _user(item.org_id), "RFQ_SUBMITTED", hooks=_hooks(notifier))

    assert exc.value.code == "QUANTITY_POSITIVE"
    _assert_untouched(item, db)
    assert notifier.calls == []


def test_inactive_product_fails_first() -> None:
    item = _rfq_item()
    db = _SessionStub(rows={RfqItem: item})

    with pytest.raises(DomainError) as exc:
        _run(db, item, _user(item.org_id), "RFQ_SUBMITTED", hooks=_hooks(collaborators=_Collaborators(answer=False)))

    assert exc.value.code == "PRODUCT_ACTIVE"


def test_expected_version_mismatch_is_a_conflict() -> None:
    item = _rfq_item(version=3)
    db = _SessionStub(rows={RfqItem: item})

    with pytest.raises(DomainError) as exc:
        _run(db, item, _user(item.org_id), "RFQ_SUBMITTED", expected_version=2)

    assert exc.value.code == "VERSION_CONFLICT"
    assert exc.value.retryable is True
    assert item.state == "DRAFT"
    assert db.commits == 0


def test_stale_commit_rolls_back_and_skips_notifications() -> None:
    item = _rfq_item()
    db = _SessionStub(rows={RfqItem: item}, commit_error=StaleDataError("row moved"))
    notifier = _RecordingNotifier()

    with pytest.raises(DomainError) as exc:
        _run(db, item, _user(item.org_id), "RFQ_SUBMITTED", hooks=_hooks(notifier))

    assert exc.value.code == "VERSION_CONFLICT"
    assert exc.value.http_status == 409
    assert db.rollbacks == 1
    assert notifier.calls == []


def test_notifier_failure_does_not_undo_transition() -> None:
    item = _rfq_item()
    db = _SessionStub(rows={RfqItem: item})

    result = _run(db, item, _user(item.org_id), "RFQ_SUBMITTED", hooks=_hooks(_RecordingNotifier(fail=True)))

    assert result.item.state == "RFQ_SUBMITTED"
    assert db.commits == 1


def test_customer_acceptance_hands_item_to_purchase() -> None:
    item = _rfq_item(state="QUOTE_SENT", sla_due_at=None)
    engineer = SimpleNamespace(id=uuid4())
    db = _SessionStub(rows={RfqItem: item, User: engineer})

    result = _run(db, item, _user(item.org_id), "CUSTOMER_ACCEPTED")

    assert item.owner_id == engineer.id
    assert item.sla_due_at == NOW + timedelta(hours=24)
    [record] = [obj for obj in db.added if isinstance(obj, RelatedRecordRequest)]
    assert record.entity == "order"
    assert record.source_entity_id == item.id
    [audit] = [obj for obj in db.added if isinstance(obj, AuditLog)]
    assert audit.new_values["relatedRecords"] == ["order"]
    assert result.descriptor.to_state == "CUSTOMER_ACCEPTED"


def test_available_transitions_follow_role() -> None:
    item = _rfq_item()
    db = _SessionStub(rows={RfqItem: item})

    _, sales_edges = get_available_transitions_use_case(
        db=db, kind=ItemKind.RFQ_ITEM, item_id=item.id, current_user=_user(item.org_id)
    )
    _, director_edges = get_available_transitions_use_case(
        db=db, kind=ItemKind.RFQ_ITEM, item_id=item.id, current_user=_user(item.org_id, role="DIRECTOR")
    )

    assert {edge.to_state for edge in sales_edges} == {"RFQ_SUBMITTED", "RFQ_CLOSED"}
    assert {edge.to_state for edge in director_edges} == {"RFQ_CLOSED", "FORCE_CLOSED"}


def test_terminal_item_has_no_available_transitions() -> None:
    item = _rfq_item(state="FORCE_CLOSED")
    db = _SessionStub(rows={RfqItem: item})

    returned, edges = get_available_transitions_use_case(
        db=db, kind=ItemKind.RFQ_ITEM, item_id=item.id, current_user=_user(item.org_id, role="DIRECTOR")
    )

    assert returned is item
    assert edges == []
