from __future__ import annotations

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from uuid import uuid4

import pytest

from tradeops.catalog import AssignOwner, CreateRecord, Notify, StartSla, UpdateFields, get_catalog
from tradeops.domain_errors import DomainError
from tradeops.models import RelatedRecordRequest, User
from tradeops.services.side_effects import SideEffectContext, apply_side_effect, apply_side_effects
from tradeops.states import ItemKind, OrderItemState, RfqItemState, Role

NOW = datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc)


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
    def __init__(self, *, owner=None):
        self._owner = owner
        self.queried: list[type] = []

    def query(self, model):
        self.queried.append(model)
        if model is User:
            return _QueryStub(self._owner)
        raise AssertionError(f"Unexpected query model: {model}")


def _item(**overrides):
    values = dict(
        id=uuid4(),
        org_id=uuid4(),
        state=RfqItemState.PRICE_FROZEN.value,
        sent_at=None,
        commercial_terms_frozen=False,
        owner_id=None,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


def _ctx(kind, from_state, to_state, *, db=None, actor=None):
    descriptor = get_catalog().get(kind, from_state, to_state)
    assert descriptor is not None
    return SideEffectContext(
        db=db or _SessionStub(),
        kind=kind,
        descriptor=descriptor,
        actor=actor or SimpleNamespace(id=uuid4(), name="Asha Rao"),
        now=NOW,
    )


def test_update_fields_stamps_now_and_skips_protected_or_unknown_fields() -> None:
    ctx = _ctx(ItemKind.RFQ_ITEM, RfqItemState.PRICE_FROZEN, RfqItemState.QUOTE_SENT)
    effect = UpdateFields(values={"commercial_terms_frozen": True, "state": "DRAFT", "nope": 1}, stamp_now=("sent_at",))

    outcome = apply_side_effect(effect, _item(), ctx)

    assert outcome.field_updates == {"commercial_terms_frozen": True, "sent_at": NOW}


def test_start_sla_uses_explicit_duration() -> None:
    ctx = _ctx(ItemKind.RFQ_ITEM, RfqItemState.DRAFT, RfqItemState.RFQ_SUBMITTED)

    outcome = apply_side_effect(StartSla("2h"), _item(), ctx)

    assert outcome.field_updates["sla_due_at"] == NOW + timedelta(hours=2)
    assert outcome.field_updates["sla_warning"] is False
    assert outcome.field_updates["sla_breached"] is False


def test_start_sla_rejects_malformed_duration() -> None:
    ctx = _ctx(ItemKind.RFQ_ITEM, RfqItemState.DRAFT, RfqItemState.RFQ_SUBMITTED)

    with pytest.raises(DomainError) as exc:
        apply_side_effect(StartSla("two hours"), _item(), ctx)

    assert exc.value.code == "INVALID_SLA_DURATION"


def test_notify_builds_role_notification() -> None:
    ctx = _ctx(ItemKind.ORDER_ITEM, OrderItemState.CREDIT_CHECK, OrderItemState.PO_RELEASED)

    outcome = apply_side_effect(Notify(targets=(Role.PURCHASE_ENGINEER, Role.VENDOR)), _item(), ctx)

    [notification] = outcome.notifications
    assert notification.target_roles == ("PURCHASE_ENGINEER", "VENDOR")
    assert notification.title == "Order item moved to PO_RELEASED"
    assert "CREDIT_CHECK" in notification.message
    assert "Asha Rao" in notification.message


def test_assign_owner_picks_active_user_with_role() -> None:
    engineer = SimpleNamespace(id=uuid4())
    db = _SessionStub(owner=engineer)
    ctx = _ctx(ItemKind.RFQ_ITEM, RfqItemState.QUOTE_SENT, RfqItemState.CUSTOMER_ACCEPTED, db=db)

    outcome = apply_side_effect(AssignOwner(Role.PURCHASE_ENGINEER), _item(), ctx)

    assert outcome.field_updates == {"owner_id": engineer.id}
    assert db.queried == [User]


def test_assign_owner_without_candidate_changes_nothing() -> None:
    ctx = _ctx(ItemKind.RFQ_ITEM, RfqItemState.QUOTE_SENT, RfqItemState.CUSTOMER_ACCEPTED)

    outcome = apply_side_effect(AssignOwner(Role.PURCHASE_ENGINEER), _item(), ctx)

    assert outcome.field_updates == {}


def test_create_record_produces_pending_request() -> None:
    actor = SimpleNamespace(id=uuid4(), name="Finance")
    ctx = _ctx(ItemKind.ORDER_ITEM, OrderItemState.CREDIT_HOLD, OrderItemState.PO_RELEASED, actor=actor)
    item = _item(state=OrderItemState.CREDIT_HOLD.value)

    outcome = apply_side_effect(CreateRecord("purchase_order", {"credit_override": True}), item, ctx)

    [record] = outcome.records
    assert isinstance(record, RelatedRecordRequest)
    assert record.entity == "purchase_order"
    assert record.params == {"credit_override": True}
    assert record.source_entity_id == item.id
    assert record.source_state == "PO_RELEASED"
    assert record.requested_by == actor.id
    assert record.status == "pending"


def test_unknown_effect_is_skipped() -> None:
    ctx = _ctx(ItemKind.RFQ_ITEM, RfqItemState.DRAFT, RfqItemState.RFQ_SUBMITTED)

    outcome = apply_side_effect(object(), _item(), ctx)

    assert outcome.field_updates == {}
    assert outcome.notifications == []
    assert outcome.records == []


def test_catalog_effects_merge_in_order() -> None:
    ctx = _ctx(ItemKind.ORDER_ITEM, OrderItemState.INVOICED, OrderItemState.PAYMENT_CLOSED)

    outcome = apply_side_effects(ctx.descriptor.side_effects, _item(), ctx)

    assert [record.entity for record in outcome.records] == ["credit_exposure_update", "tally_sync"]
    assert [n.target_roles for n in outcome.notifications] == [("SALES_EXECUTIVE",)]
