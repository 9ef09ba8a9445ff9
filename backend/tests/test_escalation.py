from __future__ import annotations

from uuid import uuid4

from tradeops.services.escalation import (
    build_sla_breach_notifications,
    build_sla_warning_notification,
    create_sla_breach_notification,
    create_sla_warning_notification,
    get_escalation_rule,
)
from tradeops.states import ItemKind, OrderItemState, RfqItemState, Role


class _RecordingSender:
    def __init__(self, *, fail: bool = False) -> None:
        self.calls: list[dict] = []
        self._fail = fail

    def send(self, **kwargs) -> None:
        self.calls.append(kwargs)
        if self._fail:
            raise RuntimeError("broker down")


def test_rules_cover_every_state() -> None:
    for state in RfqItemState:
        assert get_escalation_rule(ItemKind.RFQ_ITEM, state) is not None
    for state in OrderItemState:
        assert get_escalation_rule(ItemKind.ORDER_ITEM, state) is not None


def test_warning_goes_to_warning_roles() -> None:
    notification = build_sla_warning_notification(ItemKind.RFQ_ITEM, uuid4(), RfqItemState.TECH_REVIEW, 85.0, "3h 0m")

    assert notification is not None
    assert notification.target_roles == (Role.TECH_ENGINEER.value,)
    assert notification.notification_type == "sla_warning"
    assert notification.priority == "medium"
    assert "85.0%" in notification.message
    assert "3h 0m" in notification.message


def test_breach_below_critical_notifies_breach_roles_only() -> None:
    notifications = build_sla_breach_notifications(ItemKind.RFQ_ITEM, uuid4(), RfqItemState.DRAFT, 110.0)

    assert [n.target_roles for n in notifications] == [(Role.SALES_MANAGER.value,)]
    assert notifications[0].priority == "high"
    assert notifications[0].notification_type == "sla_breach"


def test_critical_breach_also_escalates() -> None:
    notifications = build_sla_breach_notifications(
        ItemKind.ORDER_ITEM, uuid4(), OrderItemState.CREDIT_HOLD, 130.0
    )

    assert [n.target_roles for n in notifications] == [(Role.DIRECTOR.value,), (Role.MD.value,)]
    assert notifications[1].priority == "urgent"
    assert notifications[1].notification_type == "sla_escalation"


def test_critical_breach_without_escalation_roles_stays_single() -> None:
    notifications = build_sla_breach_notifications(ItemKind.RFQ_ITEM, uuid4(), RfqItemState.TECH_APPROVED, 150.0)

    assert len(notifications) == 1


def test_silent_states_fire_nothing() -> None:
    sender = _RecordingSender()

    warned = create_sla_warning_notification(
        ItemKind.RFQ_ITEM, uuid4(), uuid4(), RfqItemState.CUSTOMER_REJECTED, 90.0, "1h 0m", sender
    )
    breached = create_sla_breach_notification(
        ItemKind.ORDER_ITEM, uuid4(), uuid4(), OrderItemState.CANCELLED, 200.0, sender
    )

    assert warned == []
    assert breached == []
    assert sender.calls == []


def test_breach_fan_out_passes_entity_reference() -> None:
    sender = _RecordingSender()
    item_id = uuid4()
    org_id = uuid4()

    sent = create_sla_breach_notification(
        ItemKind.RFQ_ITEM, item_id, org_id, RfqItemState.SOURCING_ACTIVE, 125.0, sender
    )

    assert len(sent) == 2
    assert len(sender.calls) == 2
    assert sender.calls[0]["org_id"] == org_id
    assert sender.calls[0]["entity_ref"].entity_id == item_id
    assert sender.calls[0]["entity_ref"].entity_type == "rfq_item"
    assert sender.calls[1]["target_roles"] == (Role.DIRECTOR.value,)


def test_sender_failure_is_not_raised() -> None:
    sender = _RecordingSender(fail=True)

    sent = create_sla_warning_notification(
        ItemKind.ORDER_ITEM, uuid4(), uuid4(), OrderItemState.IN_PRODUCTION, 81.0, "2 days", sender
    )

    assert len(sent) == 1
    assert len(sender.calls) == 1
