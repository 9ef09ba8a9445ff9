"""SLA escalation routing: who hears about warnings, breaches and critical breaches."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from uuid import UUID

from ..states import ItemKind, OrderItemState, RfqItemState, Role, state_value
from .notifications import EntityRef, NotificationSender, QueuedNotification, dispatch_queued
from .sla_rules import is_critical


@dataclass(frozen=True)
class EscalationRule:
    warning_roles: tuple[Role, ...] = ()
    breach_roles: tuple[Role, ...] = ()
    escalation_roles: tuple[Role, ...] = ()


def _rule(warning: tuple[Role, ...], breach: tuple[Role, ...], escalation: tuple[Role, ...] = ()) -> EscalationRule:
    return EscalationRule(warning_roles=warning, breach_roles=breach, escalation_roles=escalation)


_SILENT = EscalationRule()

RFQ_ESCALATION_RULES: dict[str, EscalationRule] = {
    RfqItemState.DRAFT.value: _rule((Role.SALES_EXECUTIVE,), (Role.SALES_MANAGER,), (Role.DIRECTOR,)),
    RfqItemState.RFQ_SUBMITTED.value: _rule((Role.SALES_EXECUTIVE,), (Role.SALES_MANAGER,), (Role.DIRECTOR,)),
    RfqItemState.SALES_REVIEW.value: _rule((Role.SALES_MANAGER,), (Role.DIRECTOR,), (Role.MD,)),
    RfqItemState.TECH_REVIEW.value: _rule((Role.TECH_ENGINEER,), (Role.TECH_LEAD,), (Role.DIRECTOR,)),
    RfqItemState.TECH_APPROVED.value: _rule((Role.SALES_EXECUTIVE,), (Role.SALES_MANAGER,)),
    RfqItemState.COMPLIANCE_REVIEW.value: _rule(
        (Role.COMPLIANCE_OFFICER,), (Role.COMPLIANCE_MANAGER,), (Role.DIRECTOR,)
    ),
    RfqItemState.STOCK_CHECK.value: _rule((Role.WAREHOUSE_EXECUTIVE,), (Role.WAREHOUSE_MANAGER,)),
    RfqItemState.SOURCING_ACTIVE.value: _rule((Role.SOURCING_ENGINEER,), (Role.PURCHASE_MANAGER,), (Role.DIRECTOR,)),
    RfqItemState.VENDOR_QUOTES_RECEIVED.value: _rule((Role.SOURCING_ENGINEER,), (Role.PURCHASE_MANAGER,)),
    RfqItemState.RATE_FINALIZED.value: _rule((Role.FINANCE_EXECUTIVE,), (Role.FINANCE_MANAGER,)),
    RfqItemState.MARGIN_APPROVAL.value: _rule((Role.FINANCE_MANAGER,), (Role.DIRECTOR,), (Role.MD,)),
    RfqItemState.PRICE_FROZEN.value: _rule((Role.SALES_EXECUTIVE,), (Role.SALES_MANAGER,)),
    RfqItemState.QUOTE_SENT.value: _rule((Role.SALES_EXECUTIVE,), (Role.SALES_MANAGER,), (Role.DIRECTOR,)),
    RfqItemState.CUSTOMER_ACCEPTED.value: _rule((Role.SALES_EXECUTIVE,), (Role.SALES_MANAGER,)),
    RfqItemState.CUSTOMER_REJECTED.value: _SILENT,
    RfqItemState.RFQ_CLOSED.value: _SILENT,
    RfqItemState.FORCE_CLOSED.value: _SILENT,
}

ORDER_ESCALATION_RULES: dict[str, EscalationRule] = {
    OrderItemState.PR_CREATED.value: _rule((Role.SALES_EXECUTIVE,), (Role.SALES_MANAGER,)),
    OrderItemState.PR_ACKNOWLEDGED.value: _rule((Role.PURCHASE_ENGINEER,), (Role.PURCHASE_MANAGER,)),
    OrderItemState.CREDIT_CHECK.value: _rule((Role.FINANCE_MANAGER,), (Role.DIRECTOR,)),
    OrderItemState.CREDIT_HOLD.value: _rule((Role.FINANCE_MANAGER,), (Role.DIRECTOR,), (Role.MD,)),
    OrderItemState.PO_RELEASED.value: _rule((Role.SOURCING_ENGINEER,), (Role.PURCHASE_MANAGER,)),
    OrderItemState.VENDOR_CONFIRMED.value: _rule((Role.SOURCING_ENGINEER,), (Role.PURCHASE_MANAGER,)),
    OrderItemState.IN_PRODUCTION.value: _rule((Role.SOURCING_ENGINEER,), (Role.PURCHASE_MANAGER,), (Role.DIRECTOR,)),
    OrderItemState.GOODS_RECEIVED.value: _rule((Role.WAREHOUSE_EXECUTIVE,), (Role.WAREHOUSE_MANAGER,)),
    OrderItemState.QC_APPROVED.value: _rule((Role.WAREHOUSE_EXECUTIVE,), (Role.WAREHOUSE_MANAGER,)),
    OrderItemState.QC_REJECTED.value: _rule((Role.QC_MANAGER,), (Role.PURCHASE_MANAGER,), (Role.DIRECTOR,)),
    OrderItemState.READY_TO_DISPATCH.value: _rule((Role.LOGISTICS_EXECUTIVE,), (Role.LOGISTICS_MANAGER,)),
    OrderItemState.DISPATCHED.value: _rule((Role.LOGISTICS_EXECUTIVE,), (Role.LOGISTICS_MANAGER,)),
    OrderItemState.DELIVERED.value: _rule((Role.SALES_EXECUTIVE,), (Role.SALES_MANAGER,)),
    OrderItemState.INVOICED.value: _rule((Role.FINANCE_OFFICER,), (Role.FINANCE_MANAGER,)),
    OrderItemState.PAYMENT_PARTIAL.value: _rule((Role.FINANCE_OFFICER,), (Role.FINANCE_MANAGER,), (Role.DIRECTOR,)),
    OrderItemState.PAYMENT_CLOSED.value: _rule((Role.FINANCE_OFFICER,), (Role.FINANCE_MANAGER,)),
    OrderItemState.CANCELLED.value: _SILENT,
    OrderItemState.CLOSED.value: _SILENT,
    OrderItemState.FORCE_CLOSED.value: _SILENT,
}

_RULES: dict[ItemKind, dict[str, EscalationRule]] = {
    ItemKind.RFQ_ITEM: RFQ_ESCALATION_RULES,
    ItemKind.ORDER_ITEM: ORDER_ESCALATION_RULES,
}


def get_escalation_rule(kind: ItemKind, state: str | Enum) -> EscalationRule | None:
    return _RULES[ItemKind(kind)].get(state_value(state))


def _label(kind: ItemKind) -> str:
    return ItemKind(kind).value.upper()


def build_sla_warning_notification(
    kind: ItemKind, item_id: UUID, state: str | Enum, percent_elapsed: float, time_remaining: str
) -> QueuedNotification | None:
    rule = get_escalation_rule(kind, state)
    if rule is None or not rule.warning_roles:
        return None
    return QueuedNotification(
        target_roles=tuple(role.value for role in rule.warning_roles),
        title=f"SLA Warning: {_label(kind)} approaching deadline",
        message=(
            f"Item {item_id} in state {state_value(state)} is at {percent_elapsed:.1f}% of SLA. "
            f"Time remaining: {time_remaining}"
        ),
        notification_type="sla_warning",
        priority="medium",
    )


def build_sla_breach_notifications(
    kind: ItemKind, item_id: UUID, state: str | Enum, percent_elapsed: float
) -> list[QueuedNotification]:
    rule = get_escalation_rule(kind, state)
    if rule is None or not rule.breach_roles:
        return []
    label = _label(kind)
    state_name = state_value(state)
    notifications = [
        QueuedNotification(
            target_roles=tuple(role.value for role in rule.breach_roles),
            title=f"SLA BREACH: {label} deadline exceeded",
            message=(
                f"URGENT: Item {item_id} in state {state_name} has breached SLA "
                f"({percent_elapsed:.1f}%). Immediate action required."
            ),
            notification_type="sla_breach",
            priority="high",
        )
    ]
    if is_critical(percent_elapsed) and rule.escalation_roles:
        notifications.append(
            QueuedNotification(
                target_roles=tuple(role.value for role in rule.escalation_roles),
                title=f"CRITICAL SLA BREACH: {label}",
                message=(
                    f"CRITICAL: Item {item_id} in state {state_name} has severe SLA breach "
                    f"({percent_elapsed:.1f}%). Executive attention required."
                ),
                notification_type="sla_escalation",
                priority="urgent",
            )
        )
    return notifications


def _fan_out(
    sender: NotificationSender,
    notifications: list[QueuedNotification],
    *,
    kind: ItemKind,
    item_id: UUID,
    org_id: UUID | None,
    state: str | Enum,
    state_entered_at=None,
) -> list[QueuedNotification]:
    ref = EntityRef(
        entity_type=ItemKind(kind).value,
        entity_id=item_id,
        state=state_value(state),
        state_entered_at=state_entered_at,
    )
    dispatch_queued(sender, org_id=org_id, entity_ref=ref, notifications=notifications)
    return notifications


def create_sla_warning_notification(
    kind: ItemKind,
    item_id: UUID,
    org_id: UUID | None,
    state: str | Enum,
    percent_elapsed: float,
    time_remaining: str,
    sender: NotificationSender,
    *,
    state_entered_at=None,
) -> list[QueuedNotification]:
    notification = build_sla_warning_notification(kind, item_id, state, percent_elapsed, time_remaining)
    if notification is None:
        return []
    return _fan_out(
        sender, [notification],
        kind=kind, item_id=item_id, org_id=org_id, state=state, state_entered_at=state_entered_at,
    )


def create_sla_breach_notification(
    kind: ItemKind,
    item_id: UUID,
    org_id: UUID | None,
    state: str | Enum,
    percent_elapsed: float,
    sender: NotificationSender,
    *,
    state_entered_at=None,
) -> list[QueuedNotification]:
    return _fan_out(
        sender,
        build_sla_breach_notifications(kind, item_id, state, percent_elapsed),
        kind=kind, item_id=item_id, org_id=org_id, state=state, state_entered_at=state_entered_at,
    )
