"""Workflow item kinds, lifecycle states and roles."""
from __future__ import annotations

from enum import Enum


class ItemKind(str, Enum):
    RFQ_ITEM = "rfq_item"
    ORDER_ITEM = "order_item"


class RfqItemState(str, Enum):
    DRAFT = "DRAFT"
    RFQ_SUBMITTED = "RFQ_SUBMITTED"
    SALES_REVIEW = "SALES_REVIEW"
    TECH_REVIEW = "TECH_REVIEW"
    TECH_APPROVED = "TECH_APPROVED"
    COMPLIANCE_REVIEW = "COMPLIANCE_REVIEW"
    STOCK_CHECK = "STOCK_CHECK"
    SOURCING_ACTIVE = "SOURCING_ACTIVE"
    VENDOR_QUOTES_RECEIVED = "VENDOR_QUOTES_RECEIVED"
    RATE_FINALIZED = "RATE_FINALIZED"
    MARGIN_APPROVAL = "MARGIN_APPROVAL"
    PRICE_FROZEN = "PRICE_FROZEN"
    QUOTE_SENT = "QUOTE_SENT"
    CUSTOMER_ACCEPTED = "CUSTOMER_ACCEPTED"
    CUSTOMER_REJECTED = "CUSTOMER_REJECTED"
    RFQ_CLOSED = "RFQ_CLOSED"
    FORCE_CLOSED = "FORCE_CLOSED"


class OrderItemState(str, Enum):
    PR_CREATED = "PR_CREATED"
    PR_ACKNOWLEDGED = "PR_ACKNOWLEDGED"
    CREDIT_CHECK = "CREDIT_CHECK"
    CREDIT_HOLD = "CREDIT_HOLD"
    PO_RELEASED = "PO_RELEASED"
    VENDOR_CONFIRMED = "VENDOR_CONFIRMED"
    IN_PRODUCTION = "IN_PRODUCTION"
    GOODS_RECEIVED = "GOODS_RECEIVED"
    QC_APPROVED = "QC_APPROVED"
    QC_REJECTED = "QC_REJECTED"
    READY_TO_DISPATCH = "READY_TO_DISPATCH"
    DISPATCHED = "DISPATCHED"
    DELIVERED = "DELIVERED"
    INVOICED = "INVOICED"
    PAYMENT_PARTIAL = "PAYMENT_PARTIAL"
    PAYMENT_CLOSED = "PAYMENT_CLOSED"
    CANCELLED = "CANCELLED"
    CLOSED = "CLOSED"
    FORCE_CLOSED = "FORCE_CLOSED"


class Role(str, Enum):
    SALES_EXECUTIVE = "SALES_EXECUTIVE"
    SALES_MANAGER = "SALES_MANAGER"
    TECH_ENGINEER = "TECH_ENGINEER"
    TECH_LEAD = "TECH_LEAD"
    COMPLIANCE_OFFICER = "COMPLIANCE_OFFICER"
    COMPLIANCE_MANAGER = "COMPLIANCE_MANAGER"
    WAREHOUSE_EXECUTIVE = "WAREHOUSE_EXECUTIVE"
    WAREHOUSE_MANAGER = "WAREHOUSE_MANAGER"
    SOURCING_ENGINEER = "SOURCING_ENGINEER"
    PURCHASE_ENGINEER = "PURCHASE_ENGINEER"
    PURCHASE_MANAGER = "PURCHASE_MANAGER"
    FINANCE_EXECUTIVE = "FINANCE_EXECUTIVE"
    FINANCE_OFFICER = "FINANCE_OFFICER"
    FINANCE_MANAGER = "FINANCE_MANAGER"
    QC_ENGINEER = "QC_ENGINEER"
    QC_MANAGER = "QC_MANAGER"
    LOGISTICS_EXECUTIVE = "LOGISTICS_EXECUTIVE"
    LOGISTICS_MANAGER = "LOGISTICS_MANAGER"
    DIRECTOR = "DIRECTOR"
    MD = "MD"
    ADMIN = "ADMIN"
    SUPER_ADMIN = "SUPER_ADMIN"
    CUSTOMER = "CUSTOMER"
    VENDOR = "VENDOR"
    # Executes auto transitions (catalog edges no human role may fire).
    SYSTEM = "SYSTEM"


STATE_ENUMS: dict[ItemKind, type[Enum]] = {
    ItemKind.RFQ_ITEM: RfqItemState,
    ItemKind.ORDER_ITEM: OrderItemState,
}

INITIAL_STATES: dict[ItemKind, str] = {
    ItemKind.RFQ_ITEM: RfqItemState.DRAFT.value,
    ItemKind.ORDER_ITEM: OrderItemState.PR_CREATED.value,
}

TERMINAL_STATES: dict[ItemKind, frozenset[str]] = {
    ItemKind.RFQ_ITEM: frozenset({RfqItemState.RFQ_CLOSED.value, RfqItemState.FORCE_CLOSED.value}),
    ItemKind.ORDER_ITEM: frozenset({OrderItemState.CLOSED.value, OrderItemState.FORCE_CLOSED.value}),
}


def state_value(state: str | Enum) -> str:
    return state.value if isinstance(state, Enum) else str(state)


def is_terminal_state(kind: ItemKind, state: str | Enum | None) -> bool:
    if state is None:
        return False
    return state_value(state) in TERMINAL_STATES[ItemKind(kind)]


def is_known_state(kind: ItemKind, state: str | Enum) -> bool:
    value = state_value(state)
    return any(member.value == value for member in STATE_ENUMS[ItemKind(kind)])


def active_states(kind: ItemKind) -> list[str]:
    """All non-terminal states of a kind, in declaration order."""
    terminal = TERMINAL_STATES[ItemKind(kind)]
    return [member.value for member in STATE_ENUMS[ItemKind(kind)] if member.value not in terminal]
