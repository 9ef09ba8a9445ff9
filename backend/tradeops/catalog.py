"""Static, versioned transition catalog for RFQ and order items.

Every legal edge of both lifecycles lives here. Anything not listed is illegal.
Edges are loaded once per process into an immutable ``TransitionCatalog``; a reload
replaces the whole object instead of mutating it.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from types import MappingProxyType
from typing import Any, Mapping, Union

from .states import (
    STATE_ENUMS,
    TERMINAL_STATES,
    ItemKind,
    OrderItemState,
    RfqItemState,
    Role,
    state_value,
)

CATALOG_VERSION = "2024.1"


class ValidationKind(str, Enum):
    PRODUCT_ACTIVE = "PRODUCT_ACTIVE"
    QUANTITY_POSITIVE = "QUANTITY_POSITIVE"
    QUANTITY_VALID = "QUANTITY_VALID"
    TARGET_PRICE_POSITIVE = "TARGET_PRICE_POSITIVE"
    SPECIFICATIONS_COMPLETE = "SPECIFICATIONS_COMPLETE"
    COMPLIANCE_APPROVED = "COMPLIANCE_APPROVED"
    STOCK_AVAILABLE = "STOCK_AVAILABLE"
    HAS_VENDOR_QUOTES = "HAS_VENDOR_QUOTES"
    VENDOR_QUOTE_SELECTED = "VENDOR_QUOTE_SELECTED"
    COST_BREAKDOWN_COMPLETE = "COST_BREAKDOWN_COMPLETE"
    MARGIN_ACCEPTABLE = "MARGIN_ACCEPTABLE"
    COMMERCIAL_TERMS_COMPLETE = "COMMERCIAL_TERMS_COMPLETE"
    QUOTE_PDF_GENERATED = "QUOTE_PDF_GENERATED"
    CUSTOMER_ACCEPTANCE_CONFIRMED = "CUSTOMER_ACCEPTANCE_CONFIRMED"
    ORDER_CREATED = "ORDER_CREATED"
    CREDIT_AVAILABLE = "CREDIT_AVAILABLE"
    CUSTOMER_NOT_BLOCKED = "CUSTOMER_NOT_BLOCKED"
    VENDOR_CONFIRMATION_RECEIVED = "VENDOR_CONFIRMATION_RECEIVED"
    GRN_CREATED = "GRN_CREATED"
    QC_INSPECTION_COMPLETE = "QC_INSPECTION_COMPLETE"
    QC_STATUS_PASSED = "QC_STATUS_PASSED"
    SHIPMENT_CREATED = "SHIPMENT_CREATED"
    DELIVERY_CONFIRMED = "DELIVERY_CONFIRMED"
    POD_UPLOADED = "POD_UPLOADED"
    INVOICE_GENERATED = "INVOICE_GENERATED"
    PAYMENT_RECORDED = "PAYMENT_RECORDED"
    PAYMENT_NOT_FULL = "PAYMENT_NOT_FULL"
    PAYMENT_FULL = "PAYMENT_FULL"
    PAYMENT_BALANCE_FULL = "PAYMENT_BALANCE_FULL"


@dataclass(frozen=True)
class ValidationRule:
    kind: ValidationKind
    message: str

    @property
    def code(self) -> str:
        return self.kind.value


# Side effects form a closed set; handlers dispatch on the concrete type.
@dataclass(frozen=True)
class UpdateFields:
    values: Mapping[str, Any] = field(default_factory=dict)
    stamp_now: tuple[str, ...] = ()


@dataclass(frozen=True)
class StartSla:
    duration: str | None = None


@dataclass(frozen=True)
class Notify:
    targets: tuple[Role, ...]


@dataclass(frozen=True)
class AssignOwner:
    role: Role


@dataclass(frozen=True)
class CreateRecord:
    entity: str
    params: Mapping[str, Any] = field(default_factory=dict)


SideEffect = Union[UpdateFields, StartSla, Notify, AssignOwner, CreateRecord]


@dataclass(frozen=True)
class TransitionDescriptor:
    kind: ItemKind
    from_state: str
    to_state: str
    allowed_roles: frozenset[Role]
    requires_reason: bool = False
    required_fields: tuple[str, ...] = ()
    validations: tuple[ValidationRule, ...] = ()
    side_effects: tuple[SideEffect, ...] = ()
    auto: bool = False

    def allows(self, role: Role | str) -> bool:
        try:
            resolved = Role(role)
        except ValueError:
            return False
        return resolved in self.allowed_roles


# Auto edges may be fired by the system actor or by any internal user pushing the item along.
AUTO_EDGE_ROLES = frozenset(set(Role) - {Role.CUSTOMER, Role.VENDOR})


def _edge(
    kind: ItemKind,
    from_state: Enum,
    to_state: Enum,
    roles: tuple[Role, ...] = (),
    *,
    reason: bool = False,
    fields: tuple[str, ...] = (),
    checks: tuple[ValidationRule, ...] = (),
    effects: tuple[SideEffect, ...] = (),
    auto: bool = False,
) -> TransitionDescriptor:
    return TransitionDescriptor(
        kind=kind,
        from_state=from_state.value,
        to_state=to_state.value,
        allowed_roles=AUTO_EDGE_ROLES if auto else frozenset(roles),
        requires_reason=reason,
        required_fields=fields,
        validations=checks,
        side_effects=effects,
        auto=auto,
    )


def _rule(kind: ValidationKind, message: str) -> ValidationRule:
    return ValidationRule(kind=kind, message=message)


def _notify(*roles: Role) -> Notify:
    return Notify(targets=tuple(roles))


R = RfqItemState
O = OrderItemState
V = ValidationKind
_RFQ = ItemKind.RFQ_ITEM
_ORD = ItemKind.ORDER_ITEM

_SALES = (Role.SALES_EXECUTIVE, Role.SALES_MANAGER)
_TECH = (Role.TECH_ENGINEER, Role.TECH_LEAD)
_COMPLIANCE = (Role.COMPLIANCE_OFFICER, Role.COMPLIANCE_MANAGER)
_WAREHOUSE = (Role.WAREHOUSE_EXECUTIVE, Role.WAREHOUSE_MANAGER)
_SOURCING = (Role.SOURCING_ENGINEER, Role.PURCHASE_MANAGER)
_PURCHASE = (Role.PURCHASE_ENGINEER, Role.PURCHASE_MANAGER)
_FINANCE = (Role.FINANCE_OFFICER, Role.FINANCE_MANAGER)
_FINANCE_DESK = (Role.FINANCE_OFFICER, Role.FINANCE_EXECUTIVE)
_QC = (Role.QC_ENGINEER, Role.QC_MANAGER)
_LOGISTICS = (Role.LOGISTICS_EXECUTIVE, Role.LOGISTICS_MANAGER)
_EXECUTIVES = (Role.DIRECTOR, Role.MD)

_TALLY_SYNC = CreateRecord("tally_sync", {"voucher": "sales"})
_CREDIT_EXPOSURE = CreateRecord("credit_exposure_update")


RFQ_ITEM_TRANSITIONS: tuple[TransitionDescriptor, ...] = (
    _edge(
        _RFQ, R.DRAFT, R.RFQ_SUBMITTED, _SALES,
        fields=("product_id", "quantity", "unit_of_measure"),
        checks=(
            _rule(V.PRODUCT_ACTIVE, "Product must be active"),
            _rule(V.QUANTITY_POSITIVE, "Quantity must be greater than 0"),
            _rule(V.QUANTITY_VALID, "Quantity must meet MOQ and pack size requirements"),
        ),
        effects=(_notify(Role.SALES_MANAGER), StartSla("2h")),
    ),
    _edge(
        _RFQ, R.RFQ_SUBMITTED, R.SALES_REVIEW, auto=True,
        effects=(_notify(Role.SALES_EXECUTIVE), StartSla("4h")),
    ),
    _edge(
        _RFQ, R.SALES_REVIEW, R.TECH_REVIEW, _SALES,
        fields=("target_price", "currency"),
        checks=(_rule(V.TARGET_PRICE_POSITIVE, "Target price must be greater than 0"),),
        effects=(_notify(Role.TECH_ENGINEER), StartSla("24h")),
    ),
    _edge(
        _RFQ, R.SALES_REVIEW, R.DRAFT, (Role.SALES_MANAGER,), reason=True,
        effects=(_notify(Role.SALES_EXECUTIVE),),
    ),
    _edge(
        _RFQ, R.TECH_REVIEW, R.TECH_APPROVED, _TECH,
        checks=(_rule(V.SPECIFICATIONS_COMPLETE, "Technical specifications must be complete"),),
        effects=(_notify(Role.COMPLIANCE_OFFICER),),
    ),
    _edge(
        _RFQ, R.TECH_REVIEW, R.SALES_REVIEW, _TECH, reason=True,
        effects=(_notify(Role.SALES_EXECUTIVE),),
    ),
    _edge(
        _RFQ, R.TECH_APPROVED, R.COMPLIANCE_REVIEW, auto=True,
        effects=(_notify(Role.COMPLIANCE_OFFICER), StartSla("24h")),
    ),
    _edge(
        _RFQ, R.COMPLIANCE_REVIEW, R.STOCK_CHECK, _COMPLIANCE,
        fields=("compliance_data_id",),
        checks=(_rule(V.COMPLIANCE_APPROVED, "Compliance check must be approved"),),
        effects=(_notify(Role.WAREHOUSE_EXECUTIVE),),
    ),
    _edge(
        _RFQ, R.COMPLIANCE_REVIEW, R.TECH_REVIEW, _COMPLIANCE, reason=True,
        effects=(_notify(Role.TECH_ENGINEER),),
    ),
    _edge(
        _RFQ, R.STOCK_CHECK, R.SOURCING_ACTIVE, _WAREHOUSE,
        effects=(_notify(Role.SOURCING_ENGINEER), StartSla("48h")),
    ),
    _edge(
        _RFQ, R.STOCK_CHECK, R.RATE_FINALIZED, _WAREHOUSE,
        fields=("cost_breakdown_id",),
        checks=(_rule(V.STOCK_AVAILABLE, "Stock must be available"),),
        effects=(_notify(Role.PURCHASE_MANAGER),),
    ),
    _edge(
        _RFQ, R.SOURCING_ACTIVE, R.VENDOR_QUOTES_RECEIVED, _SOURCING,
        checks=(_rule(V.HAS_VENDOR_QUOTES, "At least one vendor quote required"),),
        effects=(_notify(Role.SOURCING_ENGINEER), StartSla("24h")),
    ),
    _edge(
        _RFQ, R.VENDOR_QUOTES_RECEIVED, R.RATE_FINALIZED, _SOURCING,
        fields=("selected_vendor_quote_id", "cost_breakdown_id"),
        checks=(
            _rule(V.VENDOR_QUOTE_SELECTED, "Vendor quote must be selected"),
            _rule(V.COST_BREAKDOWN_COMPLETE, "Cost breakdown must be complete"),
        ),
        effects=(_notify(Role.PURCHASE_MANAGER), StartSla("12h")),
    ),
    _edge(
        _RFQ, R.RATE_FINALIZED, R.MARGIN_APPROVAL, auto=True,
        effects=(_notify(Role.DIRECTOR), StartSla("24h")),
    ),
    _edge(
        _RFQ, R.MARGIN_APPROVAL, R.PRICE_FROZEN, _EXECUTIVES,
        fields=("selling_price", "margin_pct"),
        checks=(
            _rule(V.MARGIN_ACCEPTABLE, "Margin must be within acceptable range"),
            _rule(V.COMMERCIAL_TERMS_COMPLETE, "Commercial terms must be complete"),
        ),
        effects=(
            _notify(Role.SALES_EXECUTIVE),
            UpdateFields(MappingProxyType({"commercial_terms_frozen": True})),
        ),
    ),
    _edge(
        _RFQ, R.MARGIN_APPROVAL, R.RATE_FINALIZED, _EXECUTIVES, reason=True,
        effects=(_notify(Role.PURCHASE_MANAGER, Role.SOURCING_ENGINEER),),
    ),
    _edge(
        _RFQ, R.PRICE_FROZEN, R.QUOTE_SENT, _SALES,
        checks=(_rule(V.QUOTE_PDF_GENERATED, "Quote PDF must be generated"),),
        effects=(_notify(Role.CUSTOMER), UpdateFields(stamp_now=("sent_at",))),
    ),
    _edge(
        _RFQ, R.QUOTE_SENT, R.CUSTOMER_ACCEPTED, _SALES,
        checks=(_rule(V.CUSTOMER_ACCEPTANCE_CONFIRMED, "Customer acceptance must be confirmed"),),
        effects=(
            _notify(Role.SALES_MANAGER, Role.PURCHASE_ENGINEER),
            CreateRecord("order"),
            AssignOwner(Role.PURCHASE_ENGINEER),
        ),
    ),
    _edge(
        _RFQ, R.QUOTE_SENT, R.CUSTOMER_REJECTED, _SALES, reason=True,
        effects=(_notify(Role.SALES_MANAGER),),
    ),
    _edge(
        _RFQ, R.CUSTOMER_ACCEPTED, R.RFQ_CLOSED, auto=True,
        fields=("order_id", "order_item_id"),
        checks=(_rule(V.ORDER_CREATED, "Order must be created"),),
        effects=(_notify(Role.SALES_EXECUTIVE),),
    ),
    _edge(_RFQ, R.CUSTOMER_REJECTED, R.RFQ_CLOSED, auto=True),
    _edge(_RFQ, R.DRAFT, R.RFQ_CLOSED, (*_SALES, Role.DIRECTOR), reason=True),
)


ORDER_ITEM_TRANSITIONS: tuple[TransitionDescriptor, ...] = (
    _edge(
        _ORD, O.PR_CREATED, O.PR_ACKNOWLEDGED, _PURCHASE,
        effects=(_notify(Role.FINANCE_OFFICER), StartSla("4h")),
    ),
    _edge(
        _ORD, O.PR_ACKNOWLEDGED, O.CREDIT_CHECK, auto=True,
        effects=(_notify(Role.FINANCE_OFFICER), StartSla("4h")),
    ),
    _edge(
        _ORD, O.CREDIT_CHECK, O.PO_RELEASED, _FINANCE,
        checks=(
            _rule(V.CREDIT_AVAILABLE, "Customer must have sufficient credit"),
            _rule(V.CUSTOMER_NOT_BLOCKED, "Customer must not be blocked"),
        ),
        effects=(
            _notify(Role.PURCHASE_ENGINEER, Role.VENDOR),
            CreateRecord("purchase_order"),
            StartSla("12h"),
        ),
    ),
    _edge(
        _ORD, O.CREDIT_CHECK, O.CREDIT_HOLD, _FINANCE, reason=True,
        effects=(_notify(Role.FINANCE_MANAGER, Role.SALES_EXECUTIVE),),
    ),
    _edge(
        _ORD, O.CREDIT_HOLD, O.PO_RELEASED, (Role.FINANCE_MANAGER, *_EXECUTIVES), reason=True,
        effects=(
            _notify(Role.PURCHASE_ENGINEER, Role.VENDOR),
            CreateRecord("purchase_order", {"credit_override": True}),
            StartSla("12h"),
        ),
    ),
    _edge(
        _ORD, O.PO_RELEASED, O.VENDOR_CONFIRMED, _PURCHASE,
        checks=(_rule(V.VENDOR_CONFIRMATION_RECEIVED, "Vendor must confirm PO"),),
        effects=(_notify(Role.PURCHASE_ENGINEER), StartSla("48h")),
    ),
    _edge(
        _ORD, O.VENDOR_CONFIRMED, O.IN_PRODUCTION, _PURCHASE,
        effects=(_notify(Role.PURCHASE_ENGINEER),),
    ),
    _edge(
        _ORD, O.IN_PRODUCTION, O.GOODS_RECEIVED, _WAREHOUSE,
        checks=(_rule(V.GRN_CREATED, "GRN must be created"),),
        effects=(_notify(Role.QC_ENGINEER), CreateRecord("lots"), StartSla("24h")),
    ),
    _edge(
        _ORD, O.GOODS_RECEIVED, O.QC_APPROVED, _QC,
        checks=(
            _rule(V.QC_INSPECTION_COMPLETE, "QC inspection must be complete"),
            _rule(V.QC_STATUS_PASSED, "All lots must pass QC"),
        ),
        effects=(_notify(Role.LOGISTICS_EXECUTIVE), StartSla("24h")),
    ),
    _edge(
        _ORD, O.GOODS_RECEIVED, O.QC_REJECTED, _QC, reason=True,
        effects=(
            _notify(Role.PURCHASE_ENGINEER, Role.VENDOR, Role.QC_MANAGER),
            CreateRecord("rma"),
        ),
    ),
    _edge(
        _ORD, O.QC_REJECTED, O.VENDOR_CONFIRMED, _PURCHASE, reason=True,
        effects=(_notify(Role.VENDOR),),
    ),
    _edge(
        _ORD, O.QC_APPROVED, O.READY_TO_DISPATCH, auto=True,
        effects=(_notify(Role.LOGISTICS_EXECUTIVE),),
    ),
    _edge(
        _ORD, O.READY_TO_DISPATCH, O.DISPATCHED, _LOGISTICS,
        checks=(_rule(V.SHIPMENT_CREATED, "Shipment must be created"),),
        effects=(_notify(Role.CUSTOMER, Role.SALES_EXECUTIVE), StartSla("24h")),
    ),
    _edge(
        _ORD, O.DISPATCHED, O.DELIVERED, _LOGISTICS,
        checks=(
            _rule(V.DELIVERY_CONFIRMED, "Delivery must be confirmed"),
            _rule(V.POD_UPLOADED, "Proof of delivery must be uploaded"),
        ),
        effects=(_notify(Role.FINANCE_EXECUTIVE),),
    ),
    _edge(
        _ORD, O.DELIVERED, O.INVOICED, (Role.FINANCE_EXECUTIVE, Role.FINANCE_OFFICER),
        checks=(_rule(V.INVOICE_GENERATED, "Invoice must be generated"),),
        effects=(
            _notify(Role.CUSTOMER, Role.FINANCE_OFFICER),
            _TALLY_SYNC,
            StartSla("24h"),
        ),
    ),
    _edge(
        _ORD, O.INVOICED, O.PAYMENT_PARTIAL, _FINANCE_DESK,
        checks=(
            _rule(V.PAYMENT_RECORDED, "Payment must be recorded"),
            _rule(V.PAYMENT_NOT_FULL, "Payment must be partial (not full)"),
        ),
        effects=(_notify(Role.SALES_EXECUTIVE), _CREDIT_EXPOSURE),
    ),
    _edge(
        _ORD, O.INVOICED, O.PAYMENT_CLOSED, _FINANCE_DESK,
        checks=(
            _rule(V.PAYMENT_RECORDED, "Payment must be recorded"),
            _rule(V.PAYMENT_FULL, "Payment must be full"),
        ),
        effects=(_notify(Role.SALES_EXECUTIVE), _CREDIT_EXPOSURE, _TALLY_SYNC),
    ),
    _edge(
        _ORD, O.PAYMENT_PARTIAL, O.PAYMENT_CLOSED, _FINANCE_DESK,
        checks=(_rule(V.PAYMENT_BALANCE_FULL, "Balance payment must be full"),),
        effects=(_notify(Role.SALES_EXECUTIVE), _CREDIT_EXPOSURE, _TALLY_SYNC),
    ),
    _edge(
        _ORD, O.PAYMENT_CLOSED, O.CLOSED, auto=True,
        effects=(_notify(Role.SALES_EXECUTIVE),),
    ),
    _edge(
        _ORD, O.PR_CREATED, O.CANCELLED, (Role.SALES_MANAGER, Role.DIRECTOR), reason=True,
        effects=(_notify(Role.SALES_EXECUTIVE, Role.PURCHASE_ENGINEER),),
    ),
    _edge(
        _ORD, O.PO_RELEASED, O.CANCELLED, (Role.PURCHASE_MANAGER, Role.DIRECTOR), reason=True,
        effects=(_notify(Role.VENDOR, Role.PURCHASE_ENGINEER),),
    ),
    _edge(_ORD, O.CANCELLED, O.FORCE_CLOSED, _EXECUTIVES, reason=True),
)


def _with_force_close(kind: ItemKind, edges: tuple[TransitionDescriptor, ...]) -> tuple[TransitionDescriptor, ...]:
    """Add the emergency ``-> FORCE_CLOSED`` edge to every non-terminal state lacking one."""
    terminal = TERMINAL_STATES[kind]
    force_closed = STATE_ENUMS[kind]["FORCE_CLOSED"]
    existing = {(edge.from_state, edge.to_state) for edge in edges}
    extra = [
        _edge(kind, state, force_closed, _EXECUTIVES, reason=True)
        for state in STATE_ENUMS[kind]
        if state.value not in terminal and (state.value, force_closed.value) not in existing
    ]
    return edges + tuple(extra)


class TransitionCatalog:
    """Immutable index of transition descriptors keyed by ``(kind, from, to)``."""

    def __init__(self, edges_by_kind: Mapping[ItemKind, tuple[TransitionDescriptor, ...]], version: str):
        self.version = version
        index: dict[tuple[ItemKind, str, str], TransitionDescriptor] = {}
        outgoing: dict[tuple[ItemKind, str], list[TransitionDescriptor]] = {}
        for kind, edges in edges_by_kind.items():
            for edge in edges:
                key = (kind, edge.from_state, edge.to_state)
                if key in index:
                    raise ValueError(f"Duplicate transition {kind.value}: {edge.from_state} -> {edge.to_state}")
                if edge.from_state in TERMINAL_STATES[kind]:
                    raise ValueError(f"Terminal state {edge.from_state} cannot have outgoing transitions")
                index[key] = edge
                outgoing.setdefault((kind, edge.from_state), []).append(edge)
        self._index = MappingProxyType(index)
        self._outgoing = MappingProxyType({key: tuple(value) for key, value in outgoing.items()})
        self._counts = MappingProxyType({kind: len(edges) for kind, edges in edges_by_kind.items()})

    def get(self, kind: ItemKind, from_state: str | Enum, to_state: str | Enum) -> TransitionDescriptor | None:
        return self._index.get((ItemKind(kind), state_value(from_state), state_value(to_state)))

    def from_state(self, kind: ItemKind, state: str | Enum) -> tuple[TransitionDescriptor, ...]:
        return self._outgoing.get((ItemKind(kind), state_value(state)), ())

    def edge_count(self, kind: ItemKind) -> int:
        return self._counts.get(ItemKind(kind), 0)


def build_catalog() -> TransitionCatalog:
    return TransitionCatalog(
        {
            ItemKind.RFQ_ITEM: _with_force_close(ItemKind.RFQ_ITEM, RFQ_ITEM_TRANSITIONS),
            ItemKind.ORDER_ITEM: _with_force_close(ItemKind.ORDER_ITEM, ORDER_ITEM_TRANSITIONS),
        },
        version=CATALOG_VERSION,
    )


@lru_cache()
def get_catalog() -> TransitionCatalog:
    """Process-wide catalog instance."""
    return build_catalog()
