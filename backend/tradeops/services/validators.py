"""Named business-rule checks run before a transition fires."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Callable

from ..catalog import TransitionDescriptor, ValidationKind, ValidationRule
from ..config import settings
from ..domain_errors import DomainError
from ..states import ItemKind
from .collaborators import TradeCollaborators


@dataclass(frozen=True)
class ValidationContext:
    kind: ItemKind
    collaborators: TradeCollaborators
    min_margin_pct: float = settings.MIN_MARGIN_PCT


Check = Callable[[Any, ValidationContext], bool]


def _decimal(value: Any) -> Decimal | None:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


def _positive(value: Any) -> bool:
    number = _decimal(value)
    return number is not None and number > 0


def _present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (dict, list, tuple, set)):
        return bool(value)
    return True


def _quantity(item: Any) -> Any:
    quantity = getattr(item, "quantity", None)
    return quantity if quantity is not None else getattr(item, "ordered_quantity", None)


def margin_pct(selling_price: Any, vendor_price: Any) -> Decimal | None:
    selling = _decimal(selling_price)
    vendor = _decimal(vendor_price)
    if not selling or not vendor:
        return None
    return (selling - vendor) / vendor * 100


def _margin_acceptable(item, ctx):
    margin = margin_pct(getattr(item, "selling_price", None), getattr(item, "vendor_price", None))
    return margin is not None and margin >= Decimal(str(ctx.min_margin_pct))


def _paid_and_total(item) -> tuple[Decimal, Decimal | None]:
    paid = _decimal(getattr(item, "paid_amount", None)) or Decimal("0")
    return paid, _decimal(getattr(item, "total_amount", None))


def _payment_recorded(item, ctx):
    paid, _ = _paid_and_total(item)
    return paid > 0


def _payment_full(item, ctx):
    paid, total = _paid_and_total(item)
    return total is not None and paid >= total


def _payment_not_full(item, ctx):
    paid, total = _paid_and_total(item)
    return total is not None and paid < total


def _product_active(item, ctx):
    product_id = getattr(item, "product_id", None)
    return product_id is not None and ctx.collaborators.product_active(product_id)


def _quantity_valid(item, ctx):
    product_id = getattr(item, "product_id", None)
    quantity = _decimal(_quantity(item))
    if product_id is None or quantity is None:
        return False
    return ctx.collaborators.quantity_within_constraints(product_id, quantity)


def _credit_available(item, ctx):
    amount = _decimal(getattr(item, "total_amount", None)) or Decimal("0")
    return ctx.collaborators.credit_available(
        getattr(item, "customer_id", None),
        getattr(item, "legal_entity_id", None),
        amount,
    )


def _customer_not_blocked(item, ctx):
    return not ctx.collaborators.customer_blocked(getattr(item, "customer_id", None))


def _compliance_approved(item, ctx):
    compliance_data_id = getattr(item, "compliance_data_id", None)
    return compliance_data_id is not None and ctx.collaborators.compliance_approved(compliance_data_id)


def _commercial_terms_complete(item, ctx):
    terms_id = getattr(item, "commercial_terms_id", None)
    return terms_id is not None and ctx.collaborators.commercial_terms_complete(terms_id)


def _field_present(name: str) -> Check:
    return lambda item, ctx: _present(getattr(item, name, None))


def _evidence(kind: ValidationKind) -> Check:
    return lambda item, ctx: ctx.collaborators.has_evidence(kind.value, ctx.kind.value, item.id)


VALIDATION_HANDLERS: dict[ValidationKind, Check] = {
    ValidationKind.PRODUCT_ACTIVE: _product_active,
    ValidationKind.QUANTITY_POSITIVE: lambda item, ctx: _positive(_quantity(item)),
    ValidationKind.QUANTITY_VALID: _quantity_valid,
    ValidationKind.TARGET_PRICE_POSITIVE: lambda item, ctx: _positive(getattr(item, "target_price", None)),
    ValidationKind.SPECIFICATIONS_COMPLETE: _field_present("specifications"),
    ValidationKind.COMPLIANCE_APPROVED: _compliance_approved,
    ValidationKind.VENDOR_QUOTE_SELECTED: _field_present("selected_vendor_quote_id"),
    ValidationKind.COST_BREAKDOWN_COMPLETE: _field_present("cost_breakdown_id"),
    ValidationKind.MARGIN_ACCEPTABLE: _margin_acceptable,
    ValidationKind.COMMERCIAL_TERMS_COMPLETE: _commercial_terms_complete,
    ValidationKind.QUOTE_PDF_GENERATED: _field_present("quote_pdf_url"),
    ValidationKind.ORDER_CREATED: lambda item, ctx: _present(getattr(item, "order_id", None))
    and _present(getattr(item, "order_item_id", None)),
    ValidationKind.CREDIT_AVAILABLE: _credit_available,
    ValidationKind.CUSTOMER_NOT_BLOCKED: _customer_not_blocked,
    ValidationKind.PAYMENT_RECORDED: _payment_recorded,
    ValidationKind.PAYMENT_NOT_FULL: _payment_not_full,
    ValidationKind.PAYMENT_FULL: _payment_full,
    ValidationKind.PAYMENT_BALANCE_FULL: _payment_full,
}

EVIDENCE_KINDS: tuple[ValidationKind, ...] = (
    ValidationKind.HAS_VENDOR_QUOTES,
    ValidationKind.STOCK_AVAILABLE,
    ValidationKind.CUSTOMER_ACCEPTANCE_CONFIRMED,
    ValidationKind.VENDOR_CONFIRMATION_RECEIVED,
    ValidationKind.GRN_CREATED,
    ValidationKind.QC_INSPECTION_COMPLETE,
    ValidationKind.QC_STATUS_PASSED,
    ValidationKind.SHIPMENT_CREATED,
    ValidationKind.DELIVERY_CONFIRMED,
    ValidationKind.POD_UPLOADED,
    ValidationKind.INVOICE_GENERATED,
)
VALIDATION_HANDLERS.update({kind: _evidence(kind) for kind in EVIDENCE_KINDS})

_missing = set(ValidationKind) - set(VALIDATION_HANDLERS)
if _missing:
    raise RuntimeError(f"No validation handler for: {sorted(kind.value for kind in _missing)}")


def run_validation(rule: ValidationRule, item: Any, ctx: ValidationContext) -> bool:
    return bool(VALIDATION_HANDLERS[rule.kind](item, ctx))


def run_validations(descriptor: TransitionDescriptor, item: Any, ctx: ValidationContext) -> None:
    """Evaluate the descriptor's rules in order; the first failure aborts with its own code."""
    for rule in descriptor.validations:
        if not run_validation(rule, item, ctx):
            raise DomainError(
                code=rule.code,
                http_status=400,
                message=rule.message,
                details={"fromState": descriptor.from_state, "toState": descriptor.to_state},
            )


def missing_required_fields(descriptor: TransitionDescriptor, item: Any) -> list[str]:
    return [name for name in descriptor.required_fields if not _present(getattr(item, name, None))]
