"""Workflow item serialization helpers."""
from __future__ import annotations

from datetime import datetime
from typing import Any

from ..schemas import OrderItemResponse, RfqItemResponse, SlaItemResponse
from ..states import ItemKind
from .sla_rules import check_sla_status

_RESPONSE_MODELS = {
    ItemKind.RFQ_ITEM: RfqItemResponse,
    ItemKind.ORDER_ITEM: OrderItemResponse,
}


def header_id_of(kind: ItemKind, item: Any):
    return item.rfq_id if ItemKind(kind) == ItemKind.RFQ_ITEM else item.order_id


def _values(model: type, item: Any) -> dict[str, Any]:
    return {name: getattr(item, name, None) for name in model.model_fields if hasattr(item, name)}


def item_to_response(kind: ItemKind, item: Any) -> RfqItemResponse | OrderItemResponse:
    kind = ItemKind(kind)
    model = _RESPONSE_MODELS[kind]
    values = _values(model, item)
    values.update(kind=kind.value, header_id=header_id_of(kind, item))
    if kind == ItemKind.ORDER_ITEM:
        # OrderItem.order_id is the header, not an attribute of the response.
        values.pop("order_id", None)
    return model.model_validate(values)


def item_to_sla_response(kind: ItemKind, item: Any, *, now: datetime | None = None) -> SlaItemResponse:
    status = check_sla_status(item.state_entered_at, item.sla_due_at, now)
    return SlaItemResponse(
        kind=ItemKind(kind).value,
        id=item.id,
        header_id=header_id_of(kind, item),
        item_number=item.item_number,
        state=item.state,
        state_entered_at=item.state_entered_at,
        sla_due_at=item.sla_due_at,
        sla_warning=bool(item.sla_warning),
        sla_breached=bool(item.sla_breached),
        at_risk_reason=item.at_risk_reason,
        percent_elapsed=round(status.percent_elapsed, 2),
        time_remaining=status.time_remaining,
    )
