"""RFQ item and order item lifecycle endpoints."""
from __future__ import annotations

import ipaddress
from uuid import UUID

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from ..auth import PermissionChecker
from ..config import settings
from ..database import get_db
from ..models import User
from ..schemas import (
    AvailableTransition,
    AvailableTransitions,
    Envelope,
    OrderItemResponse,
    RfqItemResponse,
    TransitionRequest,
)
from ..services.item_response_builder import item_to_response
from ..states import ItemKind
from ..use_cases.item_transitions import (
    RequestMeta,
    execute_transition_use_case,
    get_available_transitions_use_case,
    get_item_or_404,
)

router = APIRouter(tags=["transitions"])


def _client_ip(request: Request) -> str | None:
    if settings.TRUST_PROXY_HEADERS:
        real_ip = request.headers.get("x-real-ip")
        if real_ip:
            try:
                ipaddress.ip_address(real_ip)
                return real_ip
            except ValueError:
                pass

        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            # client, proxy1, proxy2
            candidate = forwarded.split(",")[0].strip()
            try:
                ipaddress.ip_address(candidate)
                return candidate
            except ValueError:
                pass

    return request.client.host if request.client else None


def _request_meta(request: Request) -> RequestMeta:
    return RequestMeta(
        ip_address=_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )


def _transition(
    *,
    kind: ItemKind,
    header_id: UUID,
    item_id: UUID,
    data: TransitionRequest,
    request: Request,
    current_user: User,
    db: Session,
) -> Envelope:
    result = execute_transition_use_case(
        db=db,
        kind=kind,
        item_id=item_id,
        header_id=header_id,
        data=data,
        current_user=current_user,
        request_meta=_request_meta(request),
    )
    return Envelope(
        data=item_to_response(kind, result.item),
        meta={
            "auditLogId": str(result.audit_log_id),
            "fromState": result.descriptor.from_state,
            "toState": result.descriptor.to_state,
        },
    )


def _available(
    *, kind: ItemKind, header_id: UUID, item_id: UUID, current_user: User, db: Session
) -> Envelope[AvailableTransitions]:
    item, edges = get_available_transitions_use_case(
        db=db, kind=kind, item_id=item_id, header_id=header_id, current_user=current_user
    )
    return Envelope(
        data=AvailableTransitions(
            current_state=item.state,
            transitions=[
                AvailableTransition(
                    to_state=edge.to_state,
                    requires_reason=edge.requires_reason,
                    required_fields=list(edge.required_fields),
                    validations=[rule.code for rule in edge.validations],
                    auto=edge.auto,
                )
                for edge in edges
            ],
        )
    )


@router.get("/rfq/{rfq_id}/items/{item_id}", response_model=Envelope[RfqItemResponse])
def get_rfq_item(
    rfq_id: UUID,
    item_id: UUID,
    current_user: User = Depends(PermissionChecker("canViewItems")),
    db: Session = Depends(get_db),
):
    item = get_item_or_404(
        db=db, kind=ItemKind.RFQ_ITEM, item_id=item_id, org_id=current_user.org_id, header_id=rfq_id
    )
    return Envelope(data=item_to_response(ItemKind.RFQ_ITEM, item))


@router.post("/rfq/{rfq_id}/items/{item_id}/transition", response_model=Envelope[RfqItemResponse])
def transition_rfq_item(
    rfq_id: UUID,
    item_id: UUID,
    data: TransitionRequest,
    request: Request,
    current_user: User = Depends(PermissionChecker("canTransitionItems")),
    db: Session = Depends(get_db),
):
    """Move an RFQ item to another lifecycle state."""
    return _transition(
        kind=ItemKind.RFQ_ITEM,
        header_id=rfq_id,
        item_id=item_id,
        data=data,
        request=request,
        current_user=current_user,
        db=db,
    )


@router.get(
    "/rfq/{rfq_id}/items/{item_id}/transitions",
    response_model=Envelope[AvailableTransitions],
)
def available_rfq_item_transitions(
    rfq_id: UUID,
    item_id: UUID,
    current_user: User = Depends(PermissionChecker("canViewItems")),
    db: Session = Depends(get_db),
):
    return _available(kind=ItemKind.RFQ_ITEM, header_id=rfq_id, item_id=item_id, current_user=current_user, db=db)


@router.get("/orders/{order_id}/items/{item_id}", response_model=Envelope[OrderItemResponse])
def get_order_item(
    order_id: UUID,
    item_id: UUID,
    current_user: User = Depends(PermissionChecker("canViewItems")),
    db: Session = Depends(get_db),
):
    item = get_item_or_404(
        db=db, kind=ItemKind.ORDER_ITEM, item_id=item_id, org_id=current_user.org_id, header_id=order_id
    )
    return Envelope(data=item_to_response(ItemKind.ORDER_ITEM, item))


@router.post("/orders/{order_id}/items/{item_id}/transition", response_model=Envelope[OrderItemResponse])
def transition_order_item(
    order_id: UUID,
    item_id: UUID,
    data: TransitionRequest,
    request: Request,
    current_user: User = Depends(PermissionChecker("canTransitionItems")),
    db: Session = Depends(get_db),
):
    """Move an order item to another lifecycle state."""
    return _transition(
        kind=ItemKind.ORDER_ITEM,
        header_id=order_id,
        item_id=item_id,
        data=data,
        request=request,
        current_user=current_user,
        db=db,
    )


@router.get(
    "/orders/{order_id}/items/{item_id}/transitions",
    response_model=Envelope[AvailableTransitions],
)
def available_order_item_transitions(
    order_id: UUID,
    item_id: UUID,
    current_user: User = Depends(PermissionChecker("canViewItems")),
    db: Session = Depends(get_db),
):
    return _available(kind=ItemKind.ORDER_ITEM, header_id=order_id, item_id=item_id, current_user=current_user, db=db)
