"""Guarded state transitions for RFQ and order items."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable
from uuid import UUID, uuid4

from sqlalchemy import inspect
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import flag_modified
from sqlalchemy.orm.exc import StaleDataError

from ..catalog import TransitionCatalog, TransitionDescriptor, get_catalog
from ..config import settings
from ..domain_errors import DomainError, version_conflict
from ..models import WORKFLOW_HEADER_COLUMNS, WORKFLOW_ITEM_MODELS, AuditLog, User
from ..schemas import TransitionRequest
from ..services.collaborators import TradeCollaborators, get_collaborators
from ..services.notifications import (
    CeleryNotificationSender,
    EntityRef,
    NotificationSender,
    dispatch_queued,
)
from ..services.side_effects import SideEffectContext, apply_side_effects
from ..services.sla_rules import now_utc, sla_window_for_entry
from ..services.validators import ValidationContext, missing_required_fields, run_validations
from ..states import ItemKind, is_terminal_state

_ITEM_LABELS = {
    ItemKind.RFQ_ITEM: "RFQ item",
    ItemKind.ORDER_ITEM: "Order item",
}


@dataclass(frozen=True)
class RequestMeta:
    ip_address: str | None = None
    user_agent: str | None = None


@dataclass(frozen=True)
class TransitionHooks:
    """Collaborators injected into the transition engine."""

    catalog: TransitionCatalog = field(default_factory=get_catalog)
    collaborators_factory: Callable[[], TradeCollaborators] = get_collaborators
    notifier: NotificationSender = field(default_factory=CeleryNotificationSender)
    now_utc: Callable[[], datetime] = now_utc
    min_margin_pct: float = settings.MIN_MARGIN_PCT


@dataclass(frozen=True)
class TransitionResult:
    item: Any
    audit_log_id: UUID
    descriptor: TransitionDescriptor


def get_item_or_404(
    *,
    db: Session,
    kind: ItemKind,
    item_id: UUID,
    org_id: UUID,
    header_id: UUID | None = None,
):
    kind = ItemKind(kind)
    model = WORKFLOW_ITEM_MODELS[kind]
    query = db.query(model).filter(
        model.id == item_id,
        model.org_id == org_id,
        model.is_deleted.is_(False),
    )
    if header_id is not None:
        query = query.filter(WORKFLOW_HEADER_COLUMNS[kind] == header_id)
    item = query.first()
    if not item:
        raise DomainError(
            code="ITEM_NOT_FOUND",
            http_status=404,
            message=f"{_ITEM_LABELS[kind]} not found",
            details={"itemId": str(item_id)},
        )
    return item


def _ensure_not_closed(kind: ItemKind, item) -> None:
    if is_terminal_state(kind, item.state):
        raise DomainError(
            code="ITEM_CLOSED",
            http_status=400,
            message=f"Cannot modify closed {_ITEM_LABELS[kind].lower()} (state {item.state})",
        )


def _mark_sla_columns_dirty(item: Any, names) -> None:
    """Force the SLA columns into the UPDATE even when their values look unchanged.

    The SLA sweep flips `sla_warning`/`sla_breached` with a bulk UPDATE that the
    session never sees, so an attribute reset to the value it was loaded with would
    otherwise be skipped and the sweep's flag would survive the state change.
    """
    if inspect(item, raiseerr=False) is None:
        return
    for name in names:
        flag_modified(item, name)


def _transition_snapshot(item) -> dict[str, Any]:
    return {
        "state": item.state,
        "version": item.version,
        "ownerId": str(item.owner_id) if item.owner_id else None,
        "slaDueAt": item.sla_due_at.isoformat() if item.sla_due_at else None,
    }


def execute_transition_use_case(
    *,
    db: Session,
    kind: ItemKind,
    item_id: UUID,
    data: TransitionRequest,
    current_user: User,
    header_id: UUID | None = None,
    request_meta: RequestMeta | None = None,
    hooks: TransitionHooks | None = None,
) -> TransitionResult:
    """Move an item along one catalog edge, or fail without touching it."""
    hooks = hooks or TransitionHooks()
    request_meta = request_meta or RequestMeta()
    kind = ItemKind(kind)

    item = get_item_or_404(db=db, kind=kind, item_id=item_id, org_id=current_user.org_id, header_id=header_id)
    _ensure_not_closed(kind, item)

    from_state = item.state
    to_state = data.to_state.strip()
    descriptor = hooks.catalog.get(kind, from_state, to_state)
    if descriptor is None:
        raise DomainError(
            code="INVALID_TRANSITION",
            http_status=400,
            message=f"Transition from {from_state} to {to_state} is not allowed",
            details={"fromState": from_state, "toState": to_state},
        )

    if not descriptor.allows(current_user.role):
        raise DomainError(
            code="UNAUTHORIZED_TRANSITION",
            http_status=403,
            message=f"Role {current_user.role} is not authorized to move {from_state} to {to_state}",
        )

    reason = (data.reason or "").strip() or None
    if descriptor.requires_reason and reason is None:
        raise DomainError(
            code="REASON_REQUIRED",
            http_status=400,
            message="This transition requires a reason",
        )

    missing = missing_required_fields(descriptor, item)
    if missing:
        raise DomainError(
            code="REQUIRED_FIELD_MISSING",
            http_status=400,
            message=f"Required fields missing: {', '.join(missing)}",
            details={"fields": missing},
        )

    run_validations(
        descriptor,
        item,
        ValidationContext(
            kind=kind,
            collaborators=hooks.collaborators_factory(),
            min_margin_pct=hooks.min_margin_pct,
        ),
    )

    loaded_version = item.version
    if data.expected_version is not None and data.expected_version != loaded_version:
        raise version_conflict(entity=kind.value, entity_id=item.id, expected=data.expected_version)

    now = hooks.now_utc()
    outcome = apply_side_effects(
        descriptor.side_effects,
        item,
        SideEffectContext(db=db, kind=kind, descriptor=descriptor, actor=current_user, now=now),
    )

    old_values = _transition_snapshot(item)
    item.state = descriptor.to_state
    item.state_entered_at = now
    item.owner_id = current_user.id
    sla_values = sla_window_for_entry(kind, descriptor.to_state, now).as_values()
    for name, value in sla_values.items():
        setattr(item, name, value)
    for name, value in outcome.field_updates.items():
        setattr(item, name, value)
    _mark_sla_columns_dirty(item, sla_values)
    item.updated_by = current_user.id
    item.version = loaded_version + 1

    for record in outcome.records:
        db.add(record)

    audit = AuditLog(
        id=uuid4(),
        org_id=item.org_id,
        entity_type=kind.value,
        entity_id=item.id,
        action="STATE_TRANSITION",
        user_id=current_user.id,
        old_values=old_values,
        new_values={
            **_transition_snapshot(item),
            "fieldUpdates": sorted(outcome.field_updates),
            "relatedRecords": [record.entity for record in outcome.records],
        },
        reason=reason,
        notes=data.notes,
        ip_address=request_meta.ip_address,
        user_agent=request_meta.user_agent,
    )
    db.add(audit)

    try:
        db.commit()
    except StaleDataError as exc:
        db.rollback()
        raise version_conflict(entity=kind.value, entity_id=item_id, expected=loaded_version) from exc

    dispatch_queued(
        hooks.notifier,
        org_id=item.org_id,
        entity_ref=EntityRef(
            entity_type=kind.value,
            entity_id=item.id,
            state=descriptor.to_state,
            state_entered_at=now,
        ),
        notifications=outcome.notifications,
    )
    return TransitionResult(item=item, audit_log_id=audit.id, descriptor=descriptor)


def get_available_transitions_use_case(
    *,
    db: Session,
    kind: ItemKind,
    item_id: UUID,
    current_user: User,
    header_id: UUID | None = None,
    catalog: TransitionCatalog | None = None,
) -> tuple[Any, list[TransitionDescriptor]]:
    """Edges out of the item's current state that the caller's role may fire."""
    catalog = catalog or get_catalog()
    kind = ItemKind(kind)
    item = get_item_or_404(db=db, kind=kind, item_id=item_id, org_id=current_user.org_id, header_id=header_id)
    if is_terminal_state(kind, item.state):
        return item, []
    return item, [edge for edge in catalog.from_state(kind, item.state) if edge.allows(current_user.role)]
