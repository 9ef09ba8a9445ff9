"""Side-effect handlers for catalog transitions.

Handlers only compute: field updates to merge into the item, notifications to send
after commit, and related-record requests to persist in the same transaction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable

from sqlalchemy.orm import Session

from ..catalog import (
    AssignOwner,
    CreateRecord,
    Notify,
    StartSla,
    TransitionDescriptor,
    UpdateFields,
)
from ..models import RelatedRecordRequest, User
from ..states import ItemKind
from .notifications import QueuedNotification
from .sla_rules import parse_sla_hours, sla_window_for_entry

logger = logging.getLogger(__name__)

# Columns only the transition engine itself may write.
PROTECTED_FIELDS = frozenset({"id", "org_id", "state", "state_entered_at", "version", "is_deleted"})


@dataclass
class SideEffectContext:
    db: Session
    kind: ItemKind
    descriptor: TransitionDescriptor
    actor: Any
    now: datetime


@dataclass
class SideEffectOutcome:
    field_updates: dict[str, Any] = field(default_factory=dict)
    notifications: list[QueuedNotification] = field(default_factory=list)
    records: list[RelatedRecordRequest] = field(default_factory=list)

    def merge(self, other: "SideEffectOutcome") -> None:
        self.field_updates.update(other.field_updates)
        self.notifications.extend(other.notifications)
        self.records.extend(other.records)


def _apply_update(effect: UpdateFields, item: Any, ctx: SideEffectContext) -> SideEffectOutcome:
    updates: dict[str, Any] = {}
    for name, value in list(effect.values.items()) + [(name, ctx.now) for name in effect.stamp_now]:
        if name in PROTECTED_FIELDS or not hasattr(item, name):
            logger.warning("Skipping UPDATE of unknown or protected field %r on %s", name, ctx.kind.value)
            continue
        updates[name] = value
    return SideEffectOutcome(field_updates=updates)


def _apply_start_sla(effect: StartSla, item: Any, ctx: SideEffectContext) -> SideEffectOutcome:
    hours = parse_sla_hours(effect.duration) if effect.duration is not None else None
    window = sla_window_for_entry(ctx.kind, ctx.descriptor.to_state, ctx.now, duration_hours=hours)
    return SideEffectOutcome(field_updates=window.as_values())


def _apply_notify(effect: Notify, item: Any, ctx: SideEffectContext) -> SideEffectOutcome:
    label = "RFQ item" if ctx.kind == ItemKind.RFQ_ITEM else "Order item"
    descriptor = ctx.descriptor
    notification = QueuedNotification(
        target_roles=tuple(role.value for role in effect.targets),
        title=f"{label} moved to {descriptor.to_state}",
        message=(
            f"{label} {getattr(item, 'id', '')} moved from {descriptor.from_state} "
            f"to {descriptor.to_state} by {getattr(ctx.actor, 'name', None) or 'system'}"
        ),
    )
    return SideEffectOutcome(notifications=[notification])


def _apply_assign_owner(effect: AssignOwner, item: Any, ctx: SideEffectContext) -> SideEffectOutcome:
    owner = (
        ctx.db.query(User)
        .filter(
            User.org_id == getattr(item, "org_id", None),
            User.role == effect.role.value,
            User.is_active.is_(True),
        )
        .order_by(User.created_at)
        .first()
    )
    if owner is None:
        logger.warning("No active %s to own %s %s; keeping actor", effect.role.value, ctx.kind.value, item.id)
        return SideEffectOutcome()
    return SideEffectOutcome(field_updates={"owner_id": owner.id})


def _apply_create_record(effect: CreateRecord, item: Any, ctx: SideEffectContext) -> SideEffectOutcome:
    record = RelatedRecordRequest(
        org_id=getattr(item, "org_id", None),
        entity=effect.entity,
        source_entity_type=ctx.kind.value,
        source_entity_id=item.id,
        source_state=ctx.descriptor.to_state,
        params=dict(effect.params),
        status="pending",
        requested_by=getattr(ctx.actor, "id", None),
    )
    return SideEffectOutcome(records=[record])


_HANDLERS = (
    (UpdateFields, _apply_update),
    (StartSla, _apply_start_sla),
    (Notify, _apply_notify),
    (AssignOwner, _apply_assign_owner),
    (CreateRecord, _apply_create_record),
)


def apply_side_effect(effect: Any, item: Any, ctx: SideEffectContext) -> SideEffectOutcome:
    for effect_type, handler in _HANDLERS:
        if isinstance(effect, effect_type):
            return handler(effect, item, ctx)
    logger.warning("Skipping unknown side effect %r on %s -> %s", effect, ctx.descriptor.from_state, ctx.descriptor.to_state)
    return SideEffectOutcome()


def apply_side_effects(effects: Iterable[Any], item: Any, ctx: SideEffectContext) -> SideEffectOutcome:
    outcome = SideEffectOutcome()
    for effect in effects:
        outcome.merge(apply_side_effect(effect, item, ctx))
    return outcome
