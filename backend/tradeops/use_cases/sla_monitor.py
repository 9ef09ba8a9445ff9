"""SLA deadline use-cases: per-item windows, the periodic sweep and at-risk listings."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from ..models import WORKFLOW_ITEM_MODELS, AuditLog
from ..services.escalation import create_sla_breach_notification, create_sla_warning_notification
from ..services.notifications import CeleryNotificationSender, NotificationSender
from ..services.sla_rules import check_sla_status, now_utc, sla_window_for_entry
from ..states import TERMINAL_STATES, ItemKind, state_value

logger = logging.getLogger(__name__)

_FAR_FUTURE = datetime.max.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class MonitorResult:
    checked: int = 0
    warned: int = 0
    breached: int = 0


def set_sla_for_item(
    *,
    db: Session,
    kind: ItemKind,
    item_id: UUID,
    state: str | Enum,
    now: datetime | None = None,
) -> bool:
    """(Re)start the SLA window of an item that is still in ``state``.

    Only the SLA columns are written, conditioned on the item not having left the
    state in the meantime. Returns False when the item moved on or is gone.
    """
    kind = ItemKind(kind)
    model = WORKFLOW_ITEM_MODELS[kind]
    expected_state = state_value(state)
    item = db.query(model).filter(model.id == item_id, model.is_deleted.is_(False)).first()
    if item is None or item.state != expected_state:
        return False

    window = sla_window_for_entry(kind, expected_state, item.state_entered_at or now or now_utc())
    updated = (
        db.query(model)
        .filter(
            model.id == item_id,
            model.state == expected_state,
            model.state_entered_at == item.state_entered_at,
        )
        .update(window.as_values(), synchronize_session=False)
    )
    db.commit()
    return bool(updated)


def _flag_item(
    *,
    db: Session,
    kind: ItemKind,
    item,
    flag: str,
    reason: str,
    percent_elapsed: float,
) -> bool:
    """Compare-and-set one SLA flag; True only for the writer that flipped it."""
    model = WORKFLOW_ITEM_MODELS[kind]
    values: dict[str, Any] = {flag: True, "at_risk_reason": reason}
    if flag == "sla_breached":
        values["sla_warning"] = True
    updated = (
        db.query(model)
        .filter(
            model.id == item.id,
            getattr(model, flag).is_(False),
            model.state == item.state,
            model.state_entered_at == item.state_entered_at,
        )
        .update(values, synchronize_session=False)
    )
    if not updated:
        return False

    db.add(
        AuditLog(
            id=uuid4(),
            org_id=item.org_id,
            entity_type=kind.value,
            entity_id=item.id,
            action="SLA_BREACHED" if flag == "sla_breached" else "SLA_WARNING",
            user_id=None,
            old_values={flag: False},
            new_values={flag: True, "state": item.state, "percentElapsed": round(percent_elapsed, 2)},
            reason=reason,
        )
    )
    db.commit()
    return True


def monitor_sla_status(
    *,
    db: Session,
    org_id: UUID,
    now: datetime | None = None,
    sender: NotificationSender | None = None,
) -> MonitorResult:
    """Flag newly warned/breached items of one organization and escalate each once."""
    now = now or now_utc()
    sender = sender or CeleryNotificationSender()
    checked = warned = breached = 0

    for kind, model in WORKFLOW_ITEM_MODELS.items():
        items = (
            db.query(model)
            .filter(
                model.org_id == org_id,
                model.is_deleted.is_(False),
                model.state.notin_(sorted(TERMINAL_STATES[kind])),
            )
            .all()
        )
        for item in items:
            checked += 1
            if item.sla_due_at is None or item.state_entered_at is None:
                continue

            status = check_sla_status(item.state_entered_at, item.sla_due_at, now)
            if status.is_breached and not item.sla_breached:
                if _flag_item(
                    db=db,
                    kind=kind,
                    item=item,
                    flag="sla_breached",
                    reason=f"SLA breached for state {item.state}",
                    percent_elapsed=status.percent_elapsed,
                ):
                    breached += 1
                    create_sla_breach_notification(
                        kind, item.id, item.org_id, item.state, status.percent_elapsed, sender,
                        state_entered_at=item.state_entered_at,
                    )
            elif status.is_warning and not item.sla_warning:
                if _flag_item(
                    db=db,
                    kind=kind,
                    item=item,
                    flag="sla_warning",
                    reason=f"Approaching SLA deadline ({status.percent_elapsed:.1f}%)",
                    percent_elapsed=status.percent_elapsed,
                ):
                    warned += 1
                    create_sla_warning_notification(
                        kind, item.id, item.org_id, item.state, status.percent_elapsed, status.time_remaining, sender,
                        state_entered_at=item.state_entered_at,
                    )

    result = MonitorResult(checked=checked, warned=warned, breached=breached)
    logger.info("SLA sweep for org %s: %s", org_id, result)
    return result


def _flagged_page(
    *,
    db: Session,
    org_id: UUID,
    page: int,
    per_page: int,
    breached: bool,
) -> tuple[list[tuple[ItemKind, Any]], int]:
    page = max(page, 1)
    offset = (page - 1) * per_page
    merged: list[tuple[ItemKind, Any]] = []
    total = 0
    for kind, model in WORKFLOW_ITEM_MODELS.items():
        query = db.query(model).filter(model.org_id == org_id, model.is_deleted.is_(False))
        if breached:
            query = query.filter(model.sla_breached.is_(True))
        else:
            query = query.filter(model.sla_warning.is_(True), model.sla_breached.is_(False))
        total += query.count()
        # Enough rows from each kind to cover the requested page after merging.
        rows = query.order_by(model.sla_due_at.asc()).limit(offset + per_page).all()
        merged.extend((kind, row) for row in rows)

    merged.sort(key=lambda pair: pair[1].sla_due_at or _FAR_FUTURE)
    return merged[offset:offset + per_page], total


def get_items_at_risk(
    *, db: Session, org_id: UUID, page: int = 1, per_page: int = 30
) -> tuple[list[tuple[ItemKind, Any]], int]:
    return _flagged_page(db=db, org_id=org_id, page=page, per_page=per_page, breached=False)


def get_breached_items(
    *, db: Session, org_id: UUID, page: int = 1, per_page: int = 30
) -> tuple[list[tuple[ItemKind, Any]], int]:
    return _flagged_page(db=db, org_id=org_id, page=page, per_page=per_page, breached=True)
