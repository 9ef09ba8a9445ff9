"""SLA duration tables and deadline arithmetic."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum

from ..config import settings
from ..domain_errors import DomainError
from ..states import ItemKind, OrderItemState, RfqItemState, is_terminal_state, state_value

# Hours an item may dwell in a state. Zero means the state runs no clock.
RFQ_SLA_HOURS: dict[str, int] = {
    RfqItemState.DRAFT.value: 24,
    RfqItemState.RFQ_SUBMITTED.value: 12,
    RfqItemState.SALES_REVIEW.value: 48,
    RfqItemState.TECH_REVIEW.value: 72,
    RfqItemState.TECH_APPROVED.value: 24,
    RfqItemState.COMPLIANCE_REVIEW.value: 48,
    RfqItemState.STOCK_CHECK.value: 12,
    RfqItemState.SOURCING_ACTIVE.value: 120,
    RfqItemState.VENDOR_QUOTES_RECEIVED.value: 72,
    RfqItemState.RATE_FINALIZED.value: 24,
    RfqItemState.MARGIN_APPROVAL.value: 24,
    RfqItemState.PRICE_FROZEN.value: 12,
    RfqItemState.QUOTE_SENT.value: 168,
    RfqItemState.CUSTOMER_ACCEPTED.value: 24,
    RfqItemState.CUSTOMER_REJECTED.value: 0,
    RfqItemState.RFQ_CLOSED.value: 0,
    RfqItemState.FORCE_CLOSED.value: 0,
}

ORDER_SLA_HOURS: dict[str, int] = {
    OrderItemState.PR_CREATED.value: 24,
    OrderItemState.PR_ACKNOWLEDGED.value: 12,
    OrderItemState.CREDIT_CHECK.value: 24,
    OrderItemState.CREDIT_HOLD.value: 48,
    OrderItemState.PO_RELEASED.value: 48,
    OrderItemState.VENDOR_CONFIRMED.value: 72,
    OrderItemState.IN_PRODUCTION.value: 240,
    OrderItemState.GOODS_RECEIVED.value: 24,
    OrderItemState.QC_APPROVED.value: 12,
    OrderItemState.QC_REJECTED.value: 48,
    OrderItemState.READY_TO_DISPATCH.value: 48,
    OrderItemState.DISPATCHED.value: 168,
    OrderItemState.DELIVERED.value: 24,
    OrderItemState.INVOICED.value: 48,
    OrderItemState.PAYMENT_PARTIAL.value: 720,
    OrderItemState.PAYMENT_CLOSED.value: 24,
    OrderItemState.CANCELLED.value: 0,
    OrderItemState.CLOSED.value: 0,
    OrderItemState.FORCE_CLOSED.value: 0,
}

_SLA_TABLES: dict[ItemKind, dict[str, int]] = {
    ItemKind.RFQ_ITEM: RFQ_SLA_HOURS,
    ItemKind.ORDER_ITEM: ORDER_SLA_HOURS,
}

_DURATION_RE = re.compile(r"^(\d+)([hd])$")


@dataclass(frozen=True)
class SlaStatus:
    is_warning: bool
    is_breached: bool
    percent_elapsed: float
    time_remaining: str


@dataclass(frozen=True)
class SlaWindow:
    """SLA columns to write when an item enters a state."""

    sla_due_at: datetime | None
    sla_warning: bool = False
    sla_breached: bool = False
    at_risk_reason: str | None = None

    def as_values(self) -> dict[str, object]:
        return {
            "sla_due_at": self.sla_due_at,
            "sla_warning": self.sla_warning,
            "sla_breached": self.sla_breached,
            "at_risk_reason": self.at_risk_reason,
        }


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def parse_sla_hours(duration: str) -> int:
    """Parse ``<N>h`` / ``<N>d`` into hours."""
    match = _DURATION_RE.match((duration or "").strip())
    if match is None:
        raise DomainError(
            code="INVALID_SLA_DURATION",
            http_status=400,
            message=f"Invalid SLA duration format: {duration!r}. Expected <N>h or <N>d",
        )
    value = int(match.group(1))
    hours = value * 24 if match.group(2) == "d" else value
    if hours <= 0:
        raise DomainError(
            code="INVALID_SLA_DURATION",
            http_status=400,
            message=f"SLA duration must be positive: {duration!r}",
        )
    return hours


def calculate_sla_duration(kind: ItemKind, state: str | Enum) -> int:
    if is_terminal_state(kind, state):
        return 0
    return _SLA_TABLES[ItemKind(kind)].get(state_value(state), 0)


def sla_window_for_entry(
    kind: ItemKind,
    state: str | Enum,
    entered_at: datetime,
    *,
    duration_hours: int | None = None,
) -> SlaWindow:
    """Deadline and reset flags for an item entering ``state`` at ``entered_at``."""
    if is_terminal_state(kind, state):
        return SlaWindow(sla_due_at=None)
    hours = duration_hours if duration_hours is not None else calculate_sla_duration(kind, state)
    if hours <= 0:
        return SlaWindow(sla_due_at=None)
    return SlaWindow(sla_due_at=entered_at + timedelta(hours=hours))


def _as_aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def format_time_remaining(remaining: timedelta) -> str:
    seconds = int(remaining.total_seconds())
    hours = seconds // 3600
    if seconds < 0:
        return f"Overdue by {abs(seconds) // 3600} hours"
    if hours > 24:
        return f"{hours // 24} days"
    minutes = (seconds % 3600) // 60
    return f"{hours}h {minutes}m"


def check_sla_status(
    state_entered_at: datetime | None,
    sla_due_at: datetime | None,
    now: datetime | None = None,
) -> SlaStatus:
    if sla_due_at is None or state_entered_at is None:
        return SlaStatus(is_warning=False, is_breached=False, percent_elapsed=0.0, time_remaining="N/A")

    current = _as_aware(now or now_utc())
    entered = _as_aware(state_entered_at)
    due = _as_aware(sla_due_at)

    total = (due - entered).total_seconds()
    elapsed = (current - entered).total_seconds()
    if total <= 0:
        percent = 100.0 if elapsed >= 0 else 0.0
    else:
        percent = elapsed / total * 100

    breached = percent >= settings.SLA_BREACH_THRESHOLD_PCT
    warning = settings.SLA_WARNING_THRESHOLD_PCT <= percent < settings.SLA_BREACH_THRESHOLD_PCT
    return SlaStatus(
        is_warning=warning,
        is_breached=breached,
        percent_elapsed=percent,
        time_remaining=format_time_remaining(due - current),
    )


def is_critical(percent_elapsed: float) -> bool:
    return percent_elapsed > settings.SLA_CRITICAL_THRESHOLD_PCT
