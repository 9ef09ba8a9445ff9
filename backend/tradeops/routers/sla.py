"""SLA monitoring endpoints."""
from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth import PermissionChecker
from ..database import get_db
from ..models import User
from ..schemas import Envelope, SlaItemResponse, SlaMonitorResponse
from ..services.item_response_builder import item_to_sla_response
from ..services.sla_rules import now_utc
from ..use_cases.sla_monitor import get_breached_items, get_items_at_risk, monitor_sla_status

router = APIRouter(prefix="/sla", tags=["sla"])


def _page(rows, total: int, *, page: int, per_page: int) -> Envelope[list[SlaItemResponse]]:
    now = now_utc()
    return Envelope(
        data=[item_to_sla_response(kind, item, now=now) for kind, item in rows],
        meta={"page": page, "perPage": per_page, "total": total},
    )


@router.get("/at-risk", response_model=Envelope[list[SlaItemResponse]])
def items_at_risk(
    page: int = Query(1, ge=1),
    per_page: int = Query(30, ge=1, le=200),
    current_user: User = Depends(PermissionChecker("canViewSla")),
    db: Session = Depends(get_db),
):
    """Items past the warning threshold that have not breached yet."""
    rows, total = get_items_at_risk(db=db, org_id=current_user.org_id, page=page, per_page=per_page)
    return _page(rows, total, page=page, per_page=per_page)


@router.get("/breached", response_model=Envelope[list[SlaItemResponse]])
def breached_items(
    page: int = Query(1, ge=1),
    per_page: int = Query(30, ge=1, le=200),
    current_user: User = Depends(PermissionChecker("canViewSla")),
    db: Session = Depends(get_db),
):
    rows, total = get_breached_items(db=db, org_id=current_user.org_id, page=page, per_page=per_page)
    return _page(rows, total, page=page, per_page=per_page)


@router.post("/monitor", response_model=Envelope[SlaMonitorResponse])
def run_monitor(
    current_user: User = Depends(PermissionChecker("canTriggerSlaMonitor")),
    db: Session = Depends(get_db),
):
    """Run the SLA sweep for the caller's organization now."""
    result = monitor_sla_status(db=db, org_id=current_user.org_id)
    return Envelope(
        data=SlaMonitorResponse(checked=result.checked, warned=result.warned, breached=result.breached)
    )
