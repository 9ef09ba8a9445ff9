"""Audit log endpoints."""
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth import PermissionChecker
from ..database import get_db
from ..models import AuditLog, User
from ..schemas import AuditLogResponse, Envelope

router = APIRouter(prefix="/audit-logs", tags=["audit"])


@router.get("", response_model=Envelope[list[AuditLogResponse]])
def get_audit_logs(
    entity_type: Optional[str] = None,
    entity_id: Optional[UUID] = None,
    limit: int = Query(200, ge=1, le=1000),
    current_user: User = Depends(PermissionChecker("canViewAudit")),
    db: Session = Depends(get_db),
):
    """Recent audit rows for the organization, optionally scoped to one entity."""
    query = db.query(AuditLog).filter(AuditLog.org_id == current_user.org_id)

    if entity_type:
        query = query.filter(AuditLog.entity_type == entity_type)
    if entity_id:
        query = query.filter(AuditLog.entity_id == entity_id)

    logs = (
        query.order_by(AuditLog.created_at.desc())
        .limit(limit)
        .all()
    )
    return Envelope(data=[AuditLogResponse.model_validate(log) for log in logs])
