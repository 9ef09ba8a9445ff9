"""RFQ item revision endpoints."""
from __future__ import annotations

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth import PermissionChecker
from ..database import get_db
from ..models import User
from ..schemas import (
    Envelope,
    RevisionApproveRequest,
    RevisionCheckResponse,
    RevisionCreateRequest,
    RevisionCreateResponse,
    RevisionDecisionResponse,
    RevisionRejectRequest,
    RevisionResponse,
)
from ..use_cases.revisions import (
    RevisionDecision,
    RevisionPolicy,
    approve_revision_use_case,
    check_revision_allowed_use_case,
    create_revision_use_case,
    get_pending_revisions_use_case,
    get_revision_history_use_case,
    reject_revision_use_case,
)

router = APIRouter(tags=["revisions"])


def _policy_response(policy: RevisionPolicy) -> RevisionCheckResponse:
    return RevisionCheckResponse(
        allowed=policy.allowed,
        strategy=policy.strategy.value,
        requires_approval=policy.requires_approval,
        approval_role=policy.approval_role.value if policy.approval_role else None,
        reason=policy.reason,
    )


def _decision_response(decision: RevisionDecision) -> RevisionDecisionResponse:
    return RevisionDecisionResponse(
        success=decision.success,
        message=decision.message,
        revision=RevisionResponse.model_validate(decision.revision) if decision.revision else None,
    )


@router.get("/rfq-items/{item_id}/revision/check", response_model=Envelope[RevisionCheckResponse])
def check_revision(
    item_id: UUID,
    current_user: User = Depends(PermissionChecker("canViewRevisions")),
    db: Session = Depends(get_db),
):
    """Report whether and how the RFQ item can be revised right now."""
    policy = check_revision_allowed_use_case(db=db, item_id=item_id, org_id=current_user.org_id)
    return Envelope(data=_policy_response(policy))


@router.post(
    "/rfq-items/{item_id}/revisions",
    response_model=Envelope[RevisionCreateResponse],
    status_code=201,
)
def create_revision(
    item_id: UUID,
    data: RevisionCreateRequest,
    current_user: User = Depends(PermissionChecker("canRequestRevisions")),
    db: Session = Depends(get_db),
):
    revision, policy = create_revision_use_case(
        db=db,
        item_id=item_id,
        changes=data.changes,
        reason=data.reason,
        current_user=current_user,
    )
    if policy.requires_approval:
        message = f"Revision {revision.revision_number} awaits {policy.approval_role.value} approval"
    else:
        message = f"Revision {revision.revision_number} applied"
    return Envelope(
        data=RevisionCreateResponse(
            allowed=True,
            revision=RevisionResponse.model_validate(revision),
            requires_approval=policy.requires_approval,
            message=message,
        )
    )


@router.get("/rfq-items/{item_id}/revisions", response_model=Envelope[list[RevisionResponse]])
def revision_history(
    item_id: UUID,
    current_user: User = Depends(PermissionChecker("canViewRevisions")),
    db: Session = Depends(get_db),
):
    revisions = get_revision_history_use_case(db=db, item_id=item_id, org_id=current_user.org_id)
    return Envelope(data=[RevisionResponse.model_validate(revision) for revision in revisions])


@router.get("/revisions/pending", response_model=Envelope[list[RevisionResponse]])
def pending_revisions(
    role: Optional[str] = Query(None),
    current_user: User = Depends(PermissionChecker("canViewRevisions")),
    db: Session = Depends(get_db),
):
    """Unapproved revisions, optionally only those the given role must decide."""
    revisions = get_pending_revisions_use_case(db=db, org_id=current_user.org_id, approver_role=role)
    return Envelope(data=[RevisionResponse.model_validate(revision) for revision in revisions])


@router.post("/revisions/{revision_id}/approve", response_model=Envelope[RevisionDecisionResponse])
def approve_revision(
    revision_id: UUID,
    data: RevisionApproveRequest | None = None,
    current_user: User = Depends(PermissionChecker("canDecideRevisions")),
    db: Session = Depends(get_db),
):
    decision = approve_revision_use_case(
        db=db,
        revision_id=revision_id,
        current_user=current_user,
        notes=data.notes if data else None,
    )
    return Envelope(data=_decision_response(decision))


@router.post("/revisions/{revision_id}/reject", response_model=Envelope[RevisionDecisionResponse])
def reject_revision(
    revision_id: UUID,
    data: RevisionRejectRequest | None = None,
    current_user: User = Depends(PermissionChecker("canDecideRevisions")),
    db: Session = Depends(get_db),
):
    decision = reject_revision_use_case(
        db=db,
        revision_id=revision_id,
        current_user=current_user,
        reason=data.reason if data else None,
    )
    return Envelope(data=_decision_response(decision))
