"""Revision governance for in-flight RFQ items."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import desc
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..domain_errors import DomainError, version_conflict
from ..models import AuditLog, RfqItem, RfqItemRevision, User
from ..schemas import RevisionChanges
from ..services.sla_rules import now_utc
from ..states import ItemKind, RfqItemState, Role, is_terminal_state, state_value
from .item_transitions import get_item_or_404

logger = logging.getLogger(__name__)

SNAPSHOT_FIELDS = ("product_id", "quantity", "unit_of_measure", "specifications", "target_price", "currency")

_OPEN_STATES = frozenset(
    {
        RfqItemState.DRAFT.value,
        RfqItemState.RFQ_SUBMITTED.value,
        RfqItemState.SALES_REVIEW.value,
        RfqItemState.TECH_REVIEW.value,
    }
)
_TECH_REVISION_STATES = frozenset(
    {
        RfqItemState.TECH_APPROVED.value,
        RfqItemState.COMPLIANCE_REVIEW.value,
        RfqItemState.STOCK_CHECK.value,
        RfqItemState.SOURCING_ACTIVE.value,
        RfqItemState.VENDOR_QUOTES_RECEIVED.value,
        RfqItemState.RATE_FINALIZED.value,
        RfqItemState.MARGIN_APPROVAL.value,
    }
)


class RevisionStrategy(str, Enum):
    DIRECT_OVERWRITE = "DIRECT_OVERWRITE"
    NEW_REVISION_TECH = "NEW_REVISION_TECH"
    NEW_REVISION_DIRECTOR = "NEW_REVISION_DIRECTOR"
    CUSTOMER_REACCEPT = "CUSTOMER_REACCEPT"
    NEW_RFQ = "NEW_RFQ"
    IMMUTABLE = "IMMUTABLE"


@dataclass(frozen=True)
class RevisionPolicy:
    allowed: bool
    strategy: RevisionStrategy
    requires_approval: bool
    approval_role: Role | None
    reason: str


@dataclass(frozen=True)
class RevisionDecision:
    success: bool
    message: str
    revision: RfqItemRevision | None = None


def evaluate_revision_policy(state: str | Enum, has_linked_order: bool) -> RevisionPolicy:
    """Decide how (and whether) an RFQ item in ``state`` may be revised."""
    state = state_value(state)
    if state in _OPEN_STATES:
        return RevisionPolicy(True, RevisionStrategy.DIRECT_OVERWRITE, False, None, "Item can be edited directly")
    if is_terminal_state(ItemKind.RFQ_ITEM, state):
        return RevisionPolicy(False, RevisionStrategy.IMMUTABLE, False, None, "Closed items cannot be revised")
    if has_linked_order:
        return RevisionPolicy(
            False, RevisionStrategy.NEW_RFQ, False, None, "Item is linked to an order; raise a new RFQ instead"
        )
    if state == RfqItemState.QUOTE_SENT.value:
        return RevisionPolicy(
            True, RevisionStrategy.CUSTOMER_REACCEPT, True, Role.CUSTOMER,
            "Quote already sent; the customer must re-accept the revision",
        )
    if state == RfqItemState.PRICE_FROZEN.value:
        return RevisionPolicy(
            True, RevisionStrategy.NEW_REVISION_DIRECTOR, True, Role.DIRECTOR,
            "Price is frozen; director approval required",
        )
    if state in _TECH_REVISION_STATES:
        return RevisionPolicy(
            True, RevisionStrategy.NEW_REVISION_TECH, True, Role.TECH_LEAD,
            "Technical approval given; tech lead must approve the revision",
        )
    return RevisionPolicy(False, RevisionStrategy.IMMUTABLE, False, None, f"Items in {state} cannot be revised")


def _policy_for(item: RfqItem) -> RevisionPolicy:
    return evaluate_revision_policy(item.state, item.order_item_id is not None)


def _not_allowed(policy: RevisionPolicy) -> DomainError:
    return DomainError(
        code="REVISION_NOT_ALLOWED",
        http_status=400,
        message=policy.reason,
        details={"allowed": False, "strategy": policy.strategy.value},
    )


def _snapshot(source: Any) -> dict[str, Any]:
    return {name: getattr(source, name) for name in SNAPSHOT_FIELDS}


def _jsonable(values: dict[str, Any]) -> dict[str, Any]:
    # UUID and Decimal go into JSONB as strings.
    plain = (bool, int, float, str, dict, list)
    return {key: value if value is None or isinstance(value, plain) else str(value) for key, value in values.items()}


def _merge_onto_item(item: RfqItem, revision: RfqItemRevision, actor: User) -> int:
    loaded_version = item.version
    for name in SNAPSHOT_FIELDS:
        setattr(item, name, getattr(revision, name))
    item.updated_by = actor.id
    item.version = loaded_version + 1
    return loaded_version


def _commit_item(db: Session, item: RfqItem, loaded_version: int | None) -> None:
    try:
        db.commit()
    except StaleDataError as exc:
        db.rollback()
        raise version_conflict(entity=ItemKind.RFQ_ITEM.value, entity_id=item.id, expected=loaded_version) from exc
    except IntegrityError as exc:
        # uq_rfq_item_revision_number: a concurrent request took the same revision number.
        db.rollback()
        raise version_conflict(entity=ItemKind.RFQ_ITEM.value, entity_id=item.id, expected=loaded_version) from exc


def check_revision_allowed_use_case(*, db: Session, item_id: UUID, org_id: UUID) -> RevisionPolicy:
    item = get_item_or_404(db=db, kind=ItemKind.RFQ_ITEM, item_id=item_id, org_id=org_id)
    return _policy_for(item)


def create_revision_use_case(
    *,
    db: Session,
    item_id: UUID,
    changes: RevisionChanges,
    reason: str | None,
    current_user: User,
) -> tuple[RfqItemRevision, RevisionPolicy]:
    """Record a revision of an RFQ item.

    Revisions that need no approval are applied to the item straight away.
    """
    reason = (reason or "").strip()
    if not reason:
        raise DomainError(
            code="REVISION_REASON_REQUIRED",
            http_status=400,
            message="A revision reason is required",
        )

    item = get_item_or_404(db=db, kind=ItemKind.RFQ_ITEM, item_id=item_id, org_id=current_user.org_id)
    policy = _policy_for(item)
    if not policy.allowed:
        raise _not_allowed(policy)

    latest = (
        db.query(RfqItemRevision)
        .filter(RfqItemRevision.rfq_item_id == item.id)
        .order_by(desc(RfqItemRevision.revision_number))
        .first()
    )
    revision_number = (latest.revision_number if latest else 0) + 1

    snapshot = _snapshot(item)
    snapshot.update(changes.model_dump(exclude_unset=True))
    revision = RfqItemRevision(
        id=uuid4(),
        org_id=item.org_id,
        rfq_item_id=item.id,
        revision_number=revision_number,
        revision_reason=reason,
        revision_strategy=policy.strategy.value,
        approval_role=policy.approval_role.value if policy.approval_role else None,
        version=1,
        created_by=current_user.id,
        **snapshot,
    )
    db.add(revision)

    loaded_version = None
    if not policy.requires_approval:
        revision.approved_by = current_user.id
        revision.approved_at = now_utc()
        loaded_version = _merge_onto_item(item, revision, current_user)

    db.add(
        AuditLog(
            id=uuid4(),
            org_id=item.org_id,
            entity_type="rfq_item_revision",
            entity_id=revision.id,
            action="REVISION_CREATED",
            user_id=current_user.id,
            old_values=None,
            new_values={
                "rfqItemId": str(item.id),
                "revisionNumber": revision_number,
                "strategy": policy.strategy.value,
                "approvalRole": revision.approval_role,
                "autoApproved": not policy.requires_approval,
                "snapshot": _jsonable(snapshot),
            },
            reason=reason,
        )
    )
    _commit_item(db, item, loaded_version)
    return revision, policy


def _get_revision_or_404(*, db: Session, revision_id: UUID, org_id: UUID) -> RfqItemRevision:
    revision = (
        db.query(RfqItemRevision)
        .filter(
            RfqItemRevision.id == revision_id,
            RfqItemRevision.org_id == org_id,
            RfqItemRevision.is_deleted.is_(False),
        )
        .first()
    )
    if not revision:
        raise DomainError(code="REVISION_NOT_FOUND", http_status=404, message="Revision not found")
    return revision


def _authorize_decision(item: RfqItem, current_user: User) -> RevisionPolicy:
    policy = _policy_for(item)
    if not policy.allowed:
        raise _not_allowed(policy)
    if policy.requires_approval and current_user.role != policy.approval_role.value:
        raise DomainError(
            code="UNAUTHORIZED",
            http_status=403,
            message=f"Only {policy.approval_role.value} can decide this revision",
        )
    return policy


def approve_revision_use_case(
    *,
    db: Session,
    revision_id: UUID,
    current_user: User,
    notes: str | None = None,
) -> RevisionDecision:
    revision = _get_revision_or_404(db=db, revision_id=revision_id, org_id=current_user.org_id)
    if revision.approved_at is not None:
        return RevisionDecision(success=False, message="Revision already approved", revision=revision)

    item = get_item_or_404(db=db, kind=ItemKind.RFQ_ITEM, item_id=revision.rfq_item_id, org_id=current_user.org_id)
    policy = _authorize_decision(item, current_user)

    old_item = _jsonable(_snapshot(item))
    revision.approved_by = current_user.id
    revision.approved_at = now_utc()
    revision.version = (revision.version or 1) + 1
    revision.updated_by = current_user.id
    loaded_version = _merge_onto_item(item, revision, current_user)

    db.add(
        AuditLog(
            id=uuid4(),
            org_id=item.org_id,
            entity_type="rfq_item_revision",
            entity_id=revision.id,
            action="REVISION_APPROVED",
            user_id=current_user.id,
            old_values={"item": old_item, "itemVersion": loaded_version},
            new_values={
                "item": _jsonable(_snapshot(item)),
                "itemVersion": item.version,
                "strategy": policy.strategy.value,
            },
            notes=notes,
        )
    )
    _commit_item(db, item, loaded_version)
    logger.info("Revision %s of RFQ item %s approved by %s", revision.revision_number, item.id, current_user.id)
    return RevisionDecision(success=True, message="Revision approved and applied", revision=revision)


def reject_revision_use_case(
    *,
    db: Session,
    revision_id: UUID,
    current_user: User,
    reason: str | None = None,
) -> RevisionDecision:
    revision = _get_revision_or_404(db=db, revision_id=revision_id, org_id=current_user.org_id)
    if revision.approved_at is not None:
        return RevisionDecision(success=False, message="Revision already approved", revision=revision)

    item = get_item_or_404(db=db, kind=ItemKind.RFQ_ITEM, item_id=revision.rfq_item_id, org_id=current_user.org_id)
    _authorize_decision(item, current_user)

    revision.is_deleted = True
    revision.deleted_at = now_utc()
    revision.deleted_by = current_user.id
    revision.deletion_reason = reason
    db.add(
        AuditLog(
            id=uuid4(),
            org_id=item.org_id,
            entity_type="rfq_item_revision",
            entity_id=revision.id,
            action="REVISION_REJECTED",
            user_id=current_user.id,
            old_values={"isDeleted": False},
            new_values={"isDeleted": True, "rfqItemId": str(item.id)},
            reason=reason,
        )
    )
    db.commit()
    return RevisionDecision(success=True, message="Revision rejected", revision=revision)


def get_revision_history_use_case(*, db: Session, item_id: UUID, org_id: UUID) -> list[RfqItemRevision]:
    get_item_or_404(db=db, kind=ItemKind.RFQ_ITEM, item_id=item_id, org_id=org_id)
    return (
        db.query(RfqItemRevision)
        .filter(RfqItemRevision.rfq_item_id == item_id, RfqItemRevision.is_deleted.is_(False))
        .order_by(desc(RfqItemRevision.revision_number))
        .all()
    )


def get_pending_revisions_use_case(
    *, db: Session, org_id: UUID, approver_role: str | None = None
) -> list[RfqItemRevision]:
    rows = (
        db.query(RfqItemRevision, RfqItem)
        .join(RfqItem, RfqItem.id == RfqItemRevision.rfq_item_id)
        .filter(
            RfqItemRevision.org_id == org_id,
            RfqItemRevision.is_deleted.is_(False),
            RfqItemRevision.approved_at.is_(None),
            RfqItem.is_deleted.is_(False),
        )
        .order_by(RfqItemRevision.created_at.asc())
        .all()
    )
    if approver_role is None:
        return [revision for revision, _ in rows]

    pending = []
    for revision, item in rows:
        # The item may have moved since the revision was filed.
        policy = _policy_for(item)
        if policy.approval_role is not None and policy.approval_role.value == approver_role:
            pending.append(revision)
    return pending
