"""SQLAlchemy models for the trade lifecycle engine."""
from sqlalchemy import (
    Boolean, Column, String, Integer, Numeric, DateTime, Text,
    ForeignKey, CheckConstraint, Index, UniqueConstraint
)
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid
from .database import Base
from .states import ItemKind, OrderItemState, RfqItemState, Role


ROLE_VALUES = [role.value for role in Role]
RFQ_ITEM_STATE_VALUES = [state.value for state in RfqItemState]
ORDER_ITEM_STATE_VALUES = [state.value for state in OrderItemState]

AUDIT_ACTIONS = [
    'STATE_TRANSITION',
    'REVISION_CREATED', 'REVISION_APPROVED', 'REVISION_REJECTED',
    'SLA_WARNING', 'SLA_BREACHED',
]
AUDIT_ENTITY_TYPES = ['rfq_item', 'order_item', 'rfq_item_revision']


class Organization(Base):
    """Organization model (multi-tenant support)."""
    __tablename__ = "organizations"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    code = Column(String(50), unique=True, nullable=False, index=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    users = relationship("User", back_populates="organization")


class User(Base):
    """User model."""
    __tablename__ = "users"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id = Column(UUID(as_uuid=True), ForeignKey("organizations.id"), index=True)
    username = Column(String(100), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    name = Column(String(255), nullable=False)
    role = Column(String(50), nullable=False, index=True)
    email = Column(String(255), nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(role.in_(ROLE_VALUES), name='chk_user_role'),
    )

    organization = relationship("Organization", back_populates="users")


class Rfq(Base):
    """RFQ header. Carries no workflow state of its own."""
    __tablename__ = "rfqs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id = Column(UUID(as_uuid=True), ForeignKey("organizations.id"), index=True, nullable=False)
    rfq_number = Column(String(50), nullable=False)
    customer_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    legal_entity_id = Column(UUID(as_uuid=True), nullable=False)
    customer_reference = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)
    is_deleted = Column(Boolean, default=False, nullable=False)
    created_by = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint('org_id', 'rfq_number', name='uq_rfq_org_number'),
    )

    items = relationship("RfqItem", back_populates="rfq")


class Order(Base):
    """Order header. Carries no workflow state of its own."""
    __tablename__ = "orders"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id = Column(UUID(as_uuid=True), ForeignKey("organizations.id"), index=True, nullable=False)
    order_number = Column(String(50), nullable=False)
    rfq_id = Column(UUID(as_uuid=True), ForeignKey("rfqs.id"), nullable=True, index=True)
    customer_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    legal_entity_id = Column(UUID(as_uuid=True), nullable=False)
    customer_po_number = Column(String(100), nullable=True)
    is_deleted = Column(Boolean, default=False, nullable=False)
    created_by = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint('org_id', 'order_number', name='uq_order_org_number'),
    )

    items = relationship("OrderItem", back_populates="order")


class RfqItem(Base):
    """RFQ line item moving through the RFQ lifecycle."""
    __tablename__ = "rfq_items"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id = Column(UUID(as_uuid=True), ForeignKey("organizations.id"), index=True, nullable=False)
    rfq_id = Column(UUID(as_uuid=True), ForeignKey("rfqs.id"), index=True, nullable=False)
    item_number = Column(Integer, nullable=False)
    product_id = Column(UUID(as_uuid=True), nullable=True)
    product_name = Column(String(255), nullable=True)
    specifications = Column(JSONB, nullable=True)

    quantity = Column(Numeric(15, 3), nullable=True)
    unit_of_measure = Column(String(20), nullable=True)
    target_price = Column(Numeric(15, 2), nullable=True)
    vendor_price = Column(Numeric(15, 2), nullable=True)
    selling_price = Column(Numeric(15, 2), nullable=True)
    currency = Column(String(3), nullable=True)
    margin_pct = Column(Numeric(7, 2), nullable=True)
    commercial_terms_id = Column(UUID(as_uuid=True), nullable=True)
    selected_vendor_quote_id = Column(UUID(as_uuid=True), nullable=True)
    cost_breakdown_id = Column(UUID(as_uuid=True), nullable=True)
    compliance_data_id = Column(UUID(as_uuid=True), nullable=True)
    quote_pdf_url = Column(Text, nullable=True)
    commercial_terms_frozen = Column(Boolean, default=False, nullable=False)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    order_id = Column(UUID(as_uuid=True), ForeignKey("orders.id"), nullable=True)
    order_item_id = Column(UUID(as_uuid=True), nullable=True)

    # Lifecycle (owned by the transition engine)
    state = Column(String(40), nullable=False, default=RfqItemState.DRAFT.value, index=True)
    state_entered_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    version = Column(Integer, nullable=False, default=1)
    owner_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True, index=True)

    # SLA (owned by the SLA monitor)
    sla_due_at = Column(DateTime(timezone=True), nullable=True, index=True)
    sla_warning = Column(Boolean, default=False, nullable=False)
    sla_breached = Column(Boolean, default=False, nullable=False)
    at_risk_reason = Column(Text, nullable=True)

    is_deleted = Column(Boolean, default=False, nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    deleted_by = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    deletion_reason = Column(Text, nullable=True)
    created_by = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_by = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Manual counter: writers set version = old + 1, the ORM guards the UPDATE on the old value.
    __mapper_args__ = {"version_id_col": version, "version_id_generator": False}

    __table_args__ = (
        CheckConstraint(state.in_(RFQ_ITEM_STATE_VALUES), name='chk_rfq_item_state'),
        CheckConstraint(version >= 1, name='chk_rfq_item_version_positive'),
        UniqueConstraint('rfq_id', 'item_number', name='uq_rfq_item_number'),
        Index('idx_rfq_items_sla_scan', 'org_id', 'is_deleted', 'sla_due_at'),
    )

    rfq = relationship("Rfq", back_populates="items")
    revisions = relationship("RfqItemRevision", back_populates="rfq_item")

    @property
    def customer_id(self):
        return self.rfq.customer_id if self.rfq is not None else None

    @property
    def legal_entity_id(self):
        return self.rfq.legal_entity_id if self.rfq is not None else None


class OrderItem(Base):
    """Order line item moving through the fulfilment lifecycle."""
    __tablename__ = "order_items"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id = Column(UUID(as_uuid=True), ForeignKey("organizations.id"), index=True, nullable=False)
    order_id = Column(UUID(as_uuid=True), ForeignKey("orders.id"), index=True, nullable=False)
    item_number = Column(Integer, nullable=False)
    rfq_item_id = Column(UUID(as_uuid=True), ForeignKey("rfq_items.id"), nullable=True)
    rfq_item_revision_id = Column(UUID(as_uuid=True), ForeignKey("rfq_item_revisions.id"), nullable=True)
    product_id = Column(UUID(as_uuid=True), nullable=True)
    product_name = Column(String(255), nullable=True)
    specifications = Column(JSONB, nullable=True)

    ordered_quantity = Column(Numeric(15, 3), nullable=True)
    unit_of_measure = Column(String(20), nullable=True)
    unit_price = Column(Numeric(15, 2), nullable=True)
    currency = Column(String(3), nullable=True)
    total_amount = Column(Numeric(15, 2), nullable=True)
    paid_amount = Column(Numeric(15, 2), default=0, nullable=False)
    purchase_order_id = Column(UUID(as_uuid=True), nullable=True)
    vendor_id = Column(UUID(as_uuid=True), nullable=True)

    state = Column(String(40), nullable=False, default=OrderItemState.PR_CREATED.value, index=True)
    state_entered_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    version = Column(Integer, nullable=False, default=1)
    owner_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True, index=True)

    sla_due_at = Column(DateTime(timezone=True), nullable=True, index=True)
    sla_warning = Column(Boolean, default=False, nullable=False)
    sla_breached = Column(Boolean, default=False, nullable=False)
    at_risk_reason = Column(Text, nullable=True)

    is_deleted = Column(Boolean, default=False, nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    deleted_by = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    deletion_reason = Column(Text, nullable=True)
    created_by = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_by = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __mapper_args__ = {"version_id_col": version, "version_id_generator": False}

    __table_args__ = (
        CheckConstraint(state.in_(ORDER_ITEM_STATE_VALUES), name='chk_order_item_state'),
        CheckConstraint(version >= 1, name='chk_order_item_version_positive'),
        CheckConstraint(paid_amount >= 0, name='chk_order_item_paid_non_negative'),
        UniqueConstraint('order_id', 'item_number', name='uq_order_item_number'),
        Index('idx_order_items_sla_scan', 'org_id', 'is_deleted', 'sla_due_at'),
    )

    order = relationship("Order", back_populates="items")

    @property
    def customer_id(self):
        return self.order.customer_id if self.order is not None else None

    @property
    def legal_entity_id(self):
        return self.order.legal_entity_id if self.order is not None else None


class RfqItemRevision(Base):
    """Snapshot of a proposed change to an in-flight RFQ item."""
    __tablename__ = "rfq_item_revisions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id = Column(UUID(as_uuid=True), ForeignKey("organizations.id"), index=True, nullable=False)
    rfq_item_id = Column(UUID(as_uuid=True), ForeignKey("rfq_items.id"), index=True, nullable=False)
    revision_number = Column(Integer, nullable=False)

    product_id = Column(UUID(as_uuid=True), nullable=True)
    quantity = Column(Numeric(15, 3), nullable=True)
    unit_of_measure = Column(String(20), nullable=True)
    specifications = Column(JSONB, nullable=True)
    target_price = Column(Numeric(15, 2), nullable=True)
    currency = Column(String(3), nullable=True)

    revision_reason = Column(Text, nullable=False)
    revision_strategy = Column(String(40), nullable=False)
    approval_role = Column(String(50), nullable=True)
    approved_by = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    version = Column(Integer, nullable=False, default=1)

    is_deleted = Column(Boolean, default=False, nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    deleted_by = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    deletion_reason = Column(Text, nullable=True)
    created_by = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_by = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint('rfq_item_id', 'revision_number', name='uq_rfq_item_revision_number'),
        CheckConstraint(revision_number >= 1, name='chk_revision_number_positive'),
    )

    rfq_item = relationship("RfqItem", back_populates="revisions")


class AuditLog(Base):
    """Append-only audit trail. One row per mutating engine operation."""
    __tablename__ = "audit_logs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id = Column(UUID(as_uuid=True), ForeignKey("organizations.id"), index=True)
    entity_type = Column(String(30), nullable=False)
    entity_id = Column(UUID(as_uuid=True), nullable=False)
    action = Column(String(40), nullable=False, index=True)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True, index=True)
    old_values = Column(JSONB, nullable=True)
    new_values = Column(JSONB, nullable=True)
    reason = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(512), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    __table_args__ = (
        CheckConstraint(action.in_(AUDIT_ACTIONS), name='chk_audit_action'),
        CheckConstraint(entity_type.in_(AUDIT_ENTITY_TYPES), name='chk_audit_entity_type'),
        Index('idx_audit_logs_entity', 'entity_type', 'entity_id'),
    )


class NotificationOutbox(Base):
    """
    Notification outbox - one row per (notification, target role).
    Supports concurrent processing with SELECT FOR UPDATE SKIP LOCKED.
    """
    __tablename__ = "notification_outbox"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id = Column(UUID(as_uuid=True), ForeignKey("organizations.id"), index=True)
    type = Column(String(50), nullable=False)
    priority = Column(String(20), nullable=False, default='normal')
    entity_type = Column(String(30), nullable=False)
    entity_id = Column(UUID(as_uuid=True), nullable=False)
    target_role = Column(String(50), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    meta_data = Column(JSONB, default={})  # 'metadata' is reserved by SQLAlchemy

    status = Column(String(20), default='pending', index=True)  # pending/sent/failed/skipped
    attempts = Column(Integer, default=0)
    next_retry_at = Column(DateTime(timezone=True), nullable=True, index=True)
    last_error = Column(Text, nullable=True)

    # Format: type:entity_id:role:state_entered_at
    idempotency_key = Column(String(255), unique=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    failed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint(
            type.in_(['state_transition', 'sla_warning', 'sla_breach', 'sla_escalation']),
            name='chk_notification_type'
        ),
        CheckConstraint(
            status.in_(['pending', 'sent', 'failed', 'skipped']),
            name='chk_notification_status'
        ),
        Index('idx_notification_outbox_pending', 'status', 'next_retry_at'),
    )


class RelatedRecordRequest(Base):
    """Durable request for a downstream record (order, PO, lots, RMA, Tally sync...)."""
    __tablename__ = "related_record_requests"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id = Column(UUID(as_uuid=True), ForeignKey("organizations.id"), index=True)
    entity = Column(String(50), nullable=False, index=True)
    source_entity_type = Column(String(30), nullable=False)
    source_entity_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    source_state = Column(String(40), nullable=False)
    params = Column(JSONB, default={})
    status = Column(String(20), default='pending', nullable=False, index=True)
    requested_by = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint(
            status.in_(['pending', 'processing', 'done', 'failed']),
            name='chk_related_record_status'
        ),
    )


WORKFLOW_ITEM_MODELS = {
    ItemKind.RFQ_ITEM: RfqItem,
    ItemKind.ORDER_ITEM: OrderItem,
}

WORKFLOW_HEADER_COLUMNS = {
    ItemKind.RFQ_ITEM: RfqItem.rfq_id,
    ItemKind.ORDER_ITEM: OrderItem.order_id,
}
