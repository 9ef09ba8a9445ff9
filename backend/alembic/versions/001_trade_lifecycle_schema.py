"""trade lifecycle schema

Revision ID: 001_trade_lifecycle_schema
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "001_trade_lifecycle_schema"
down_revision = None
branch_labels = None
depends_on = None

ROLES = (
    "SALES_EXECUTIVE", "SALES_MANAGER", "TECH_ENGINEER", "TECH_LEAD", "COMPLIANCE_OFFICER",
    "COMPLIANCE_MANAGER", "WAREHOUSE_EXECUTIVE", "WAREHOUSE_MANAGER", "SOURCING_ENGINEER",
    "PURCHASE_ENGINEER", "PURCHASE_MANAGER", "FINANCE_EXECUTIVE", "FINANCE_OFFICER", "FINANCE_MANAGER",
    "QC_ENGINEER", "QC_MANAGER", "LOGISTICS_EXECUTIVE", "LOGISTICS_MANAGER", "DIRECTOR", "MD",
    "ADMIN", "SUPER_ADMIN", "CUSTOMER", "VENDOR", "SYSTEM",
)
RFQ_ITEM_STATES = (
    "DRAFT", "RFQ_SUBMITTED", "SALES_REVIEW", "TECH_REVIEW", "TECH_APPROVED", "COMPLIANCE_REVIEW",
    "STOCK_CHECK", "SOURCING_ACTIVE", "VENDOR_QUOTES_RECEIVED", "RATE_FINALIZED", "MARGIN_APPROVAL",
    "PRICE_FROZEN", "QUOTE_SENT", "CUSTOMER_ACCEPTED", "CUSTOMER_REJECTED", "RFQ_CLOSED", "FORCE_CLOSED",
)
ORDER_ITEM_STATES = (
    "PR_CREATED", "PR_ACKNOWLEDGED", "CREDIT_CHECK", "CREDIT_HOLD", "PO_RELEASED", "VENDOR_CONFIRMED",
    "IN_PRODUCTION", "GOODS_RECEIVED", "QC_APPROVED", "QC_REJECTED", "READY_TO_DISPATCH", "DISPATCHED",
    "DELIVERED", "INVOICED", "PAYMENT_PARTIAL", "PAYMENT_CLOSED", "CANCELLED", "CLOSED", "FORCE_CLOSED",
)
AUDIT_ACTIONS = (
    "STATE_TRANSITION", "REVISION_CREATED", "REVISION_APPROVED", "REVISION_REJECTED",
    "SLA_WARNING", "SLA_BREACHED",
)


def _in(column: str, values) -> str:
    return f"{column} IN ({', '.join(repr(value) for value in values)})"


def _uuid(name: str, *args, **kwargs) -> sa.Column:
    return sa.Column(name, postgresql.UUID(as_uuid=True), *args, **kwargs)


def _ts(name: str, **kwargs) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), **kwargs)


def _user_fk(name: str) -> sa.Column:
    return _uuid(name, sa.ForeignKey("users.id"), nullable=True)


def _lifecycle_columns(default_state: str) -> list[sa.Column]:
    return [
        sa.Column("state", sa.String(40), nullable=False, server_default=default_state),
        _ts("state_entered_at", server_default=sa.func.now(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        _uuid("owner_id", sa.ForeignKey("users.id"), nullable=True),
        _ts("sla_due_at", nullable=True),
        sa.Column("sla_warning", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("sla_breached", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("at_risk_reason", sa.Text(), nullable=True),
    ]


def _soft_delete_columns() -> list[sa.Column]:
    return [
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        _ts("deleted_at", nullable=True),
        _user_fk("deleted_by"),
        sa.Column("deletion_reason", sa.Text(), nullable=True),
        _user_fk("created_by"),
        _ts("created_at", server_default=sa.func.now()),
        _user_fk("updated_by"),
        _ts("updated_at", server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.create_table(
        "organizations",
        _uuid("id", primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("code", sa.String(50), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
        _ts("created_at", server_default=sa.func.now()),
        _ts("updated_at", server_default=sa.func.now()),
    )
    op.create_index("ix_organizations_code", "organizations", ["code"], unique=True)

    op.create_table(
        "users",
        _uuid("id", primary_key=True),
        _uuid("org_id", sa.ForeignKey("organizations.id")),
        sa.Column("username", sa.String(100), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("role", sa.String(50), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
        _ts("created_at", server_default=sa.func.now()),
        _ts("updated_at", server_default=sa.func.now()),
        sa.CheckConstraint(_in("role", ROLES), name="chk_user_role"),
    )
    op.create_index("ix_users_username", "users", ["username"], unique=True)
    op.create_index("ix_users_org_id", "users", ["org_id"])
    op.create_index("ix_users_role", "users", ["role"])

    op.create_table(
        "rfqs",
        _uuid("id", primary_key=True),
        _uuid("org_id", sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("rfq_number", sa.String(50), nullable=False),
        _uuid("customer_id", nullable=False),
        _uuid("legal_entity_id", nullable=False),
        sa.Column("customer_reference", sa.String(100), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        _user_fk("created_by"),
        _ts("created_at", server_default=sa.func.now()),
        _ts("updated_at", server_default=sa.func.now()),
        sa.UniqueConstraint("org_id", "rfq_number", name="uq_rfq_org_number"),
    )
    op.create_index("ix_rfqs_org_id", "rfqs", ["org_id"])
    op.create_index("ix_rfqs_customer_id", "rfqs", ["customer_id"])

    op.create_table(
        "orders",
        _uuid("id", primary_key=True),
        _uuid("org_id", sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("order_number", sa.String(50), nullable=False),
        _uuid("rfq_id", sa.ForeignKey("rfqs.id"), nullable=True),
        _uuid("customer_id", nullable=False),
        _uuid("legal_entity_id", nullable=False),
        sa.Column("customer_po_number", sa.String(100), nullable=True),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        _user_fk("created_by"),
        _ts("created_at", server_default=sa.func.now()),
        _ts("updated_at", server_default=sa.func.now()),
        sa.UniqueConstraint("org_id", "order_number", name="uq_order_org_number"),
    )
    op.create_index("ix_orders_org_id", "orders", ["org_id"])
    op.create_index("ix_orders_rfq_id", "orders", ["rfq_id"])
    op.create_index("ix_orders_customer_id", "orders", ["customer_id"])

    op.create_table(
        "rfq_items",
        _uuid("id", primary_key=True),
        _uuid("org_id", sa.ForeignKey("organizations.id"), nullable=False),
        _uuid("rfq_id", sa.ForeignKey("rfqs.id"), nullable=False),
        sa.Column("item_number", sa.Integer(), nullable=False),
        _uuid("product_id", nullable=True),
        sa.Column("product_name", sa.String(255), nullable=True),
        sa.Column("specifications", postgresql.JSONB(), nullable=True),
        sa.Column("quantity", sa.Numeric(15, 3), nullable=True),
        sa.Column("unit_of_measure", sa.String(20), nullable=True),
        sa.Column("target_price", sa.Numeric(15, 2), nullable=True),
        sa.Column("vendor_price", sa.Numeric(15, 2), nullable=True),
        sa.Column("selling_price", sa.Numeric(15, 2), nullable=True),
        sa.Column("currency", sa.String(3), nullable=True),
        sa.Column("margin_pct", sa.Numeric(7, 2), nullable=True),
        _uuid("commercial_terms_id", nullable=True),
        _uuid("selected_vendor_quote_id", nullable=True),
        _uuid("cost_breakdown_id", nullable=True),
        _uuid("compliance_data_id", nullable=True),
        sa.Column("quote_pdf_url", sa.Text(), nullable=True),
        sa.Column("commercial_terms_frozen", sa.Boolean(), nullable=False, server_default=sa.false()),
        _ts("sent_at", nullable=True),
        _uuid("order_id", sa.ForeignKey("orders.id"), nullable=True),
        _uuid("order_item_id", nullable=True),
        *_lifecycle_columns("DRAFT"),
        *_soft_delete_columns(),
        sa.CheckConstraint(_in("state", RFQ_ITEM_STATES), name="chk_rfq_item_state"),
        sa.CheckConstraint("version >= 1", name="chk_rfq_item_version_positive"),
        sa.UniqueConstraint("rfq_id", "item_number", name="uq_rfq_item_number"),
    )
    op.create_index("ix_rfq_items_org_id", "rfq_items", ["org_id"])
    op.create_index("ix_rfq_items_rfq_id", "rfq_items", ["rfq_id"])
    op.create_index("ix_rfq_items_state", "rfq_items", ["state"])
    op.create_index("ix_rfq_items_owner_id", "rfq_items", ["owner_id"])
    op.create_index("ix_rfq_items_sla_due_at", "rfq_items", ["sla_due_at"])
    op.create_index("idx_rfq_items_sla_scan", "rfq_items", ["org_id", "is_deleted", "sla_due_at"])

    op.create_table(
        "rfq_item_revisions",
        _uuid("id", primary_key=True),
        _uuid("org_id", sa.ForeignKey("organizations.id"), nullable=False),
        _uuid("rfq_item_id", sa.ForeignKey("rfq_items.id"), nullable=False),
        sa.Column("revision_number", sa.Integer(), nullable=False),
        _uuid("product_id", nullable=True),
        sa.Column("quantity", sa.Numeric(15, 3), nullable=True),
        sa.Column("unit_of_measure", sa.String(20), nullable=True),
        sa.Column("specifications", postgresql.JSONB(), nullable=True),
        sa.Column("target_price", sa.Numeric(15, 2), nullable=True),
        sa.Column("currency", sa.String(3), nullable=True),
        sa.Column("revision_reason", sa.Text(), nullable=False),
        sa.Column("revision_strategy", sa.String(40), nullable=False),
        sa.Column("approval_role", sa.String(50), nullable=True),
        _user_fk("approved_by"),
        _ts("approved_at", nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        *_soft_delete_columns(),
        sa.UniqueConstraint("rfq_item_id", "revision_number", name="uq_rfq_item_revision_number"),
        sa.CheckConstraint("revision_number >= 1", name="chk_revision_number_positive"),
    )
    op.create_index("ix_rfq_item_revisions_org_id", "rfq_item_revisions", ["org_id"])
    op.create_index("ix_rfq_item_revisions_rfq_item_id", "rfq_item_revisions", ["rfq_item_id"])
    op.create_index("ix_rfq_item_revisions_created_at", "rfq_item_revisions", ["created_at"])

    op.create_table(
        "order_items",
        _uuid("id", primary_key=True),
        _uuid("org_id", sa.ForeignKey("organizations.id"), nullable=False),
        _uuid("order_id", sa.ForeignKey("orders.id"), nullable=False),
        sa.Column("item_number", sa.Integer(), nullable=False),
        _uuid("rfq_item_id", sa.ForeignKey("rfq_items.id"), nullable=True),
        _uuid("rfq_item_revision_id", sa.ForeignKey("rfq_item_revisions.id"), nullable=True),
        _uuid("product_id", nullable=True),
        sa.Column("product_name", sa.String(255), nullable=True),
        sa.Column("specifications", postgresql.JSONB(), nullable=True),
        sa.Column("ordered_quantity", sa.Numeric(15, 3), nullable=True),
        sa.Column("unit_of_measure", sa.String(20), nullable=True),
        sa.Column("unit_price", sa.Numeric(15, 2), nullable=True),
        sa.Column("currency", sa.String(3), nullable=True),
        sa.Column("total_amount", sa.Numeric(15, 2), nullable=True),
        sa.Column("paid_amount", sa.Numeric(15, 2), nullable=False, server_default="0"),
        _uuid("purchase_order_id", nullable=True),
        _uuid("vendor_id", nullable=True),
        *_lifecycle_columns("PR_CREATED"),
        *_soft_delete_columns(),
        sa.CheckConstraint(_in("state", ORDER_ITEM_STATES), name="chk_order_item_state"),
        sa.CheckConstraint("version >= 1", name="chk_order_item_version_positive"),
        sa.CheckConstraint("paid_amount >= 0", name="chk_order_item_paid_non_negative"),
        sa.UniqueConstraint("order_id", "item_number", name="uq_order_item_number"),
    )
    op.create_index("ix_order_items_org_id", "order_items", ["org_id"])
    op.create_index("ix_order_items_order_id", "order_items", ["order_id"])
    op.create_index("ix_order_items_state", "order_items", ["state"])
    op.create_index("ix_order_items_owner_id", "order_items", ["owner_id"])
    op.create_index("ix_order_items_sla_due_at", "order_items", ["sla_due_at"])
    op.create_index("idx_order_items_sla_scan", "order_items", ["org_id", "is_deleted", "sla_due_at"])

    op.create_table(
        "audit_logs",
        _uuid("id", primary_key=True),
        _uuid("org_id", sa.ForeignKey("organizations.id")),
        sa.Column("entity_type", sa.String(30), nullable=False),
        _uuid("entity_id", nullable=False),
        sa.Column("action", sa.String(40), nullable=False),
        _user_fk("user_id"),
        sa.Column("old_values", postgresql.JSONB(), nullable=True),
        sa.Column("new_values", postgresql.JSONB(), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.String(512), nullable=True),
        _ts("created_at", server_default=sa.func.now()),
        sa.CheckConstraint(_in("action", AUDIT_ACTIONS), name="chk_audit_action"),
        sa.CheckConstraint(
            _in("entity_type", ("rfq_item", "order_item", "rfq_item_revision")),
            name="chk_audit_entity_type",
        ),
    )
    op.create_index("ix_audit_logs_org_id", "audit_logs", ["org_id"])
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])
    op.create_index("ix_audit_logs_user_id", "audit_logs", ["user_id"])
    op.create_index("ix_audit_logs_created_at", "audit_logs", ["created_at"])
    op.create_index("idx_audit_logs_entity", "audit_logs", ["entity_type", "entity_id"])

    op.create_table(
        "notification_outbox",
        _uuid("id", primary_key=True),
        _uuid("org_id", sa.ForeignKey("organizations.id")),
        sa.Column("type", sa.String(50), nullable=False),
        sa.Column("priority", sa.String(20), nullable=False, server_default="normal"),
        sa.Column("entity_type", sa.String(30), nullable=False),
        _uuid("entity_id", nullable=False),
        sa.Column("target_role", sa.String(50), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("meta_data", postgresql.JSONB(), server_default=sa.text("'{}'::jsonb")),
        sa.Column("status", sa.String(20), server_default="pending"),
        sa.Column("attempts", sa.Integer(), server_default="0"),
        _ts("next_retry_at", nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("idempotency_key", sa.String(255), nullable=False),
        _ts("created_at", server_default=sa.func.now()),
        _ts("sent_at", nullable=True),
        _ts("failed_at", nullable=True),
        sa.UniqueConstraint("idempotency_key", name="uq_notification_outbox_idempotency_key"),
        sa.CheckConstraint(
            _in("type", ("state_transition", "sla_warning", "sla_breach", "sla_escalation")),
            name="chk_notification_type",
        ),
        sa.CheckConstraint(_in("status", ("pending", "sent", "failed", "skipped")), name="chk_notification_status"),
    )
    op.create_index("ix_notification_outbox_org_id", "notification_outbox", ["org_id"])
    op.create_index("ix_notification_outbox_status", "notification_outbox", ["status"])
    op.create_index("ix_notification_outbox_next_retry_at", "notification_outbox", ["next_retry_at"])
    op.create_index("ix_notification_outbox_created_at", "notification_outbox", ["created_at"])
    op.create_index("idx_notification_outbox_pending", "notification_outbox", ["status", "next_retry_at"])

    op.create_table(
        "related_record_requests",
        _uuid("id", primary_key=True),
        _uuid("org_id", sa.ForeignKey("organizations.id")),
        sa.Column("entity", sa.String(50), nullable=False),
        sa.Column("source_entity_type", sa.String(30), nullable=False),
        _uuid("source_entity_id", nullable=False),
        sa.Column("source_state", sa.String(40), nullable=False),
        sa.Column("params", postgresql.JSONB(), server_default=sa.text("'{}'::jsonb")),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        _user_fk("requested_by"),
        _ts("created_at", server_default=sa.func.now()),
        _ts("processed_at", nullable=True),
        sa.CheckConstraint(
            _in("status", ("pending", "processing", "done", "failed")), name="chk_related_record_status"
        ),
    )
    op.create_index("ix_related_record_requests_org_id", "related_record_requests", ["org_id"])
    op.create_index("ix_related_record_requests_entity", "related_record_requests", ["entity"])
    op.create_index("ix_related_record_requests_source_entity_id", "related_record_requests", ["source_entity_id"])
    op.create_index("ix_related_record_requests_status", "related_record_requests", ["status"])
    op.create_index("ix_related_record_requests_created_at", "related_record_requests", ["created_at"])


def downgrade() -> None:
    for table in (
        "related_record_requests",
        "notification_outbox",
        "audit_logs",
        "order_items",
        "rfq_item_revisions",
        "rfq_items",
        "orders",
        "rfqs",
        "users",
        "organizations",
    ):
        op.drop_table(table)
