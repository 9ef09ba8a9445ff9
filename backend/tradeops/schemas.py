"""Pydantic schemas for API."""
from pydantic import BaseModel, Field, ConfigDict
from pydantic.alias_generators import to_camel
from typing import Any, Generic, Optional, TypeVar
from datetime import datetime
from decimal import Decimal
from uuid import UUID

DataT = TypeVar("DataT")


class ApiModel(BaseModel):
    """Wire models use camelCase, Python code uses snake_case."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class Envelope(ApiModel, Generic[DataT]):
    success: bool = True
    data: DataT
    meta: Optional[dict[str, Any]] = None


# Auth schemas
class LoginRequest(BaseModel):
    username: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: "UserResponse"


class UserResponse(ApiModel):
    id: UUID
    org_id: Optional[UUID] = None
    username: str
    name: str
    role: str
    email: Optional[str] = None
    is_active: bool = True


# Transition schemas
class TransitionRequest(ApiModel):
    to_state: str = Field(min_length=1)
    reason: Optional[str] = None
    notes: Optional[str] = None
    expected_version: Optional[int] = Field(default=None, ge=1)


class AvailableTransition(ApiModel):
    to_state: str
    requires_reason: bool
    required_fields: list[str]
    validations: list[str]
    auto: bool = False


class AvailableTransitions(ApiModel):
    current_state: str
    transitions: list[AvailableTransition]


class WorkflowItemBase(ApiModel):
    id: UUID
    kind: str
    org_id: UUID
    header_id: UUID
    item_number: int
    product_id: Optional[UUID] = None
    product_name: Optional[str] = None
    specifications: Optional[Any] = None
    unit_of_measure: Optional[str] = None
    currency: Optional[str] = None
    state: str
    state_entered_at: Optional[datetime] = None
    version: int
    owner_id: Optional[UUID] = None
    sla_due_at: Optional[datetime] = None
    sla_warning: bool = False
    sla_breached: bool = False
    at_risk_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class RfqItemResponse(WorkflowItemBase):
    quantity: Optional[Decimal] = None
    target_price: Optional[Decimal] = None
    vendor_price: Optional[Decimal] = None
    selling_price: Optional[Decimal] = None
    margin_pct: Optional[Decimal] = None
    commercial_terms_id: Optional[UUID] = None
    selected_vendor_quote_id: Optional[UUID] = None
    cost_breakdown_id: Optional[UUID] = None
    compliance_data_id: Optional[UUID] = None
    quote_pdf_url: Optional[str] = None
    commercial_terms_frozen: bool = False
    sent_at: Optional[datetime] = None
    order_id: Optional[UUID] = None
    order_item_id: Optional[UUID] = None


class OrderItemResponse(WorkflowItemBase):
    rfq_item_id: Optional[UUID] = None
    rfq_item_revision_id: Optional[UUID] = None
    ordered_quantity: Optional[Decimal] = None
    unit_price: Optional[Decimal] = None
    total_amount: Optional[Decimal] = None
    paid_amount: Optional[Decimal] = None
    purchase_order_id: Optional[UUID] = None
    vendor_id: Optional[UUID] = None


# Revision schemas
class RevisionChanges(ApiModel):
    product_id: Optional[UUID] = None
    quantity: Optional[Decimal] = Field(default=None, gt=0)
    unit_of_measure: Optional[str] = None
    specifications: Optional[Any] = None
    target_price: Optional[Decimal] = Field(default=None, gt=0)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)


class RevisionCreateRequest(ApiModel):
    changes: RevisionChanges
    reason: Optional[str] = None


class RevisionApproveRequest(ApiModel):
    notes: Optional[str] = None


class RevisionRejectRequest(ApiModel):
    reason: Optional[str] = None


class RevisionCheckResponse(ApiModel):
    allowed: bool
    strategy: str
    requires_approval: bool
    approval_role: Optional[str] = None
    reason: str


class RevisionResponse(ApiModel):
    id: UUID
    rfq_item_id: UUID
    revision_number: int
    product_id: Optional[UUID] = None
    quantity: Optional[Decimal] = None
    unit_of_measure: Optional[str] = None
    specifications: Optional[Any] = None
    target_price: Optional[Decimal] = None
    currency: Optional[str] = None
    revision_reason: str
    revision_strategy: str
    approval_role: Optional[str] = None
    approved_by: Optional[UUID] = None
    approved_at: Optional[datetime] = None
    version: int
    created_by: Optional[UUID] = None
    created_at: Optional[datetime] = None


class RevisionCreateResponse(ApiModel):
    allowed: bool
    revision: Optional[RevisionResponse] = None
    requires_approval: bool = False
    message: str


class RevisionDecisionResponse(ApiModel):
    success: bool
    message: str
    revision: Optional[RevisionResponse] = None


# SLA schemas
class SlaItemResponse(ApiModel):
    kind: str
    id: UUID
    header_id: UUID
    item_number: int
    state: str
    state_entered_at: Optional[datetime] = None
    sla_due_at: Optional[datetime] = None
    sla_warning: bool
    sla_breached: bool
    at_risk_reason: Optional[str] = None
    percent_elapsed: float
    time_remaining: str


class SlaMonitorResponse(ApiModel):
    checked: int
    warned: int
    breached: int


# Audit schemas
class AuditLogResponse(ApiModel):
    id: UUID
    entity_type: str
    entity_id: UUID
    action: str
    user_id: Optional[UUID] = None
    old_values: Optional[dict[str, Any]] = None
    new_values: Optional[dict[str, Any]] = None
    reason: Optional[str] = None
    notes: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: Optional[datetime] = None


class CatalogSummary(ApiModel):
    version: str
    edges: dict[str, int]


TokenResponse.model_rebuild()
