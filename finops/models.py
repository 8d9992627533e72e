"""Pydantic models for the provider integration and ACH approval API."""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class ServiceType(str, Enum):
    """Categories of external provider a tenant can configure."""
    PAYMENT = "payment"
    BANKING = "banking"
    COMPLIANCE = "compliance"
    AUDIT = "audit"
    SPECIALIZED = "specialized"


class TransferStatus(str, Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    PROCESSING = "Processing"
    COMPLETED = "Completed"
    FAILED = "Failed"
    CANCELLED = "Cancelled"


TERMINAL_STATUSES = frozenset(
    {TransferStatus.COMPLETED, TransferStatus.FAILED, TransferStatus.CANCELLED}
)


class Actor(BaseModel):
    """Authenticated caller, as supplied by the identity layer."""
    model_config = ConfigDict(frozen=True)

    actor_id: str
    tenant_id: str
    role: str
    source_ip: str = ""


# ---------------------------------------------------------------------------
# Provider contract payloads
# ---------------------------------------------------------------------------


class ProviderResponse(BaseModel):
    """Uniform envelope every adapter call returns."""
    success: bool
    data: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None


class TransferInstruction(BaseModel):
    """What a banking provider needs to move money for a transfer."""
    transfer_id: str
    tenant_id: str
    amount: Decimal
    recipient_account_ref: str
    transfer_type: str
    description: str = ""
    idempotency_key: str


# ---------------------------------------------------------------------------
# Service registry
# ---------------------------------------------------------------------------


class ServiceRegistration(BaseModel):
    """A tenant's configuration of one provider for one service type."""
    id: str = Field(default_factory=new_id)
    tenant_id: str
    service_type: ServiceType
    provider: str
    configuration: Dict[str, Any] = Field(default_factory=dict)
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def key(self) -> tuple:
        return (self.tenant_id, self.service_type, self.provider)


class RegisterServiceRequest(BaseModel):
    service_type: ServiceType
    provider: str
    configuration: Dict[str, Any] = Field(default_factory=dict)
    is_active: bool = True


class RegisterServiceResponse(BaseModel):
    registration_id: str


class ProviderHealth(BaseModel):
    """Result of pinging one provider during a health check."""
    service_type: ServiceType
    provider: str
    status: Literal["healthy", "unhealthy"]
    latency_ms: Optional[float] = None
    error: Optional[str] = None


# ---------------------------------------------------------------------------
# Compliance screening
# ---------------------------------------------------------------------------


class ProviderScreening(BaseModel):
    """Screening verdict returned by (or synthesized for) one provider."""
    provider: str
    risk_score: Optional[float] = Field(default=None, ge=0, le=10)
    approved: bool
    flags: List[str] = Field(default_factory=list)


class ComplianceScreeningRecord(BaseModel):
    """Persisted outcome of one screening event. Never updated."""
    id: str = Field(default_factory=new_id)
    tenant_id: str
    entity_type: str
    entity_id: Optional[str] = None
    per_provider_results: List[ProviderScreening] = Field(default_factory=list)
    aggregate_risk_score: Optional[float] = None
    decision: Literal["compliant", "non_compliant", "pending_review"]
    flags: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)


class ScreenEntityRequest(BaseModel):
    entity_type: str
    entity_id: Optional[str] = None
    entity_data: Dict[str, Any] = Field(default_factory=dict)


class ScreeningOutcome(BaseModel):
    """Result of screening an entity across all compliance providers."""
    record_id: str
    approved: bool
    aggregate_risk_score: Optional[float]
    requires_review: bool
    decision: Literal["compliant", "non_compliant", "pending_review"]
    per_provider_results: List[ProviderScreening]


# ---------------------------------------------------------------------------
# ACH transfers
# ---------------------------------------------------------------------------


class ApprovalRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    approver_id: str
    level: int
    timestamp: datetime = Field(default_factory=utcnow)
    decision: Literal["approve"] = "approve"
    comments: str = ""


class TransferRequest(BaseModel):
    """An ACH transfer moving through the approval workflow.

    Instances are replaced, not mutated: every transition produces a copy
    with ``version`` bumped, which the store accepts only if the version it
    holds still matches the one the copy was derived from.
    """
    id: str = Field(default_factory=new_id)
    tenant_id: str
    initiated_by: str
    amount: Decimal
    recipient_account_ref: str
    transfer_type: str = "standard"
    description: str = ""
    provider: str
    status: TransferStatus
    requires_approval: bool
    required_approval_level: Literal[1, 2]
    approvals: tuple[ApprovalRecord, ...] = ()
    rejected_by: Optional[str] = None
    rejection_reason: Optional[str] = None
    provider_transaction_ref: Optional[str] = None
    failure_reason: Optional[str] = None
    idempotency_key: Optional[str] = None
    retry_of: Optional[str] = None
    version: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    terminal_at: Optional[datetime] = None

    @field_serializer("amount")
    def _serialize_amount(self, amount: Decimal) -> str:
        return f"{amount:.2f}"

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def approvals_complete(self) -> bool:
        return len(self.approvals) >= self.required_approval_level


class CreateTransferRequest(BaseModel):
    amount: Decimal
    recipient_account_ref: str
    transfer_type: str = "standard"
    description: str = ""
    provider: Optional[str] = None


class DecisionRequest(BaseModel):
    """Body of an approve or reject call."""
    comments: str = ""


class RetryRequest(BaseModel):
    idempotency_key: str


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------


class AuditLogEntry(BaseModel):
    """One immutable row of the audit trail."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    tenant_id: str
    actor_id: str
    action: str
    entity_type: str
    entity_id: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)
    source_ip: str = ""


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


class Settings(BaseModel):
    """Tunable thresholds, timeouts and roles for the core services."""
    approval_threshold: Decimal = Decimal("10000.00")
    dual_approval_threshold: Decimal = Decimal("50000.00")
    provider_timeout_seconds: float = 5.0
    health_check_timeout_seconds: float = 5.0
    screening_timeout_seconds: float = 15.0
    execution_timeout_seconds: float = 30.0
    default_banking_provider: str = "sandbox_bank"
    approver_roles: List[str] = Field(default_factory=lambda: ["admin", "manager"])
    admin_roles: List[str] = Field(default_factory=lambda: ["admin"])
