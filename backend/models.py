from pydantic import BaseModel, Field, ConfigDict, computed_field, field_validator
from typing import Optional, Dict, Any, List
from datetime import datetime, timezone
from enum import Enum
import uuid


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


def to_document(model: BaseModel) -> Dict[str, Any]:
    """Dump a model for MongoDB: datetimes stay native, enums become their values."""
    return _plain(model.model_dump())

# ============================================================================
# ENUMS (System Constants)
# ============================================================================

class UserRole(str, Enum):
    ROLE_ADMIN = "admin"
    ROLE_SUPERADMIN = "superadmin"

class SubscriptionStatus(str, Enum):
    FREE = "free"
    TRIAL = "trial"
    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELLED = "cancelled"

# Statuses that grant access while end_date is in the future
LIVE_SUBSCRIPTION_STATUSES = frozenset({SubscriptionStatus.ACTIVE.value, SubscriptionStatus.TRIAL.value})

class BillingCycle(str, Enum):
    MONTHLY = "monthly"
    ANNUAL = "annual"
    TRIAL = "trial"

class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"

class PlanStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"

class ResourceType(str, Enum):
    BEDS = "beds"
    BRANCHES = "branches"
    MODULE = "module"

class StepStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"

class OnboardingStep(str, Enum):
    PG_CREATION = "pg_creation"
    BRANCH_SETUP = "branch_setup"
    PG_CONFIGURATION = "pg_configuration"
    COMPLETED = "completed"

class AuditAction(str, Enum):
    TRIAL_ACTIVATED = "TRIAL_ACTIVATED"
    SUBSCRIPTION_ACTIVATED = "SUBSCRIPTION_ACTIVATED"
    CAPACITY_TOPUP = "CAPACITY_TOPUP"
    SUBSCRIPTION_EXPIRED = "SUBSCRIPTION_EXPIRED"
    SUBSCRIPTION_CANCELLED = "SUBSCRIPTION_CANCELLED"
    SUBSCRIPTION_EXTENDED = "SUBSCRIPTION_EXTENDED"
    ONBOARDING_STEP_COMPLETED = "ONBOARDING_STEP_COMPLETED"
    PAYMENT_RECORDED = "PAYMENT_RECORDED"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    WEBHOOK_SIGNATURE_FAILED = "WEBHOOK_SIGNATURE_FAILED"

# Sharing types accepted without the is_custom flag
STANDARD_SHARING_TYPES = ("1-sharing", "2-sharing", "3-sharing", "4-sharing")

# ============================================================================
# PLAN CATALOG
# ============================================================================

class PlanModule(BaseModel):
    model_config = ConfigDict(extra="ignore")

    module_name: str
    enabled: bool = False
    limit: Optional[int] = None

class Plan(BaseModel):
    """Subscription plan as stored in subscription_plans.

    Price and count fields that are missing (or stored as null) read as 0 so a
    partially configured catalog entry still prices, at zero cost.
    """
    model_config = ConfigDict(extra="ignore")

    plan_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    plan_name: str
    description: Optional[str] = None
    billing_cycle: BillingCycle = BillingCycle.MONTHLY
    base_price: float = 0
    annual_discount: float = 0
    base_bed_count: int = 0
    top_up_price_per_bed: float = 0
    max_beds_allowed: Optional[int] = None
    allow_multiple_branches: bool = False
    branch_count: Optional[int] = None
    cost_per_branch: float = 0
    trial_period_days: Optional[int] = None
    modules: List[PlanModule] = Field(default_factory=list)
    features: List[str] = Field(default_factory=list)
    status: PlanStatus = PlanStatus.ACTIVE

    @field_validator(
        "base_price", "annual_discount", "base_bed_count",
        "top_up_price_per_bed", "cost_per_branch", mode="before",
    )
    @classmethod
    def _missing_number_is_zero(cls, v):
        return 0 if v is None else v

# ============================================================================
# SUBSCRIPTION (embedded in admin account)
# ============================================================================

class Usage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    beds_used: int = Field(default=0, ge=0)
    branches_used: int = Field(default=0, ge=0)

class CustomPricing(BaseModel):
    model_config = ConfigDict(extra="ignore")

    max_beds_allowed: int
    top_up_beds: int = 0
    max_branches_allowed: int = 1
    extra_branches: int = 0
    total_monthly_price: float
    total_annual_price: float
    updated_at: datetime = Field(default_factory=_utcnow)

class PlanSnapshot(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    plan_id: str
    plan_name: Optional[str] = None
    bed_count: int
    branch_count: int

class PaymentRecord(BaseModel):
    """One captured gateway payment. gateway_payment_id is the idempotence key."""
    model_config = ConfigDict(extra="ignore", frozen=True)

    gateway_payment_id: str
    gateway_order_id: Optional[str] = None
    amount: float
    currency: str = "INR"
    status: str = "paid"
    payment_method: Optional[str] = None
    billing_cycle: Optional[BillingCycle] = None
    plan_snapshot: PlanSnapshot
    payment_date: datetime = Field(default_factory=_utcnow)
    description: Optional[str] = None

class Subscription(BaseModel):
    model_config = ConfigDict(extra="ignore")

    status: SubscriptionStatus = SubscriptionStatus.FREE
    plan_id: Optional[str] = None
    billing_cycle: Optional[BillingCycle] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    trial_end_date: Optional[datetime] = None
    trial_used_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    auto_renew: bool = False
    payment_status: Optional[PaymentStatus] = None
    total_beds: int = 0
    total_branches: int = 0
    usage: Usage = Field(default_factory=Usage)
    custom_pricing: Optional[CustomPricing] = None
    payment_history: List[PaymentRecord] = Field(default_factory=list)

# ============================================================================
# ONBOARDING (embedded in admin account)
# ============================================================================

class OnboardingStepRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    status: StepStatus = StepStatus.NOT_STARTED
    linked_entity_id: Optional[str] = None
    completed_at: Optional[datetime] = None

    @property
    def is_completed(self) -> bool:
        return self.status == StepStatus.COMPLETED

class Onboarding(BaseModel):
    """Onboarding progress. current_onboarding_step is always derived from the step records."""
    model_config = ConfigDict(extra="ignore")

    pg_creation: OnboardingStepRecord = Field(default_factory=OnboardingStepRecord)
    branch_setup: OnboardingStepRecord = Field(default_factory=OnboardingStepRecord)
    pg_configuration: OnboardingStepRecord = Field(default_factory=OnboardingStepRecord)

    @computed_field
    @property
    def current_onboarding_step(self) -> OnboardingStep:
        if self.pg_configuration.is_completed:
            return OnboardingStep.COMPLETED
        if self.branch_setup.is_completed:
            return OnboardingStep.PG_CONFIGURATION
        if self.pg_creation.is_completed:
            return OnboardingStep.BRANCH_SETUP
        return OnboardingStep.PG_CREATION

    @property
    def is_complete(self) -> bool:
        return self.current_onboarding_step == OnboardingStep.COMPLETED

# ============================================================================
# TENANT ADMIN ACCOUNT
# ============================================================================

class AdminAccount(BaseModel):
    model_config = ConfigDict(extra="ignore")

    account_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    email: Optional[str] = None
    name: Optional[str] = None
    role: UserRole = UserRole.ROLE_ADMIN
    pg_id: Optional[str] = None
    default_branch_id: Optional[str] = None
    pg_configured: bool = False
    subscription: Subscription = Field(default_factory=Subscription)
    onboarding: Onboarding = Field(default_factory=Onboarding)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

# ============================================================================
# PG / BRANCH (collaborator entities)
# ============================================================================

class SharingType(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: str
    name: str
    cost: float
    is_custom: bool = False
    description: Optional[str] = None

class PG(BaseModel):
    model_config = ConfigDict(extra="ignore")

    pg_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    account_id: str
    name: str
    address: Optional[Dict[str, Any]] = None
    contact: Optional[Dict[str, Any]] = None
    sharing_types: List[SharingType] = Field(default_factory=list)
    is_configured: bool = False
    created_at: datetime = Field(default_factory=_utcnow)

class Branch(BaseModel):
    model_config = ConfigDict(extra="ignore")

    branch_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    pg_id: str
    account_id: str
    name: str
    address: Optional[Dict[str, Any]] = None
    is_default: bool = False
    created_at: datetime = Field(default_factory=_utcnow)

# ============================================================================
# AUDIT / NOTIFICATIONS
# ============================================================================

class AuditLog(BaseModel):
    model_config = ConfigDict(extra="ignore")

    audit_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    action: AuditAction
    actor_id: Optional[str] = None
    account_id: Optional[str] = None
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    before_state: Optional[Dict[str, Any]] = None
    after_state: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None
    timestamp: datetime = Field(default_factory=_utcnow)

class NotificationEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    account_id: str
    event_type: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    status: str = "queued"
    created_at: datetime = Field(default_factory=_utcnow)

# ============================================================================
# REQUEST MODELS
# ============================================================================

class SubscribeRequest(BaseModel):
    plan_id: str
    billing_cycle: BillingCycle = BillingCycle.MONTHLY
    total_beds: int
    total_branches: int = 1
    payment_status: PaymentStatus = PaymentStatus.PENDING
    allow_upgrade: bool = False

class AddBedsRequest(BaseModel):
    additional_beds: int
    new_max_beds: Optional[int] = None

class AddBranchesRequest(BaseModel):
    additional_branches: int
    new_max_branches: Optional[int] = None

class CancelRequest(BaseModel):
    reason: Optional[str] = None

class PGCreateRequest(BaseModel):
    name: str
    address: Optional[Dict[str, Any]] = None
    contact: Optional[Dict[str, Any]] = None

class BranchCreateRequest(BaseModel):
    name: str
    address: Optional[Dict[str, Any]] = None

class PGConfigurationRequest(BaseModel):
    sharing_types: List[Dict[str, Any]]

class QuoteRequest(BaseModel):
    plan_id: str
    bed_count: int
    branch_count: int = 1

class ExtendRequest(BaseModel):
    days: int

class UsageIncrementRequest(BaseModel):
    beds_delta: int = 0
    branches_delta: int = 0
