"""
Payment, entitlement and webhook schemas

Records stored in Supabase (`payments`, `users`, `webhook_events`) and the
acknowledgment payload returned to payment vendors.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class Vendor(str, Enum):
    """Payment vendors that deliver webhooks"""
    HOTMART = "hotmart"
    GREEN = "green"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


TERMINAL_STATUSES = frozenset(
    {
        PaymentStatus.COMPLETED,
        PaymentStatus.FAILED,
        PaymentStatus.CANCELLED,
        PaymentStatus.REFUNDED,
    }
)


class PlanId(str, Enum):
    PER_ARTICLE = "per-article"
    PROFESSIONAL = "professional"
    INSTITUTIONAL = "institutional"


class BillingCycle(str, Enum):
    ONE_TIME = "one-time"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class InternalOutcome(str, Enum):
    """Vendor-agnostic outcome of a webhook event"""
    SUCCESS = "success"
    FAILURE = "failure"
    PENDING = "pending"
    REFUNDED = "refunded"
    CHARGEBACK = "chargeback"
    SUBSCRIPTION_CANCELLED = "subscription_cancelled"
    IGNORED = "ignored"


class PaymentRecord(BaseModel):
    """A single payment attempt, created at checkout and mutated by reconciliation"""
    id: str
    vendor: Vendor
    vendor_transaction_id: str
    amount: int = Field(..., ge=0, description="Amount in minor currency units")
    currency: str = "BRL"
    plan_id: PlanId
    billing_cycle: BillingCycle = BillingCycle.ONE_TIME
    credits_amount: int = Field(0, ge=0)
    status: PaymentStatus = PaymentStatus.PENDING
    customer_email: str
    user_id: Optional[str] = None
    created_at: datetime
    processed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @model_validator(mode="after")
    def _check_processed_at(self):
        if self.is_terminal and self.processed_at is None:
            raise ValueError(f"processed_at is required for terminal status {self.status.value}")
        if not self.is_terminal and self.processed_at is not None:
            raise ValueError("processed_at must be empty while the payment is pending")
        return self


class UserEntitlement(BaseModel):
    """Subset of the user record that payments are allowed to touch"""
    user_id: str
    email: Optional[str] = None
    credits_remaining: int = Field(0, ge=0)
    plan: str = "free"
    plan_type: str = "per-article"
    articles_limit: Optional[int] = Field(None, ge=0)
    articles_used: int = Field(0, ge=0)
    cancel_at_period_end: bool = False
    cancel_requested_at: Optional[datetime] = None
    suspended: bool = False

    @model_validator(mode="after")
    def _check_articles_usage(self):
        if self.articles_limit is not None and self.articles_used > self.articles_limit:
            raise ValueError("articles_used cannot exceed articles_limit")
        return self


@dataclass(slots=True)
class EntitlementChange:
    """Relative update to one user row, applied against the row as stored at write time.

    ``plan_fields`` are only written while the user is still on ``only_if_plan``
    (when set). A new non-null ``articles_limit`` without an explicit
    ``articles_used`` clamps the stored usage to that limit.
    """
    user_id: str
    credits_delta: int = 0
    plan_fields: Dict[str, Any] = field(default_factory=dict)
    only_if_plan: Optional[str] = None
    suspended: Optional[bool] = None

    def apply_to(self, entitlement: UserEntitlement) -> UserEntitlement:
        update: Dict[str, Any] = {
            "credits_remaining": max(0, entitlement.credits_remaining + self.credits_delta)
        }
        if self.only_if_plan is None or entitlement.plan == self.only_if_plan:
            update.update(self.plan_fields)
            limit = self.plan_fields.get("articles_limit")
            if limit is not None and "articles_used" not in self.plan_fields:
                update["articles_used"] = max(0, min(entitlement.articles_used, limit))
        if self.suspended is not None:
            update["suspended"] = self.suspended
        return entitlement.model_copy(update=update)


class WebhookEvent(BaseModel):
    """One inbound vendor delivery"""
    vendor: Vendor
    vendor_event_id: str
    event_type: str
    raw_payload: Dict[str, Any] = Field(default_factory=dict)
    received_at: datetime


@dataclass(slots=True)
class VendorTransaction:
    """Payment details extracted from a vendor payload"""
    transaction_id: Optional[str]
    amount: Optional[int] = None
    currency: Optional[str] = None
    plan_id: Optional[PlanId] = None
    billing_cycle: Optional[BillingCycle] = None
    credits_amount: Optional[int] = None
    customer_email: Optional[str] = None
    user_id: Optional[str] = None
    subscription_id: Optional[str] = None


@dataclass(slots=True)
class ParsedEvent:
    event: WebhookEvent
    transaction: VendorTransaction


@dataclass(slots=True)
class ReconcileResult:
    payment: PaymentRecord
    previous_status: PaymentStatus
    entitlement: Optional[UserEntitlement] = None
    actions_taken: List[str] = field(default_factory=list)
    persisted: bool = False


class AckPayload(BaseModel):
    """Acknowledgment returned to the vendor"""
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    status: Optional[str] = None
    event_processed: Optional[str] = Field(None, alias="eventProcessed")
    payment_id: Optional[str] = Field(None, alias="paymentId")
    actions_taken: Optional[List[str]] = Field(None, alias="actionsTaken")
    error: Optional[str] = None
    message: Optional[str] = None
    timestamp: str

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class CheckoutRequest(BaseModel):
    """Registers a pending payment when a checkout is started"""
    vendor: Vendor
    vendor_transaction_id: str = Field(..., min_length=1)
    plan_id: PlanId
    billing_cycle: BillingCycle = BillingCycle.ONE_TIME
    customer_email: str = Field(..., min_length=3)
    user_id: Optional[str] = None
    credits_amount: Optional[int] = Field(None, ge=1)
