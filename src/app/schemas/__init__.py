from .payments import (
    AckPayload,
    BillingCycle,
    CheckoutRequest,
    InternalOutcome,
    ParsedEvent,
    PaymentRecord,
    PaymentStatus,
    PlanId,
    ReconcileResult,
    TERMINAL_STATUSES,
    UserEntitlement,
    Vendor,
    VendorTransaction,
    WebhookEvent,
)
from .admin import EventReplayRequest, PaymentCancelRequest

__all__ = [
    "AckPayload",
    "BillingCycle",
    "CheckoutRequest",
    "EventReplayRequest",
    "InternalOutcome",
    "ParsedEvent",
    "PaymentCancelRequest",
    "PaymentRecord",
    "PaymentStatus",
    "PlanId",
    "ReconcileResult",
    "TERMINAL_STATUSES",
    "UserEntitlement",
    "Vendor",
    "VendorTransaction",
    "WebhookEvent",
]
