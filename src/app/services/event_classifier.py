"""
Vendor event type -> internal outcome

One table per vendor feeding the same InternalOutcome enum so reconciliation
never looks at vendor strings.
"""
from typing import Dict

from schemas.payments import InternalOutcome, Vendor


HOTMART_EVENT_OUTCOMES: Dict[str, InternalOutcome] = {
    "PURCHASE_APPROVED": InternalOutcome.SUCCESS,
    "PURCHASE_COMPLETE": InternalOutcome.SUCCESS,
    "PURCHASE_BILLET_PRINTED": InternalOutcome.PENDING,
    "PURCHASE_WAITING_PAYMENT": InternalOutcome.PENDING,
    "PURCHASE_PROTEST": InternalOutcome.PENDING,
    "PURCHASE_CANCELED": InternalOutcome.FAILURE,
    "PURCHASE_EXPIRED": InternalOutcome.FAILURE,
    "PURCHASE_DELAYED": InternalOutcome.FAILURE,
    "PURCHASE_REFUNDED": InternalOutcome.REFUNDED,
    "PURCHASE_CHARGEBACK": InternalOutcome.CHARGEBACK,
    "SUBSCRIPTION_CANCELED": InternalOutcome.SUBSCRIPTION_CANCELLED,
    "SUBSCRIPTION_CANCELLATION": InternalOutcome.SUBSCRIPTION_CANCELLED,
}

GREEN_EVENT_OUTCOMES: Dict[str, InternalOutcome] = {
    "payment.completed": InternalOutcome.SUCCESS,
    "payment.approved": InternalOutcome.SUCCESS,
    "payment.paid": InternalOutcome.SUCCESS,
    "payment.pending": InternalOutcome.PENDING,
    "payment.processing": InternalOutcome.PENDING,
    "payment.waiting_payment": InternalOutcome.PENDING,
    "payment.failed": InternalOutcome.FAILURE,
    "payment.declined": InternalOutcome.FAILURE,
    "payment.expired": InternalOutcome.FAILURE,
    "payment.cancelled": InternalOutcome.FAILURE,
    "payment.refunded": InternalOutcome.REFUNDED,
    "payment.chargeback": InternalOutcome.CHARGEBACK,
    "chargeback.created": InternalOutcome.CHARGEBACK,
    "subscription.cancelled": InternalOutcome.SUBSCRIPTION_CANCELLED,
    "subscription.canceled": InternalOutcome.SUBSCRIPTION_CANCELLED,
    # known, nothing to reconcile until the first charge arrives
    "subscription.created": InternalOutcome.IGNORED,
}

VENDOR_EVENT_OUTCOMES: Dict[Vendor, Dict[str, InternalOutcome]] = {
    Vendor.HOTMART: HOTMART_EVENT_OUTCOMES,
    Vendor.GREEN: GREEN_EVENT_OUTCOMES,
}


def normalize_event_type(vendor_event_type: str, vendor: Vendor) -> str:
    value = (vendor_event_type or "").strip()
    if Vendor(vendor) is Vendor.HOTMART:
        return value.upper()
    return value.lower()


def classify(vendor_event_type: str, vendor: Vendor) -> InternalOutcome:
    """Unknown or empty event types map to IGNORED."""
    table = VENDOR_EVENT_OUTCOMES[Vendor(vendor)]
    return table.get(normalize_event_type(vendor_event_type, vendor), InternalOutcome.IGNORED)
