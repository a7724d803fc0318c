"""
Vendor acknowledgment payloads
"""
from datetime import datetime, timezone
from typing import Optional

from schemas.payments import AckPayload, ReconcileResult


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def build_ack(vendor_event_type: str, payment_id: Optional[str], result: Optional[ReconcileResult]) -> AckPayload:
    return AckPayload(
        success=True,
        status="processed",
        event_processed=vendor_event_type,
        payment_id=payment_id,
        actions_taken=list(result.actions_taken) if result else [],
        timestamp=_timestamp(),
    )


def build_ignored_ack(vendor_event_type: str) -> AckPayload:
    return AckPayload(
        success=True,
        status="ignored",
        event_processed=vendor_event_type,
        actions_taken=[],
        timestamp=_timestamp(),
    )


def build_duplicate_ack(vendor_event_type: str, payment_id: Optional[str] = None) -> AckPayload:
    return AckPayload(
        success=True,
        status="duplicate",
        event_processed=vendor_event_type,
        payment_id=payment_id,
        actions_taken=[],
        timestamp=_timestamp(),
    )


def build_error_ack(error: str, message: Optional[str] = None) -> AckPayload:
    return AckPayload(
        success=False,
        error=error,
        message=message,
        timestamp=_timestamp(),
    )
