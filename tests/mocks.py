"""
In-memory doubles for tests
"""
import hashlib
import hmac
import json
import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from core.interfaces import IPaymentStore, IVendorApiClient
from schemas.payments import (
    PaymentRecord,
    PaymentStatus,
    PlanId,
    UserEntitlement,
    Vendor,
    WebhookEvent,
)

FIXED_NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def fixed_clock() -> datetime:
    return FIXED_NOW


class InMemoryPaymentStore(IPaymentStore):
    """IPaymentStore kept in dicts; `fail_on` names methods that should raise"""

    def __init__(self):
        self.payments: Dict[str, PaymentRecord] = {}
        self.users: Dict[str, UserEntitlement] = {}
        self.events: Dict[tuple, Dict[str, Any]] = {}
        self.system_logs: List[Dict[str, Any]] = []
        self.fail_on: set = set()
        self.reconcile_calls = 0

    def _maybe_fail(self, name: str) -> None:
        if name in self.fail_on:
            raise RuntimeError(f"{name} unavailable")

    def add_user(self, user_id: str, email: Optional[str] = None, **fields) -> UserEntitlement:
        entitlement = UserEntitlement(user_id=user_id, email=email, **fields)
        self.users[user_id] = entitlement
        return entitlement

    def add_payment(self, **fields) -> PaymentRecord:
        defaults = {
            "id": f"pay_{len(self.payments) + 1}",
            "vendor": Vendor.GREEN,
            "amount": 1500,
            "currency": "BRL",
            "plan_id": PlanId.PER_ARTICLE,
            "customer_email": "ana@example.com",
            "created_at": FIXED_NOW,
        }
        defaults.update(fields)
        record = PaymentRecord(**defaults)
        self.payments[record.id] = record
        return record

    async def get_payment(self, payment_id: str) -> Optional[PaymentRecord]:
        self._maybe_fail("get_payment")
        return self.payments.get(payment_id)

    async def get_payment_by_transaction(self, vendor: Vendor, vendor_transaction_id: str) -> Optional[PaymentRecord]:
        self._maybe_fail("get_payment_by_transaction")
        for payment in self.payments.values():
            if payment.vendor is Vendor(vendor) and payment.vendor_transaction_id == vendor_transaction_id:
                return payment
        return None

    async def find_latest_payment(self, user_id, status=PaymentStatus.COMPLETED, plan_ids=None, customer_email=None):
        if not user_id and not customer_email:
            return None
        email = (customer_email or "").strip().lower()
        candidates = [
            p for p in self.payments.values()
            if (p.user_id == user_id if user_id else p.customer_email.lower() == email)
            and p.status is status
            and (not plan_ids or p.plan_id in plan_ids)
        ]
        candidates.sort(key=lambda p: p.created_at, reverse=True)
        return candidates[0] if candidates else None

    async def create_payment(self, record: PaymentRecord) -> PaymentRecord:
        self._maybe_fail("create_payment")
        self.payments[record.id] = record
        return record

    async def save_payment(self, record: PaymentRecord) -> PaymentRecord:
        self.payments[record.id] = record
        return record

    async def get_entitlement(self, user_id: str) -> Optional[UserEntitlement]:
        self._maybe_fail("get_entitlement")
        return self.users.get(user_id)

    async def find_user_id_by_email(self, email: str) -> Optional[str]:
        for entitlement in self.users.values():
            if entitlement.email and entitlement.email.lower() == email.strip().lower():
                return entitlement.user_id
        return None

    async def save_entitlement(self, entitlement: UserEntitlement) -> UserEntitlement:
        self.users[entitlement.user_id] = entitlement
        return entitlement

    async def apply_reconciliation(self, payment, change, expected_status, event=None, actions=None) -> bool:
        self._maybe_fail("apply_reconciliation")
        self.reconcile_calls += 1
        stored = self.payments.get(payment.id)
        if stored is None or stored.status is not expected_status:
            return False
        if change is not None and change.user_id not in self.users:
            raise RuntimeError(f"user {change.user_id} not found")
        self.payments[payment.id] = payment.model_copy(update={"user_id": stored.user_id or payment.user_id})
        if change is not None:
            self.users[change.user_id] = change.apply_to(self.users[change.user_id])
        if event is not None:
            self.events[(event.vendor, event.vendor_event_id)] = {
                "event": event,
                "status": "processed",
                "details": {"actions": list(actions or [])},
            }
        return True

    async def has_processed_webhook_event(self, vendor: Vendor, event_id: str) -> bool:
        self._maybe_fail("has_processed_webhook_event")
        row = self.events.get((Vendor(vendor), event_id))
        return bool(row) and row["status"] in ("processed", "replayed")

    async def record_webhook_event(self, event: WebhookEvent, status: str, details=None) -> bool:
        self._maybe_fail("record_webhook_event")
        self.events[(event.vendor, event.vendor_event_id)] = {
            "event": event,
            "status": status,
            "details": details or {},
        }
        return True

    async def get_webhook_event(self, vendor: Vendor, event_id: str) -> Optional[WebhookEvent]:
        row = self.events.get((Vendor(vendor), event_id))
        return row["event"] if row else None

    async def list_payments(self, page=1, limit=10, status=None, user_id=None) -> Dict[str, Any]:
        rows = [
            p for p in self.payments.values()
            if (status is None or p.status is status) and (user_id is None or p.user_id == user_id)
        ]
        rows.sort(key=lambda p: p.created_at, reverse=True)
        start = (page - 1) * limit
        return {
            "payments": [p.model_dump(mode="json") for p in rows[start:start + limit]],
            "total": len(rows),
            "pages": max(1, math.ceil(len(rows) / limit)),
            "current_page": page,
        }

    async def get_payment_statistics(self, user_id=None) -> Dict[str, Any]:
        rows = [p for p in self.payments.values() if user_id is None or p.user_id == user_id]
        counts = {s.value: 0 for s in PaymentStatus}
        for p in rows:
            counts[p.status.value] += 1
        completed = [p.amount for p in rows if p.status is PaymentStatus.COMPLETED]
        return {
            "total_payments": len(rows),
            "by_status": counts,
            "total_revenue": sum(completed),
            "monthly_revenue": sum(completed),
        }

    async def log_system_event(self, event_type: str, event_data: Dict[str, Any], user_id: str = None):
        self.system_logs.append({"event_type": event_type, "event_data": event_data, "user_id": user_id})
        return True


class StubVendorClient(IVendorApiClient):
    def __init__(self, status: str = "approved", error: Exception = None):
        self.status = status
        self.error = error
        self.requested: List[str] = []

    async def fetch_payment_status(self, vendor_transaction_id: str) -> Dict[str, Any]:
        self.requested.append(vendor_transaction_id)
        if self.error:
            raise self.error
        return {"status": self.status}


def sign(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def encode(payload: Dict[str, Any]) -> bytes:
    return json.dumps(payload).encode("utf-8")


def green_payload(
    event_type: str = "payment.completed",
    *,
    event_id: Optional[str] = "evt_1",
    payment_id: str = "grn_tx_1",
    amount: int = 4500,
    metadata: Optional[Dict[str, Any]] = None,
    email: str = "ana@example.com",
) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "event_type": event_type,
        "data": {
            "id": payment_id,
            "amount": amount,
            "currency": "brl",
            "customer": {"email": email},
            "metadata": metadata if metadata is not None else {
                "user_id": "user_1",
                "plan_id": "per-article",
                "creditsAmount": 3,
            },
        },
    }
    if event_id is not None:
        payload["event_id"] = event_id
    return payload


def hotmart_payload(
    event: str = "PURCHASE_APPROVED",
    *,
    event_id: Optional[str] = "hm_evt_1",
    transaction: str = "HP123",
    price: Any = 79.0,
    custom: Any = None,
    email: str = "bia@example.com",
    recurrence_period: Optional[int] = None,
) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "buyer": {"email": email},
        "purchase": {
            "transaction": transaction,
            "price": {"value": price, "currency_value": "BRL"},
            "custom": custom if custom is not None else json.dumps(
                {"user_id": "user_2", "plan_id": "professional", "billing_cycle": "monthly"}
            ),
        },
    }
    if recurrence_period is not None:
        data["subscription"] = {
            "subscriber": {"code": "SUB1"},
            "plan": {"recurrence_period": recurrence_period},
        }
    payload: Dict[str, Any] = {"event": event, "data": data}
    if event_id is not None:
        payload["id"] = event_id
    return payload
