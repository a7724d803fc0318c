"""
Vendor adapters

Each adapter knows one vendor's signature header and payload shape and turns
a raw delivery into a ParsedEvent. Everything after parsing is vendor-agnostic.
"""
import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from core.responses import MalformedPayloadException
from schemas.payments import (
    BillingCycle,
    InternalOutcome,
    ParsedEvent,
    PlanId,
    Vendor,
    VendorTransaction,
    WebhookEvent,
)
from services.event_classifier import classify, normalize_event_type
from services.signature_verifier import (
    SCHEME_HMAC_SHA256,
    SCHEME_TOKEN,
    VerificationPolicy,
    verify_signature,
)

logger = logging.getLogger(__name__)

_PLAN_ALIASES: Dict[str, PlanId] = {
    "per-article": PlanId.PER_ARTICLE,
    "per_article": PlanId.PER_ARTICLE,
    "article": PlanId.PER_ARTICLE,
    "professional": PlanId.PROFESSIONAL,
    "profissional": PlanId.PROFESSIONAL,
    "institutional": PlanId.INSTITUTIONAL,
    "institucional": PlanId.INSTITUTIONAL,
}

_CYCLE_ALIASES: Dict[str, BillingCycle] = {
    "one-time": BillingCycle.ONE_TIME,
    "one_time": BillingCycle.ONE_TIME,
    "single": BillingCycle.ONE_TIME,
    "monthly": BillingCycle.MONTHLY,
    "month": BillingCycle.MONTHLY,
    "mensal": BillingCycle.MONTHLY,
    "yearly": BillingCycle.YEARLY,
    "annual": BillingCycle.YEARLY,
    "year": BillingCycle.YEARLY,
    "anual": BillingCycle.YEARLY,
}


def _get(d: Any, *keys: str, default=None):
    cur = d
    for k in keys:
        if not isinstance(cur, dict) or k not in cur:
            return default
        cur = cur[k]
    return cur


def _first(d: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = d.get(key) if isinstance(d, Mapping) else None
        if value not in (None, ""):
            return value
    return None


def _to_decimal(value: Any) -> Optional[Decimal]:
    try:
        if value is None or isinstance(value, bool):
            return None
        if isinstance(value, (int, float, Decimal)):
            return Decimal(str(value))
        if isinstance(value, str):
            value = value.strip()
            if not value:
                return None
        return Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        return None


def _to_int(value: Any) -> Optional[int]:
    dec = _to_decimal(value)
    if dec is None:
        return None
    try:
        return int(dec)
    except (InvalidOperation, ValueError, OverflowError):
        return None


def _major_to_minor(value: Any) -> Optional[int]:
    dec = _to_decimal(value)
    if dec is None:
        return None
    return int((dec * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _decode_custom(raw: Any, tag: str) -> Dict[str, Any]:
    """Custom metadata arrives either as an object or as a JSON string"""
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str) and raw.strip():
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("[%s] failed to decode custom metadata: %s", tag, raw)
            return {}
        if isinstance(parsed, dict):
            return parsed
        logger.warning("[%s] custom metadata parsed to non-dict type: %s", tag, type(parsed))
    return {}


def _parse_plan(value: Any) -> Optional[PlanId]:
    if not value:
        return None
    return _PLAN_ALIASES.get(str(value).strip().lower())


def _parse_cycle(value: Any) -> Optional[BillingCycle]:
    if not value:
        return None
    return _CYCLE_ALIASES.get(str(value).strip().lower())


def _metadata_fields(meta: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "plan_id": _parse_plan(_first(meta, "plan_id", "planId", "plan")),
        "billing_cycle": _parse_cycle(_first(meta, "billing_cycle", "billingCycle", "cycle")),
        "credits_amount": _to_int(_first(meta, "credits_amount", "creditsAmount", "credits")),
        "user_id": _first(meta, "user_id", "userId", "uid"),
        "customer_email": _first(meta, "user_email", "customer_email", "customerEmail", "email"),
    }


def _decode_body(raw_body: bytes, tag: str) -> Dict[str, Any]:
    try:
        payload = json.loads(raw_body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.error("[%s] invalid json body: %s", tag, e)
        raise MalformedPayloadException("invalid json") from e
    if not isinstance(payload, dict):
        raise MalformedPayloadException("webhook body must be a JSON object")
    return payload


class VendorAdapter(ABC):
    """Signature check, payload parsing and classification for one vendor"""

    vendor: Vendor
    signature_headers: Tuple[Tuple[str, str], ...] = ()

    def __init__(
        self,
        shared_secret: Optional[str],
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.shared_secret = shared_secret
        self.clock = clock

    @property
    def tag(self) -> str:
        return self.vendor.value.upper()

    def _find_signature(self, headers: Mapping[str, str]) -> Tuple[Optional[str], str]:
        lowered = {str(k).lower(): v for k, v in headers.items()}
        for header, scheme in self.signature_headers:
            value = lowered.get(header)
            if value:
                return value, scheme
        return None, self.signature_headers[0][1] if self.signature_headers else SCHEME_HMAC_SHA256

    def verify(self, raw_body: bytes, headers: Mapping[str, str], policy: VerificationPolicy) -> bool:
        signature, scheme = self._find_signature(headers)
        return verify_signature(
            raw_body,
            signature,
            self.shared_secret,
            policy,
            scheme=scheme,
            vendor=self.vendor.value,
        )

    def classify(self, event_type: str) -> InternalOutcome:
        return classify(event_type, self.vendor)

    def parse_event(self, raw_body: bytes) -> ParsedEvent:
        payload = _decode_body(raw_body, self.tag)
        return self.parse_payload(payload)

    def parse_payload(self, payload: Dict[str, Any]) -> ParsedEvent:
        event_type = self._extract_event_type(payload)
        if not event_type:
            raise MalformedPayloadException("webhook payload has no event type")

        transaction = self._extract_transaction(payload)
        event_id = self._extract_event_id(payload)
        if not event_id:
            normalized = normalize_event_type(event_type, self.vendor)
            if transaction.transaction_id:
                event_id = f"{transaction.transaction_id}:{normalized}"
                logger.info("[%s] webhook without event id; derived %s", self.tag, event_id)
            elif self.classify(event_type) is InternalOutcome.IGNORED:
                # never persisted, ignored events skip the replay guard
                event_id = f"unidentified:{normalized}"
            else:
                raise MalformedPayloadException("webhook payload has neither event id nor transaction id")

        event = WebhookEvent(
            vendor=self.vendor,
            vendor_event_id=str(event_id),
            event_type=event_type,
            raw_payload=payload,
            received_at=self.clock(),
        )
        return ParsedEvent(event=event, transaction=transaction)

    @abstractmethod
    def _extract_event_type(self, payload: Dict[str, Any]) -> Optional[str]:
        pass

    @abstractmethod
    def _extract_event_id(self, payload: Dict[str, Any]) -> Optional[str]:
        pass

    @abstractmethod
    def _extract_transaction(self, payload: Dict[str, Any]) -> VendorTransaction:
        pass


class HotmartAdapter(VendorAdapter):
    """Hotmart postback (v2): {id, event, data: {buyer, product, purchase, subscription}}"""

    vendor = Vendor.HOTMART
    signature_headers = (
        ("x-hotmart-hottok", SCHEME_TOKEN),
        ("x-hotmart-signature", SCHEME_HMAC_SHA256),
    )

    def _extract_event_type(self, payload: Dict[str, Any]) -> Optional[str]:
        event = payload.get("event") or payload.get("event_type")
        return str(event).strip() if event else None

    def _extract_event_id(self, payload: Dict[str, Any]) -> Optional[str]:
        return payload.get("id") or payload.get("event_id")

    def _extract_transaction(self, payload: Dict[str, Any]) -> VendorTransaction:
        data = payload.get("data") or {}
        if not isinstance(data, dict):
            raise MalformedPayloadException("hotmart payload data must be an object")
        purchase = data.get("purchase") or {}
        if not isinstance(purchase, dict):
            raise MalformedPayloadException("hotmart purchase must be an object")

        meta: Dict[str, Any] = {}
        meta.update(_decode_custom(data.get("metadata"), self.tag))
        meta.update(_decode_custom(purchase.get("custom"), self.tag))
        fields = _metadata_fields(meta)

        price = purchase.get("price")
        if isinstance(price, dict):
            amount = _major_to_minor(price.get("value"))
            currency = price.get("currency_value") or price.get("currency_code")
        else:
            amount = _major_to_minor(price)
            currency = purchase.get("currency")

        billing_cycle = fields["billing_cycle"]
        if billing_cycle is None:
            recurrence = _get(data, "subscription", "plan", "recurrence_period") or _get(purchase, "recurrence_period")
            if recurrence:
                billing_cycle = BillingCycle.YEARLY if _to_int(recurrence) == 365 else BillingCycle.MONTHLY

        return VendorTransaction(
            transaction_id=purchase.get("transaction") or purchase.get("transaction_id"),
            amount=amount,
            currency=currency.upper() if isinstance(currency, str) else None,
            plan_id=fields["plan_id"],
            billing_cycle=billing_cycle,
            credits_amount=fields["credits_amount"],
            customer_email=_get(data, "buyer", "email") or fields["customer_email"],
            user_id=fields["user_id"],
            subscription_id=_get(data, "subscription", "subscriber", "code") or _get(data, "subscription", "id"),
        )


class GreenAdapter(VendorAdapter):
    """Green gateway: {id?, event_type, data: {id, amount, currency, customer, metadata}}"""

    vendor = Vendor.GREEN
    signature_headers = (
        ("green-signature", SCHEME_HMAC_SHA256),
        ("x-green-signature", SCHEME_HMAC_SHA256),
        ("signature", SCHEME_HMAC_SHA256),
    )

    def _extract_event_type(self, payload: Dict[str, Any]) -> Optional[str]:
        event = payload.get("event_type") or payload.get("eventType") or payload.get("type")
        return str(event).strip() if event else None

    def _extract_event_id(self, payload: Dict[str, Any]) -> Optional[str]:
        return payload.get("event_id") or payload.get("eventId") or payload.get("id")

    def _extract_transaction(self, payload: Dict[str, Any]) -> VendorTransaction:
        data = payload.get("data") or {}
        if not isinstance(data, dict):
            raise MalformedPayloadException("green payload data must be an object")
        obj = data.get("payment") or data.get("transaction") or data.get("subscription") or data
        if not isinstance(obj, dict):
            obj = data

        meta = _decode_custom(obj.get("metadata") or data.get("metadata"), self.tag)
        fields = _metadata_fields(meta)

        currency = obj.get("currency") or data.get("currency")
        return VendorTransaction(
            transaction_id=obj.get("id") or obj.get("payment_id") or data.get("payment_id"),
            amount=_to_int(obj.get("amount")),
            currency=currency.upper() if isinstance(currency, str) else None,
            plan_id=fields["plan_id"],
            billing_cycle=fields["billing_cycle"],
            credits_amount=fields["credits_amount"],
            customer_email=_get(obj, "customer", "email") or fields["customer_email"],
            user_id=fields["user_id"],
            subscription_id=obj.get("subscription_id") or _get(data, "subscription", "id"),
        )


def build_adapter_registry(settings) -> Dict[Vendor, VendorAdapter]:
    return {
        Vendor.HOTMART: HotmartAdapter(getattr(settings, "HOTMART_WEBHOOK_SECRET", None)),
        Vendor.GREEN: GreenAdapter(getattr(settings, "GREEN_WEBHOOK_SECRET", None)),
    }
