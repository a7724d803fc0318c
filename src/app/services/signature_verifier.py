"""
Webhook signature verification

HMAC-SHA256 over the raw request body, or a shared token echoed in a header
(Hotmart "hottok"). Verification fails closed; skipping it for unsigned
requests is only possible through an explicit non-production policy.
"""
import hashlib
import hmac
import logging
from dataclasses import dataclass
from typing import Optional

from core.config import NON_PRODUCTION_ENVIRONMENTS

logger = logging.getLogger(__name__)

SCHEME_HMAC_SHA256 = "hmac-sha256"
SCHEME_TOKEN = "token"


@dataclass(frozen=True, slots=True)
class VerificationPolicy:
    """Whether unsigned deliveries may be accepted in this deployment"""

    environment: str = "production"
    allow_unsigned: bool = False

    def __post_init__(self):
        if self.allow_unsigned and self.environment not in NON_PRODUCTION_ENVIRONMENTS:
            raise ValueError(
                f"webhook verification bypass is not allowed in environment '{self.environment}'"
            )

    @classmethod
    def strict(cls) -> "VerificationPolicy":
        return cls()

    @classmethod
    def from_settings(cls, settings) -> "VerificationPolicy":
        environment = (getattr(settings, "ENVIRONMENT", "production") or "production").lower()
        bypass = bool(getattr(settings, "WEBHOOK_VERIFY_BYPASS", False))
        if bypass and environment not in NON_PRODUCTION_ENVIRONMENTS:
            logger.error(
                "[WEBHOOK] WEBHOOK_VERIFY_BYPASS ignored in environment '%s'", environment
            )
            bypass = False
        return cls(environment=environment, allow_unsigned=bypass)


def compute_signature(raw_body: bytes, shared_secret: str) -> str:
    """Hex HMAC-SHA256 of the body"""
    return hmac.new(shared_secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def _normalize_provided(signature: str, scheme: str) -> str:
    value = signature.strip()
    if scheme == SCHEME_HMAC_SHA256:
        if "=" in value and value.split("=", 1)[0].lower() in {"sha256", "hmac-sha256"}:
            value = value.split("=", 1)[1].strip()
        value = value.lower()
    return value


def verify_signature(
    raw_body: bytes,
    provided_signature: Optional[str],
    shared_secret: Optional[str],
    policy: VerificationPolicy,
    *,
    scheme: str = SCHEME_HMAC_SHA256,
    vendor: str = "webhook",
) -> bool:
    """Return True when the delivery is authentic (or explicitly waived)."""

    tag = vendor.upper()
    secret = (shared_secret or "").strip()

    if not secret or not provided_signature:
        if policy.allow_unsigned:
            logger.warning(
                "[%s] accepting unverified webhook (environment=%s, has_secret=%s, has_signature=%s)",
                tag,
                policy.environment,
                bool(secret),
                bool(provided_signature),
            )
            return True
        if not secret:
            logger.error("[%s] webhook secret not configured; rejecting delivery", tag)
        else:
            logger.warning("[%s] missing webhook signature header", tag)
        return False

    try:
        provided = _normalize_provided(provided_signature, scheme)
        if scheme == SCHEME_TOKEN:
            expected = secret
        elif scheme == SCHEME_HMAC_SHA256:
            expected = compute_signature(raw_body, secret)
        else:
            logger.error("[%s] unknown signature scheme: %s", tag, scheme)
            return False

        if hmac.compare_digest(expected.encode("utf-8"), provided.encode("utf-8")):
            return True

        logger.error("[%s] signature mismatch", tag)
        return False
    except Exception as e:
        logger.error(f"[{tag}] signature verification error: {e}")
        return False
