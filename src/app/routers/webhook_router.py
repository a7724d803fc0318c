"""
Payment webhook router

POST /api/v1/webhooks/{vendor} for Hotmart and Green deliveries:
- signature check per vendor (401 on failure)
- replayed events acknowledged without side effects
- payment and entitlement reconciled in one datastore write
"""
import logging
from typing import Optional

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from core.responses import BusinessException, SignatureInvalidException, success_response
from schemas.payments import Vendor
from services.ack_builder import build_error_ack

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/webhooks", tags=["webhooks", "payments"])

# injected from main.py
webhook_service = None  # type: ignore


def set_dependencies(webhook_svc) -> None:
    global webhook_service
    webhook_service = webhook_svc


def _resolve_vendor(vendor: str) -> Optional[Vendor]:
    try:
        return Vendor((vendor or "").strip().lower())
    except ValueError:
        return None


def _error(status_code: int, error: str, message: Optional[str] = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=build_error_ack(error, message).to_wire())


@router.get("/{vendor}")
async def webhook_alive(vendor: str):
    resolved = _resolve_vendor(vendor)
    if resolved is None:
        return _error(404, "Not Found", f"unknown vendor: {vendor}")
    return success_response(data={"ok": True}, message=f"{resolved.value} webhook alive")


@router.post("/{vendor}")
async def receive_webhook(vendor: str, request: Request):
    resolved = _resolve_vendor(vendor)
    if resolved is None:
        logger.warning("[WEBHOOK] delivery for unknown vendor: %s", vendor)
        return _error(404, "Not Found", f"unknown vendor: {vendor}")

    if webhook_service is None:
        logger.error("[WEBHOOK] webhook service is not initialised")
        return _error(500, "Internal Server Error", "webhook service unavailable")

    raw = await request.body()

    try:
        ack = await webhook_service.process(resolved, raw, request.headers)
    except SignatureInvalidException:
        return _error(401, "Unauthorized")
    except BusinessException as e:
        # the vendor retries on 5xx; 4xx is final
        log = logger.warning if e.status_code < 500 else logger.error
        log("[WEBHOOK] %s delivery failed: code=%s message=%s", resolved.value, e.error_code, e.message)
        return _error(e.status_code, e.error_code or "Error", e.message)
    except Exception as e:
        logger.error("[WEBHOOK] %s delivery crashed: %s", resolved.value, e, exc_info=True)
        return _error(500, "Internal Server Error", "webhook processing failed")

    return ack.to_wire()
