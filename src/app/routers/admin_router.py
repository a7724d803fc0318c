"""
Administrator API router
"""
import hmac
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status, Query, Path
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from core.responses import success_response
from schemas.admin import EventReplayRequest, PaymentCancelRequest
from schemas.payments import PaymentStatus, Vendor

# injected from main.py
payment_service = None  # type: ignore
webhook_service = None  # type: ignore
admin_token: Optional[str] = None

security = HTTPBearer(auto_error=False)


def set_dependencies(payment_svc, webhook_svc=None, token: Optional[str] = None) -> None:
    """Called from main.py with the configured service instances."""
    global payment_service, webhook_service, admin_token
    payment_service = payment_svc
    webhook_service = webhook_svc
    admin_token = token


async def authorize_admin(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> str:
    """Compare the bearer token with ADMIN_API_TOKEN in constant time."""
    if not admin_token:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Admin API is disabled: ADMIN_API_TOKEN is not configured",
        )

    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Bearer token required",
        )

    if not hmac.compare_digest(credentials.credentials.encode("utf-8"), admin_token.encode("utf-8")):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Administrator access required",
        )

    return "admin"


async def require_services():
    if payment_service is None or webhook_service is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Admin services are not initialised",
        )


async def get_current_admin(admin=Depends(authorize_admin)):
    await require_services()
    return admin


router = APIRouter(
    prefix="/api/v1/admin",
    tags=["admin"],
)


@router.get("/health")
async def admin_health_check(admin=Depends(get_current_admin)):
    return success_response(data={"status": "ok"})


@router.get("/payments")
async def list_payments(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[PaymentStatus] = Query(None, description="Filter by payment status"),
    user_id: Optional[str] = Query(None, description="Filter by user"),
    admin=Depends(get_current_admin),
):
    result = await payment_service.list_payments(page=page, limit=limit, status=status, user_id=user_id)
    return success_response(data=result)


@router.get("/payments/statistics")
async def payment_statistics(
    user_id: Optional[str] = Query(None, description="Restrict to one user"),
    admin=Depends(get_current_admin),
):
    stats = await payment_service.get_statistics(user_id=user_id)
    return success_response(data=stats)


@router.post("/payments/{payment_id}/cancel")
async def cancel_payment(
    request: PaymentCancelRequest,
    payment_id: str = Path(..., description="Payment to cancel"),
    admin=Depends(get_current_admin),
):
    payment = await payment_service.cancel_pending_payment(payment_id, reason=request.reason)
    return success_response(data=payment.model_dump(mode="json"), message="Payment cancelled")


@router.post("/webhooks/{vendor}/{event_id}/replay")
async def replay_event(
    vendor: Vendor,
    event_id: str,
    request: EventReplayRequest,
    admin=Depends(get_current_admin),
):
    ack = await webhook_service.replay(vendor, event_id, reason=request.reason)
    return success_response(data=ack.to_wire(), message="Event replayed")


__all__ = ["router", "set_dependencies", "authorize_admin"]
