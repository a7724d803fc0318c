"""
Payments API router
"""
from fastapi import APIRouter, HTTPException, status, Path

from core.responses import success_response
from schemas.payments import CheckoutRequest

router = APIRouter(prefix="/api/v1/payments", tags=["payments"])

# injected from main.py
payment_service = None  # type: ignore


def set_dependencies(payment_svc) -> None:
    global payment_service
    payment_service = payment_svc


def _require_service():
    if payment_service is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Payment service is not initialised",
        )
    return payment_service


@router.get("/plans")
async def list_plans():
    """Plan catalogue with prices in BRL minor units"""
    service = _require_service()
    return success_response(data=service.get_plan_catalogue())


@router.post("/checkout")
async def create_checkout(request: CheckoutRequest):
    """Register a pending payment when the buyer is sent to the vendor checkout"""
    service = _require_service()
    payment = await service.create_checkout(request)
    return success_response(data=payment.model_dump(mode="json"), message="Checkout registered")


@router.get("/{payment_id}")
async def get_payment(payment_id: str = Path(..., description="Payment id")):
    service = _require_service()
    payment = await service.get_payment(payment_id)
    return success_response(data=payment.model_dump(mode="json"))


@router.get("/{payment_id}/check")
async def check_payment(payment_id: str = Path(..., description="Payment id")):
    """Vendor-side status next to the stored one; read only"""
    service = _require_service()
    result = await service.check_payment(payment_id)
    return success_response(data=result)
