"""
Payment service
Checkout registration, payment lookup and administrator operations
"""
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional
from uuid import uuid4

from core.base_service import BaseService
from core.billing_config import PlanConfig
from core.interfaces import IPaymentStore, IVendorApiClient
from core.responses import (
    ConflictException,
    DatastoreException,
    ExternalServiceException,
    NotFoundException,
    ValidationException,
)
from schemas.payments import (
    CheckoutRequest,
    PaymentRecord,
    PaymentStatus,
    PlanId,
    Vendor,
)
from services.vendor_api_client import VendorAPIError


class PaymentService(BaseService):
    """Payment records outside the webhook path"""

    def __init__(
        self,
        store: IPaymentStore,
        vendor_clients: Optional[Mapping[Vendor, IVendorApiClient]] = None,
        *,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        super().__init__(store)
        self.vendor_clients = dict(vendor_clients or {})
        self.clock = clock

    async def create_checkout(self, request: CheckoutRequest) -> PaymentRecord:
        """Register a pending payment; the same vendor transaction returns the existing record"""

        existing = await self.store.get_payment_by_transaction(request.vendor, request.vendor_transaction_id)
        if existing is not None:
            self.logger.info(
                "checkout already registered: vendor=%s tx_id=%s payment=%s",
                request.vendor.value,
                request.vendor_transaction_id,
                existing.id,
            )
            return existing

        if not PlanConfig.supports_cycle(request.plan_id, request.billing_cycle):
            raise ValidationException(
                f"Plan {request.plan_id.value} is not sold with billing cycle {request.billing_cycle.value}",
                errors=[{"field": "billing_cycle", "value": request.billing_cycle.value}],
            )

        credits_amount = 0
        if request.plan_id is PlanId.PER_ARTICLE:
            credits_amount = request.credits_amount or 1
        elif request.credits_amount:
            raise ValidationException(
                "credits_amount only applies to per-article purchases",
                errors=[{"field": "credits_amount", "value": request.credits_amount}],
            )

        amount = PlanConfig.get_price(request.plan_id, request.billing_cycle, credits_amount or 1)
        record = PaymentRecord(
            id=str(uuid4()),
            vendor=request.vendor,
            vendor_transaction_id=request.vendor_transaction_id,
            amount=amount,
            currency="BRL",
            plan_id=request.plan_id,
            billing_cycle=request.billing_cycle,
            credits_amount=credits_amount,
            status=PaymentStatus.PENDING,
            customer_email=request.customer_email,
            user_id=request.user_id,
            created_at=self.clock(),
        )

        created = await self.store.create_payment(record)
        self.logger.info(
            "checkout registered: payment=%s vendor=%s plan=%s cycle=%s amount=%s",
            created.id,
            created.vendor.value,
            created.plan_id.value,
            created.billing_cycle.value,
            created.amount,
        )
        await self.log_event(
            "checkout_created",
            {
                "payment_id": created.id,
                "vendor": created.vendor.value,
                "plan_id": created.plan_id.value,
                "amount": created.amount,
            },
            user_id=created.user_id,
        )
        return created

    async def get_payment(self, payment_id: str) -> PaymentRecord:
        payment = await self.store.get_payment(payment_id)
        if payment is None:
            raise NotFoundException(f"Payment {payment_id} not found")
        return payment

    async def check_payment(self, payment_id: str) -> Dict[str, Any]:
        """Compare the stored status with the vendor's view; never mutates the record"""

        payment = await self.get_payment(payment_id)
        client = self.vendor_clients.get(payment.vendor)
        if client is None:
            raise ExternalServiceException(payment.vendor.value, f"{payment.vendor.value} API client is not configured")

        try:
            remote = await client.fetch_payment_status(payment.vendor_transaction_id)
        except VendorAPIError as e:
            self.logger.error(
                "vendor status check failed: payment=%s vendor=%s status=%s code=%s",
                payment.id,
                payment.vendor.value,
                e.status_code,
                e.code,
            )
            raise ExternalServiceException(payment.vendor.value, str(e)) from e

        return {
            "payment_id": payment.id,
            "vendor": payment.vendor.value,
            "vendor_transaction_id": payment.vendor_transaction_id,
            "local_status": payment.status.value,
            "vendor_status": remote.get("status"),
            "vendor_details": remote,
        }

    async def list_payments(
        self,
        page: int = 1,
        limit: int = 10,
        status: Optional[PaymentStatus] = None,
        user_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        page = max(1, page)
        limit = max(1, min(limit, 100))
        return await self.store.list_payments(page=page, limit=limit, status=status, user_id=user_id)

    async def get_statistics(self, user_id: Optional[str] = None) -> Dict[str, Any]:
        return await self.store.get_payment_statistics(user_id=user_id)

    async def cancel_pending_payment(self, payment_id: str, reason: Optional[str] = None) -> PaymentRecord:
        """pending -> cancelled; only abandoned checkouts can be cancelled this way"""

        payment = await self.get_payment(payment_id)
        if payment.status is not PaymentStatus.PENDING:
            raise ConflictException(
                f"Payment {payment_id} is {payment.status.value}; only pending payments can be cancelled"
            )

        cancelled = payment.model_copy(
            update={"status": PaymentStatus.CANCELLED, "processed_at": self.clock()}
        )
        applied = await self.store.apply_reconciliation(cancelled, None, PaymentStatus.PENDING)
        if not applied:
            raise DatastoreException("payment changed concurrently; retry")

        self.logger.info("payment cancelled by administrator: payment=%s reason=%s", payment_id, reason)
        await self.log_event(
            "payment_cancelled",
            {"payment_id": payment_id, "reason": reason},
            user_id=payment.user_id,
        )
        return cancelled

    @staticmethod
    def get_plan_catalogue() -> Dict[str, Any]:
        return {plan.value: PlanConfig.get_plan_info(plan) for plan in PlanId}
