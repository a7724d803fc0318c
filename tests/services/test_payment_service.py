"""Checkout registration, vendor status checks and admin operations"""
import pytest

from core.responses import (
    ConflictException,
    ExternalServiceException,
    NotFoundException,
    ValidationException,
)
from mocks import FIXED_NOW, StubVendorClient, fixed_clock
from schemas.payments import BillingCycle, CheckoutRequest, PaymentStatus, PlanId, Vendor
from services.payment_service import PaymentService
from services.vendor_api_client import VendorAPIError


@pytest.fixture
def green_client():
    return StubVendorClient(status="paid")


@pytest.fixture
def payment_service(store, green_client):
    return PaymentService(store, {Vendor.GREEN: green_client}, clock=fixed_clock)


def _checkout(**fields):
    defaults = {
        "vendor": Vendor.GREEN,
        "vendor_transaction_id": "grn_tx_1",
        "plan_id": PlanId.PER_ARTICLE,
        "customer_email": "ana@example.com",
        "user_id": "user_1",
    }
    defaults.update(fields)
    return CheckoutRequest(**defaults)


@pytest.mark.asyncio
async def test_checkout_registers_pending_payment(store, payment_service):
    record = await payment_service.create_checkout(_checkout(credits_amount=3))

    assert record.status is PaymentStatus.PENDING
    assert record.processed_at is None
    assert record.amount == 4500
    assert record.currency == "BRL"
    assert record.credits_amount == 3
    assert record.created_at == FIXED_NOW
    assert store.payments[record.id] == record
    assert store.system_logs[-1]["event_type"] == "checkout_created"


@pytest.mark.asyncio
async def test_checkout_defaults_to_one_credit(payment_service):
    record = await payment_service.create_checkout(_checkout())
    assert record.credits_amount == 1
    assert record.amount == 1500


@pytest.mark.asyncio
async def test_checkout_is_idempotent_per_vendor_transaction(store, payment_service):
    first = await payment_service.create_checkout(_checkout())
    second = await payment_service.create_checkout(_checkout(credits_amount=5))

    assert second.id == first.id
    assert len(store.payments) == 1


@pytest.mark.asyncio
async def test_plan_checkout_uses_cycle_price(payment_service):
    record = await payment_service.create_checkout(
        _checkout(plan_id=PlanId.PROFESSIONAL, billing_cycle=BillingCycle.YEARLY)
    )
    assert record.amount == 79000
    assert record.credits_amount == 0


@pytest.mark.asyncio
async def test_unsupported_cycle_is_rejected(payment_service):
    with pytest.raises(ValidationException) as exc_info:
        await payment_service.create_checkout(
            _checkout(plan_id=PlanId.INSTITUTIONAL, billing_cycle=BillingCycle.MONTHLY)
        )
    assert exc_info.value.errors[0]["field"] == "billing_cycle"


@pytest.mark.asyncio
async def test_credits_on_a_plan_checkout_are_rejected(payment_service):
    with pytest.raises(ValidationException):
        await payment_service.create_checkout(
            _checkout(plan_id=PlanId.PROFESSIONAL, billing_cycle=BillingCycle.MONTHLY, credits_amount=2)
        )


@pytest.mark.asyncio
async def test_get_payment_raises_when_missing(payment_service):
    with pytest.raises(NotFoundException):
        await payment_service.get_payment("missing")


@pytest.mark.asyncio
async def test_check_payment_reports_both_statuses_without_mutating(store, payment_service, green_client):
    payment = store.add_payment(vendor_transaction_id="grn_tx_1")

    report = await payment_service.check_payment(payment.id)

    assert green_client.requested == ["grn_tx_1"]
    assert report["local_status"] == "pending"
    assert report["vendor_status"] == "paid"
    assert store.payments[payment.id].status is PaymentStatus.PENDING


@pytest.mark.asyncio
async def test_check_payment_without_client_is_external_error(store, payment_service):
    payment = store.add_payment(vendor=Vendor.HOTMART, vendor_transaction_id="HP1")
    with pytest.raises(ExternalServiceException):
        await payment_service.check_payment(payment.id)


@pytest.mark.asyncio
async def test_check_payment_wraps_vendor_errors(store):
    client = StubVendorClient(error=VendorAPIError("boom", 503, {}, vendor="green"))
    service = PaymentService(store, {Vendor.GREEN: client}, clock=fixed_clock)
    payment = store.add_payment(vendor_transaction_id="grn_tx_1")

    with pytest.raises(ExternalServiceException) as exc_info:
        await service.check_payment(payment.id)
    assert exc_info.value.status_code == 502


@pytest.mark.asyncio
async def test_cancel_pending_payment(store, payment_service):
    payment = store.add_payment(vendor_transaction_id="grn_tx_1")

    cancelled = await payment_service.cancel_pending_payment(payment.id, reason="abandoned")

    assert cancelled.status is PaymentStatus.CANCELLED
    assert cancelled.processed_at == FIXED_NOW
    assert store.payments[payment.id].status is PaymentStatus.CANCELLED
    assert store.system_logs[-1]["event_data"] == {"payment_id": payment.id, "reason": "abandoned"}


@pytest.mark.asyncio
async def test_cancel_rejects_settled_payment(store, payment_service):
    payment = store.add_payment(
        vendor_transaction_id="grn_tx_1", status=PaymentStatus.COMPLETED, processed_at=FIXED_NOW
    )
    with pytest.raises(ConflictException):
        await payment_service.cancel_pending_payment(payment.id)
    assert store.payments[payment.id].status is PaymentStatus.COMPLETED


@pytest.mark.asyncio
async def test_list_payments_clamps_paging(store, payment_service):
    for i in range(3):
        store.add_payment(vendor_transaction_id=f"tx_{i}")

    page = await payment_service.list_payments(page=0, limit=500)

    assert page["current_page"] == 1
    assert page["total"] == 3
    assert len(page["payments"]) == 3


@pytest.mark.asyncio
async def test_statistics_count_completed_revenue(store, payment_service):
    store.add_payment(vendor_transaction_id="a", amount=1500, status=PaymentStatus.COMPLETED, processed_at=FIXED_NOW)
    store.add_payment(vendor_transaction_id="b", amount=7900)

    stats = await payment_service.get_statistics()

    assert stats["total_payments"] == 2
    assert stats["by_status"]["completed"] == 1
    assert stats["total_revenue"] == 1500


def test_plan_catalogue_lists_every_plan():
    catalogue = PaymentService.get_plan_catalogue()
    assert set(catalogue) == {"per-article", "professional", "institutional"}
    assert catalogue["professional"]["prices"] == {"monthly": 7900, "yearly": 79000}
