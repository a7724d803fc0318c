import pytest

from mocks import InMemoryPaymentStore, fixed_clock
from services.payment_locks import PaymentLockManager
from services.reconciler import PaymentReconciler
from services.replay_guard import ReplayGuard
from services.signature_verifier import VerificationPolicy
from services.vendor_adapters import GreenAdapter, HotmartAdapter
from services.webhook_service import WebhookService
from schemas.payments import Vendor

GREEN_SECRET = "green-test-secret"
HOTMART_HOTTOK = "hotmart-test-hottok"


@pytest.fixture
def store():
    return InMemoryPaymentStore()


@pytest.fixture
def reconciler(store):
    return PaymentReconciler(store, professional_articles_limit=5, clock=fixed_clock)


@pytest.fixture
def webhook_service(store, reconciler):
    adapters = {
        Vendor.GREEN: GreenAdapter(GREEN_SECRET, clock=fixed_clock),
        Vendor.HOTMART: HotmartAdapter(HOTMART_HOTTOK, clock=fixed_clock),
    }
    return WebhookService(
        store,
        adapters,
        reconciler,
        policy=VerificationPolicy.strict(),
        guard=ReplayGuard(store),
        locks=PaymentLockManager(),
        clock=fixed_clock,
    )
