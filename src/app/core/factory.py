"""
Service factory: dependency wiring
"""
from supabase import create_client
import logging

from core.config import settings
from core.container import container
from core.interfaces import IPaymentStore
from database_helper import DatabaseHelper
from schemas.payments import Vendor
from services.payment_locks import PaymentLockManager
from services.payment_service import PaymentService
from services.reconciler import PaymentReconciler
from services.replay_guard import ReplayGuard
from services.signature_verifier import VerificationPolicy
from services.vendor_adapters import build_adapter_registry
from services.vendor_api_client import GreenApiClient, HotmartApiClient
from services.webhook_service import WebhookService

logger = logging.getLogger(__name__)

class ServiceFactory:
    """Registers service singletons in the container"""

    @staticmethod
    def configure_dependencies(store: IPaymentStore = None, config=None):
        """Build the store, vendor clients and services; a store can be passed in for tests"""
        config = config or settings

        if store is None:
            if not config.SUPABASE_URL or not config.SUPABASE_SERVICE_ROLE_KEY:
                raise RuntimeError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set")
            supabase_admin = create_client(config.SUPABASE_URL, config.SUPABASE_SERVICE_ROLE_KEY)
            store = DatabaseHelper(supabase_admin)

        container.register_singleton(IPaymentStore, store)

        # Vendor REST clients are optional; without them /check answers 502
        vendor_clients = {}
        if config.GREEN_API_KEY:
            vendor_clients[Vendor.GREEN] = GreenApiClient(api_key=config.GREEN_API_KEY, base_url=config.GREEN_API_URL)
        else:
            logger.warning("[GREEN] GREEN_API_KEY is not set; payment status checks are disabled")

        if config.HOTMART_CLIENT_ID and config.HOTMART_CLIENT_SECRET:
            vendor_clients[Vendor.HOTMART] = HotmartApiClient(
                client_id=config.HOTMART_CLIENT_ID,
                client_secret=config.HOTMART_CLIENT_SECRET,
                basic_token=config.HOTMART_BASIC_TOKEN,
                base_url=config.HOTMART_API_URL,
                auth_url=config.HOTMART_AUTH_URL,
            )
        else:
            logger.warning("[HOTMART] HOTMART_CLIENT_ID/SECRET are not set; payment status checks are disabled")

        policy = VerificationPolicy.from_settings(config)
        reconciler = PaymentReconciler.from_settings(store, config)

        webhook_service = WebhookService(
            store,
            build_adapter_registry(config),
            reconciler,
            policy=policy,
            guard=ReplayGuard(store),
            locks=PaymentLockManager(),
        )
        container.register_singleton(WebhookService, webhook_service)
        container.register_singleton(PaymentService, PaymentService(store, vendor_clients))

    @staticmethod
    def get_store() -> IPaymentStore:
        return container.get(IPaymentStore)

    @staticmethod
    def get_webhook_service() -> WebhookService:
        return container.get(WebhookService)

    @staticmethod
    def get_payment_service() -> PaymentService:
        return container.get(PaymentService)

