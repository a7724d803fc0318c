"""
Service interfaces
"""
from abc import ABC, abstractmethod
from typing import Dict, Any, Optional

from schemas.payments import (
    EntitlementChange,
    PaymentRecord,
    PaymentStatus,
    PlanId,
    UserEntitlement,
    Vendor,
    WebhookEvent,
)


class IPaymentStore(ABC):
    """Persistence for payments, entitlements and processed webhook events"""

    @abstractmethod
    async def get_payment(self, payment_id: str) -> Optional[PaymentRecord]:
        pass

    @abstractmethod
    async def get_payment_by_transaction(self, vendor: Vendor, vendor_transaction_id: str) -> Optional[PaymentRecord]:
        pass

    @abstractmethod
    async def find_latest_payment(
        self,
        user_id: Optional[str],
        status: PaymentStatus = PaymentStatus.COMPLETED,
        plan_ids: Optional[tuple[PlanId, ...]] = None,
        customer_email: Optional[str] = None,
    ) -> Optional[PaymentRecord]:
        """Most recent payment in the given status, by user id or else by buyer e-mail"""
        pass

    @abstractmethod
    async def create_payment(self, record: PaymentRecord) -> PaymentRecord:
        pass

    @abstractmethod
    async def save_payment(self, record: PaymentRecord) -> PaymentRecord:
        """Unconditional overwrite of a payment row.

        Kept for the DataStore contract and maintenance scripts. Webhook and
        admin writes go through apply_reconciliation instead.
        """
        pass

    @abstractmethod
    async def get_entitlement(self, user_id: str) -> Optional[UserEntitlement]:
        pass

    @abstractmethod
    async def find_user_id_by_email(self, email: str) -> Optional[str]:
        pass

    @abstractmethod
    async def save_entitlement(self, entitlement: UserEntitlement) -> UserEntitlement:
        """Unconditional overwrite of a user's entitlement columns.

        Kept for the DataStore contract and maintenance scripts. Reconciliation
        writes an EntitlementChange through apply_reconciliation instead, since
        absolute values race with other payments of the same user.
        """
        pass

    @abstractmethod
    async def apply_reconciliation(
        self,
        payment: PaymentRecord,
        change: Optional[EntitlementChange],
        expected_status: PaymentStatus,
        event: Optional[WebhookEvent] = None,
        actions: Optional[list[str]] = None,
    ) -> bool:
        """Write payment, entitlement change and the processed-event marker in one transaction.

        The change is applied to the user row as locked inside the transaction.
        Returns False when the stored payment is no longer in ``expected_status``.
        """
        pass

    @abstractmethod
    async def has_processed_webhook_event(self, vendor: Vendor, event_id: str) -> bool:
        pass

    @abstractmethod
    async def record_webhook_event(
        self,
        event: WebhookEvent,
        status: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> bool:
        pass

    @abstractmethod
    async def get_webhook_event(self, vendor: Vendor, event_id: str) -> Optional[WebhookEvent]:
        pass

    @abstractmethod
    async def list_payments(
        self,
        page: int = 1,
        limit: int = 10,
        status: Optional[PaymentStatus] = None,
        user_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def get_payment_statistics(self, user_id: Optional[str] = None) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def log_system_event(self, event_type: str, event_data: Dict[str, Any], user_id: str = None):
        pass


class IVendorApiClient(ABC):
    """Read access to a vendor's view of a payment"""

    @abstractmethod
    async def fetch_payment_status(self, vendor_transaction_id: str) -> Dict[str, Any]:
        """Return at least {"status": ...} as reported by the vendor"""
        pass
