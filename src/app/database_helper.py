"""
Supabase access for payments, user entitlements and webhook events
"""

from typing import Dict, List, Optional, Any
from datetime import datetime, timezone
from supabase import Client
import logging
import math

from core.interfaces import IPaymentStore
from core.responses import DatastoreException
from schemas.payments import (
    EntitlementChange,
    PaymentRecord,
    PaymentStatus,
    PlanId,
    UserEntitlement,
    Vendor,
    WebhookEvent,
)

logger = logging.getLogger(__name__)

PAYMENT_COLUMNS = (
    'id,vendor,vendor_transaction_id,amount,currency,plan_id,billing_cycle,'
    'credits_amount,status,customer_email,user_id,created_at,processed_at'
)
ENTITLEMENT_COLUMNS = (
    'id,email,credits_remaining,plan,plan_type,articles_limit,articles_used,'
    'cancel_at_period_end,cancel_requested_at,suspended'
)
# replay guard only trusts rows whose side effects were committed
APPLIED_EVENT_STATUSES = ('processed', 'replayed')


class DatabaseHelper(IPaymentStore):
    def __init__(self, supabase_client: Client, admin_client: Client = None):
        self.supabase = supabase_client
        self.admin_client = admin_client or supabase_client

    def _get_client(self, use_admin: bool = False):
        """Service-role client when one is configured"""
        return self.admin_client if use_admin else self.supabase

    @staticmethod
    def _parse_iso_datetime(value: Any) -> Optional[datetime]:
        """ISO string to datetime, accepting a trailing Z"""
        if not value:
            return None
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                normalized = value.replace('Z', '+00:00')
                return datetime.fromisoformat(normalized)
            except ValueError:
                return None
        return None

    @staticmethod
    def _payment_from_row(row: Dict[str, Any]) -> PaymentRecord:
        return PaymentRecord.model_validate(row)

    @staticmethod
    def _payment_to_row(payment: PaymentRecord) -> Dict[str, Any]:
        return payment.model_dump(mode='json')

    @staticmethod
    def _entitlement_from_row(row: Dict[str, Any]) -> UserEntitlement:
        data = dict(row)
        data['user_id'] = data.pop('id')
        return UserEntitlement.model_validate(data)

    @staticmethod
    def _entitlement_to_row(entitlement: UserEntitlement) -> Dict[str, Any]:
        data = entitlement.model_dump(mode='json')
        data['id'] = data.pop('user_id')
        return data

    @staticmethod
    def _change_to_row(change: EntitlementChange) -> Dict[str, Any]:
        plan_fields = {
            key: value.isoformat() if isinstance(value, datetime) else value
            for key, value in change.plan_fields.items()
        }
        return {
            'id': change.user_id,
            'credits_delta': change.credits_delta,
            'plan_fields': plan_fields,
            'only_if_plan': change.only_if_plan,
            'suspended': change.suspended,
        }

    @staticmethod
    def _event_to_row(event: WebhookEvent) -> Dict[str, Any]:
        return event.model_dump(mode='json')

    # Payments

    async def get_payment(self, payment_id: str) -> Optional[PaymentRecord]:
        try:
            client = self._get_client(use_admin=True)
            result = client.table('payments').select(PAYMENT_COLUMNS).eq('id', payment_id).limit(1).execute()
            return self._payment_from_row(result.data[0]) if result.data else None
        except Exception as e:
            logger.error(f"payment lookup failed: id={payment_id} error={e}")
            raise DatastoreException("payment lookup failed") from e

    async def get_payment_by_transaction(self, vendor: Vendor, vendor_transaction_id: str) -> Optional[PaymentRecord]:
        try:
            client = self._get_client(use_admin=True)
            result = (
                client.table('payments')
                .select(PAYMENT_COLUMNS)
                .eq('vendor', Vendor(vendor).value)
                .eq('vendor_transaction_id', vendor_transaction_id)
                .limit(1)
                .execute()
            )
            return self._payment_from_row(result.data[0]) if result.data else None
        except Exception as e:
            logger.error(f"payment lookup by transaction failed: {vendor}/{vendor_transaction_id} error={e}")
            raise DatastoreException("payment lookup failed") from e

    async def find_latest_payment(
        self,
        user_id: Optional[str],
        status: PaymentStatus = PaymentStatus.COMPLETED,
        plan_ids: Optional[tuple[PlanId, ...]] = None,
        customer_email: Optional[str] = None,
    ) -> Optional[PaymentRecord]:
        if not user_id and not customer_email:
            return None
        try:
            client = self._get_client(use_admin=True)
            query = client.table('payments').select(PAYMENT_COLUMNS)
            if user_id:
                query = query.eq('user_id', user_id)
            else:
                query = query.ilike('customer_email', customer_email.strip())
            query = query.eq('status', PaymentStatus(status).value)
            if plan_ids:
                query = query.in_('plan_id', [PlanId(p).value for p in plan_ids])
            result = query.order('created_at', desc=True).limit(1).execute()
            return self._payment_from_row(result.data[0]) if result.data else None
        except Exception as e:
            logger.error(f"latest payment lookup failed: user_id={user_id} error={e}")
            raise DatastoreException("payment lookup failed") from e

    async def create_payment(self, record: PaymentRecord) -> PaymentRecord:
        try:
            client = self._get_client(use_admin=True)
            result = client.table('payments').insert(self._payment_to_row(record)).execute()
            return self._payment_from_row(result.data[0]) if result.data else record
        except Exception as e:
            logger.error(f"payment insert failed: {record.vendor.value}/{record.vendor_transaction_id} error={e}")
            raise DatastoreException("payment insert failed") from e

    async def save_payment(self, record: PaymentRecord) -> PaymentRecord:
        try:
            client = self._get_client(use_admin=True)
            row = self._payment_to_row(record)
            row.pop('id')
            result = client.table('payments').update(row).eq('id', record.id).execute()
            return self._payment_from_row(result.data[0]) if result.data else record
        except Exception as e:
            logger.error(f"payment update failed: id={record.id} error={e}")
            raise DatastoreException("payment update failed") from e

    # Users

    async def get_entitlement(self, user_id: str) -> Optional[UserEntitlement]:
        try:
            client = self._get_client(use_admin=True)
            result = client.table('users').select(ENTITLEMENT_COLUMNS).eq('id', user_id).limit(1).execute()
            return self._entitlement_from_row(result.data[0]) if result.data else None
        except Exception as e:
            logger.error(f"entitlement lookup failed: user_id={user_id} error={e}")
            raise DatastoreException("user lookup failed") from e

    async def find_user_id_by_email(self, email: str) -> Optional[str]:
        try:
            client = self._get_client(use_admin=True)
            result = client.table('users').select('id').ilike('email', email.strip()).limit(1).execute()
            return result.data[0]['id'] if result.data else None
        except Exception as e:
            logger.error(f"user lookup by email failed: {e}")
            raise DatastoreException("user lookup failed") from e

    async def save_entitlement(self, entitlement: UserEntitlement) -> UserEntitlement:
        try:
            client = self._get_client(use_admin=True)
            row = self._entitlement_to_row(entitlement)
            user_id = row.pop('id')
            row.pop('email', None)
            result = client.table('users').update(row).eq('id', user_id).execute()
            return self._entitlement_from_row(result.data[0]) if result.data else entitlement
        except Exception as e:
            logger.error(f"entitlement update failed: user_id={entitlement.user_id} error={e}")
            raise DatastoreException("user update failed") from e

    async def apply_reconciliation(
        self,
        payment: PaymentRecord,
        change: Optional[EntitlementChange],
        expected_status: PaymentStatus,
        event: Optional[WebhookEvent] = None,
        actions: Optional[List[str]] = None,
    ) -> bool:
        """Single transaction in the reconcile_payment SQL function"""
        params = {
            'p_payment': self._payment_to_row(payment),
            'p_expected_status': PaymentStatus(expected_status).value,
            'p_change': self._change_to_row(change) if change else None,
            'p_event': self._event_to_row(event) if event else None,
            'p_details': {'actions': list(actions or [])},
        }
        try:
            client = self._get_client(use_admin=True)
            result = client.rpc('reconcile_payment', params).execute()
        except Exception as e:
            logger.error(f"reconcile_payment rpc failed: payment={payment.id} error={e}")
            raise DatastoreException("reconciliation write failed") from e

        applied = result.data
        if isinstance(applied, list):
            applied = applied[0] if applied else False
        return bool(applied)

    # Webhook events

    async def has_processed_webhook_event(self, vendor: Vendor, event_id: str) -> bool:
        """Whether this vendor event was already applied"""
        if not event_id:
            return False
        try:
            client = self._get_client(use_admin=True)
            result = (
                client.table('webhook_events')
                .select('id')
                .eq('vendor', Vendor(vendor).value)
                .eq('vendor_event_id', event_id)
                .in_('status', list(APPLIED_EVENT_STATUSES))
                .limit(1)
                .execute()
            )
            return bool(result.data)
        except Exception as e:
            logger.error(f"webhook replay check failed: {vendor}/{event_id} error={e}")
            raise DatastoreException("webhook replay check failed") from e

    async def record_webhook_event(
        self,
        event: WebhookEvent,
        status: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Upsert the delivery keyed by (vendor, vendor_event_id)"""
        try:
            row = self._event_to_row(event)
            row['status'] = status
            row['details'] = details or {}
            client = self._get_client(use_admin=True)
            result = (
                client.table('webhook_events')
                .upsert(row, on_conflict='vendor,vendor_event_id')
                .execute()
            )
            return bool(result.data)
        except Exception as e:
            logger.error(f"webhook event record failed: {event.vendor.value}/{event.vendor_event_id} error={e}")
            raise DatastoreException("webhook event record failed") from e

    async def get_webhook_event(self, vendor: Vendor, event_id: str) -> Optional[WebhookEvent]:
        try:
            client = self._get_client(use_admin=True)
            result = (
                client.table('webhook_events')
                .select('vendor,vendor_event_id,event_type,raw_payload,received_at')
                .eq('vendor', Vendor(vendor).value)
                .eq('vendor_event_id', event_id)
                .limit(1)
                .execute()
            )
            return WebhookEvent.model_validate(result.data[0]) if result.data else None
        except Exception as e:
            logger.error(f"webhook event lookup failed: {vendor}/{event_id} error={e}")
            raise DatastoreException("webhook event lookup failed") from e

    # Admin

    async def list_payments(
        self,
        page: int = 1,
        limit: int = 10,
        status: Optional[PaymentStatus] = None,
        user_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Paginated payment list, newest first"""
        try:
            client = self._get_client(use_admin=True)
            page_size = max(1, min(limit, 100))
            start = (max(1, page) - 1) * page_size

            query = client.table('payments').select(PAYMENT_COLUMNS, count='exact')
            if status:
                query = query.eq('status', PaymentStatus(status).value)
            if user_id:
                query = query.eq('user_id', user_id)

            result = query.order('created_at', desc=True).range(start, start + page_size - 1).execute()
            total_items = result.count if result.count is not None else len(result.data or [])

            return {
                "payments": [self._payment_from_row(row).model_dump(mode='json') for row in result.data or []],
                "total": total_items,
                "pages": max(1, math.ceil(total_items / page_size)),
                "current_page": max(1, page),
            }
        except Exception as e:
            logger.error(f"payment list failed: {e}")
            raise DatastoreException("payment list failed") from e

    async def get_payment_statistics(self, user_id: Optional[str] = None) -> Dict[str, Any]:
        """Counts per status and revenue of completed payments (minor units)"""
        try:
            client = self._get_client(use_admin=True)
            query = client.table('payments').select('status,amount,created_at')
            if user_id:
                query = query.eq('user_id', user_id)
            rows = query.execute().data or []
        except Exception as e:
            logger.error(f"payment statistics failed: {e}")
            raise DatastoreException("payment statistics failed") from e

        now = datetime.now(timezone.utc)
        counts = {status.value: 0 for status in PaymentStatus}
        total_revenue = 0
        monthly_revenue = 0

        for row in rows:
            status = row.get('status')
            if status in counts:
                counts[status] += 1
            if status != PaymentStatus.COMPLETED.value:
                continue
            amount = int(row.get('amount') or 0)
            total_revenue += amount
            created_at = self._parse_iso_datetime(row.get('created_at'))
            if created_at and created_at.year == now.year and created_at.month == now.month:
                monthly_revenue += amount

        return {
            "total_payments": len(rows),
            "by_status": counts,
            "total_revenue": total_revenue,
            "monthly_revenue": monthly_revenue,
        }

    async def log_system_event(self, event_type: str = 'info', event_data: Dict = None,
                               user_id: str = None) -> bool:
        """Audit row in system_logs; failures are logged and reported as False"""
        try:
            log_data = {
                'user_id': user_id,
                'event_type': event_type,
                'event_data': event_data or {},
            }

            result = self.admin_client.table('system_logs').insert(log_data).execute()
            return len(result.data) > 0
        except Exception as e:
            logger.error(f"system log insert failed: {e}")
            return False
