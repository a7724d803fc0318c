"""
Webhook orchestration

verify -> parse -> classify -> lock -> replay check -> reconcile -> ack
"""
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional

from core.base_service import BaseService
from core.interfaces import IPaymentStore
from core.responses import (
    BusinessException,
    InvalidTransitionException,
    MalformedPayloadException,
    NotFoundException,
    SignatureInvalidException,
    UnknownCustomerException,
)
from schemas.payments import (
    AckPayload,
    BillingCycle,
    InternalOutcome,
    ParsedEvent,
    PaymentRecord,
    PaymentStatus,
    PlanId,
    ReconcileResult,
    Vendor,
)
from services.ack_builder import build_ack, build_duplicate_ack, build_ignored_ack
from services.payment_locks import PaymentLockManager
from services.reconciler import PaymentReconciler
from services.replay_guard import ReplayGuard
from services.signature_verifier import VerificationPolicy
from services.vendor_adapters import VendorAdapter

# outcomes that may create a payment record for a transaction we never saw at checkout
ADOPTABLE_OUTCOMES = frozenset(
    {InternalOutcome.SUCCESS, InternalOutcome.PENDING, InternalOutcome.FAILURE}
)

PLAN_SUBSCRIPTIONS = (PlanId.PROFESSIONAL, PlanId.INSTITUTIONAL)


class WebhookService(BaseService):
    """Runs one vendor delivery through the reconciliation pipeline"""

    def __init__(
        self,
        store: IPaymentStore,
        adapters: Mapping[Vendor, VendorAdapter],
        reconciler: PaymentReconciler,
        *,
        policy: Optional[VerificationPolicy] = None,
        guard: Optional[ReplayGuard] = None,
        locks: Optional[PaymentLockManager] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        super().__init__(store)
        self.adapters = dict(adapters)
        self.reconciler = reconciler
        self.policy = policy or VerificationPolicy.strict()
        self.guard = guard or ReplayGuard(store)
        self.locks = locks or PaymentLockManager()
        self.clock = clock

    def get_adapter(self, vendor: Vendor) -> VendorAdapter:
        adapter = self.adapters.get(vendor)
        if adapter is None:
            raise NotFoundException(f"unknown vendor: {vendor.value}")
        return adapter

    async def process(self, vendor: Vendor, raw_body: bytes, headers: Mapping[str, str]) -> AckPayload:
        adapter = self.get_adapter(vendor)
        self.logger.info("[%s] webhook received: len=%s", adapter.tag, len(raw_body))

        if not adapter.verify(raw_body, headers, self.policy):
            self.logger.warning("[%s] signature rejected", adapter.tag)
            raise SignatureInvalidException()

        parsed = adapter.parse_event(raw_body)
        return await self._run(adapter, parsed, check_replay=True)

    async def replay(self, vendor: Vendor, vendor_event_id: str, reason: Optional[str] = None) -> AckPayload:
        """Re-run a stored delivery, skipping the replay guard"""
        adapter = self.get_adapter(vendor)
        stored = await self.store.get_webhook_event(vendor, vendor_event_id)
        if stored is None:
            raise NotFoundException(f"webhook event not found: {vendor.value}/{vendor_event_id}")

        self.logger.info("[%s] replaying event %s reason=%s", adapter.tag, vendor_event_id, reason)
        parsed = adapter.parse_payload(stored.raw_payload)
        # keep the stored id; derived ids could differ if the payload was edited upstream
        parsed.event = parsed.event.model_copy(update={"vendor_event_id": vendor_event_id})
        ack = await self._run(adapter, parsed, check_replay=False, status_label="replayed")
        await self.log_event(
            "webhook_replayed",
            {"vendor": vendor.value, "event_id": vendor_event_id, "reason": reason, "status": ack.status},
        )
        return ack

    async def _run(
        self,
        adapter: VendorAdapter,
        parsed: ParsedEvent,
        *,
        check_replay: bool,
        status_label: str = "processed",
    ) -> AckPayload:
        event = parsed.event
        transaction = parsed.transaction
        outcome = adapter.classify(event.event_type)

        self.logger.info(
            "[%s] event=%s outcome=%s event_id=%s tx_id=%s",
            adapter.tag,
            event.event_type,
            outcome.value,
            event.vendor_event_id,
            transaction.transaction_id,
        )

        if outcome is InternalOutcome.IGNORED:
            return build_ignored_ack(event.event_type)

        lock_key = transaction.transaction_id or event.vendor_event_id
        async with self.locks.hold(adapter.vendor.value, lock_key):
            if check_replay and not await self.guard.should_process(adapter.vendor, event.vendor_event_id):
                payment = None
                if transaction.transaction_id:
                    payment = await self.store.get_payment_by_transaction(adapter.vendor, transaction.transaction_id)
                return build_duplicate_ack(event.event_type, payment.id if payment else None)

            try:
                payment = await self._resolve_payment(adapter, parsed, outcome)
                if payment is None:
                    await self.guard.mark_processed(event, status_label, {"info": "no payment to cancel"})
                    return build_ack(event.event_type, None, None)

                result = await self.reconciler.reconcile(outcome, payment, event=event)
            except (InvalidTransitionException, UnknownCustomerException, MalformedPayloadException) as e:
                await self._record_failure(parsed, e)
                raise

            if not result.persisted:
                await self.guard.mark_processed(event, status_label, self._details(result))

        await self.log_event(
            "webhook_processed",
            {
                "vendor": adapter.vendor.value,
                "event_id": event.vendor_event_id,
                "event_type": event.event_type,
                "payment_id": result.payment.id,
                "previous_status": result.previous_status.value,
                "status": result.payment.status.value,
                "actions": result.actions_taken,
            },
            user_id=result.entitlement.user_id if result.entitlement else result.payment.user_id,
        )
        return build_ack(event.event_type, result.payment.id, result)

    async def _resolve_payment(
        self,
        adapter: VendorAdapter,
        parsed: ParsedEvent,
        outcome: InternalOutcome,
    ) -> Optional[PaymentRecord]:
        transaction = parsed.transaction
        payment = None
        if transaction.transaction_id:
            payment = await self.store.get_payment_by_transaction(adapter.vendor, transaction.transaction_id)
        if payment is not None:
            return payment

        if outcome is InternalOutcome.SUBSCRIPTION_CANCELLED:
            return await self._find_subscription_payment(adapter, parsed)

        if outcome in ADOPTABLE_OUTCOMES:
            return await self._adopt_payment(adapter, parsed)

        self.logger.error(
            "[%s] %s for unknown transaction %s",
            adapter.tag,
            outcome.value,
            transaction.transaction_id,
        )
        raise InvalidTransitionException("unknown", outcome.value, transaction.transaction_id)

    async def _find_subscription_payment(self, adapter: VendorAdapter, parsed: ParsedEvent) -> Optional[PaymentRecord]:
        transaction = parsed.transaction
        user_id = transaction.user_id
        if not user_id and transaction.customer_email:
            user_id = await self.store.find_user_id_by_email(transaction.customer_email)
        if not user_id and not transaction.customer_email:
            self.logger.warning("[%s] subscription cancellation for unknown customer", adapter.tag)
            return None

        payment = None
        if user_id:
            payment = await self.store.find_latest_payment(user_id, PaymentStatus.COMPLETED, PLAN_SUBSCRIPTIONS)
        if payment is None and transaction.customer_email:
            # payments matched by e-mail before the user existed carry no user_id
            payment = await self.store.find_latest_payment(
                None,
                PaymentStatus.COMPLETED,
                PLAN_SUBSCRIPTIONS,
                customer_email=transaction.customer_email,
            )
        if payment is None:
            self.logger.info("[%s] no completed plan payment for user %s; nothing to cancel", adapter.tag, user_id)
        return payment

    async def _adopt_payment(self, adapter: VendorAdapter, parsed: ParsedEvent) -> PaymentRecord:
        transaction = parsed.transaction
        missing = [
            name
            for name, value in (
                ("transaction_id", transaction.transaction_id),
                ("plan_id", transaction.plan_id),
                ("amount", transaction.amount),
                ("customer_email", transaction.customer_email),
            )
            if value is None
        ]
        if missing:
            self.logger.error(
                "[%s] cannot adopt unknown transaction %s, missing %s",
                adapter.tag,
                transaction.transaction_id,
                missing,
            )
            raise MalformedPayloadException(f"unknown transaction without {', '.join(missing)}")

        billing_cycle = transaction.billing_cycle
        if billing_cycle is None:
            billing_cycle = BillingCycle.ONE_TIME if transaction.plan_id is PlanId.PER_ARTICLE else BillingCycle.MONTHLY

        record = PaymentRecord(
            id=str(uuid.uuid4()),
            vendor=adapter.vendor,
            vendor_transaction_id=transaction.transaction_id,
            amount=transaction.amount,
            currency=transaction.currency or "BRL",
            plan_id=transaction.plan_id,
            billing_cycle=billing_cycle,
            credits_amount=transaction.credits_amount or 0,
            status=PaymentStatus.PENDING,
            customer_email=transaction.customer_email,
            user_id=transaction.user_id,
            created_at=self.clock(),
        )
        self.logger.info("[%s] adopting unknown transaction %s as payment %s", adapter.tag, record.vendor_transaction_id, record.id)
        return await self.store.create_payment(record)

    async def _record_failure(self, parsed: ParsedEvent, error: BusinessException) -> None:
        """Keep the raw delivery so an administrator can replay it once fixed"""
        try:
            await self.store.record_webhook_event(
                parsed.event,
                "failed",
                {"error_code": error.error_code, "message": error.message},
            )
        except Exception as e:
            self.logger.warning("failed to store failed delivery %s: %s", parsed.event.vendor_event_id, e)

    @staticmethod
    def _details(result: ReconcileResult) -> Dict[str, Any]:
        return {
            "payment_id": result.payment.id,
            "previous_status": result.previous_status.value,
            "status": result.payment.status.value,
            "actions": list(result.actions_taken),
        }
