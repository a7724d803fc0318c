"""
Payment state reconciliation

Applies a classified vendor outcome to a stored payment and to the buyer's
entitlement. The payment row, a relative EntitlementChange and the
processed-event marker are written together through
IPaymentStore.apply_reconciliation.
"""
import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple

from core.billing_config import FREE_PLAN, FREE_PLAN_TYPE, PlanConfig
from core.interfaces import IPaymentStore
from core.responses import (
    DatastoreException,
    InvalidTransitionException,
    UnknownCustomerException,
)
from schemas.payments import (
    BillingCycle,
    EntitlementChange,
    InternalOutcome,
    PaymentRecord,
    PaymentStatus,
    PlanId,
    ReconcileResult,
    UserEntitlement,
    WebhookEvent,
)

logger = logging.getLogger(__name__)

ACTION_PLAN_ACTIVATED = "plan_activated"
ACTION_PAYMENT_FAILED = "payment_failed"
ACTION_PLAN_REVOKED = "plan_revoked"
ACTION_ACCOUNT_SUSPENDED = "account_suspended"
ACTION_SUBSCRIPTION_CANCELLED = "subscription_cancelled"

TRANSITIONS: Dict[Tuple[PaymentStatus, InternalOutcome], PaymentStatus] = {
    (PaymentStatus.PENDING, InternalOutcome.SUCCESS): PaymentStatus.COMPLETED,
    (PaymentStatus.PENDING, InternalOutcome.FAILURE): PaymentStatus.FAILED,
    (PaymentStatus.PENDING, InternalOutcome.PENDING): PaymentStatus.PENDING,
    (PaymentStatus.COMPLETED, InternalOutcome.REFUNDED): PaymentStatus.REFUNDED,
    (PaymentStatus.COMPLETED, InternalOutcome.CHARGEBACK): PaymentStatus.REFUNDED,
}

# Redelivery of an outcome that is already reflected in the stored status
ALREADY_APPLIED = frozenset(
    {
        (PaymentStatus.COMPLETED, InternalOutcome.SUCCESS),
        (PaymentStatus.FAILED, InternalOutcome.FAILURE),
        (PaymentStatus.CANCELLED, InternalOutcome.FAILURE),
        (PaymentStatus.REFUNDED, InternalOutcome.REFUNDED),
        (PaymentStatus.REFUNDED, InternalOutcome.CHARGEBACK),
    }
)


class PaymentReconciler:
    """Payment state machine plus entitlement grant/revoke rules"""

    def __init__(
        self,
        store: IPaymentStore,
        *,
        professional_articles_limit: Optional[int] = None,
        free_articles_limit: Optional[int] = None,
        per_article_default_credits: int = 1,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.store = store
        self.professional_articles_limit = (
            professional_articles_limit
            if professional_articles_limit is not None
            else PlanConfig.get_features(PlanId.PROFESSIONAL).articles_limit
        )
        self.free_articles_limit = free_articles_limit
        self.per_article_default_credits = per_article_default_credits
        self.clock = clock

    @classmethod
    def from_settings(cls, store: IPaymentStore, settings) -> "PaymentReconciler":
        return cls(
            store,
            professional_articles_limit=settings.PROFESSIONAL_ARTICLES_LIMIT,
            free_articles_limit=settings.FREE_ARTICLES_LIMIT,
            per_article_default_credits=settings.PER_ARTICLE_DEFAULT_CREDITS,
        )

    async def reconcile(
        self,
        outcome: InternalOutcome,
        payment: PaymentRecord,
        *,
        event: Optional[WebhookEvent] = None,
    ) -> ReconcileResult:
        current = payment.status
        result = ReconcileResult(payment=payment, previous_status=current)

        if outcome is InternalOutcome.IGNORED:
            return result

        if outcome is InternalOutcome.SUBSCRIPTION_CANCELLED:
            return await self._cancel_subscription(payment, result, event)

        if (current, outcome) in ALREADY_APPLIED:
            logger.info(
                "[RECONCILE] %s already reflected on payment %s (status=%s)",
                outcome.value,
                payment.id,
                current.value,
            )
            return result

        target = TRANSITIONS.get((current, outcome))
        if target is None:
            logger.error(
                "[RECONCILE] invalid transition: payment=%s status=%s outcome=%s",
                payment.id,
                current.value,
                outcome.value,
            )
            raise InvalidTransitionException(current.value, outcome.value, payment.id)

        if target is current:
            return result

        now = self.clock()
        updated_payment = payment.model_copy(update={"status": target, "processed_at": now})
        entitlement: Optional[UserEntitlement] = None
        change: Optional[EntitlementChange] = None
        actions: List[str] = []

        if outcome is InternalOutcome.SUCCESS:
            current_entitlement = await self._load_entitlement(payment)
            change = self._grant(current_entitlement, payment)
            actions.append(ACTION_PLAN_ACTIVATED)
        elif outcome is InternalOutcome.FAILURE:
            actions.append(ACTION_PAYMENT_FAILED)
        elif outcome in (InternalOutcome.REFUNDED, InternalOutcome.CHARGEBACK):
            current_entitlement = await self._load_entitlement(payment)
            change = self._revoke(current_entitlement, payment)
            actions.append(ACTION_PLAN_REVOKED)
            if outcome is InternalOutcome.CHARGEBACK:
                change.suspended = True
                actions.append(ACTION_ACCOUNT_SUSPENDED)

        if change is not None:
            entitlement = change.apply_to(current_entitlement)
            updated_payment = _attach_user(updated_payment, entitlement.user_id)

        await self._persist(updated_payment, change, current, event, actions)

        logger.info(
            "[RECONCILE] payment=%s %s -> %s actions=%s",
            payment.id,
            current.value,
            target.value,
            actions,
        )
        result.payment = updated_payment
        result.entitlement = entitlement
        result.actions_taken = actions
        result.persisted = True
        return result

    async def _cancel_subscription(
        self,
        payment: PaymentRecord,
        result: ReconcileResult,
        event: Optional[WebhookEvent],
    ) -> ReconcileResult:
        entitlement = await self._load_entitlement(payment)
        if entitlement.cancel_at_period_end:
            logger.info("[RECONCILE] cancellation already recorded for user %s", entitlement.user_id)
            result.entitlement = entitlement
            return result

        change = EntitlementChange(
            user_id=entitlement.user_id,
            plan_fields={"cancel_at_period_end": True, "cancel_requested_at": self.clock()},
        )
        payment = _attach_user(payment, entitlement.user_id)
        actions = [ACTION_SUBSCRIPTION_CANCELLED]
        await self._persist(payment, change, payment.status, event, actions)

        logger.info("[RECONCILE] subscription cancellation recorded for user %s", entitlement.user_id)
        result.payment = payment
        result.entitlement = change.apply_to(entitlement)
        result.actions_taken = actions
        result.persisted = True
        return result

    async def _persist(
        self,
        payment: PaymentRecord,
        change: Optional[EntitlementChange],
        expected_status: PaymentStatus,
        event: Optional[WebhookEvent],
        actions: List[str],
    ) -> None:
        try:
            applied = await self.store.apply_reconciliation(
                payment,
                change,
                expected_status,
                event=event,
                actions=actions,
            )
        except DatastoreException:
            raise
        except Exception as e:
            logger.error("[RECONCILE] write failed for payment %s: %s", payment.id, e)
            raise DatastoreException("failed to persist reconciliation") from e

        if not applied:
            # someone else moved the payment since we read it; the vendor retry re-reads
            logger.warning(
                "[RECONCILE] payment %s left status %s concurrently", payment.id, expected_status.value
            )
            raise DatastoreException("payment changed concurrently; retry")

    async def _load_entitlement(self, payment: PaymentRecord) -> UserEntitlement:
        user_id = payment.user_id
        if not user_id and payment.customer_email:
            user_id = await self.store.find_user_id_by_email(payment.customer_email)

        entitlement = await self.store.get_entitlement(user_id) if user_id else None
        if entitlement is None:
            logger.error(
                "[RECONCILE] no user for payment %s (user_id=%s, has_email=%s)",
                payment.id,
                payment.user_id,
                bool(payment.customer_email),
            )
            raise UnknownCustomerException()
        return entitlement

    def _grant(self, entitlement: UserEntitlement, payment: PaymentRecord) -> EntitlementChange:
        if payment.plan_id is PlanId.PER_ARTICLE:
            credits = payment.credits_amount or self.per_article_default_credits
            return EntitlementChange(user_id=entitlement.user_id, credits_delta=credits)

        if payment.plan_id is PlanId.PROFESSIONAL:
            plan_type = payment.billing_cycle
            if plan_type is BillingCycle.ONE_TIME:
                plan_type = BillingCycle.MONTHLY
            plan_fields = {
                "plan": PlanConfig.get_features(PlanId.PROFESSIONAL).plan,
                "plan_type": plan_type.value,
                "articles_limit": self.professional_articles_limit,
            }
        else:
            plan_fields = {
                "plan": PlanConfig.get_features(PlanId.INSTITUTIONAL).plan,
                "plan_type": BillingCycle.YEARLY.value,
                "articles_limit": None,
            }
        plan_fields.update(articles_used=0, cancel_at_period_end=False, cancel_requested_at=None)
        return EntitlementChange(user_id=entitlement.user_id, plan_fields=plan_fields)

    def _revoke(self, entitlement: UserEntitlement, payment: PaymentRecord) -> EntitlementChange:
        if payment.plan_id is PlanId.PER_ARTICLE:
            credits = payment.credits_amount or self.per_article_default_credits
            return EntitlementChange(user_id=entitlement.user_id, credits_delta=-credits)

        refunded_plan = PlanConfig.get_features(payment.plan_id).plan
        if entitlement.plan != refunded_plan:
            logger.info(
                "[RECONCILE] user %s no longer on %s; plan left as %s",
                entitlement.user_id,
                refunded_plan,
                entitlement.plan,
            )

        # usage is clamped to the free limit by the store
        return EntitlementChange(
            user_id=entitlement.user_id,
            plan_fields={
                "plan": FREE_PLAN,
                "plan_type": FREE_PLAN_TYPE,
                "articles_limit": self.free_articles_limit,
                "cancel_at_period_end": False,
                "cancel_requested_at": None,
            },
            only_if_plan=refunded_plan,
        )


def _attach_user(payment: PaymentRecord, user_id: str) -> PaymentRecord:
    """Record the resolved buyer on a payment matched by e-mail"""
    if payment.user_id:
        return payment
    return payment.model_copy(update={"user_id": user_id})
