"""
Replay guard for webhook deliveries

Vendors retry on timeouts and non-2xx answers, so the same event can arrive
more than once. Processed event ids live in the `webhook_events` table.
"""
import logging
from typing import Any, Dict, Optional

from core.interfaces import IPaymentStore
from core.responses import DatastoreException
from schemas.payments import Vendor, WebhookEvent

logger = logging.getLogger(__name__)


class ReplayGuard:
    def __init__(self, store: IPaymentStore):
        self.store = store

    async def should_process(self, vendor: Vendor, vendor_event_id: str) -> bool:
        """False when the event was already applied; the caller acks without side effects."""
        if not vendor_event_id:
            return True
        try:
            seen = await self.store.has_processed_webhook_event(vendor, vendor_event_id)
        except DatastoreException:
            raise
        except Exception as e:
            logger.error("[WEBHOOK] replay check failed for %s/%s: %s", vendor.value, vendor_event_id, e)
            raise DatastoreException("replay check failed") from e

        if seen:
            logger.info("[WEBHOOK] duplicate event ignored: %s/%s", vendor.value, vendor_event_id)
        return not seen

    async def mark_processed(
        self,
        event: WebhookEvent,
        status: str = "processed",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        try:
            recorded = await self.store.record_webhook_event(event, status, details)
        except DatastoreException:
            raise
        except Exception as e:
            logger.error(
                "[WEBHOOK] failed to record event %s/%s: %s",
                event.vendor.value,
                event.vendor_event_id,
                e,
            )
            raise DatastoreException("failed to record processed webhook event") from e

        if not recorded:
            logger.warning(
                "[WEBHOOK] event %s/%s was not recorded (already present?)",
                event.vendor.value,
                event.vendor_event_id,
            )
