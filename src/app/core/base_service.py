"""
Base service class
"""
import logging
from typing import Dict, Any
from core.interfaces import IPaymentStore

logger = logging.getLogger(__name__)

class BaseService:
    """Shared helpers for services backed by the payment store"""

    def __init__(self, store: IPaymentStore):
        self.store = store
        self.logger = logging.getLogger(self.__class__.__name__)

    async def log_event(self, event_type: str, data: Dict[str, Any] = None, user_id: str = None):
        """Write an audit row; failures here never abort the caller"""
        try:
            await self.store.log_system_event(
                event_type=event_type,
                event_data=data or {},
                user_id=user_id
            )
        except Exception as e:
            self.logger.warning(f"audit log failed: event_type={event_type} error={e}")

