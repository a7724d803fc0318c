"""
Admin API request schemas
"""
from typing import Optional

from pydantic import BaseModel, Field


class PaymentCancelRequest(BaseModel):
    """Cancel a payment that is still pending"""
    reason: Optional[str] = Field(None, max_length=500, description="Why the payment is cancelled")


class EventReplayRequest(BaseModel):
    """Re-run a stored webhook event"""
    reason: Optional[str] = Field(None, max_length=500, description="Why the event is replayed")
