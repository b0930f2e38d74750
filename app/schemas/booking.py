from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ..models.booking import BookingStatus, PaymentStatus


class JoinRequest(BaseModel):
    payment_intent_id: Optional[str] = Field(
        None, max_length=255, description="Payment reference for paid activities."
    )


class Booking(BaseModel):
    id: int
    user_id: str
    event_id: int
    status: BookingStatus
    joined_at: datetime
    cancelled_at: Optional[datetime] = None
    payment_status: PaymentStatus

    model_config = ConfigDict(from_attributes=True)


class ParticipationStatus(BaseModel):
    joined: bool
    waitlisted: bool
    position: Optional[int] = None
    waitlist_status: Optional[str] = None
    expires_at: Optional[datetime] = None
