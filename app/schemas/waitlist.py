from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..models.waitlist import WaitlistStatus


class WaitlistEntry(BaseModel):
    id: int
    user_id: str
    event_id: int
    status: WaitlistStatus
    enqueued_at: datetime
    notified_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class WaitlistJoinResult(BaseModel):
    entry: WaitlistEntry
    position: int
    message: str


class WaitlistPosition(WaitlistEntry):
    position: Optional[int] = None


class EventWaitlist(BaseModel):
    event_id: int
    total_waiting: int
    total_notified: int
    entries: List[WaitlistPosition]


class PromoteRequest(BaseModel):
    spots_opened: int = Field(1, ge=0)


class PromotionResult(BaseModel):
    notified: int
    expired: int


class SweepResult(BaseModel):
    events_processed: int
    notified: int
    expired: int
