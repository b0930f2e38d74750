from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..models.event import EventStatus


class EventBase(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    location: Optional[str] = Field(None, max_length=200)
    start_time: Optional[datetime] = None
    capacity: Optional[int] = Field(
        None, ge=0, description="Maximum attendees; omit for unlimited."
    )
    price: float = Field(0.0, ge=0)
    currency: str = Field("usd", min_length=3, max_length=3)
    waitlist_enabled: bool = True
    waitlist_limit: Optional[int] = Field(None, gt=0)
    notification_window_hours: Optional[int] = Field(None, gt=0)
    urgency_threshold: Optional[int] = Field(None, gt=0)
    show_spots_remaining: bool = True


class EventCreate(EventBase):
    pass


class CapacityUpdate(BaseModel):
    capacity: Optional[int] = Field(
        ..., ge=0, description="New capacity; null makes the activity unlimited."
    )


class EventCancel(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)


class WaitlistSettingsUpdate(BaseModel):
    """Only the fields sent are changed. Null limits fall back to the global defaults."""

    waitlist_enabled: Optional[bool] = None
    waitlist_limit: Optional[int] = Field(None, gt=0)
    notification_window_hours: Optional[int] = Field(None, gt=0)
    urgency_threshold: Optional[int] = Field(None, gt=0)
    show_spots_remaining: Optional[bool] = None

    @field_validator("waitlist_enabled", "show_spots_remaining")  # type: ignore
    @classmethod
    def flags_not_null(cls, v: Optional[bool]) -> bool:
        if v is None:
            raise ValueError("must be true or false")
        return v


class Event(EventBase):
    id: int
    host_id: str
    status: EventStatus
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SpotsInfo(BaseModel):
    total: Optional[int]
    taken: int
    remaining: Optional[int]
    percent_filled: int
    urgency_level: str
    is_full: bool
    show_spots_remaining: bool
    waitlist_enabled: bool
    waitlist_limit: int
    waitlist_count: int


class CapacityUpdateResult(BaseModel):
    event: Event
    promoted: int
