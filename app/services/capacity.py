"""Capacity counter: how many people hold a spot versus how many fit."""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import NotFound
from app.core.settings import get_settings
from app.crud import booking as crud_booking
from app.crud import event as crud_event
from app.crud import waitlist as crud_waitlist
from app.models.event import Event
from app.models.waitlist import WaitlistStatus
from app.schemas.event import SpotsInfo

settings = get_settings()


@dataclass(frozen=True)
class CapacitySnapshot:
    joined: int
    capacity: Optional[int]

    @property
    def is_full(self) -> bool:
        return self.capacity is not None and self.joined >= self.capacity

    @property
    def spots_remaining(self) -> Optional[int]:
        if self.capacity is None:
            return None
        return max(0, self.capacity - self.joined)


async def get_capacity(db: AsyncSession, event: Event) -> CapacitySnapshot:
    """Count JOINED bookings against the event's capacity.

    Callers that decide on the result must already hold the event row lock.
    """
    joined = await crud_booking.count_joined(db, event.id)
    return CapacitySnapshot(joined=joined, capacity=event.capacity)


def waitlist_limit_for(event: Event) -> int:
    if event.waitlist_limit is not None:
        return event.waitlist_limit
    return settings.waitlist.DEFAULT_LIMIT


def urgency_level(snapshot: CapacitySnapshot, threshold: int) -> str:
    if snapshot.capacity is None:
        return "none"

    remaining = snapshot.spots_remaining or 0
    if remaining == 0:
        return "full"
    percent = round(snapshot.joined / snapshot.capacity * 100)
    if remaining <= 3:
        return "critical"
    if remaining <= threshold:
        return "high"
    if percent >= 70:
        return "medium"
    return "none"


async def get_spots_info(db: AsyncSession, event_id: int) -> SpotsInfo:
    event = await crud_event.get(db, event_id)
    if event is None:
        raise NotFound()

    snapshot = await get_capacity(db, event)
    waitlist_count = await crud_waitlist.count_by_status(
        db, event.id, WaitlistStatus.WAITING
    )
    threshold = event.urgency_threshold or settings.waitlist.URGENCY_THRESHOLD

    percent_filled = 0
    if snapshot.capacity:
        percent_filled = min(100, round(snapshot.joined / snapshot.capacity * 100))
    elif snapshot.capacity == 0:
        percent_filled = 100

    return SpotsInfo(
        total=snapshot.capacity,
        taken=snapshot.joined,
        remaining=snapshot.spots_remaining,
        percent_filled=percent_filled,
        urgency_level=urgency_level(snapshot, threshold),
        is_full=snapshot.is_full,
        show_spots_remaining=event.show_spots_remaining,
        waitlist_enabled=event.waitlist_enabled,
        waitlist_limit=waitlist_limit_for(event),
        waitlist_count=waitlist_count,
    )
