from typing import Optional

from fastapi import APIRouter, Body, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.notifications import NotificationDispatcher
from app.models.user import User
from app.schemas.booking import ParticipationStatus
from app.schemas.event import (
    CapacityUpdate,
    CapacityUpdateResult,
    Event,
    EventCancel,
    EventCreate,
    SpotsInfo,
    WaitlistSettingsUpdate,
)
from app.services import capacity, event_service

router = APIRouter()


@router.post("", response_model=Event, status_code=status.HTTP_201_CREATED)  # type: ignore[misc]
async def create_event(
    *,
    db: AsyncSession = Depends(deps.get_db),
    event_in: EventCreate,
    current_user: User = Depends(deps.get_current_user),
) -> Event:
    """
    Create a new activity hosted by the caller.
    """
    event = await event_service.create_event(db, current_user, event_in)
    return Event.model_validate(event)


@router.get("/{event_id}", response_model=Event)  # type: ignore[misc]
async def read_event(
    *,
    db: AsyncSession = Depends(deps.get_db),
    event_id: int,
) -> Event:
    event = await event_service.get_event(db, event_id)
    return Event.model_validate(event)


@router.get("/{event_id}/spots", response_model=SpotsInfo)  # type: ignore[misc]
async def read_spots(
    *,
    db: AsyncSession = Depends(deps.get_db),
    event_id: int,
) -> SpotsInfo:
    """
    Spots taken and remaining, urgency level and waitlist size.
    """
    return await capacity.get_spots_info(db, event_id)


@router.patch("/{event_id}/capacity", response_model=CapacityUpdateResult)  # type: ignore[misc]
async def update_capacity(
    *,
    db: AsyncSession = Depends(deps.get_db),
    event_id: int,
    capacity_in: CapacityUpdate,
    current_user: User = Depends(deps.get_current_user),
    notifier: NotificationDispatcher = Depends(deps.get_dispatcher),
) -> CapacityUpdateResult:
    """
    Resize an activity. Added spots are offered to the waitlist right away.
    """
    event, result = await event_service.update_capacity(
        db, current_user, event_id, capacity_in.capacity, notifier=notifier
    )
    return CapacityUpdateResult(
        event=Event.model_validate(event), promoted=len(result.notified)
    )


@router.patch("/{event_id}/waitlist-settings", response_model=Event)  # type: ignore[misc]
async def update_waitlist_settings(
    *,
    db: AsyncSession = Depends(deps.get_db),
    event_id: int,
    settings_in: WaitlistSettingsUpdate,
    current_user: User = Depends(deps.get_current_user),
) -> Event:
    """
    Change the waitlist policy of an activity. Fields left out keep their
    current value.
    """
    event = await event_service.update_waitlist_settings(
        db, current_user, event_id, settings_in
    )
    return Event.model_validate(event)


@router.post("/{event_id}/cancel", response_model=Event)  # type: ignore[misc]
async def cancel_event(
    *,
    db: AsyncSession = Depends(deps.get_db),
    event_id: int,
    cancel_in: Optional[EventCancel] = Body(None),
    current_user: User = Depends(deps.get_current_user),
    notifier: NotificationDispatcher = Depends(deps.get_dispatcher),
) -> Event:
    """
    Cancel an activity: every attendee and waitlisted user is notified and
    paid bookings are refunded.
    """
    event = await event_service.cancel_event(
        db,
        current_user,
        event_id,
        cancel_in.reason if cancel_in else None,
        notifier=notifier,
    )
    return Event.model_validate(event)


@router.get("/{event_id}/status", response_model=ParticipationStatus)  # type: ignore[misc]
async def read_participation_status(
    *,
    db: AsyncSession = Depends(deps.get_db),
    event_id: int,
    current_user: User = Depends(deps.get_current_user),
) -> ParticipationStatus:
    return await event_service.get_status(db, current_user.id, event_id)
