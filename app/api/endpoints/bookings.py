from typing import Optional

from fastapi import APIRouter, Body, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.notifications import NotificationDispatcher
from app.models.user import User
from app.schemas.booking import Booking, JoinRequest
from app.services import booking_service

router = APIRouter()


@router.post("/{event_id}/join", response_model=Booking, status_code=status.HTTP_201_CREATED)  # type: ignore[misc]
async def join_event(
    *,
    db: AsyncSession = Depends(deps.get_db),
    event_id: int,
    join_in: Optional[JoinRequest] = Body(None),
    current_user: User = Depends(deps.get_current_user),
    notifier: NotificationDispatcher = Depends(deps.get_dispatcher),
) -> Booking:
    """
    Take a spot on the activity. A full activity answers 409 with a hint to
    join the waitlist instead.
    """
    booking = await booking_service.join(
        db,
        current_user.id,
        event_id,
        payment_intent_id=join_in.payment_intent_id if join_in else None,
        notifier=notifier,
    )
    return Booking.model_validate(booking)


@router.delete("/{event_id}/join", response_model=Booking)  # type: ignore[misc]
async def leave_event(
    *,
    db: AsyncSession = Depends(deps.get_db),
    event_id: int,
    current_user: User = Depends(deps.get_current_user),
    notifier: NotificationDispatcher = Depends(deps.get_dispatcher),
) -> Booking:
    """
    Give up the caller's spot. The next person on the waitlist is offered it.
    """
    booking = await booking_service.leave(
        db, current_user.id, event_id, notifier=notifier
    )
    return Booking.model_validate(booking)
