from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.notifications import NotificationDispatcher
from app.models.user import User
from app.schemas.waitlist import (
    EventWaitlist,
    PromoteRequest,
    PromotionResult,
    SweepResult,
    WaitlistEntry,
    WaitlistJoinResult,
    WaitlistPosition,
)
from app.services import promotion, waitlist_service

router = APIRouter()


@router.post(
    "/events/{event_id}/waitlist",
    response_model=WaitlistJoinResult,
    status_code=status.HTTP_201_CREATED,
)  # type: ignore[misc]
async def join_waitlist(
    *,
    db: AsyncSession = Depends(deps.get_db),
    event_id: int,
    current_user: User = Depends(deps.get_current_user),
    notifier: NotificationDispatcher = Depends(deps.get_dispatcher),
) -> WaitlistJoinResult:
    """
    Join the waitlist of a full activity.
    """
    entry, position = await waitlist_service.enqueue(
        db, current_user.id, event_id, notifier=notifier
    )
    return WaitlistJoinResult(
        entry=WaitlistEntry.model_validate(entry),
        position=position,
        message=f"You're #{position} on the waitlist!",
    )


@router.delete("/events/{event_id}/waitlist", response_model=WaitlistEntry)  # type: ignore[misc]
async def leave_waitlist(
    *,
    db: AsyncSession = Depends(deps.get_db),
    event_id: int,
    current_user: User = Depends(deps.get_current_user),
    notifier: NotificationDispatcher = Depends(deps.get_dispatcher),
) -> WaitlistEntry:
    entry = await waitlist_service.leave_waitlist(
        db, current_user.id, event_id, notifier=notifier
    )
    return WaitlistEntry.model_validate(entry)


@router.get("/events/{event_id}/waitlist", response_model=EventWaitlist)  # type: ignore[misc]
async def read_event_waitlist(
    *,
    db: AsyncSession = Depends(deps.get_db),
    event_id: int,
    current_user: User = Depends(deps.get_current_user),
) -> EventWaitlist:
    """
    Host view of the line: everyone waiting or holding an offer, in order.
    """
    return await waitlist_service.list_event_waitlist(db, current_user, event_id)


@router.post("/events/{event_id}/waitlist/promote", response_model=PromotionResult)  # type: ignore[misc]
async def promote_waitlist(
    *,
    db: AsyncSession = Depends(deps.get_db),
    event_id: int,
    promote_in: PromoteRequest,
    current_user: User = Depends(deps.get_current_user),
    notifier: NotificationDispatcher = Depends(deps.get_dispatcher),
) -> PromotionResult:
    """
    Offer spots to the head of the line, bounded by free capacity.
    """
    result = await promotion.promote(
        db,
        event_id,
        promote_in.spots_opened,
        actor=current_user,
        notifier=notifier,
    )
    return PromotionResult(notified=len(result.notified), expired=len(result.expired))


@router.get("/waitlist/me", response_model=List[WaitlistPosition])  # type: ignore[misc]
async def read_my_waitlist(
    *,
    db: AsyncSession = Depends(deps.get_db),
    current_user: User = Depends(deps.get_current_user),
) -> List[WaitlistPosition]:
    return await waitlist_service.list_user_waitlist(db, current_user.id)


@router.post("/waitlist/sweep", response_model=SweepResult)  # type: ignore[misc]
async def sweep_waitlist_offers(
    *,
    db: AsyncSession = Depends(deps.get_db),
    current_user: User = Depends(deps.get_current_admin_user),
    notifier: NotificationDispatcher = Depends(deps.get_dispatcher),
) -> SweepResult:
    """
    Expire lapsed offers on every activity now instead of waiting for the
    scheduled sweep.
    """
    return await promotion.sweep_expired_offers(db, notifier=notifier)
