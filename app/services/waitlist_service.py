"""Waitlist queue: FIFO line of users waiting for a spot on a full event."""

import logging
from typing import List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db_utils import db_transaction, execute_with_retry
from app.core.exceptions import (
    AlreadyJoined,
    AlreadyWaiting,
    DomainError,
    EventNotActive,
    EventNotFull,
    NotFound,
    NotWaiting,
    WaitlistClosed,
    WaitlistFull,
)
from app.core.notifications import Notice, NotificationDispatcher, dispatcher
from app.core.security import ensure_can_manage
from app.core.settings import get_settings
from app.crud import booking as crud_booking
from app.crud import event as crud_event
from app.crud import waitlist as crud_waitlist
from app.middleware.monitoring import metrics
from app.models.booking import BookingStatus
from app.models.event import EventStatus
from app.models.notification import NoticeKind
from app.models.user import User
from app.models.waitlist import ACTIVE_WAITLIST_STATUSES, WaitlistEntry, WaitlistStatus
from app.schemas.waitlist import EventWaitlist, WaitlistPosition
from app.services.capacity import get_capacity, waitlist_limit_for
from app.services.promotion import PromotionResult, _promote_locked
from app.utils.clock import utcnow

logger = logging.getLogger(__name__)
settings = get_settings()


async def _enqueue(db: AsyncSession, user_id: str, event_id: int):
    async with db_transaction(db):
        event = await crud_event.get_for_update(db, event_id)
        if event is None:
            raise NotFound()
        if event.status != EventStatus.ACTIVE:
            raise EventNotActive()

        booking = await crud_booking.get_by_user_event(db, user_id, event_id)
        if booking is not None and booking.status == BookingStatus.JOINED:
            raise AlreadyJoined()

        entry = await crud_waitlist.get_by_user_event(db, user_id, event_id)
        if entry is not None and entry.status in ACTIVE_WAITLIST_STATUSES:
            raise AlreadyWaiting()

        if not event.waitlist_enabled:
            raise WaitlistClosed()

        if settings.waitlist.REQUIRE_FULL:
            snapshot = await get_capacity(db, event)
            if not snapshot.is_full:
                raise EventNotFull()

        waiting = await crud_waitlist.count_by_status(
            db, event.id, WaitlistStatus.WAITING
        )
        if waiting >= waitlist_limit_for(event):
            raise WaitlistFull()

        # Terminal rows are reused and go to the back of the line
        if entry is None:
            entry = WaitlistEntry(user_id=user_id, event_id=event_id)
            db.add(entry)
        entry.status = WaitlistStatus.WAITING
        entry.enqueued_at = utcnow()
        entry.notified_at = None
        entry.expires_at = None
        entry.converted_at = None
        await db.flush()

        position = await crud_waitlist.position_of(db, entry)

    waiting_count = waiting + 1
    notices = [
        Notice(
            user_id=user_id,
            event_id=event_id,
            kind=NoticeKind.WAITLISTED,
            position=position,
        )
    ]
    if waiting_count in settings.waitlist.HOST_MILESTONES:
        notices.append(
            Notice(
                user_id=event.host_id,
                event_id=event_id,
                kind=NoticeKind.WAITLIST_MILESTONE,
                data={"waitlist_count": waiting_count},
            )
        )
    return entry, position, notices


async def enqueue(
    db: AsyncSession,
    user_id: str,
    event_id: int,
    *,
    notifier: Optional[NotificationDispatcher] = None,
) -> Tuple[WaitlistEntry, int]:
    """Put the user at the back of the event's waitlist.

    Returns the entry and its 1-based position.
    """
    notifier = notifier or dispatcher
    try:
        entry, position, notices = await execute_with_retry(
            db, _enqueue, user_id, event_id
        )
    except DomainError as e:
        metrics.record_operation("enqueue", e.code)
        raise

    logger.info(f"User {user_id} waitlisted for event {event_id} at #{position}")
    metrics.record_operation("enqueue", "ok")
    notifier.dispatch_many(notices)
    return entry, position


async def _leave_waitlist(db: AsyncSession, user_id: str, event_id: int):
    async with db_transaction(db):
        event = await crud_event.get_for_update(db, event_id)
        if event is None:
            raise NotFound()

        entry = await crud_waitlist.get_by_user_event(db, user_id, event_id)
        if entry is None or entry.status not in ACTIVE_WAITLIST_STATUSES:
            raise NotWaiting()

        had_offer = entry.status == WaitlistStatus.NOTIFIED
        entry.status = WaitlistStatus.CANCELLED
        await db.flush()

        promotion = PromotionResult()
        if had_offer:
            # The declined offer goes to the next person in line
            promotion = await _promote_locked(db, event, 1)

    return event, entry, promotion


async def leave_waitlist(
    db: AsyncSession,
    user_id: str,
    event_id: int,
    *,
    notifier: Optional[NotificationDispatcher] = None,
) -> WaitlistEntry:
    notifier = notifier or dispatcher
    try:
        event, entry, promotion = await execute_with_retry(
            db, _leave_waitlist, user_id, event_id
        )
    except DomainError as e:
        metrics.record_operation("leave_waitlist", e.code)
        raise

    logger.info(f"User {user_id} left the waitlist of event {event_id}")
    metrics.record_operation("leave_waitlist", "ok")
    metrics.record_promotion(len(promotion.notified), len(promotion.expired))
    notifier.dispatch(
        Notice(user_id=user_id, event_id=event_id, kind=NoticeKind.LEFT_WAITLIST)
    )
    notifier.dispatch_many(promotion.notices(event))
    return entry


async def position(db: AsyncSession, user_id: str, event_id: int) -> Optional[int]:
    """1-based place in line, or None when the user is not WAITING."""
    entry = await crud_waitlist.get_by_user_event(db, user_id, event_id)
    if entry is None or entry.status != WaitlistStatus.WAITING:
        return None
    return await crud_waitlist.position_of(db, entry)


def _with_positions(entries: List[WaitlistEntry]) -> List[WaitlistPosition]:
    # entries arrive in queue order, so WAITING rows are numbered as they come
    rows: List[WaitlistPosition] = []
    place = 0
    for entry in entries:
        row = WaitlistPosition.model_validate(entry)
        if entry.status == WaitlistStatus.WAITING:
            place += 1
            row.position = place
        rows.append(row)
    return rows


async def list_event_waitlist(
    db: AsyncSession, actor: User, event_id: int
) -> EventWaitlist:
    event = await crud_event.get(db, event_id)
    if event is None:
        raise NotFound()
    ensure_can_manage(actor, event)

    entries = await crud_waitlist.get_event_entries(db, event_id)
    return EventWaitlist(
        event_id=event_id,
        total_waiting=sum(1 for e in entries if e.status == WaitlistStatus.WAITING),
        total_notified=sum(1 for e in entries if e.status == WaitlistStatus.NOTIFIED),
        entries=_with_positions(entries),
    )


async def list_user_waitlist(db: AsyncSession, user_id: str) -> List[WaitlistPosition]:
    rows: List[WaitlistPosition] = []
    for entry in await crud_waitlist.get_user_active_entries(db, user_id):
        row = WaitlistPosition.model_validate(entry)
        if entry.status == WaitlistStatus.WAITING:
            row.position = await crud_waitlist.position_of(db, entry)
        rows.append(row)
    return rows
