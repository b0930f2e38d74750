"""Booking ledger: joining and leaving an event.

Both operations lock the event row first and take every capacity decision
under that lock, so concurrent joins can never push the JOINED count past
capacity. Side effects (notices, refunds) leave only after commit.
"""

import logging
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db_utils import db_transaction, execute_with_retry
from app.core.exceptions import (
    AlreadyJoined,
    DomainError,
    EventFull,
    EventNotActive,
    NotFound,
    NotJoined,
    PaymentRequired,
)
from app.core.notifications import Notice, NotificationDispatcher, dispatcher
from app.crud import booking as crud_booking
from app.crud import event as crud_event
from app.crud import waitlist as crud_waitlist
from app.middleware.monitoring import metrics
from app.models.booking import Booking, BookingStatus, PaymentStatus
from app.models.event import EventStatus
from app.models.notification import NoticeKind
from app.models.waitlist import ACTIVE_WAITLIST_STATUSES, WaitlistStatus
from app.services.capacity import get_capacity
from app.services.promotion import _promote_locked
from app.utils.clock import utcnow

logger = logging.getLogger(__name__)


async def _join(
    db: AsyncSession,
    user_id: str,
    event_id: int,
    payment_intent_id: Optional[str],
) -> Tuple[Booking, List[Notice]]:
    async with db_transaction(db):
        event = await crud_event.get_for_update(db, event_id)
        if event is None:
            raise NotFound()
        if event.status != EventStatus.ACTIVE:
            raise EventNotActive()

        booking = await crud_booking.get_by_user_event(db, user_id, event_id)
        if booking is not None and booking.status == BookingStatus.JOINED:
            raise AlreadyJoined()

        if event.is_paid and not payment_intent_id:
            raise PaymentRequired()

        snapshot = await get_capacity(db, event)
        if snapshot.is_full:
            raise EventFull(waitlist_available=event.waitlist_enabled)

        now = utcnow()
        if booking is None:
            booking = Booking(user_id=user_id, event_id=event_id)
            db.add(booking)
        booking.status = BookingStatus.JOINED
        booking.joined_at = now
        booking.cancelled_at = None
        booking.refund_id = None
        if event.is_paid:
            booking.payment_intent_id = payment_intent_id
            booking.amount_paid = Decimal(str(event.price))
            booking.payment_status = PaymentStatus.PAID
        else:
            booking.payment_intent_id = None
            booking.amount_paid = None
            booking.payment_status = PaymentStatus.NONE

        # A waitlisted user who gets in is no longer waiting
        from_waitlist = False
        entry = await crud_waitlist.get_by_user_event(db, user_id, event_id)
        if entry is not None and entry.status in ACTIVE_WAITLIST_STATUSES:
            from_waitlist = entry.status == WaitlistStatus.NOTIFIED
            entry.status = WaitlistStatus.CONVERTED
            entry.converted_at = now

        await db.flush()

    logger.info(f"User {user_id} joined event {event_id}")
    notices = [
        Notice(
            user_id=user_id,
            event_id=event_id,
            kind=NoticeKind.BOOKING_CONFIRMED,
            data={"from_waitlist": from_waitlist},
        )
    ]
    return booking, notices


async def join(
    db: AsyncSession,
    user_id: str,
    event_id: int,
    payment_intent_id: Optional[str] = None,
    *,
    notifier: Optional[NotificationDispatcher] = None,
) -> Booking:
    """Claim a spot on the event for the user."""
    notifier = notifier or dispatcher
    try:
        booking, notices = await execute_with_retry(
            db, _join, user_id, event_id, payment_intent_id
        )
    except DomainError as e:
        metrics.record_operation("join", e.code)
        raise

    metrics.record_operation("join", "ok")
    notifier.dispatch_many(notices)
    return booking


async def _leave(db: AsyncSession, user_id: str, event_id: int):
    async with db_transaction(db):
        event = await crud_event.get_for_update(db, event_id)
        if event is None:
            raise NotFound()

        booking = await crud_booking.get_by_user_event(db, user_id, event_id)
        if booking is None or booking.status != BookingStatus.JOINED:
            raise NotJoined()

        now = utcnow()
        booking.status = BookingStatus.CANCELLED
        booking.cancelled_at = now
        refund_intent: Optional[str] = None
        if (
            booking.payment_status == PaymentStatus.PAID
            and booking.payment_intent_id is not None
        ):
            booking.payment_status = PaymentStatus.REFUND_PENDING
            refund_intent = booking.payment_intent_id
        await db.flush()

        promotion = await _promote_locked(db, event, 1, now)

    logger.info(f"User {user_id} left event {event_id}")
    return event, booking, promotion, refund_intent


async def leave(
    db: AsyncSession,
    user_id: str,
    event_id: int,
    *,
    notifier: Optional[NotificationDispatcher] = None,
) -> Booking:
    """Give up the user's spot and offer it to the waitlist."""
    notifier = notifier or dispatcher
    try:
        event, booking, promotion, refund_intent = await execute_with_retry(
            db, _leave, user_id, event_id
        )
    except DomainError as e:
        metrics.record_operation("leave", e.code)
        raise

    metrics.record_operation("leave", "ok")
    metrics.record_promotion(len(promotion.notified), len(promotion.expired))
    if refund_intent is not None:
        notifier.queue_refund(booking.id, "attendee_left", refund_intent)
    notifier.dispatch_many(promotion.notices(event))
    return booking
