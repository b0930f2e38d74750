import logging
from typing import List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db_utils import db_transaction, execute_with_retry
from app.core.exceptions import DomainError, EventNotActive, InvalidCapacity, NotFound
from app.core.notifications import Notice, NotificationDispatcher, dispatcher
from app.core.security import ensure_can_manage
from app.crud import booking as crud_booking
from app.crud import event as crud_event
from app.crud import waitlist as crud_waitlist
from app.middleware.monitoring import metrics
from app.models.booking import BookingStatus, PaymentStatus
from app.models.event import Event, EventStatus
from app.models.notification import NoticeKind
from app.models.user import User
from app.models.waitlist import ACTIVE_WAITLIST_STATUSES, WaitlistStatus
from app.schemas.booking import ParticipationStatus
from app.schemas.event import EventCreate, WaitlistSettingsUpdate
from app.services.capacity import get_capacity
from app.services.promotion import PromotionResult, _promote_locked
from app.utils.clock import as_utc, utcnow

logger = logging.getLogger(__name__)


async def create_event(db: AsyncSession, host: User, obj_in: EventCreate) -> Event:
    async with db_transaction(db):
        event = await crud_event.create(db, host_id=host.id, obj_in=obj_in)
    logger.info(f"User {host.id} created event {event.id}")
    return event


async def get_event(db: AsyncSession, event_id: int) -> Event:
    event = await crud_event.get(db, event_id)
    if event is None:
        raise NotFound()
    return event


async def _update_capacity(
    db: AsyncSession, actor: User, event_id: int, capacity: Optional[int]
) -> Tuple[Event, PromotionResult]:
    async with db_transaction(db):
        event = await crud_event.get_for_update(db, event_id)
        if event is None:
            raise NotFound()
        ensure_can_manage(actor, event)
        if event.status != EventStatus.ACTIVE:
            raise EventNotActive()

        snapshot = await get_capacity(db, event)
        if capacity is not None and capacity < snapshot.joined:
            raise InvalidCapacity(joined=snapshot.joined)

        previous = event.capacity
        event.capacity = capacity
        await db.flush()

        if capacity is None:
            spots_opened = await crud_waitlist.count_by_status(
                db, event.id, WaitlistStatus.WAITING
            )
        elif previous is None:
            spots_opened = capacity - snapshot.joined
        else:
            spots_opened = max(0, capacity - previous)

        result = await _promote_locked(db, event, spots_opened)

    logger.info(f"Capacity of event {event_id} changed from {previous} to {capacity}")
    return event, result


async def update_capacity(
    db: AsyncSession,
    actor: User,
    event_id: int,
    capacity: Optional[int],
    *,
    notifier: Optional[NotificationDispatcher] = None,
) -> Tuple[Event, PromotionResult]:
    """Resize the event and offer any new spots to the waitlist."""
    notifier = notifier or dispatcher
    try:
        event, result = await execute_with_retry(
            db, _update_capacity, actor, event_id, capacity
        )
    except DomainError as e:
        metrics.record_operation("update_capacity", e.code)
        raise

    metrics.record_operation("update_capacity", "ok")
    metrics.record_promotion(len(result.notified), len(result.expired))
    notifier.dispatch_many(result.notices(event))
    return event, result


async def _update_waitlist_settings(
    db: AsyncSession, actor: User, event_id: int, data: WaitlistSettingsUpdate
) -> Event:
    async with db_transaction(db):
        event = await crud_event.get_for_update(db, event_id)
        if event is None:
            raise NotFound()
        ensure_can_manage(actor, event)
        if event.status != EventStatus.ACTIVE:
            raise EventNotActive()

        changes = data.model_dump(exclude_unset=True)
        for field, value in changes.items():
            setattr(event, field, value)
        await db.flush()

    logger.info(f"Waitlist settings of event {event_id} updated: {changes}")
    return event


async def update_waitlist_settings(
    db: AsyncSession, actor: User, event_id: int, data: WaitlistSettingsUpdate
) -> Event:
    """Change the event's waitlist policy.

    Entries already queued stay put when the waitlist is closed or its limit
    lowered; only new joins see the new policy. A new offer window applies to
    offers made from now on.
    """
    try:
        event = await execute_with_retry(
            db, _update_waitlist_settings, actor, event_id, data
        )
    except DomainError as e:
        metrics.record_operation("update_waitlist_settings", e.code)
        raise

    metrics.record_operation("update_waitlist_settings", "ok")
    return event


async def _cancel_event(
    db: AsyncSession, actor: User, event_id: int, reason: Optional[str]
):
    async with db_transaction(db):
        event = await crud_event.get_for_update(db, event_id)
        if event is None:
            raise NotFound()
        ensure_can_manage(actor, event)
        if event.status == EventStatus.CANCELLED:
            raise EventNotActive()

        now = utcnow()
        event.status = EventStatus.CANCELLED
        event.cancelled_at = now
        event.cancellation_reason = reason

        attendees: List[str] = []
        refunds: List[Tuple[int, str]] = []
        for booking in await crud_booking.get_joined_for_event(db, event_id):
            booking.status = BookingStatus.CANCELLED
            booking.cancelled_at = now
            attendees.append(booking.user_id)
            if (
                booking.payment_status == PaymentStatus.PAID
                and booking.payment_intent_id is not None
            ):
                booking.payment_status = PaymentStatus.REFUND_PENDING
                refunds.append((booking.id, booking.payment_intent_id))

        waiting: List[str] = []
        for entry in await crud_waitlist.get_event_entries(
            db, event_id, ACTIVE_WAITLIST_STATUSES, for_update=True
        ):
            entry.status = WaitlistStatus.CANCELLED
            waiting.append(entry.user_id)

        await db.flush()

    return event, attendees, waiting, refunds


async def cancel_event(
    db: AsyncSession,
    actor: User,
    event_id: int,
    reason: Optional[str] = None,
    *,
    notifier: Optional[NotificationDispatcher] = None,
) -> Event:
    """Cancel the event, release every spot and waitlist entry, refund payers."""
    notifier = notifier or dispatcher
    try:
        event, attendees, waiting, refunds = await execute_with_retry(
            db, _cancel_event, actor, event_id, reason
        )
    except DomainError as e:
        metrics.record_operation("cancel_event", e.code)
        raise

    logger.info(
        f"Event {event_id} cancelled by {actor.id}: {len(attendees)} bookings, "
        f"{len(waiting)} waitlist entries, {len(refunds)} refunds"
    )
    metrics.record_operation("cancel_event", "ok")

    for booking_id, payment_intent_id in refunds:
        notifier.queue_refund(booking_id, "event_cancelled", payment_intent_id)
    notifier.dispatch_many(
        Notice(
            user_id=user_id,
            event_id=event_id,
            kind=NoticeKind.EVENT_CANCELLED,
            data={"reason": reason, "was_waitlisted": user_id in waiting},
        )
        for user_id in attendees + waiting
    )
    return event


async def get_status(
    db: AsyncSession, user_id: str, event_id: int
) -> ParticipationStatus:
    """Where the user stands on the event: joined, waiting, or offered a spot."""
    event = await crud_event.get(db, event_id)
    if event is None:
        raise NotFound()

    booking = await crud_booking.get_by_user_event(db, user_id, event_id)
    joined = booking is not None and booking.status == BookingStatus.JOINED

    entry = await crud_waitlist.get_by_user_event(db, user_id, event_id)
    if entry is None or entry.status not in ACTIVE_WAITLIST_STATUSES:
        return ParticipationStatus(joined=joined, waitlisted=False)

    status = ParticipationStatus(
        joined=joined,
        waitlisted=True,
        waitlist_status=entry.status.value,
    )
    if entry.status == WaitlistStatus.WAITING:
        status.position = await crud_waitlist.position_of(db, entry)
    else:
        status.expires_at = as_utc(entry.expires_at)
    return status
