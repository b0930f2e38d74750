"""Spot promotion engine.

When spots open up, the oldest WAITING entries are offered a spot by moving
them to NOTIFIED with a time-limited window. Offers are not reservations: a
direct join may still take a freed spot before the notified user claims it.
Offers that lapse are expired lazily, the next time promotion runs for the
event, and the spots they held cascade to the next people in line.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db_utils import db_transaction, execute_with_retry
from app.core.exceptions import NotFound, TransactionConflict
from app.core.notifications import Notice, NotificationDispatcher, dispatcher
from app.core.security import ensure_can_manage
from app.core.settings import get_settings
from app.crud import event as crud_event
from app.crud import waitlist as crud_waitlist
from app.middleware.monitoring import metrics
from app.models.event import Event, EventStatus
from app.models.notification import NoticeKind
from app.models.user import User
from app.models.waitlist import WaitlistEntry, WaitlistStatus
from app.schemas.waitlist import SweepResult
from app.services.capacity import get_capacity
from app.utils.clock import utcnow

logger = logging.getLogger(__name__)
settings = get_settings()


@dataclass
class PromotionResult:
    notified: List[WaitlistEntry] = field(default_factory=list)
    expired: List[WaitlistEntry] = field(default_factory=list)

    def notices(self, event: Event) -> List[Notice]:
        window_hours = notification_window_hours(event)
        notices = [
            Notice(
                user_id=entry.user_id,
                event_id=event.id,
                kind=NoticeKind.OFFER_EXPIRED,
            )
            for entry in self.expired
        ]
        notices.extend(
            Notice(
                user_id=entry.user_id,
                event_id=event.id,
                kind=NoticeKind.SPOT_OPENED,
                expires_at=entry.expires_at,
                data={"window_hours": window_hours},
            )
            for entry in self.notified
        )
        return notices


def notification_window_hours(event: Event) -> int:
    if event.notification_window_hours:
        return event.notification_window_hours
    return settings.waitlist.NOTIFICATION_WINDOW_HOURS


async def _promote_locked(
    db: AsyncSession,
    event: Event,
    spots_opened: int,
    now: Optional[datetime] = None,
) -> PromotionResult:
    """Offer freed spots to the head of the queue.

    Must run inside a transaction that already holds the event row lock.
    Changes are flushed, not committed.
    """
    now = now or utcnow()
    result = PromotionResult()

    result.expired = await crud_waitlist.get_overdue_offers(db, event.id, now)
    for entry in result.expired:
        entry.status = WaitlistStatus.EXPIRED
    if result.expired:
        await db.flush()
        logger.info(f"Expired {len(result.expired)} lapsed offers for event {event.id}")

    if event.status != EventStatus.ACTIVE:
        return result

    opened = max(0, spots_opened) + len(result.expired)
    if opened == 0:
        return result

    if event.capacity is None:
        available = opened
    else:
        snapshot = await get_capacity(db, event)
        live_offers = await crud_waitlist.count_by_status(
            db, event.id, WaitlistStatus.NOTIFIED
        )
        available = max(0, min(opened, event.capacity - snapshot.joined - live_offers))

    if available == 0:
        return result

    expires_at = now + timedelta(hours=notification_window_hours(event))
    result.notified = await crud_waitlist.get_next_waiting(db, event.id, available)
    for entry in result.notified:
        entry.status = WaitlistStatus.NOTIFIED
        entry.notified_at = now
        entry.expires_at = expires_at
    if result.notified:
        await db.flush()
        logger.info(
            f"Offered {len(result.notified)} spots on event {event.id} "
            f"until {expires_at.isoformat()}"
        )

    return result


async def _promote(
    db: AsyncSession,
    event_id: int,
    spots_opened: int,
    actor: Optional[User] = None,
):
    async with db_transaction(db):
        event = await crud_event.get_for_update(db, event_id)
        if event is None:
            raise NotFound()
        if actor is not None:
            ensure_can_manage(actor, event)
        result = await _promote_locked(db, event, spots_opened)
    return event, result


async def promote(
    db: AsyncSession,
    event_id: int,
    spots_opened: int,
    *,
    actor: Optional[User] = None,
    notifier: Optional[NotificationDispatcher] = None,
) -> PromotionResult:
    """Run promotion for an event in its own transaction and send the notices."""
    notifier = notifier or dispatcher
    try:
        event, result = await execute_with_retry(
            db, _promote, event_id, spots_opened, actor
        )
    except TransactionConflict:
        metrics.record_conflict("promote")
        raise

    metrics.record_promotion(len(result.notified), len(result.expired))
    notifier.dispatch_many(result.notices(event))
    return result


async def _sweep_event(db: AsyncSession, event_id: int, now: datetime):
    async with db_transaction(db):
        event = await crud_event.get_for_update(db, event_id)
        if event is None:
            return None, PromotionResult()
        result = await _promote_locked(db, event, 0, now)
    return event, result


async def sweep_expired_offers(
    db: AsyncSession,
    *,
    notifier: Optional[NotificationDispatcher] = None,
    now: Optional[datetime] = None,
) -> SweepResult:
    """Expire lapsed offers everywhere and pass their spots down each queue.

    Each event is handled in its own transaction, so one busy event does not
    hold up the rest of the sweep.
    """
    notifier = notifier or dispatcher
    now = now or utcnow()

    event_ids = await crud_event.get_ids_with_overdue_offers(db, now)
    # Release the read transaction before taking per-event locks
    await db.commit()

    sweep = SweepResult(events_processed=0, notified=0, expired=0)
    for event_id in event_ids:
        try:
            event, result = await execute_with_retry(db, _sweep_event, event_id, now)
        except TransactionConflict:
            metrics.record_conflict("sweep")
            logger.warning(f"Skipping event {event_id} in offer sweep after conflicts")
            continue

        if event is None:
            continue
        sweep.events_processed += 1
        sweep.notified += len(result.notified)
        sweep.expired += len(result.expired)
        metrics.record_promotion(len(result.notified), len(result.expired))
        notifier.dispatch_many(result.notices(event))

    if event_ids:
        logger.info(
            f"Offer sweep processed {sweep.events_processed} events: "
            f"{sweep.expired} expired, {sweep.notified} notified"
        )
    return sweep
