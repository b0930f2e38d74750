from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.waitlist import (
    ACTIVE_WAITLIST_STATUSES,
    WaitlistEntry,
    WaitlistStatus,
)


def _fifo_order():
    return (WaitlistEntry.enqueued_at.asc(), WaitlistEntry.id.asc())


async def get_by_user_event(
    db: AsyncSession, user_id: str, event_id: int
) -> Optional[WaitlistEntry]:
    result = await db.execute(
        select(WaitlistEntry)
        .filter(WaitlistEntry.user_id == user_id, WaitlistEntry.event_id == event_id)
        .execution_options(populate_existing=True)
    )
    return result.scalars().first()


async def count_by_status(
    db: AsyncSession, event_id: int, status: WaitlistStatus
) -> int:
    result = await db.execute(
        select(func.count(WaitlistEntry.id)).filter(
            WaitlistEntry.event_id == event_id, WaitlistEntry.status == status
        )
    )
    return result.scalar_one()


async def get_overdue_offers(
    db: AsyncSession, event_id: int, now: datetime
) -> List[WaitlistEntry]:
    result = await db.execute(
        select(WaitlistEntry)
        .filter(
            WaitlistEntry.event_id == event_id,
            WaitlistEntry.status == WaitlistStatus.NOTIFIED,
            WaitlistEntry.expires_at <= now,
        )
        .order_by(*_fifo_order())
        .with_for_update()
    )
    return list(result.scalars().all())


async def get_next_waiting(
    db: AsyncSession, event_id: int, limit: Optional[int]
) -> List[WaitlistEntry]:
    """Head of the queue, oldest first. ``limit=None`` returns everyone."""
    query = (
        select(WaitlistEntry)
        .filter(
            WaitlistEntry.event_id == event_id,
            WaitlistEntry.status == WaitlistStatus.WAITING,
        )
        .order_by(*_fifo_order())
        .with_for_update()
    )
    if limit is not None:
        query = query.limit(limit)
    result = await db.execute(query)
    return list(result.scalars().all())


async def position_of(db: AsyncSession, entry: WaitlistEntry) -> int:
    """1-based place among WAITING entries of the same event."""
    result = await db.execute(
        select(func.count(WaitlistEntry.id)).filter(
            WaitlistEntry.event_id == entry.event_id,
            WaitlistEntry.status == WaitlistStatus.WAITING,
            or_(
                WaitlistEntry.enqueued_at < entry.enqueued_at,
                and_(
                    WaitlistEntry.enqueued_at == entry.enqueued_at,
                    WaitlistEntry.id < entry.id,
                ),
            ),
        )
    )
    return result.scalar_one() + 1


async def get_event_entries(
    db: AsyncSession,
    event_id: int,
    statuses: Sequence[WaitlistStatus] = ACTIVE_WAITLIST_STATUSES,
    for_update: bool = False,
) -> List[WaitlistEntry]:
    query = (
        select(WaitlistEntry)
        .filter(
            WaitlistEntry.event_id == event_id,
            WaitlistEntry.status.in_(list(statuses)),
        )
        .order_by(*_fifo_order())
    )
    if for_update:
        query = query.with_for_update()
    result = await db.execute(query)
    return list(result.scalars().all())


async def get_user_active_entries(
    db: AsyncSession, user_id: str
) -> List[WaitlistEntry]:
    result = await db.execute(
        select(WaitlistEntry)
        .filter(
            WaitlistEntry.user_id == user_id,
            WaitlistEntry.status.in_(list(ACTIVE_WAITLIST_STATUSES)),
        )
        .order_by(*_fifo_order())
    )
    return list(result.scalars().all())
