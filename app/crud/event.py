from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.event import Event
from app.models.waitlist import WaitlistEntry, WaitlistStatus
from app.schemas.event import EventCreate


async def get(db: AsyncSession, event_id: int) -> Optional[Event]:
    result = await db.execute(select(Event).filter(Event.id == event_id))
    return result.scalars().first()


async def get_for_update(db: AsyncSession, event_id: int) -> Optional[Event]:
    """Lock the event row for the rest of the transaction.

    Every capacity decision for an event is taken while holding this lock, so
    two writers on the same event serialize here.
    """
    result = await db.execute(
        select(Event)
        .filter(Event.id == event_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalars().first()


async def create(db: AsyncSession, *, host_id: str, obj_in: EventCreate) -> Event:
    db_event = Event(**obj_in.model_dump(), host_id=host_id)
    db.add(db_event)
    await db.flush()
    return db_event


async def get_ids_with_overdue_offers(db: AsyncSession, now: datetime) -> List[int]:
    result = await db.execute(
        select(WaitlistEntry.event_id)
        .filter(
            WaitlistEntry.status == WaitlistStatus.NOTIFIED,
            WaitlistEntry.expires_at <= now,
        )
        .distinct()
        .order_by(WaitlistEntry.event_id)
    )
    return list(result.scalars().all())
