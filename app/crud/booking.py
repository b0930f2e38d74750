from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.booking import Booking, BookingStatus


async def get_by_user_event(
    db: AsyncSession, user_id: str, event_id: int
) -> Optional[Booking]:
    result = await db.execute(
        select(Booking)
        .filter(Booking.user_id == user_id, Booking.event_id == event_id)
        .execution_options(populate_existing=True)
    )
    return result.scalars().first()


async def get(db: AsyncSession, booking_id: int) -> Optional[Booking]:
    result = await db.execute(select(Booking).filter(Booking.id == booking_id))
    return result.scalars().first()


async def count_joined(db: AsyncSession, event_id: int) -> int:
    result = await db.execute(
        select(func.count(Booking.id)).filter(
            Booking.event_id == event_id, Booking.status == BookingStatus.JOINED
        )
    )
    return result.scalar_one()


async def get_joined_for_event(db: AsyncSession, event_id: int) -> List[Booking]:
    result = await db.execute(
        select(Booking)
        .filter(Booking.event_id == event_id, Booking.status == BookingStatus.JOINED)
        .order_by(Booking.joined_at.asc(), Booking.id.asc())
        .with_for_update()
    )
    return list(result.scalars().all())
