from datetime import timedelta
from typing import List

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from conftest import RecordingDispatcher, make_event
from app.core.exceptions import EventFull, Forbidden, InvalidCapacity
from app.crud import waitlist as crud_waitlist
from app.models.event import Event
from app.models.notification import NoticeKind
from app.models.user import User
from app.models.waitlist import WaitlistStatus
from app.services import booking_service, event_service, promotion, waitlist_service
from app.services.capacity import get_capacity
from app.utils.clock import as_utc, utcnow


async def waiting_line(
    db: AsyncSession,
    host: User,
    users: List[User],
    notifier: RecordingDispatcher,
    **overrides,
) -> Event:
    """alice holds the only spot, everyone else waits in order."""
    event = await make_event(db, host, capacity=1, **overrides)
    await booking_service.join(db, users[0].id, event.id, notifier=notifier)
    for user in users[1:]:
        await waitlist_service.enqueue(db, user.id, event.id, notifier=notifier)
    notifier.clear()
    return event


async def status_of(db: AsyncSession, user: User, event: Event) -> WaitlistStatus:
    entry = await crud_waitlist.get_by_user_event(db, user.id, event.id)
    assert entry is not None
    return entry.status


async def test_leaving_offers_the_spot_to_the_head(
    db: AsyncSession, host: User, users: List[User], notifier: RecordingDispatcher
) -> None:
    event = await waiting_line(db, host, users, notifier)

    await booking_service.leave(db, users[0].id, event.id, notifier=notifier)

    offers = notifier.of_kind(NoticeKind.SPOT_OPENED)
    assert [n.user_id for n in offers] == ["bob"]
    assert offers[0].data == {"window_hours": 24}

    entry = await crud_waitlist.get_by_user_event(db, "bob", event.id)
    assert entry is not None
    assert entry.status == WaitlistStatus.NOTIFIED
    window = as_utc(entry.expires_at) - as_utc(entry.notified_at)
    assert window == timedelta(hours=24)
    assert await status_of(db, users[2], event) == WaitlistStatus.WAITING
    assert await waitlist_service.position(db, "carol", event.id) == 1


async def test_event_window_overrides_default(
    db: AsyncSession, host: User, users: List[User], notifier: RecordingDispatcher
) -> None:
    event = await waiting_line(db, host, users, notifier, notification_window_hours=2)

    await booking_service.leave(db, users[0].id, event.id, notifier=notifier)

    assert notifier.of_kind(NoticeKind.SPOT_OPENED)[0].data == {"window_hours": 2}


async def test_notified_user_converts_by_joining(
    db: AsyncSession, host: User, users: List[User], notifier: RecordingDispatcher
) -> None:
    event = await waiting_line(db, host, users, notifier)
    await booking_service.leave(db, users[0].id, event.id, notifier=notifier)

    await booking_service.join(db, users[1].id, event.id, notifier=notifier)

    assert await status_of(db, users[1], event) == WaitlistStatus.CONVERTED
    assert (await get_capacity(db, event)).joined == 1
    assert await waitlist_service.position(db, "carol", event.id) == 1


async def test_offer_is_not_a_reservation(
    db: AsyncSession, host: User, users: List[User], notifier: RecordingDispatcher
) -> None:
    event = await make_event(db, host, capacity=1)
    await booking_service.join(db, users[0].id, event.id, notifier=notifier)
    await waitlist_service.enqueue(db, users[1].id, event.id, notifier=notifier)
    await booking_service.leave(db, users[0].id, event.id, notifier=notifier)

    # Someone who never waited takes the spot first
    await booking_service.join(db, users[2].id, event.id, notifier=notifier)

    with pytest.raises(EventFull):
        await booking_service.join(db, users[1].id, event.id, notifier=notifier)
    assert await status_of(db, users[1], event) == WaitlistStatus.NOTIFIED


async def test_lapsed_offer_cascades_to_next_in_line(
    db: AsyncSession, host: User, users: List[User], notifier: RecordingDispatcher
) -> None:
    event = await waiting_line(db, host, users, notifier)
    await booking_service.leave(db, users[0].id, event.id, notifier=notifier)
    notifier.clear()

    result = await promotion.sweep_expired_offers(
        db, notifier=notifier, now=utcnow() + timedelta(hours=25)
    )

    assert result.model_dump() == {"events_processed": 1, "notified": 1, "expired": 1}
    assert await status_of(db, users[1], event) == WaitlistStatus.EXPIRED
    assert await status_of(db, users[2], event) == WaitlistStatus.NOTIFIED
    assert await status_of(db, users[3], event) == WaitlistStatus.WAITING
    assert [n.user_id for n in notifier.of_kind(NoticeKind.OFFER_EXPIRED)] == ["bob"]
    assert [n.user_id for n in notifier.of_kind(NoticeKind.SPOT_OPENED)] == ["carol"]


async def test_sweep_without_lapsed_offers(
    db: AsyncSession, host: User, users: List[User], notifier: RecordingDispatcher
) -> None:
    event = await waiting_line(db, host, users, notifier)
    await booking_service.leave(db, users[0].id, event.id, notifier=notifier)
    notifier.clear()

    result = await promotion.sweep_expired_offers(db, notifier=notifier)

    assert result.events_processed == 0
    assert notifier.notices == []
    assert await status_of(db, users[1], event) == WaitlistStatus.NOTIFIED


async def test_promote_never_offers_more_than_free_spots(
    db: AsyncSession, host: User, users: List[User], notifier: RecordingDispatcher
) -> None:
    event = await waiting_line(db, host, users, notifier)

    result = await promotion.promote(db, event.id, 2, notifier=notifier)

    assert result.notified == []
    assert notifier.notices == []


async def test_outstanding_offers_hold_back_further_promotion(
    db: AsyncSession, host: User, users: List[User], notifier: RecordingDispatcher
) -> None:
    event = await waiting_line(db, host, users, notifier)
    await booking_service.leave(db, users[0].id, event.id, notifier=notifier)

    result = await promotion.promote(db, event.id, 1, notifier=notifier)

    assert result.notified == []
    assert await status_of(db, users[2], event) == WaitlistStatus.WAITING


async def test_promote_checks_the_actor(
    db: AsyncSession, host: User, users: List[User], notifier: RecordingDispatcher
) -> None:
    event = await waiting_line(db, host, users, notifier)

    with pytest.raises(Forbidden):
        await promotion.promote(db, event.id, 1, actor=users[1], notifier=notifier)


async def test_capacity_increase_offers_new_spots(
    db: AsyncSession, host: User, users: List[User], notifier: RecordingDispatcher
) -> None:
    event = await waiting_line(db, host, users, notifier)

    updated, result = await event_service.update_capacity(
        db, host, event.id, 3, notifier=notifier
    )

    assert updated.capacity == 3
    assert [e.user_id for e in result.notified] == ["bob", "carol"]
    assert await status_of(db, users[3], event) == WaitlistStatus.WAITING


async def test_capacity_decrease_below_joined(
    db: AsyncSession, host: User, users: List[User], notifier: RecordingDispatcher
) -> None:
    event = await make_event(db, host, capacity=3)
    await booking_service.join(db, users[0].id, event.id, notifier=notifier)
    await booking_service.join(db, users[1].id, event.id, notifier=notifier)

    with pytest.raises(InvalidCapacity) as exc_info:
        await event_service.update_capacity(db, host, event.id, 1, notifier=notifier)
    assert exc_info.value.context == {"joined": 2}

    updated, result = await event_service.update_capacity(
        db, host, event.id, 2, notifier=notifier
    )
    assert updated.capacity == 2
    assert result.notified == []


async def test_unlimited_capacity_offers_everyone(
    db: AsyncSession, host: User, users: List[User], notifier: RecordingDispatcher
) -> None:
    event = await waiting_line(db, host, users, notifier)

    _, result = await event_service.update_capacity(
        db, host, event.id, None, notifier=notifier
    )

    assert [e.user_id for e in result.notified] == ["bob", "carol", "dave"]


async def test_only_host_changes_capacity(
    db: AsyncSession, host: User, users: List[User], notifier: RecordingDispatcher
) -> None:
    event = await make_event(db, host, capacity=3)

    with pytest.raises(Forbidden):
        await event_service.update_capacity(db, users[0], event.id, 5, notifier=notifier)


async def test_declined_offer_cascades(
    db: AsyncSession, host: User, users: List[User], notifier: RecordingDispatcher
) -> None:
    event = await waiting_line(db, host, users, notifier)
    await booking_service.leave(db, users[0].id, event.id, notifier=notifier)
    notifier.clear()

    await waitlist_service.leave_waitlist(db, users[1].id, event.id, notifier=notifier)

    assert await status_of(db, users[1], event) == WaitlistStatus.CANCELLED
    assert await status_of(db, users[2], event) == WaitlistStatus.NOTIFIED
    assert [n.user_id for n in notifier.of_kind(NoticeKind.SPOT_OPENED)] == ["carol"]
