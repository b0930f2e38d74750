from typing import List

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from conftest import RecordingDispatcher, make_event, make_user
from app.core.exceptions import EventNotActive, Forbidden, NotWaiting
from app.crud import booking as crud_booking
from app.crud import waitlist as crud_waitlist
from app.models.booking import BookingStatus, PaymentStatus
from app.models.event import EventStatus
from app.models.notification import NoticeKind
from app.models.user import User, UserRole
from app.models.waitlist import WaitlistStatus
from app.services import booking_service, event_service, promotion, waitlist_service


async def test_cancel_releases_everyone(
    db: AsyncSession, host: User, users: List[User], notifier: RecordingDispatcher
) -> None:
    event = await make_event(db, host, capacity=2, price=20.0)
    first = await booking_service.join(db, users[0].id, event.id, "pi_a", notifier=notifier)
    second = await booking_service.join(db, users[1].id, event.id, "pi_b", notifier=notifier)
    await waitlist_service.enqueue(db, users[2].id, event.id, notifier=notifier)
    notifier.clear()

    cancelled = await event_service.cancel_event(
        db, host, event.id, "Instructor is sick", notifier=notifier
    )

    assert cancelled.status == EventStatus.CANCELLED
    assert cancelled.cancellation_reason == "Instructor is sick"
    assert cancelled.cancelled_at is not None

    for booking_id in (first.id, second.id):
        booking = await crud_booking.get(db, booking_id)
        assert booking is not None
        assert booking.status == BookingStatus.CANCELLED
        assert booking.payment_status == PaymentStatus.REFUND_PENDING
    assert sorted(notifier.refunds) == sorted(
        [(first.id, "event_cancelled"), (second.id, "event_cancelled")]
    )
    assert sorted(notifier.refund_intents) == ["pi_a", "pi_b"]

    entry = await crud_waitlist.get_by_user_event(db, users[2].id, event.id)
    assert entry is not None
    assert entry.status == WaitlistStatus.CANCELLED

    notices = notifier.of_kind(NoticeKind.EVENT_CANCELLED)
    assert sorted(n.user_id for n in notices) == ["alice", "bob", "carol"]
    assert {n.user_id: n.data["was_waitlisted"] for n in notices} == {
        "alice": False,
        "bob": False,
        "carol": True,
    }
    assert all(n.data["reason"] == "Instructor is sick" for n in notices)


async def test_cancelled_event_stops_promotion(
    db: AsyncSession, host: User, users: List[User], notifier: RecordingDispatcher
) -> None:
    event = await make_event(db, host, capacity=1)
    await booking_service.join(db, users[0].id, event.id, notifier=notifier)
    await event_service.cancel_event(db, host, event.id, notifier=notifier)
    notifier.clear()

    result = await promotion.promote(db, event.id, 1, notifier=notifier)

    assert result.notified == []
    assert notifier.notices == []
    with pytest.raises(EventNotActive):
        await waitlist_service.enqueue(db, users[1].id, event.id, notifier=notifier)
    with pytest.raises(NotWaiting):
        await waitlist_service.leave_waitlist(db, users[1].id, event.id, notifier=notifier)


async def test_cancel_twice(
    db: AsyncSession, host: User, notifier: RecordingDispatcher
) -> None:
    event = await make_event(db, host)
    await event_service.cancel_event(db, host, event.id, notifier=notifier)

    with pytest.raises(EventNotActive):
        await event_service.cancel_event(db, host, event.id, notifier=notifier)


async def test_only_host_or_admin_cancels(
    db: AsyncSession, host: User, users: List[User], notifier: RecordingDispatcher
) -> None:
    event = await make_event(db, host)

    with pytest.raises(Forbidden):
        await event_service.cancel_event(db, users[0], event.id, notifier=notifier)

    admin = await make_user(db, "admin", UserRole.ADMIN)
    cancelled = await event_service.cancel_event(db, admin, event.id, notifier=notifier)
    assert cancelled.status == EventStatus.CANCELLED


async def test_participation_status(
    db: AsyncSession, host: User, users: List[User], notifier: RecordingDispatcher
) -> None:
    event = await make_event(db, host, capacity=1)
    await booking_service.join(db, users[0].id, event.id, notifier=notifier)
    await waitlist_service.enqueue(db, users[1].id, event.id, notifier=notifier)
    await waitlist_service.enqueue(db, users[2].id, event.id, notifier=notifier)

    joined = await event_service.get_status(db, users[0].id, event.id)
    assert joined.joined and not joined.waitlisted

    waiting = await event_service.get_status(db, users[2].id, event.id)
    assert waiting.waitlisted
    assert waiting.waitlist_status == "waiting"
    assert waiting.position == 2

    await booking_service.leave(db, users[0].id, event.id, notifier=notifier)
    offered = await event_service.get_status(db, users[1].id, event.id)
    assert offered.waitlist_status == "notified"
    assert offered.position is None
    assert offered.expires_at is not None

    outsider = await event_service.get_status(db, users[3].id, event.id)
    assert not outsider.joined and not outsider.waitlisted
