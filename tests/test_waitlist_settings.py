from typing import List

import pytest
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from conftest import RecordingDispatcher, make_event, make_user
from app.core.exceptions import (
    EventNotActive,
    Forbidden,
    NotFound,
    WaitlistClosed,
    WaitlistFull,
)
from app.core.settings import get_settings
from app.models.notification import NoticeKind
from app.models.user import User, UserRole
from app.schemas.event import WaitlistSettingsUpdate
from app.services import booking_service, event_service, waitlist_service
from app.services.capacity import get_spots_info, waitlist_limit_for

settings = get_settings()


async def test_host_closes_and_reopens_waitlist(
    db: AsyncSession, host: User, users: List[User], notifier: RecordingDispatcher
) -> None:
    event = await make_event(db, host, capacity=1)
    await booking_service.join(db, users[0].id, event.id, notifier=notifier)
    await waitlist_service.enqueue(db, users[1].id, event.id, notifier=notifier)

    await event_service.update_waitlist_settings(
        db, host, event.id, WaitlistSettingsUpdate(waitlist_enabled=False)
    )

    with pytest.raises(WaitlistClosed):
        await waitlist_service.enqueue(db, users[2].id, event.id, notifier=notifier)
    # Already queued entries keep their place
    assert await waitlist_service.position(db, users[1].id, event.id) == 1

    await event_service.update_waitlist_settings(
        db, host, event.id, WaitlistSettingsUpdate(waitlist_enabled=True)
    )
    _, position = await waitlist_service.enqueue(
        db, users[2].id, event.id, notifier=notifier
    )
    assert position == 2


async def test_lowered_limit_applies_to_new_entries(
    db: AsyncSession, host: User, users: List[User], notifier: RecordingDispatcher
) -> None:
    event = await make_event(db, host, capacity=1)
    await booking_service.join(db, users[0].id, event.id, notifier=notifier)
    await waitlist_service.enqueue(db, users[1].id, event.id, notifier=notifier)

    updated = await event_service.update_waitlist_settings(
        db, host, event.id, WaitlistSettingsUpdate(waitlist_limit=1)
    )
    assert updated.waitlist_limit == 1

    with pytest.raises(WaitlistFull):
        await waitlist_service.enqueue(db, users[2].id, event.id, notifier=notifier)


async def test_null_limit_falls_back_to_default(db: AsyncSession, host: User) -> None:
    event = await make_event(db, host, capacity=5, waitlist_limit=3)

    updated = await event_service.update_waitlist_settings(
        db, host, event.id, WaitlistSettingsUpdate(waitlist_limit=None)
    )

    assert updated.waitlist_limit is None
    assert waitlist_limit_for(updated) == settings.waitlist.DEFAULT_LIMIT


async def test_unsent_fields_are_left_alone(db: AsyncSession, host: User) -> None:
    event = await make_event(
        db, host, capacity=5, waitlist_limit=7, urgency_threshold=2
    )

    updated = await event_service.update_waitlist_settings(
        db, host, event.id, WaitlistSettingsUpdate(show_spots_remaining=False)
    )

    assert updated.waitlist_limit == 7
    assert updated.urgency_threshold == 2
    assert updated.waitlist_enabled is True
    assert updated.show_spots_remaining is False


async def test_new_offer_window_applies_to_later_offers(
    db: AsyncSession, host: User, users: List[User], notifier: RecordingDispatcher
) -> None:
    event = await make_event(db, host, capacity=1)
    await booking_service.join(db, users[0].id, event.id, notifier=notifier)
    await waitlist_service.enqueue(db, users[1].id, event.id, notifier=notifier)

    await event_service.update_waitlist_settings(
        db, host, event.id, WaitlistSettingsUpdate(notification_window_hours=6)
    )
    notifier.clear()
    await booking_service.leave(db, users[0].id, event.id, notifier=notifier)

    assert notifier.of_kind(NoticeKind.SPOT_OPENED)[0].data == {"window_hours": 6}


async def test_spots_info_carries_display_settings(
    db: AsyncSession, host: User, users: List[User], notifier: RecordingDispatcher
) -> None:
    event = await make_event(db, host, capacity=10)
    for user in users[:3]:
        await booking_service.join(db, user.id, event.id, notifier=notifier)

    info = await get_spots_info(db, event.id)
    assert info.show_spots_remaining is True
    assert info.urgency_level == "none"

    await event_service.update_waitlist_settings(
        db,
        host,
        event.id,
        WaitlistSettingsUpdate(show_spots_remaining=False, urgency_threshold=7),
    )

    info = await get_spots_info(db, event.id)
    assert info.show_spots_remaining is False
    assert info.remaining == 7
    assert info.urgency_level == "high"


async def test_only_host_or_admin_may_change_settings(
    db: AsyncSession, host: User, users: List[User]
) -> None:
    event = await make_event(db, host, capacity=5)
    data = WaitlistSettingsUpdate(waitlist_limit=2)

    with pytest.raises(Forbidden):
        await event_service.update_waitlist_settings(db, users[0], event.id, data)

    admin = await make_user(db, "admin", UserRole.ADMIN)
    updated = await event_service.update_waitlist_settings(db, admin, event.id, data)
    assert updated.waitlist_limit == 2

    with pytest.raises(NotFound):
        await event_service.update_waitlist_settings(db, host, 9999, data)


async def test_cancelled_event_settings_are_frozen(
    db: AsyncSession, host: User, notifier: RecordingDispatcher
) -> None:
    event = await make_event(db, host, capacity=5)
    await event_service.cancel_event(db, host, event.id, notifier=notifier)

    with pytest.raises(EventNotActive):
        await event_service.update_waitlist_settings(
            db, host, event.id, WaitlistSettingsUpdate(waitlist_enabled=False)
        )


def test_flags_cannot_be_null() -> None:
    with pytest.raises(ValidationError):
        WaitlistSettingsUpdate(waitlist_enabled=None)
    with pytest.raises(ValidationError):
        WaitlistSettingsUpdate.model_validate({"show_spots_remaining": None})

    assert WaitlistSettingsUpdate().model_dump(exclude_unset=True) == {}
