from typing import Any, AsyncGenerator, Dict, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from conftest import RecordingDispatcher
from app.api import deps
from app.core.database_manager import DatabaseManager
from app.core.security import create_access_token
from app.core.settings import get_settings
from app.crud import notification as crud_notification
from app.main import app
from app.core.db_utils import db_transaction
from app.models.notification import NoticeKind
from app.models.user import User
from app.services import booking_service

settings = get_settings()
API = settings.API_V1_PREFIX


def auth(user_id: str, role: Optional[str] = None) -> Dict[str, str]:
    claims = {"email": f"{user_id}@example.com", "name": user_id.title()}
    if role:
        claims["role"] = role
    token = create_access_token(user_id, additional_claims=claims)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture  # type: ignore[misc]
async def client(
    database: DatabaseManager, notifier: RecordingDispatcher
) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with database.session_factory() as session:
            yield session

    app.dependency_overrides[deps.get_db] = override_get_db
    app.dependency_overrides[deps.get_dispatcher] = lambda: notifier
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://testserver"
    ) as ac:
        yield ac
    app.dependency_overrides.clear()


async def create_event(client: AsyncClient, capacity: Optional[int] = 1) -> int:
    response = await client.post(
        f"{API}/events",
        json={"title": "Sunrise Yoga", "capacity": capacity},
        headers=auth("host", "host"),
    )
    assert response.status_code == 201, response.text
    return response.json()["id"]


async def test_root_and_health(client: AsyncClient) -> None:
    response = await client.get("/")
    assert response.status_code == 200
    assert response.json()["message"] == f"Welcome to {settings.PROJECT_NAME}"

    response = await client.get("/health")
    assert response.status_code == 200
    assert "status" in response.json()


async def test_requests_without_token_are_rejected(client: AsyncClient) -> None:
    event_id = await create_event(client)

    response = await client.post(f"{API}/events/{event_id}/join")
    assert response.status_code == 401
    assert response.json()["code"] == "unauthorized"

    response = await client.post(
        f"{API}/events/{event_id}/join",
        headers={"Authorization": "Bearer not-a-jwt"},
    )
    assert response.status_code == 401


async def test_join_full_event_then_waitlist(
    client: AsyncClient, notifier: RecordingDispatcher
) -> None:
    event_id = await create_event(client, capacity=1)

    response = await client.post(f"{API}/events/{event_id}/join", headers=auth("alice"))
    assert response.status_code == 201
    assert response.json()["status"] == "joined"

    response = await client.post(f"{API}/events/{event_id}/join", headers=auth("bob"))
    assert response.status_code == 409
    assert response.json() == {
        "detail": "Activity is full",
        "code": "event_full",
        "context": {"waitlist_available": True},
    }

    response = await client.post(f"{API}/events/{event_id}/waitlist", headers=auth("bob"))
    assert response.status_code == 201
    body = response.json()
    assert body["position"] == 1
    assert body["message"] == "You're #1 on the waitlist!"

    response = await client.get(f"{API}/events/{event_id}/spots")
    assert response.json()["waitlist_count"] == 1
    assert response.json()["urgency_level"] == "full"

    response = await client.delete(f"{API}/events/{event_id}/join", headers=auth("alice"))
    assert response.status_code == 200
    assert response.json()["status"] == "cancelled"
    assert [n.user_id for n in notifier.of_kind(NoticeKind.SPOT_OPENED)] == ["bob"]

    response = await client.get(f"{API}/events/{event_id}/status", headers=auth("bob"))
    assert response.json()["waitlist_status"] == "notified"
    assert response.json()["expires_at"] is not None

    response = await client.post(f"{API}/events/{event_id}/join", headers=auth("bob"))
    assert response.status_code == 201


async def test_waitlist_errors_map_to_conflicts(client: AsyncClient) -> None:
    event_id = await create_event(client, capacity=2)

    response = await client.post(f"{API}/events/{event_id}/waitlist", headers=auth("bob"))
    assert response.status_code == 409
    assert response.json()["code"] == "event_not_full"

    response = await client.delete(f"{API}/events/{event_id}/waitlist", headers=auth("bob"))
    assert response.status_code == 409
    assert response.json()["code"] == "not_waiting"

    response = await client.post(f"{API}/events/9999/join", headers=auth("bob"))
    assert response.status_code == 404


async def test_host_manages_capacity_and_waitlist(client: AsyncClient) -> None:
    event_id = await create_event(client, capacity=1)
    await client.post(f"{API}/events/{event_id}/join", headers=auth("alice"))
    await client.post(f"{API}/events/{event_id}/waitlist", headers=auth("bob"))
    await client.post(f"{API}/events/{event_id}/waitlist", headers=auth("carol"))

    response = await client.get(f"{API}/events/{event_id}/waitlist", headers=auth("bob"))
    assert response.status_code == 403

    response = await client.get(
        f"{API}/events/{event_id}/waitlist", headers=auth("host", "host")
    )
    assert response.status_code == 200
    assert response.json()["total_waiting"] == 2

    response = await client.patch(
        f"{API}/events/{event_id}/capacity",
        json={"capacity": 0},
        headers=auth("host", "host"),
    )
    assert response.status_code == 422
    assert response.json()["code"] == "invalid_capacity"

    response = await client.patch(
        f"{API}/events/{event_id}/capacity",
        json={"capacity": 2},
        headers=auth("host", "host"),
    )
    assert response.status_code == 200
    assert response.json()["promoted"] == 1
    assert response.json()["event"]["capacity"] == 2

    response = await client.get(f"{API}/waitlist/me", headers=auth("carol"))
    assert [row["position"] for row in response.json()] == [1]

    response = await client.post(
        f"{API}/events/{event_id}/cancel",
        json={"reason": "Studio flooded"},
        headers=auth("host", "host"),
    )
    assert response.status_code == 200
    assert response.json()["status"] == "cancelled"

    response = await client.post(f"{API}/events/{event_id}/cancel", headers=auth("host"))
    assert response.status_code == 409


async def test_sweep_requires_admin(client: AsyncClient) -> None:
    response = await client.post(f"{API}/waitlist/sweep", headers=auth("alice"))
    assert response.status_code == 403

    response = await client.post(f"{API}/waitlist/sweep", headers=auth("root", "admin"))
    assert response.status_code == 200
    assert response.json() == {"events_processed": 0, "notified": 0, "expired": 0}


async def test_notifications_inbox(client: AsyncClient, database: DatabaseManager) -> None:
    # Registers alice
    await client.get(f"{API}/notifications", headers=auth("alice"))
    async with database.session_factory() as session:
        created = await crud_notification.create_notification(
            session,
            user_id="alice",
            kind=NoticeKind.BOOKING_CONFIRMED,
            title="You're in!",
            message='Your spot for "Sunrise Yoga" is confirmed.',
        )

    response = await client.get(f"{API}/notifications", headers=auth("alice"))
    assert [n["id"] for n in response.json()] == [created.id]
    assert response.json()[0]["is_read"] is False

    response = await client.post(
        f"{API}/notifications/{created.id}/read", headers=auth("alice")
    )
    assert response.status_code == 200
    assert response.json()["is_read"] is True

    response = await client.post(f"{API}/notifications/{created.id}/read", headers=auth("bob"))
    assert response.status_code == 404

    response = await client.get(
        f"{API}/notifications", params={"unread_only": True}, headers=auth("alice")
    )
    assert response.json() == []


async def test_lost_race_returns_retry_after(
    client: AsyncClient, monkeypatch: pytest.MonkeyPatch
) -> None:
    event_id = await create_event(client)
    attempts = []

    async def colliding_join(db: AsyncSession, *args: Any) -> Any:
        attempts.append(1)
        async with db_transaction(db):
            # Primary key taken by the host, so the commit fails
            db.add(User(id="host", email="other@example.com"))

    monkeypatch.setattr(booking_service, "_join", colliding_join)

    response = await client.post(
        f"{API}/events/{event_id}/join", headers=auth("alice")
    )

    assert response.status_code == 503
    assert response.headers["Retry-After"] == "1"
    assert response.json()["code"] == "transaction_conflict"
    assert len(attempts) == settings.waitlist.TRANSACTION_RETRIES + 1


async def test_host_updates_waitlist_settings(client: AsyncClient) -> None:
    event_id = await create_event(client, capacity=4)
    url = f"{API}/events/{event_id}/waitlist-settings"

    response = await client.patch(
        url, json={"waitlist_limit": 2}, headers=auth("mallory")
    )
    assert response.status_code == 403

    response = await client.patch(
        url, json={"waitlist_enabled": None}, headers=auth("host", "host")
    )
    assert response.status_code == 422

    response = await client.patch(
        url,
        json={"show_spots_remaining": False, "notification_window_hours": 3},
        headers=auth("host", "host"),
    )
    assert response.status_code == 200, response.text
    body = response.json()
    assert body["show_spots_remaining"] is False
    assert body["notification_window_hours"] == 3
    assert body["waitlist_enabled"] is True

    spots = (await client.get(f"{API}/events/{event_id}/spots")).json()
    assert spots["show_spots_remaining"] is False
    assert spots["remaining"] == 4
