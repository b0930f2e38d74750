"""Shared fixtures: a file-backed SQLite database per test and a recording dispatcher."""

import os
import sys
from pathlib import Path
from typing import Any, AsyncGenerator, List, Optional, Tuple

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    # Insert at front so local package imports resolve
    sys.path.insert(0, str(REPO_ROOT))

# Settings are read at import time
os.environ.setdefault("TESTING", "true")
os.environ.setdefault("MONITORING_LOG_FORMAT", "console")

import pytest  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: E402

from app.core.database_manager import DatabaseManager  # noqa: E402
from app.core.notifications import (  # noqa: E402
    DELIVER_NOTICE_TASK,
    PROCESS_REFUND_TASK,
    Notice,
    NotificationDispatcher,
)
from app.models.event import Event  # noqa: E402
from app.models.notification import NoticeKind  # noqa: E402
from app.models.user import User, UserRole  # noqa: E402
from app.schemas.event import EventCreate  # noqa: E402
from app.services import event_service  # noqa: E402


class RecordingDispatcher(NotificationDispatcher):
    """Keeps enqueued notices and refunds in memory instead of sending them to Celery."""

    def __init__(self) -> None:
        self.notices: List[Notice] = []
        self.refunds: List[Tuple[int, Optional[str]]] = []
        self.refund_intents: List[Optional[str]] = []

    def _enqueue(self, task_name: str, args: List[Any]) -> None:
        if task_name == DELIVER_NOTICE_TASK:
            self.notices.append(Notice.model_validate(args[0]))
        elif task_name == PROCESS_REFUND_TASK:
            self.refunds.append((args[0], args[1]))
            self.refund_intents.append(args[2])

    def of_kind(self, kind: NoticeKind) -> List[Notice]:
        return [n for n in self.notices if n.kind == kind]

    def clear(self) -> None:
        self.notices.clear()
        self.refunds.clear()
        self.refund_intents.clear()


class FailingDispatcher(NotificationDispatcher):
    def _enqueue(self, task_name: str, args: List[Any]) -> None:
        raise ConnectionError("broker unavailable")


@pytest.fixture  # type: ignore[misc]
async def database(tmp_path: Path) -> AsyncGenerator[DatabaseManager, None]:
    manager = DatabaseManager(f"sqlite+aiosqlite:///{tmp_path / 'sweatspot.db'}")
    await manager.create_all()
    yield manager
    await manager.close()


@pytest.fixture  # type: ignore[misc]
async def db(database: DatabaseManager) -> AsyncGenerator[AsyncSession, None]:
    async with database.session_factory() as session:
        yield session


@pytest.fixture  # type: ignore[misc]
def notifier() -> RecordingDispatcher:
    return RecordingDispatcher()


async def make_user(
    db: AsyncSession, user_id: str, role: UserRole = UserRole.USER
) -> User:
    user = User(
        id=user_id,
        email=f"{user_id}@example.com",
        full_name=user_id.title(),
        role=role,
    )
    db.add(user)
    await db.commit()
    return user


async def make_event(
    db: AsyncSession, host: User, capacity: Optional[int] = 1, **overrides: Any
) -> Event:
    data = {"title": "Sunrise Yoga", "capacity": capacity, **overrides}
    return await event_service.create_event(db, host, EventCreate(**data))


@pytest.fixture  # type: ignore[misc]
async def host(db: AsyncSession) -> User:
    return await make_user(db, "host", UserRole.HOST)


@pytest.fixture  # type: ignore[misc]
async def users(db: AsyncSession) -> List[User]:
    return [await make_user(db, name) for name in ("alice", "bob", "carol", "dave")]
