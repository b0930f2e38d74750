"""
Async engine, session factory and per-backend locking setup.

Ledger operations lock the event row with SELECT ... FOR UPDATE. PostgreSQL
honours that directly; SQLite ignores it, so there every transaction starts
with BEGIN IMMEDIATE and writers serialize on the database lock instead.
"""

import logging
import time
from typing import Any, Dict, Optional

from sqlalchemy import event, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import AsyncAdaptedQueuePool, NullPool, StaticPool

from app.core.settings import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()


class Base(DeclarativeBase):
    pass


def async_database_url(url: str) -> str:
    """Swap a sync driver prefix for the async driver the service runs on."""
    if url.startswith("postgresql://"):
        return "postgresql+asyncpg://" + url[len("postgresql://"):]
    if url.startswith("sqlite:///"):
        return "sqlite+aiosqlite:///" + url[len("sqlite:///"):]
    return url


def mask_url(url: str) -> str:
    scheme, sep, rest = url.partition("://")
    credentials, at, host = rest.rpartition("@")
    if not at or ":" not in credentials:
        return url
    user = credentials.split(":", 1)[0]
    return f"{scheme}{sep}{user}:***@{host}"


def _sqlite_options(url: str) -> Dict[str, Any]:
    return {
        # An in-memory database only exists on its one connection
        "poolclass": StaticPool if ":memory:" in url else NullPool,
        "connect_args": {
            "check_same_thread": False,
            "timeout": settings.database.SQLITE_BUSY_TIMEOUT,
        },
    }


def _postgres_options() -> Dict[str, Any]:
    db = settings.database
    return {
        "poolclass": AsyncAdaptedQueuePool,
        "pool_size": db.POOL_SIZE,
        "max_overflow": db.MAX_OVERFLOW,
        "pool_timeout": db.POOL_TIMEOUT,
        "pool_recycle": db.POOL_RECYCLE,
        "pool_pre_ping": db.POOL_PRE_PING,
        "connect_args": {
            "command_timeout": db.COMMAND_TIMEOUT,
            "server_settings": {
                "application_name": f"{settings.PROJECT_NAME}_app",
                "statement_timeout": str(db.STATEMENT_TIMEOUT),
                "lock_timeout": str(db.LOCK_TIMEOUT),
                "idle_in_transaction_session_timeout": str(
                    db.IDLE_IN_TRANSACTION_TIMEOUT
                ),
            },
        },
    }


def _use_immediate_transactions(engine: AsyncEngine) -> None:
    # pysqlite's own BEGIN handling is switched off so ours is the only one
    @event.listens_for(engine.sync_engine, "connect")  # type: ignore
    def on_connect(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")  # type: ignore
    def on_begin(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")


class DatabaseManager:
    """Owns one engine and the session factory bound to it."""

    def __init__(self, database_url: Optional[str] = None) -> None:
        url = async_database_url(database_url or settings.SQLALCHEMY_DATABASE_URI)
        options = _sqlite_options(url) if url.startswith("sqlite") else _postgres_options()

        self.engine: AsyncEngine = create_async_engine(
            url, echo=settings.database.ECHO, **options
        )
        if self.is_sqlite:
            _use_immediate_transactions(self.engine)

        @event.listens_for(self.engine.sync_engine, "invalidate")  # type: ignore
        def on_invalidate(dbapi_connection: Any, connection_record: Any, exc: Any) -> None:
            logger.warning(f"Database connection invalidated: {exc}")

        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
        logger.info(f"Database engine initialized with URL: {mask_url(url)}")

    @property
    def is_sqlite(self) -> bool:
        return self.engine.dialect.name == "sqlite"

    async def create_all(self) -> None:
        """Create every mapped table; Alembic owns the schema everywhere else."""
        import app.models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def health_check(self) -> Dict[str, Any]:
        start_time = time.perf_counter()
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            logger.error(f"Database health check failed: {e}")
            return {"status": "error", "message": str(e)}

        return {
            "status": "healthy",
            "response_time_ms": round((time.perf_counter() - start_time) * 1000, 2),
            "database_url": mask_url(str(self.engine.url)),
        }

    async def close(self) -> None:
        await self.engine.dispose()
        logger.info("Database engine closed")


db_manager = DatabaseManager()
