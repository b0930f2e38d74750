"""Alembic environment for the waitlist core schema.

The database URL comes from ``-x dburl=...`` when given, otherwise from the
application settings. Migrations always run through the async driver the
service itself uses.
"""

import asyncio
from logging.config import fileConfig
from typing import Any, Dict
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from alembic import context
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import create_async_engine

import app.models  # noqa: F401
from app.core.settings import get_settings
from app.database import Base

settings = get_settings()
config = context.config
x_args: Dict[str, str] = context.get_x_argument(as_dictionary=True)

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# asyncpg rejects libpq-only query options
LIBPQ_ONLY_OPTIONS = {"sslmode", "channel_binding"}


def async_url(url: str) -> str:
    if url.startswith("postgresql://"):
        url = "postgresql+asyncpg://" + url[len("postgresql://"):]
    elif url.startswith("sqlite:///"):
        url = "sqlite+aiosqlite:///" + url[len("sqlite:///"):]

    parts = urlsplit(url)
    if not parts.query:
        return url
    query = [
        (key, value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
        if key.lower() not in LIBPQ_ONLY_OPTIONS
    ]
    return urlunsplit(parts._replace(query=urlencode(query)))


def database_url() -> str:
    if x_args.get("dburl"):
        return async_url(x_args["dburl"])
    return async_url(settings.database.database_url)


def configure(**kwargs: Any) -> None:
    context.configure(
        target_metadata=Base.metadata,
        render_as_batch=True,
        compare_type=True,
        **kwargs,
    )


def run_migrations_offline() -> None:
    configure(
        url=database_url(),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def _run_sync(connection: Connection) -> None:
    configure(connection=connection)
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    url = database_url()
    connect_args: Dict[str, Any] = {}
    if url.startswith("postgresql+asyncpg://") and x_args.get("ssl") == "true":
        connect_args["ssl"] = True

    engine = create_async_engine(url, poolclass=pool.NullPool, connect_args=connect_args)
    async with engine.connect() as connection:
        await connection.run_sync(_run_sync)
    await engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
