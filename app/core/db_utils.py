import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Awaitable, Callable, Optional, TypeVar

from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import TransactionConflict
from app.core.settings import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

T = TypeVar("T")

RETRYABLE_ERRORS = (
    "deadlock",
    "serialization failure",
    "could not serialize",
    "lock timeout",
    "database is locked",
    "connection",
    "timeout",
)


def is_retryable_error(error: BaseException) -> bool:
    error_msg = str(error).lower()
    return any(marker in error_msg for marker in RETRYABLE_ERRORS)


@asynccontextmanager
async def db_transaction(db: AsyncSession) -> AsyncGenerator[AsyncSession, None]:
    """Commit on success, roll back on any error.

    Unique-constraint violations and lock/serialization failures mean a
    concurrent request won the race for the same rows; they surface as
    ``TransactionConflict`` so the caller can re-evaluate.
    """
    try:
        yield db
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        logger.info(f"Transaction lost a uniqueness race: {e.orig}")
        raise TransactionConflict() from e
    except DBAPIError as e:
        await db.rollback()
        if is_retryable_error(e):
            logger.info(f"Transaction conflict: {e.orig}")
            raise TransactionConflict() from e
        raise
    except Exception:
        await db.rollback()
        raise


async def execute_with_retry(
    db: AsyncSession,
    operation: Callable[..., Awaitable[T]],
    *args: Any,
    max_retries: Optional[int] = None,
    **kwargs: Any,
) -> T:
    """Run a whole transactional operation, retrying it after a lost race.

    Business errors propagate on the first attempt. Only
    ``TransactionConflict`` is retried.
    """
    if max_retries is None:
        max_retries = settings.waitlist.TRANSACTION_RETRIES

    for attempt in range(max_retries + 1):
        try:
            return await operation(db, *args, **kwargs)
        except TransactionConflict:
            if attempt >= max_retries:
                raise
            logger.info(
                f"Retrying {getattr(operation, '__name__', 'operation')} "
                f"after conflict (attempt {attempt + 1}/{max_retries})"
            )

    # unreachable: the loop either returns or raises
    raise TransactionConflict()
