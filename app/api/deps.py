from typing import AsyncGenerator, Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import security
from app.core.database_manager import db_manager
from app.core.exceptions import Forbidden, Unauthorized
from app.core.notifications import NotificationDispatcher, dispatcher
from app.crud import user as crud_user
from app.models.user import User
from app.schemas.user import TokenPayload

bearer_scheme = HTTPBearer(auto_error=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with db_manager.session_factory() as session:
        yield session


def get_dispatcher() -> NotificationDispatcher:
    return dispatcher


async def get_current_user(
    db: AsyncSession = Depends(get_db),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> User:
    """Resolve the caller from the auth provider's bearer token."""
    if credentials is None or not credentials.credentials:
        raise Unauthorized()

    payload = security.decode_access_token(credentials.credentials)
    try:
        token_data = TokenPayload(**payload)
    except ValidationError as e:
        raise Unauthorized("Could not validate credentials") from e

    user = await crud_user.upsert_from_claims(db, claims=token_data)
    if not user.is_active:
        raise Forbidden("Inactive user")
    return user


def get_current_admin_user(current_user: User = Depends(get_current_user)) -> User:
    security.ensure_admin(current_user)
    return current_user
