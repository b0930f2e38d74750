import logging
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.user import User, UserRole
from app.schemas.user import TokenPayload

logger = logging.getLogger(__name__)


async def get(db: AsyncSession, id: Any) -> Optional[User]:
    result = await db.execute(select(User).filter(User.id == id))
    first: Optional[User] = result.scalars().first()
    return first


async def upsert_from_claims(db: AsyncSession, *, claims: TokenPayload) -> User:
    """Mirror the auth provider's view of the caller into the users table."""
    user = await get(db, claims.sub)
    if user is None:
        user = User(
            id=claims.sub,
            email=claims.email,
            full_name=claims.name,
            role=claims.role or UserRole.USER,
        )
        db.add(user)
        try:
            await db.commit()
        except IntegrityError:
            # A concurrent request for the same new user inserted it first
            await db.rollback()
            user = await get(db, claims.sub)
            if user is None:
                raise
        return user

    changed = False
    if claims.email and claims.email != user.email:
        user.email = claims.email
        changed = True
    if claims.name and claims.name != user.full_name:
        user.full_name = claims.name
        changed = True
    if claims.role and claims.role != user.role:
        user.role = claims.role
        changed = True
    if changed:
        await db.commit()
        logger.debug(f"Refreshed profile of user {user.id} from token claims")
    return user
