from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Union, cast

from jose import JWTError, jwt

from app.core.exceptions import Forbidden, Unauthorized
from app.core.settings import get_settings
from app.models.event import Event
from app.models.user import User, UserRole

settings = get_settings()


def create_access_token(
    subject: Union[str, Any],
    expires_delta: Optional[timedelta] = None,
    additional_claims: Optional[Dict[str, Any]] = None,
) -> str:
    """Issue a token the way the auth provider does (used by tests and tooling)."""
    expire = datetime.now(timezone.utc) + (
        expires_delta
        if expires_delta
        else timedelta(minutes=settings.security.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode: Dict[str, Any] = {"exp": expire, "sub": str(subject)}
    if settings.security.JWT_AUDIENCE:
        to_encode["aud"] = settings.security.JWT_AUDIENCE
    if settings.security.JWT_ISSUER:
        to_encode["iss"] = settings.security.JWT_ISSUER

    if additional_claims:
        to_encode.update(additional_claims)

    encoded_jwt = jwt.encode(
        to_encode,
        settings.security.JWT_SECRET_KEY,
        algorithm=settings.security.JWT_ALGORITHM,
    )
    return cast(str, encoded_jwt)


def decode_access_token(token: str) -> Dict[str, Any]:
    """Verify a bearer token and return its claims.

    Raises ``Unauthorized`` when the signature, expiry, audience or issuer do
    not check out, or when the token carries no subject.
    """
    options = {"verify_aud": settings.security.JWT_AUDIENCE is not None}
    try:
        payload: Dict[str, Any] = jwt.decode(
            token,
            settings.security.JWT_SECRET_KEY,
            algorithms=[settings.security.JWT_ALGORITHM],
            audience=settings.security.JWT_AUDIENCE,
            issuer=settings.security.JWT_ISSUER,
            options=options,
        )
    except JWTError as e:
        raise Unauthorized("Could not validate credentials") from e

    if not payload.get("sub"):
        raise Unauthorized("Could not validate credentials")
    return payload


def ensure_can_manage(user: User, event: Event) -> None:
    """Only the event's host or an admin may change its capacity or waitlist."""
    if user.role == UserRole.ADMIN or event.host_id == user.id:
        return
    raise Forbidden()


def ensure_admin(user: User) -> None:
    if user.role != UserRole.ADMIN:
        raise Forbidden("Administrator access required")
