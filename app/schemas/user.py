from typing import Optional

from pydantic import BaseModel, ConfigDict

from ..models.user import UserRole


class TokenPayload(BaseModel):
    """Claims the auth provider puts in a bearer token."""

    sub: str
    email: Optional[str] = None
    name: Optional[str] = None
    role: Optional[UserRole] = None

    model_config = ConfigDict(extra="ignore")


class User(BaseModel):
    id: str
    email: Optional[str] = None
    full_name: Optional[str] = None
    role: UserRole
    is_active: bool

    model_config = ConfigDict(from_attributes=True)
