from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.exceptions import NotFound
from app.crud import notification as crud_notification
from app.models.user import User
from app.schemas.notification import Notification

router = APIRouter()


@router.get("", response_model=List[Notification])  # type: ignore[misc]
async def read_notifications(
    db: AsyncSession = Depends(deps.get_db),
    skip: int = 0,
    limit: int = 50,
    unread_only: bool = False,
    current_user: User = Depends(deps.get_current_user),
) -> List[Notification]:
    notifications = await crud_notification.get_user_notifications(
        db, current_user.id, skip=skip, limit=min(limit, 100), unread_only=unread_only
    )
    return [Notification.model_validate(n) for n in notifications]


@router.post("/{notification_id}/read", response_model=Notification)  # type: ignore[misc]
async def mark_notification_read(
    *,
    db: AsyncSession = Depends(deps.get_db),
    notification_id: int,
    current_user: User = Depends(deps.get_current_user),
) -> Notification:
    notification = await crud_notification.mark_as_read(
        db, notification_id, current_user.id
    )
    if notification is None:
        raise NotFound("Notification not found")
    return Notification.model_validate(notification)
