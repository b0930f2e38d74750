import json
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.notification import NoticeKind, Notification
from ..utils.clock import utcnow

logger = logging.getLogger(__name__)


async def create_notification(
    db: AsyncSession,
    *,
    user_id: str,
    kind: NoticeKind,
    title: str,
    message: str,
    event_id: Optional[int] = None,
    data: Optional[Dict[str, Any]] = None,
) -> Notification:
    """Create a new in-app notification"""
    db_notification = Notification(
        user_id=user_id,
        event_id=event_id,
        kind=kind,
        title=title,
        message=message,
        data=json.dumps(data, default=str) if data else None,
    )
    db.add(db_notification)
    await db.commit()
    await db.refresh(db_notification)
    return db_notification


async def get_user_notifications(
    db: AsyncSession,
    user_id: str,
    skip: int = 0,
    limit: int = 50,
    unread_only: bool = False,
) -> List[Notification]:
    query = select(Notification).filter(Notification.user_id == user_id)
    if unread_only:
        query = query.filter(Notification.is_read.is_(False))
    query = query.order_by(desc(Notification.created_at), desc(Notification.id))
    result = await db.execute(query.offset(skip).limit(limit))
    return list(result.scalars().all())


async def get_unread_count(db: AsyncSession, user_id: str) -> int:
    result = await db.execute(
        select(func.count(Notification.id)).filter(
            Notification.user_id == user_id, Notification.is_read.is_(False)
        )
    )
    return result.scalar_one()


async def mark_as_read(
    db: AsyncSession, notification_id: int, user_id: str
) -> Optional[Notification]:
    result = await db.execute(
        select(Notification).filter(
            Notification.id == notification_id, Notification.user_id == user_id
        )
    )
    notification = result.scalars().first()
    if notification is None:
        return None

    if not notification.is_read:
        notification.is_read = True
        notification.read_at = utcnow()
        await db.commit()
    return notification
