"""Post-commit side effects of ledger operations.

Services collect ``Notice`` objects while a transaction runs and hand them to
the ``NotificationDispatcher`` only after it committed. The dispatcher pushes
them onto Celery; a failure to enqueue is logged and never reaches the caller,
whose state change already happened. Workers turn a notice into an in-app
inbox entry plus an email through ``NotificationService``.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from ..celery_app import celery_app
from ..crud import event as crud_event
from ..crud import user as crud_user
from ..crud.notification import create_notification
from ..models.event import Event
from ..models.notification import NoticeKind
from .sendgrid_email import SendGridEmailService

logger = logging.getLogger(__name__)

DELIVER_NOTICE_TASK = "app.tasks.deliver_notice"
PROCESS_REFUND_TASK = "app.tasks.process_booking_refund"


class Notice(BaseModel):
    user_id: str
    event_id: int
    kind: NoticeKind
    expires_at: Optional[datetime] = None
    position: Optional[int] = None
    data: Dict[str, Any] = Field(default_factory=dict)


class NotificationDispatcher:
    """Fire-and-forget hand-off of notices and refunds to the workers."""

    def _enqueue(self, task_name: str, args: List[Any]) -> None:
        celery_app.send_task(task_name, args=args)

    def dispatch(self, notice: Notice) -> bool:
        try:
            self._enqueue(DELIVER_NOTICE_TASK, [notice.model_dump(mode="json")])
            return True
        except Exception as e:
            logger.warning(
                f"Failed to enqueue {notice.kind.value} notice for user "
                f"{notice.user_id} on event {notice.event_id}: {e}"
            )
            return False

    def dispatch_many(self, notices: Iterable[Notice]) -> int:
        return sum(1 for notice in notices if self.dispatch(notice))

    def queue_refund(
        self,
        booking_id: int,
        reason: Optional[str] = None,
        payment_intent_id: Optional[str] = None,
    ) -> bool:
        # The intent travels with the task; a rejoin may rewrite the booking row
        try:
            self._enqueue(PROCESS_REFUND_TASK, [booking_id, reason, payment_intent_id])
            return True
        except Exception as e:
            logger.warning(f"Failed to enqueue refund for booking {booking_id}: {e}")
            return False


dispatcher = NotificationDispatcher()


def compose_notice(notice: Notice, event_title: str) -> Tuple[str, str]:
    """Title and message shown in the inbox for a notice."""
    data = notice.data
    if notice.kind == NoticeKind.SPOT_OPENED:
        hours = data.get("window_hours")
        window = f" - you have {hours} hours!" if hours else "!"
        return "A spot opened up!", f'Book now for "{event_title}"{window}'
    if notice.kind == NoticeKind.WAITLISTED:
        return (
            f"You're #{notice.position} on the waitlist!",
            f'We\'ll notify you when a spot opens up for "{event_title}"',
        )
    if notice.kind == NoticeKind.LEFT_WAITLIST:
        return "You left the waitlist", f'You are no longer waiting for "{event_title}"'
    if notice.kind == NoticeKind.OFFER_EXPIRED:
        return (
            "Your spot offer expired",
            f'The spot held for you at "{event_title}" went to the next person in line.',
        )
    if notice.kind == NoticeKind.BOOKING_CONFIRMED:
        return "You're in!", f'Your spot for "{event_title}" is confirmed.'
    if notice.kind == NoticeKind.EVENT_CANCELLED:
        reason = data.get("reason")
        suffix = f" Reason: {reason}" if reason else ""
        return "Activity cancelled", f'"{event_title}" has been cancelled.{suffix}'
    if notice.kind == NoticeKind.WAITLIST_MILESTONE:
        count = data.get("waitlist_count")
        return (
            f"{count} people waiting!",
            f'{count} people are on the waitlist for "{event_title}". '
            "Consider adding more spots or creating another session!",
        )
    return "Activity update", f'There is an update for "{event_title}"'


class NotificationService:
    def __init__(self, email_service: Optional[SendGridEmailService] = None) -> None:
        self.email_service = email_service or SendGridEmailService()

    async def deliver(self, db: AsyncSession, notice: Notice) -> Dict[str, bool]:
        """Write the inbox entry and send the email for one notice."""
        results: Dict[str, bool] = {"in_app": False, "email": False}

        user = await crud_user.get(db, notice.user_id)
        if user is None:
            logger.warning(f"Dropping {notice.kind.value} notice for unknown user {notice.user_id}")
            return results

        event: Optional[Event] = await crud_event.get(db, notice.event_id)
        event_title = event.title if event else "your activity"
        title, message = compose_notice(notice, event_title)

        payload: Dict[str, Any] = {**notice.data, "event_id": notice.event_id}
        if notice.position is not None:
            payload["position"] = notice.position
        if notice.expires_at is not None:
            payload["expires_at"] = notice.expires_at.isoformat()

        try:
            await create_notification(
                db,
                user_id=user.id,
                event_id=notice.event_id if event else None,
                kind=notice.kind,
                title=title,
                message=message,
                data=payload,
            )
            results["in_app"] = True
        except Exception as e:
            await db.rollback()
            logger.error(f"In-app notification failed for {user.id}: {e}")

        if user.email:
            results["email"] = await self.email_service.send_notice_email(
                user_email=user.email,
                user_name=user.full_name or f"User {user.id}",
                kind=notice.kind,
                context={
                    **payload,
                    "event_title": event_title,
                    "title": title,
                    "message": message,
                    "expires_at": notice.expires_at,
                    "position": notice.position,
                },
            )

        return results
