import asyncio
import logging
from typing import Any, Coroutine, Dict, Optional, TypeVar

import stripe

from .celery_app import celery_app
from .core.notifications import Notice, NotificationService
from .core.payments import PaymentNotConfigured, refund_service
from .crud import booking as crud_booking
from .database import async_session_maker
from .models.booking import PaymentStatus
from .services.promotion import sweep_expired_offers

logger = logging.getLogger(__name__)

T = TypeVar("T")


def run_async(coro: Coroutine[Any, Any, T]) -> T:
    """Helper to run async functions in sync context."""
    try:
        loop = asyncio.get_event_loop()
    except RuntimeError:
        loop = None
    if loop is None or loop.is_closed():
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
    return loop.run_until_complete(coro)


@celery_app.task(  # type: ignore[misc]
    bind=True,
    max_retries=3,
    default_retry_delay=60,
)
def deliver_notice(self: Any, notice_data: Dict[str, Any]) -> Dict[str, bool]:
    """Write the in-app notification and send the email for one notice."""
    notice = Notice.model_validate(notice_data)

    async def _deliver() -> Dict[str, bool]:
        async with async_session_maker() as db:
            return await NotificationService().deliver(db, notice)

    try:
        return run_async(_deliver())
    except Exception as exc:
        logger.error(
            f"Failed to deliver {notice.kind.value} notice to {notice.user_id}: {exc}"
        )
        raise self.retry(exc=exc, countdown=30 * (2**self.request.retries))


async def _mark_refund(
    booking_id: int, status: PaymentStatus, refund_id: Optional[str] = None
) -> None:
    async with async_session_maker() as db:
        booking = await crud_booking.get(db, booking_id)
        if booking is None:
            return
        booking.payment_status = status
        if refund_id:
            booking.refund_id = refund_id
        await db.commit()


@celery_app.task(  # type: ignore[misc]
    bind=True,
    max_retries=5,
    default_retry_delay=60,
)
def process_booking_refund(
    self: Any,
    booking_id: int,
    reason: Optional[str] = None,
    payment_intent_id: Optional[str] = None,
) -> str:
    """Refund one payment made for a booking through Stripe.

    ``payment_intent_id`` is the payment captured when the refund was queued.
    While the booking row still carries that payment, only REFUND_PENDING rows
    are refunded, so redelivery of the same task never refunds twice. If the
    user rejoined since, the row now holds a newer payment: the queued intent
    is still refunded but the row is left alone, and Stripe's idempotency key
    covers redelivery.
    """

    async def _load() -> Optional[Dict[str, Any]]:
        async with async_session_maker() as db:
            booking = await crud_booking.get(db, booking_id)
            if booking is None:
                logger.warning(f"Refund requested for unknown booking {booking_id}")
                return None
            intent = payment_intent_id or booking.payment_intent_id
            owns_row = intent == booking.payment_intent_id
            if owns_row and booking.payment_status != PaymentStatus.REFUND_PENDING:
                logger.info(
                    f"Booking {booking_id} is {booking.payment_status.value}, "
                    "skipping refund"
                )
                return None
            return {
                "payment_intent_id": intent,
                "owns_row": owns_row,
                "event_id": booking.event_id,
                "user_id": booking.user_id,
            }

    details = run_async(_load())
    if details is None or not details["payment_intent_id"]:
        return "skipped"

    owns_row = details["owns_row"]
    if not owns_row:
        logger.info(
            f"Booking {booking_id} was rejoined, refunding earlier payment "
            f"{details['payment_intent_id']}"
        )

    try:
        refund = refund_service.refund_payment_intent(
            details["payment_intent_id"],
            booking_id=booking_id,
            event_id=details["event_id"],
            user_id=details["user_id"],
            reason=reason,
        )
    except PaymentNotConfigured as exc:
        logger.error(f"Cannot refund booking {booking_id}: {exc}")
        if owns_row:
            run_async(_mark_refund(booking_id, PaymentStatus.REFUND_FAILED))
        return PaymentStatus.REFUND_FAILED.value
    except stripe.StripeError as exc:
        logger.error(f"Stripe error refunding booking {booking_id}: {exc}")
        if self.request.retries >= self.max_retries:
            if owns_row:
                run_async(_mark_refund(booking_id, PaymentStatus.REFUND_FAILED))
            return PaymentStatus.REFUND_FAILED.value
        raise self.retry(exc=exc, countdown=60 * (2**self.request.retries))

    if owns_row:
        run_async(
            _mark_refund(
                booking_id, PaymentStatus.REFUNDED, refund_id=refund["refund_id"]
            )
        )
    return PaymentStatus.REFUNDED.value


@celery_app.task  # type: ignore[misc]
def sweep_expired_waitlist_offers() -> Dict[str, int]:
    """Expire lapsed spot offers and pass the spots down each waitlist."""

    async def _sweep() -> Dict[str, int]:
        async with async_session_maker() as db:
            result = await sweep_expired_offers(db)
            return result.model_dump()

    return run_async(_sweep())


@celery_app.task  # type: ignore[misc]
def health_check() -> str:
    """Simple health check task."""
    return "Celery is healthy"
