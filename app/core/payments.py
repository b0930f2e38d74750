import logging
from typing import Any, Dict, Optional

import stripe

from .settings import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()


class PaymentNotConfigured(RuntimeError):
    pass


class RefundService:
    """Refunds a booking's payment intent through Stripe"""

    def _ensure_stripe_key(self) -> None:
        if not stripe.api_key:
            stripe.api_key = settings.payment.STRIPE_SECRET_KEY
            if not stripe.api_key:
                raise PaymentNotConfigured("Stripe API key not configured")

    def refund_payment_intent(
        self,
        payment_intent_id: str,
        *,
        booking_id: int,
        event_id: int,
        user_id: str,
        reason: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Refund the whole payment intent.

        Raises ``stripe.StripeError`` on provider failures; the caller decides
        whether to retry.
        """
        self._ensure_stripe_key()

        refund = stripe.Refund.create(
            payment_intent=payment_intent_id,
            reason=settings.payment.REFUND_REASON,
            metadata={
                "booking_id": str(booking_id),
                "event_id": str(event_id),
                "user_id": user_id,
                "refund_reason": reason or settings.payment.REFUND_REASON,
            },
            idempotency_key=f"booking-{booking_id}-{payment_intent_id}",
        )

        logger.info(f"Refund processed: {refund.id} for booking {booking_id}")

        return {
            "refund_id": refund.id,
            "amount": refund.amount,
            "currency": refund.currency,
            "status": refund.status,
        }


refund_service = RefundService()
