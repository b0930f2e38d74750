"""Business outcomes of the booking ledger and waitlist queue.

Every error carries a stable ``code`` for clients, the HTTP status the API
renders it with, and a message that can be shown to an end user as-is.
Only ``TransactionConflict`` is retryable.
"""

from typing import Any, Dict, Optional


class DomainError(Exception):
    code = "error"
    status_code = 400
    message = "Request could not be completed"
    retryable = False

    def __init__(
        self, message: Optional[str] = None, **context: Any
    ) -> None:
        super().__init__(message or self.message)
        self.message = message or self.message
        self.context: Dict[str, Any] = context

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"detail": self.message, "code": self.code}
        if self.context:
            body["context"] = self.context
        return body


class Unauthorized(DomainError):
    code = "unauthorized"
    status_code = 401
    message = "Authentication required"


class Forbidden(DomainError):
    code = "forbidden"
    status_code = 403
    message = "You do not have permission to manage this activity"


class NotFound(DomainError):
    code = "not_found"
    status_code = 404
    message = "Activity not found"


class AlreadyJoined(DomainError):
    code = "already_joined"
    status_code = 409
    message = "Already joined this activity"


class NotJoined(DomainError):
    code = "not_joined"
    status_code = 409
    message = "Not joined to this activity"


class EventFull(DomainError):
    code = "event_full"
    status_code = 409
    message = "Activity is full"


class EventNotActive(DomainError):
    code = "event_not_active"
    status_code = 409
    message = "Activity has been cancelled"


class AlreadyWaiting(DomainError):
    code = "already_waiting"
    status_code = 409
    message = "You are already on the waitlist"


class NotWaiting(DomainError):
    code = "not_waiting"
    status_code = 409
    message = "You are not on the waitlist for this activity"


class EventNotFull(DomainError):
    code = "event_not_full"
    status_code = 409
    message = "Activity is not full. Please join instead."


class WaitlistClosed(DomainError):
    code = "waitlist_closed"
    status_code = 409
    message = "Waitlist is not available for this activity"


class WaitlistFull(DomainError):
    code = "waitlist_full"
    status_code = 409
    message = "Waitlist is currently full"


class PaymentRequired(DomainError):
    code = "payment_required"
    status_code = 402
    message = "Payment is required to join this activity"


class InvalidCapacity(DomainError):
    code = "invalid_capacity"
    status_code = 422
    message = "Capacity cannot be lower than the number of joined attendees"


class TransactionConflict(DomainError):
    code = "transaction_conflict"
    status_code = 503
    message = "Activity is busy, please try again"
    retryable = True
