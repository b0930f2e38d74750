# Import all models so the metadata knows every table
from .booking import Booking, BookingStatus, PaymentStatus  # noqa: F401
from .event import Event, EventStatus  # noqa: F401
from .notification import NoticeKind, Notification  # noqa: F401
from .user import User, UserRole  # noqa: F401
from .waitlist import WaitlistEntry, WaitlistStatus  # noqa: F401
