from enum import Enum
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from ..database import Base
from ..utils.clock import utcnow


class NoticeKind(str, Enum):
    SPOT_OPENED = "spot_opened"
    WAITLISTED = "waitlisted"
    LEFT_WAITLIST = "left_waitlist"
    OFFER_EXPIRED = "offer_expired"
    BOOKING_CONFIRMED = "booking_confirmed"
    EVENT_CANCELLED = "event_cancelled"
    WAITLIST_MILESTONE = "waitlist_milestone"


class Notification(Base):
    """In-app inbox entry written by the notification worker."""

    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    event_id: Mapped[Optional[int]] = mapped_column(ForeignKey("events.id"), nullable=True)
    kind: Mapped[NoticeKind] = mapped_column(SQLEnum(NoticeKind), nullable=False, index=True)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    data: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)
    read_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, server_default=func.now(), nullable=False
    )

    user = relationship("User", back_populates="notifications")

    __table_args__ = (Index("idx_notification_user_read", "user_id", "is_read"),)
