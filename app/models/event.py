import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, DateTime
from sqlalchemy import Enum as SQLEnum
from sqlalchemy import Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from ..database import Base
from ..utils.clock import utcnow


class EventStatus(str, enum.Enum):
    ACTIVE = "active"
    CANCELLED = "cancelled"


class Event(Base):
    __tablename__ = "events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    host_id: Mapped[str] = mapped_column(
        ForeignKey("users.id"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    location: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    start_time: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )
    # None means unlimited
    capacity: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    price: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="usd")
    status: Mapped[EventStatus] = mapped_column(
        SQLEnum(EventStatus), default=EventStatus.ACTIVE, nullable=False, index=True
    )
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Per-event waitlist policy; None falls back to the global settings
    waitlist_enabled: Mapped[bool] = mapped_column(
        Boolean, default=True, nullable=False
    )
    waitlist_limit: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    notification_window_hours: Mapped[Optional[int]] = mapped_column(
        Integer, nullable=True
    )
    urgency_threshold: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    show_spots_remaining: Mapped[bool] = mapped_column(
        Boolean, default=True, nullable=False
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        server_default=func.now(),
    )

    host = relationship("User")

    __table_args__ = (
        CheckConstraint(
            "capacity IS NULL OR capacity >= 0", name="ck_event_capacity_non_negative"
        ),
        Index("idx_event_host_status", "host_id", "status"),
    )

    @property
    def is_paid(self) -> bool:
        return bool(self.price and self.price > 0)

    @property
    def is_active(self) -> bool:
        return self.status == EventStatus.ACTIVE
