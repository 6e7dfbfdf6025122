from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from app.core.database import Base
from app.models.types import UTCDateTime, utcnow
import enum
from datetime import datetime, timedelta


class ReservationStatus(enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REJECTED = "rejected"
    EXPIRED = "expired"
    RESCHEDULED = "rescheduled"
    NO_SHOW = "no_show"


ALLOWED_TRANSITIONS: dict[ReservationStatus, frozenset[ReservationStatus]] = {
    ReservationStatus.PENDING: frozenset(
        {
            ReservationStatus.CONFIRMED,
            ReservationStatus.REJECTED,
            ReservationStatus.CANCELLED,
            ReservationStatus.EXPIRED,
            ReservationStatus.RESCHEDULED,
        }
    ),
    ReservationStatus.CONFIRMED: frozenset(
        {
            ReservationStatus.IN_PROGRESS,
            ReservationStatus.CANCELLED,
            ReservationStatus.COMPLETED,
            ReservationStatus.NO_SHOW,
        }
    ),
    ReservationStatus.IN_PROGRESS: frozenset(
        {ReservationStatus.COMPLETED, ReservationStatus.CANCELLED}
    ),
    ReservationStatus.COMPLETED: frozenset(),  # Final state
    ReservationStatus.CANCELLED: frozenset(),  # Final state
    ReservationStatus.REJECTED: frozenset(),  # Final state
    ReservationStatus.EXPIRED: frozenset(),  # Final state
    ReservationStatus.RESCHEDULED: frozenset(),  # Final state
    ReservationStatus.NO_SHOW: frozenset(),  # Final state
}

TERMINAL_STATUSES = frozenset(
    status for status, targets in ALLOWED_TRANSITIONS.items() if not targets
)

# Reservations in these states no longer hold capacity
NON_BLOCKING_STATUSES = frozenset(
    {
        ReservationStatus.CANCELLED,
        ReservationStatus.REJECTED,
        ReservationStatus.EXPIRED,
        ReservationStatus.NO_SHOW,
    }
)

# Statuses mirrored to the external calendar by outbound sync
SYNCABLE_STATUSES = frozenset({ReservationStatus.PENDING, ReservationStatus.CONFIRMED})


class Reservation(Base):
    """Reservation of a service slot with a central status transition table."""

    __tablename__ = "reservations"

    # Core identity
    id = Column(Integer, primary_key=True, index=True)
    business_id = Column(Integer, ForeignKey("businesses.id"), nullable=False)
    service_id = Column(Integer, ForeignKey("services.id"), nullable=False)
    user_id = Column(Integer, nullable=False, index=True)

    # Scheduling details, half-open interval [start_time, end_time)
    start_time = Column(UTCDateTime, nullable=False, index=True)
    end_time = Column(UTCDateTime, nullable=False)
    buffer_minutes = Column(Integer, nullable=True)

    # Status management
    status = Column(
        String(20), nullable=False, default=ReservationStatus.PENDING.value, index=True
    )
    previous_status = Column(String(20), nullable=True)
    status_changed_at = Column(UTCDateTime, default=utcnow)
    auto_confirmed = Column(Boolean, default=False, nullable=False)
    confirmed_at = Column(UTCDateTime, nullable=True)
    cancelled_at = Column(UTCDateTime, nullable=True)

    # Booking details
    total_price = Column(Numeric(10, 2), nullable=True)
    notes = Column(Text, nullable=True)

    # External calendar mirror
    external_event_id = Column(String(255), nullable=True)

    # Audit timestamps
    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("end_time > start_time", name="check_end_after_start"),
        CheckConstraint(
            "buffer_minutes IS NULL OR buffer_minutes >= 0",
            name="check_non_negative_buffer",
        ),
        Index("ix_reservations_business_window", "business_id", "start_time", "end_time"),
    )

    business = relationship("Business")
    service = relationship("Service")

    @property
    def status_enum(self) -> ReservationStatus:
        return ReservationStatus(self.status)

    def can_transition_to(self, new_status: ReservationStatus) -> bool:
        """Check if reservation can transition to the new status."""
        return new_status in ALLOWED_TRANSITIONS[self.status_enum]

    def transition_to(self, new_status: ReservationStatus) -> bool:
        """Transition reservation to new status with validation."""
        if not self.can_transition_to(new_status):
            return False

        now = utcnow()
        self.previous_status = self.status
        self.status = new_status.value
        self.status_changed_at = now

        if new_status == ReservationStatus.CONFIRMED:
            self.confirmed_at = now
        elif new_status == ReservationStatus.CANCELLED:
            self.cancelled_at = now

        return True

    def blocked_window(self, default_buffer_minutes: int) -> tuple[datetime, datetime]:
        """Time range this reservation keeps unavailable, buffers included."""
        buffer = (
            self.buffer_minutes
            if self.buffer_minutes is not None
            else default_buffer_minutes
        )
        padding = timedelta(minutes=buffer)
        return self.start_time - padding, self.end_time + padding

    @property
    def is_terminal(self) -> bool:
        return self.status_enum in TERMINAL_STATUSES

    def __repr__(self):
        return (
            f"<Reservation(id={self.id}, status='{self.status}', "
            f"start='{self.start_time}', business_id={self.business_id}, "
            f"user_id={self.user_id})>"
        )
