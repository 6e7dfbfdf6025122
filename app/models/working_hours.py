import enum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    ForeignKey,
    Integer,
    Time,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from app.core.database import Base
from app.models.types import UTCDateTime, utcnow


class WeekDay(enum.Enum):
    MONDAY = 0
    TUESDAY = 1
    WEDNESDAY = 2
    THURSDAY = 3
    FRIDAY = 4
    SATURDAY = 5
    SUNDAY = 6


class WorkingHours(Base):
    """Declared opening hours of a business for one weekday."""

    __tablename__ = "working_hours"

    id = Column(Integer, primary_key=True, index=True)
    business_id = Column(Integer, ForeignKey("businesses.id"), nullable=False)

    # Schedule details
    weekday = Column(Integer, nullable=False)
    open_time = Column(Time, nullable=True)
    close_time = Column(Time, nullable=True)
    is_closed = Column(Boolean, default=False, nullable=False)

    # Audit timestamps
    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    business = relationship("Business", back_populates="working_hours")

    __table_args__ = (
        UniqueConstraint("business_id", "weekday", name="uq_working_hours_day"),
        CheckConstraint("weekday >= 0 AND weekday <= 6", name="check_weekday_range"),
    )

    @property
    def is_open(self) -> bool:
        return (
            not self.is_closed
            and self.open_time is not None
            and self.close_time is not None
            and self.open_time < self.close_time
        )

    def __repr__(self):
        hours = f"{self.open_time}-{self.close_time}" if self.is_open else "closed"
        return (
            f"<WorkingHours(business_id={self.business_id}, "
            f"{WeekDay(self.weekday).name}: {hours})>"
        )
