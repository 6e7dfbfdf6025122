from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from app.core.database import Base
from app.models.types import UTCDateTime, utcnow
import enum


class BlockOrigin(enum.Enum):
    MANUAL = "manual"  # Declared by the business owner
    EXTERNAL_SYNC = "external_sync"  # Mirrored from the external calendar


class AvailabilityBlock(Base):
    """Interval during which a business cannot take bookings."""

    __tablename__ = "availability_blocks"

    id = Column(Integer, primary_key=True, index=True)
    business_id = Column(Integer, ForeignKey("businesses.id"), nullable=False)

    start_time = Column(UTCDateTime, nullable=False)
    end_time = Column(UTCDateTime, nullable=False)
    origin = Column(String(20), nullable=False, default=BlockOrigin.MANUAL.value)

    title = Column(String(255), nullable=True)
    description = Column(Text, nullable=True)

    # Natural key for blocks created by inbound sync
    external_event_id = Column(String(255), nullable=True)

    # Soft delete flag
    is_active = Column(Boolean, default=True, nullable=False)

    created_by = Column(Integer, nullable=True)

    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("end_time > start_time", name="check_block_end_after_start"),
        UniqueConstraint(
            "business_id", "external_event_id", name="uq_block_external_event"
        ),
        Index("ix_availability_block_window", "business_id", "start_time", "end_time"),
    )

    def __repr__(self):
        return (
            f"<AvailabilityBlock(id={self.id}, business_id={self.business_id}, "
            f"origin={self.origin}, {self.start_time} - {self.end_time}, "
            f"active={self.is_active})>"
        )
