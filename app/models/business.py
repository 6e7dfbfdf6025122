from sqlalchemy import Boolean, Column, Integer, String, Text
from sqlalchemy.orm import relationship

from app.core.database import Base
from app.models.types import UTCDateTime, utcnow


class Business(Base):
    """Business profile with capacity configuration and Google Calendar linkage."""

    __tablename__ = "businesses"

    # Core identity
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    owner_user_id = Column(Integer, nullable=True, index=True)
    timezone = Column(String(50), nullable=False, default="UTC")
    is_active = Column(Boolean, default=True, nullable=False)

    # Simultaneous capacity
    capacity_enabled = Column(Boolean, default=False, nullable=False)
    simultaneous_capacity = Column(Integer, default=1, nullable=False)

    # Google Calendar credentials
    google_calendar_enabled = Column(Boolean, default=False, nullable=False)
    google_access_token = Column(Text, nullable=True)
    google_refresh_token = Column(Text, nullable=True)
    google_token_expiry = Column(UTCDateTime, nullable=True)

    # Google Calendar sync
    google_calendar_id = Column(String(500), nullable=True)
    google_sync_enabled = Column(Boolean, default=False, nullable=False)
    last_google_sync = Column(UTCDateTime, nullable=True)

    # Push notification channel
    google_webhook_channel_id = Column(String(255), nullable=True, index=True)
    google_webhook_resource_id = Column(String(255), nullable=True)
    google_webhook_expiration = Column(UTCDateTime, nullable=True)

    # Audit timestamps
    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    services = relationship("Service", back_populates="business")
    working_hours = relationship("WorkingHours", back_populates="business")

    @property
    def effective_capacity(self) -> int:
        """Simultaneous bookings allowed: 1 unless capacity is enabled."""
        if not self.capacity_enabled:
            return 1
        return max(self.simultaneous_capacity or 1, 1)

    @property
    def has_calendar_credentials(self) -> bool:
        return bool(self.google_calendar_enabled and self.google_refresh_token)

    @property
    def has_webhook_channel(self) -> bool:
        return self.google_webhook_channel_id is not None

    def clear_webhook_channel(self):
        self.google_webhook_channel_id = None
        self.google_webhook_resource_id = None
        self.google_webhook_expiration = None

    def __repr__(self):
        return (
            f"<Business(id={self.id}, name='{self.name}', "
            f"capacity={self.effective_capacity}, "
            f"calendar='{self.google_calendar_id}')>"
        )
