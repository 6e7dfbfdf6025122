from sqlalchemy import JSON, Boolean, Column, ForeignKey, Integer

from app.core.database import Base
from app.models.types import UTCDateTime, utcnow


class BusinessSettings(Base):
    """Per-business booking policy read by auto-confirmation and availability."""

    __tablename__ = "business_settings"

    id = Column(Integer, primary_key=True, index=True)
    business_id = Column(
        Integer, ForeignKey("businesses.id"), nullable=False, unique=True
    )

    # Auto-confirmation policy
    auto_confirm_enabled = Column(Boolean, default=False, nullable=False)
    auto_confirm_min_hours = Column(Integer, default=2, nullable=False)
    require_manual_first_booking = Column(Boolean, default=False, nullable=False)
    manual_approval_service_ids = Column(JSON, nullable=True)  # list of service ids

    # Default buffer applied around each reservation
    buffer_minutes = Column(Integer, default=15, nullable=False)

    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    @property
    def manual_approval_services(self) -> frozenset[int]:
        return frozenset(int(sid) for sid in (self.manual_approval_service_ids or []))

    def __repr__(self):
        return (
            f"<BusinessSettings(business_id={self.business_id}, "
            f"auto_confirm={self.auto_confirm_enabled}, "
            f"buffer={self.buffer_minutes}min)>"
        )
