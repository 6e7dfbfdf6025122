import enum

from sqlalchemy import Column, ForeignKey, Integer, String, Text

from app.core.database import Base
from app.models.types import UTCDateTime, utcnow


class NotificationType(enum.Enum):
    SYSTEM = "system"
    WARNING = "warning"


class Notification(Base):
    """In-app notification addressed to a business owner."""

    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    business_id = Column(Integer, ForeignKey("businesses.id"), nullable=False)
    user_id = Column(Integer, nullable=True)
    notification_type = Column(String(20), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    status = Column(String(20), nullable=False, default="unread")
    created_at = Column(UTCDateTime, default=utcnow)
