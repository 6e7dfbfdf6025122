from typing import Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.business import Business
from app.models.notification import Notification, NotificationType

logger = structlog.get_logger(__name__)


class NotificationEmitter:
    """Fire-and-forget internal notifications for business owners.

    Delivery problems are logged and swallowed: callers such as the webhook
    sweep must keep going whatever happens here.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def emit(
        self,
        business: Business,
        notification_type: NotificationType,
        title: str,
        message: str,
    ) -> Optional[Notification]:
        business_id = business.id
        try:
            # Savepoint: a failed insert must not roll back the caller's work
            async with self.db.begin_nested():
                notification = Notification(
                    business_id=business_id,
                    user_id=business.owner_user_id,
                    notification_type=notification_type.value,
                    title=title,
                    message=message,
                    status="unread",
                )
                self.db.add(notification)
        except SQLAlchemyError as e:
            logger.error(
                "Failed to emit notification",
                business_id=business_id,
                title=title,
                error=str(e),
            )
            return None

        logger.info(
            "Notification emitted",
            business_id=business_id,
            notification_type=notification_type.value,
            title=title,
        )
        return notification

    async def webhook_renewal_failed(self, business: Business, error: str):
        return await self.emit(
            business,
            NotificationType.SYSTEM,
            "Google Calendar: Webhook Renewal Failed",
            "We could not renew the real-time sync channel for your Google "
            f"Calendar. Error: {error}. Please reconnect your calendar from "
            "settings.",
        )

    async def calendar_sync_disabled(self, business: Business):
        return await self.emit(
            business,
            NotificationType.WARNING,
            "Google Calendar: Sync Disabled",
            "Automatic Google Calendar sync was turned off because its "
            "notification channel expired. Reconnect your calendar to "
            "re-enable it.",
        )
