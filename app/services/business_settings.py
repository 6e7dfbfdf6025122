import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.models.business_settings import BusinessSettings

logger = structlog.get_logger(__name__)


def default_settings(business_id: int) -> BusinessSettings:
    """Unsaved settings row carrying the documented defaults."""
    return BusinessSettings(
        business_id=business_id,
        auto_confirm_enabled=False,
        auto_confirm_min_hours=2,
        require_manual_first_booking=False,
        manual_approval_service_ids=[],
        buffer_minutes=settings.DEFAULT_BUFFER_MINUTES,
    )


class BusinessSettingsService:
    """Reader for the per-business booking policy snapshot."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_settings(self, business_id: int) -> BusinessSettings:
        """Stored settings, or defaults when the business never saved any."""
        result = await self.db.execute(
            select(BusinessSettings).where(BusinessSettings.business_id == business_id)
        )
        stored = result.scalar_one_or_none()
        if stored is not None:
            return stored

        logger.debug("Using default business settings", business_id=business_id)
        return default_settings(business_id)
