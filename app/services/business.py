from datetime import date
from typing import Optional

import structlog
from sqlalchemy import Select, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import NotFoundError
from app.models.business import Business
from app.models.service import Service
from app.models.working_hours import WorkingHours

logger = structlog.get_logger(__name__)


def business_row_lock(business_id: int) -> Select:
    """SELECT ... FOR UPDATE on one business row."""
    return (
        select(Business)
        .where(Business.id == business_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )


class BusinessService:
    """Read access to business profiles, their services and weekly hours."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_business(self, business_id: int) -> Business:
        """Get business by ID or raise NotFoundError."""
        result = await self.db.execute(
            select(Business).where(Business.id == business_id)
        )
        business = result.scalar_one_or_none()

        if not business:
            logger.warning("Business not found", business_id=business_id)
            raise NotFoundError(f"Business {business_id} not found")

        return business

    async def get_business_for_update(self, business_id: int) -> Business:
        """Get business and lock its row until the current transaction ends."""
        result = await self.db.execute(business_row_lock(business_id))
        business = result.scalar_one_or_none()

        if not business:
            raise NotFoundError(f"Business {business_id} not found")

        return business

    async def get_business_by_channel(
        self, channel_id: str, resource_id: Optional[str] = None
    ) -> Optional[Business]:
        query = select(Business).where(
            Business.google_webhook_channel_id == channel_id
        )
        if resource_id is not None:
            query = query.where(Business.google_webhook_resource_id == resource_id)

        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def get_service(self, business_id: int, service_id: int) -> Service:
        result = await self.db.execute(
            select(Service).where(
                Service.id == service_id, Service.business_id == business_id
            )
        )
        service = result.scalar_one_or_none()

        if not service:
            raise NotFoundError(
                f"Service {service_id} not found for business {business_id}"
            )

        return service

    async def get_working_hours(
        self, business_id: int, day: date
    ) -> Optional[WorkingHours]:
        """Hours declared for the weekday of ``day``; None means closed."""
        result = await self.db.execute(
            select(WorkingHours).where(
                WorkingHours.business_id == business_id,
                WorkingHours.weekday == day.weekday(),
            )
        )
        return result.scalar_one_or_none()
