from datetime import date, datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.errors import InvalidInputError
from app.schemas.scheduling import (
    CapacityInfo,
    DayAvailability,
    DaySlot,
    SlotAvailability,
)
from app.services.business import BusinessService
from app.services.capacity import (
    CapacityConflictResolver,
    count_overlaps,
    slot_availability,
)
from app.services.slots import slots_for_hours

logger = structlog.get_logger(__name__)


def business_zone(name: Optional[str]):
    try:
        return ZoneInfo(name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown business timezone, using UTC", timezone=name)
        return timezone.utc


class AvailabilityService:
    """Answers capacity, single-slot and whole-day availability questions."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.business_service = BusinessService(db)
        self.resolver = CapacityConflictResolver(db)

    async def get_capacity(self, business_id: int) -> CapacityInfo:
        business = await self.business_service.get_business(business_id)
        return CapacityInfo(
            capacity_enabled=business.capacity_enabled,
            max_capacity=business.effective_capacity,
        )

    async def get_day_availability(
        self,
        business_id: int,
        day: date,
        service_id: Optional[int] = None,
        duration_minutes: Optional[int] = None,
    ) -> DayAvailability:
        """Every candidate slot of ``day`` annotated with its capacity state.

        The slot length comes from ``service_id`` when given, otherwise from
        ``duration_minutes``, falling back to the slot granularity.
        """
        business = await self.business_service.get_business(business_id)

        if service_id is not None:
            service = await self.business_service.get_service(business_id, service_id)
            duration_minutes = service.duration_minutes
        elif duration_minutes is None:
            duration_minutes = settings.SLOT_GRANULARITY_MINUTES
        if duration_minutes <= 0:
            raise InvalidInputError("Slot duration must be positive")

        hours = await self.business_service.get_working_hours(business_id, day)
        candidates = slots_for_hours(
            day,
            hours,
            duration_minutes,
            settings.SLOT_GRANULARITY_MINUTES,
            business_zone(business.timezone),
        )

        result = DayAvailability(
            business_id=business_id,
            day=day,
            service_duration_minutes=duration_minutes,
        )
        if not candidates:
            logger.info("No slots for closed day", business_id=business_id, day=str(day))
            return result

        # One load for the whole day, then count each slot in memory
        commitments = await self.resolver.load_commitments(
            business_id, candidates[0][0], candidates[-1][1]
        )
        max_capacity = business.effective_capacity

        for start, end in candidates:
            state = slot_availability(
                count_overlaps(commitments, start, end), max_capacity
            )
            result.slots.append(
                DaySlot(
                    start_time=start,
                    end_time=end,
                    available=state.available,
                    current_bookings=state.current_count,
                    max_capacity=state.max_capacity,
                    slots_remaining=state.slots_remaining,
                )
            )

        logger.info(
            "Day availability computed",
            business_id=business_id,
            day=str(day),
            slots=len(result.slots),
            available=sum(1 for s in result.slots if s.available),
        )
        return result

    async def check_slot(
        self, business_id: int, start: datetime, end: datetime
    ) -> SlotAvailability:
        if start.tzinfo is None or end.tzinfo is None:
            raise InvalidInputError("start and end must include a timezone")
        if end <= start:
            raise InvalidInputError("end must be after start")

        business = await self.business_service.get_business(business_id)
        return await self.resolver.check(business, start, end)

