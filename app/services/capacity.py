"""
Capacity conflict resolution.

A reservation occupies ``[start - buffer, end + buffer)``; an active
availability block occupies exactly ``[start, end)``. Two half-open intervals
``[a1, a2)`` and ``[b1, b2)`` overlap iff ``a1 < b2 and b1 < a2``. A window is
bookable while its overlap count stays below the business's effective
capacity.
"""

from datetime import datetime, timedelta
from typing import Iterable, List, Tuple

import structlog
from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.availability_block import AvailabilityBlock
from app.models.business import Business
from app.models.reservation import NON_BLOCKING_STATUSES, Reservation
from app.schemas.scheduling import SlotAvailability
from app.services.business_settings import BusinessSettingsService

logger = structlog.get_logger(__name__)

Interval = Tuple[datetime, datetime]

NON_BLOCKING_VALUES = [status.value for status in NON_BLOCKING_STATUSES]


def intervals_overlap(a: Interval, b: Interval) -> bool:
    return a[0] < b[1] and b[0] < a[1]


def count_overlaps(commitments: Iterable[Interval], start: datetime, end: datetime) -> int:
    """Number of committed intervals overlapping ``[start, end)``."""
    return sum(1 for window in commitments if intervals_overlap(window, (start, end)))


def slot_availability(current_count: int, max_capacity: int) -> SlotAvailability:
    return SlotAvailability(
        available=current_count < max_capacity,
        current_count=current_count,
        max_capacity=max_capacity,
        slots_remaining=max(max_capacity - current_count, 0),
    )


class CapacityConflictResolver:
    """Counts reservations and blocks contending for a business's capacity."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.settings_service = BusinessSettingsService(db)

    async def default_buffer_minutes(self, business_id: int) -> int:
        business_settings = await self.settings_service.get_settings(business_id)
        return business_settings.buffer_minutes

    async def load_commitments(
        self, business_id: int, start: datetime, end: datetime
    ) -> List[Interval]:
        """
        Occupied windows that may touch ``[start, end)``.

        Reservations are fetched in a range widened by the largest buffer in
        play and expanded to their blocked windows; callers filter precisely
        with ``count_overlaps``.
        """
        default_buffer = await self.default_buffer_minutes(business_id)

        blocking = and_(
            Reservation.business_id == business_id,
            Reservation.status.notin_(NON_BLOCKING_VALUES),
        )
        max_override = (
            await self.db.execute(select(func.max(Reservation.buffer_minutes)).where(blocking))
        ).scalar()
        widen = timedelta(minutes=max(default_buffer, max_override or 0))

        reservations = (
            await self.db.execute(
                select(Reservation).where(
                    blocking,
                    Reservation.start_time < end + widen,
                    Reservation.end_time > start - widen,
                )
            )
        ).scalars().all()

        blocks = (
            await self.db.execute(
                select(AvailabilityBlock).where(
                    AvailabilityBlock.business_id == business_id,
                    AvailabilityBlock.is_active.is_(True),
                    AvailabilityBlock.start_time < end,
                    AvailabilityBlock.end_time > start,
                )
            )
        ).scalars().all()

        commitments = [r.blocked_window(default_buffer) for r in reservations]
        commitments.extend((b.start_time, b.end_time) for b in blocks)
        return commitments

    async def overlap_count(
        self, business_id: int, start: datetime, end: datetime
    ) -> int:
        commitments = await self.load_commitments(business_id, start, end)
        return count_overlaps(commitments, start, end)

    async def check(
        self, business: Business, start: datetime, end: datetime
    ) -> SlotAvailability:
        current_count = await self.overlap_count(business.id, start, end)
        result = slot_availability(current_count, business.effective_capacity)

        logger.debug(
            "Capacity checked",
            business_id=business.id,
            start=start.isoformat(),
            end=end.isoformat(),
            current_count=current_count,
            max_capacity=result.max_capacity,
        )
        return result
