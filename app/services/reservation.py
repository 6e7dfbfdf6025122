from datetime import datetime, timedelta
from typing import List, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import (
    ConflictError,
    InvalidInputError,
    InvalidStateError,
    NotFoundError,
    SchedulingError,
)
from app.models.reservation import Reservation, ReservationStatus
from app.schemas.reservation import ReservationCreate
from app.services.business import BusinessService
from app.services.business_settings import BusinessSettingsService
from app.services.capacity import CapacityConflictResolver

logger = structlog.get_logger(__name__)


class ReservationService:
    """Booking flow and the single entry point for reservation status changes."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.business_service = BusinessService(db)
        self.settings_service = BusinessSettingsService(db)
        self.resolver = CapacityConflictResolver(db)

    async def create_reservation(self, data: ReservationCreate) -> Reservation:
        """
        Insert a pending reservation if the slot still has capacity.

        The business row is locked first so concurrent bookings for the same
        business serialize on it; the overlap count is then re-run inside the
        same transaction and the insert commits together with the check.
        """
        if data.start_time.tzinfo is None:
            raise InvalidInputError("start_time must include a timezone")

        try:
            business = await self.business_service.get_business_for_update(
                data.business_id
            )
            service = await self.business_service.get_service(
                data.business_id, data.service_id
            )

            start = data.start_time
            end = start + timedelta(minutes=service.duration_minutes)

            current_count = await self.resolver.overlap_count(business.id, start, end)
            if current_count >= business.effective_capacity:
                logger.warning(
                    "Reservation lost capacity race",
                    business_id=business.id,
                    start=start.isoformat(),
                    current_count=current_count,
                    max_capacity=business.effective_capacity,
                )
                raise ConflictError(
                    "Slot is no longer available: capacity "
                    f"{business.effective_capacity} already reached"
                )

            buffer_minutes = data.buffer_minutes
            if buffer_minutes is None:
                business_settings = await self.settings_service.get_settings(
                    business.id
                )
                buffer_minutes = business_settings.buffer_minutes

            reservation = Reservation(
                business_id=business.id,
                service_id=service.id,
                user_id=data.user_id,
                start_time=start,
                end_time=end,
                buffer_minutes=buffer_minutes,
                status=ReservationStatus.PENDING.value,
                auto_confirmed=False,
                total_price=(
                    data.total_price if data.total_price is not None else service.price
                ),
                notes=data.notes,
            )
            self.db.add(reservation)
            await self.db.commit()
        except SchedulingError:
            await self.db.rollback()
            raise

        await self.db.refresh(reservation)
        logger.info(
            "Reservation created",
            reservation_id=reservation.id,
            business_id=reservation.business_id,
            user_id=reservation.user_id,
            start=reservation.start_time.isoformat(),
        )
        return reservation

    async def get_reservation(self, reservation_id: int) -> Reservation:
        result = await self.db.execute(
            select(Reservation).where(Reservation.id == reservation_id)
        )
        reservation = result.scalar_one_or_none()
        if not reservation:
            raise NotFoundError(f"Reservation {reservation_id} not found")
        return reservation

    async def list_business_reservations(
        self,
        business_id: int,
        status: Optional[ReservationStatus] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[Reservation]:
        await self.business_service.get_business(business_id)

        query = select(Reservation).where(Reservation.business_id == business_id)
        if status is not None:
            query = query.where(Reservation.status == status.value)
        if start is not None:
            query = query.where(Reservation.end_time > start)
        if end is not None:
            query = query.where(Reservation.start_time < end)

        result = await self.db.execute(query.order_by(Reservation.start_time))
        return list(result.scalars().all())

    async def transition_status(
        self, reservation_id: int, new_status: ReservationStatus
    ) -> Reservation:
        reservation = await self.get_reservation(reservation_id)
        old_status = reservation.status

        if reservation.is_terminal:
            raise InvalidStateError(
                f"Reservation {reservation_id} is {old_status}, which is final"
            )
        if not reservation.transition_to(new_status):
            raise InvalidStateError(
                f"Cannot transition reservation {reservation_id} "
                f"from {old_status} to {new_status.value}"
            )

        await self.db.commit()
        await self.db.refresh(reservation)

        logger.info(
            "Reservation status changed",
            reservation_id=reservation_id,
            old_status=old_status,
            new_status=new_status.value,
        )
        return reservation
