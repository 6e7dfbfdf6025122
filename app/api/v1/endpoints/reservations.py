from datetime import datetime
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.errors import SchedulingError, to_http_exception
from app.models.reservation import ReservationStatus
from app.schemas.reservation import (
    Reservation,
    ReservationCreate,
    ReservationList,
    ReservationStatusTransition,
    ReservationWithDecision,
)
from app.services.auto_confirmation import AutoConfirmationEngine
from app.services.business import BusinessService
from app.services.reservation import ReservationService
from app.tasks.calendar_tasks import queue_outbound_sync

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.post(
    "/", response_model=ReservationWithDecision, status_code=status.HTTP_201_CREATED
)
async def create_reservation(
    reservation_data: ReservationCreate, db: AsyncSession = Depends(get_db)
):
    """
    Book a slot.

    The capacity check and the insert commit together; losing the race to a
    concurrent booking returns 409. The new reservation is then run through
    auto-confirmation and queued for calendar sync.
    """
    try:
        reservation = await ReservationService(db).create_reservation(reservation_data)
        decision = await AutoConfirmationEngine(db).apply_auto_confirmation(
            reservation.id
        )
        business = await BusinessService(db).get_business(reservation.business_id)
        queued = await queue_outbound_sync(business)
        logger.info(
            "Reservation booked",
            reservation_id=reservation.id,
            status=reservation.status,
            calendar_sync_queued=queued,
        )
    except SchedulingError as e:
        raise to_http_exception(e)

    response = ReservationWithDecision.model_validate(reservation)
    response.auto_confirmation_applied = decision.applied
    response.auto_confirmation_reason = decision.reason
    return response


@router.get("/", response_model=ReservationList)
async def list_reservations(
    business_id: int = Query(...),
    status: Optional[ReservationStatus] = Query(None),
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    try:
        reservations = await ReservationService(db).list_business_reservations(
            business_id, status=status, start=start, end=end
        )
    except SchedulingError as e:
        raise to_http_exception(e)

    return ReservationList(reservations=reservations, total_count=len(reservations))


@router.get("/{reservation_id}", response_model=Reservation)
async def get_reservation(reservation_id: int, db: AsyncSession = Depends(get_db)):
    try:
        return await ReservationService(db).get_reservation(reservation_id)
    except SchedulingError as e:
        raise to_http_exception(e)


@router.post("/{reservation_id}/status", response_model=Reservation)
async def transition_reservation_status(
    reservation_id: int,
    transition: ReservationStatusTransition,
    db: AsyncSession = Depends(get_db),
):
    """Move a reservation along the status transition table."""
    try:
        return await ReservationService(db).transition_status(
            reservation_id, transition.new_status
        )
    except SchedulingError as e:
        raise to_http_exception(e)
