from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.errors import InvalidStateError, SchedulingError, to_http_exception
from app.models.reservation import ReservationStatus
from app.schemas.auto_confirmation import (
    AutoConfirmationEvaluation,
    AutoConfirmationResult,
)
from app.services.auto_confirmation import AutoConfirmationEngine
from app.services.business import BusinessService
from app.services.reservation import ReservationService
from app.tasks.calendar_tasks import queue_outbound_sync

router = APIRouter()


@router.get("/{reservation_id}/evaluate", response_model=AutoConfirmationEvaluation)
async def evaluate_auto_confirmation(
    reservation_id: int, db: AsyncSession = Depends(get_db)
):
    """Dry run of the auto-confirmation checks; nothing is changed."""
    try:
        return await AutoConfirmationEngine(db).evaluate_reservation(reservation_id)
    except SchedulingError as e:
        raise to_http_exception(e)


@router.post("/{reservation_id}/apply", response_model=AutoConfirmationResult)
async def apply_auto_confirmation(
    reservation_id: int, db: AsyncSession = Depends(get_db)
):
    """Confirm a pending reservation if every check passes and queue it for calendar sync."""
    try:
        reservation = await ReservationService(db).get_reservation(reservation_id)
        if reservation.status != ReservationStatus.PENDING.value:
            raise InvalidStateError(
                f"Reservation {reservation_id} is not pending ({reservation.status})"
            )
        result = await AutoConfirmationEngine(db).apply_auto_confirmation(reservation_id)
        if result.applied:
            business = await BusinessService(db).get_business(reservation.business_id)
            await queue_outbound_sync(business)
    except SchedulingError as e:
        raise to_http_exception(e)

    return result
