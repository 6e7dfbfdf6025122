from datetime import date as date_type
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps.business import get_active_business
from app.core.database import get_db
from app.core.errors import SchedulingError, to_http_exception
from app.models.business import Business
from app.schemas.scheduling import (
    CapacityInfo,
    DayAvailability,
    SlotAvailability,
    SlotCheckRequest,
)
from app.services.availability import AvailabilityService

router = APIRouter()


@router.get("/{business_id}/capacity", response_model=CapacityInfo)
async def get_capacity(
    business: Business = Depends(get_active_business),
    db: AsyncSession = Depends(get_db),
):
    """Simultaneous booking capacity of the business."""
    try:
        return await AvailabilityService(db).get_capacity(business.id)
    except SchedulingError as e:
        raise to_http_exception(e)


@router.get("/{business_id}/availability", response_model=DayAvailability)
async def get_day_availability(
    date: str = Query(..., description="Day to inspect, YYYY-MM-DD"),
    service_id: Optional[int] = Query(None, description="Service defining slot length"),
    duration_minutes: Optional[int] = Query(
        None, gt=0, description="Slot length when no service is given"
    ),
    business: Business = Depends(get_active_business),
    db: AsyncSession = Depends(get_db),
):
    """
    All candidate slots of a day with their capacity state.

    Slots are generated from the business's weekly hours at a fixed
    granularity and each is checked against reservations (with buffers)
    and active availability blocks.
    """
    try:
        day = date_type.fromisoformat(date)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid date '{date}', expected YYYY-MM-DD",
        )

    try:
        return await AvailabilityService(db).get_day_availability(
            business.id, day, service_id=service_id, duration_minutes=duration_minutes
        )
    except SchedulingError as e:
        raise to_http_exception(e)


@router.post("/{business_id}/availability/check", response_model=SlotAvailability)
async def check_slot(
    request: SlotCheckRequest,
    business: Business = Depends(get_active_business),
    db: AsyncSession = Depends(get_db),
):
    """Whether ``[start_time, end_time)`` still has free capacity."""
    try:
        return await AvailabilityService(db).check_slot(
            business.id, request.start_time, request.end_time
        )
    except SchedulingError as e:
        raise to_http_exception(e)
