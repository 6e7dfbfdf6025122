from datetime import datetime
from typing import List

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps.business import get_active_business
from app.core.database import get_db
from app.core.errors import SchedulingError, to_http_exception
from app.models.business import Business
from app.schemas.availability_block import (
    AvailabilityBlock,
    AvailabilityBlockCreate,
    AvailabilityBlockRange,
    AvailabilityBlockUpdate,
)
from app.services.availability_blocks import AvailabilityBlockService

router = APIRouter()


@router.post(
    "/{business_id}/blocks",
    response_model=AvailabilityBlock,
    status_code=status.HTTP_201_CREATED,
)
async def create_block(
    block_data: AvailabilityBlockCreate,
    business: Business = Depends(get_active_business),
    db: AsyncSession = Depends(get_db),
):
    """Declare a manual interval during which nothing can be booked."""
    try:
        return await AvailabilityBlockService(db).create_block(business.id, block_data)
    except SchedulingError as e:
        raise to_http_exception(e)


@router.get("/{business_id}/blocks", response_model=List[AvailabilityBlock])
async def list_blocks(
    active_only: bool = Query(True),
    business: Business = Depends(get_active_business),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await AvailabilityBlockService(db).list_blocks(
            business.id, active_only=active_only
        )
    except SchedulingError as e:
        raise to_http_exception(e)


@router.get("/{business_id}/blocks/range", response_model=AvailabilityBlockRange)
async def list_blocks_in_range(
    start: datetime = Query(...),
    end: datetime = Query(...),
    business: Business = Depends(get_active_business),
    db: AsyncSession = Depends(get_db),
):
    try:
        blocks = await AvailabilityBlockService(db).list_blocks_in_range(
            business.id, start, end
        )
    except SchedulingError as e:
        raise to_http_exception(e)

    return AvailabilityBlockRange(blocks=blocks, is_blocked=bool(blocks))


@router.patch("/{business_id}/blocks/{block_id}", response_model=AvailabilityBlock)
async def update_block(
    block_id: int,
    block_data: AvailabilityBlockUpdate,
    business: Business = Depends(get_active_business),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await AvailabilityBlockService(db).update_block(
            business.id, block_id, block_data
        )
    except SchedulingError as e:
        raise to_http_exception(e)


@router.delete("/{business_id}/blocks/{block_id}", response_model=AvailabilityBlock)
async def delete_block(
    block_id: int,
    business: Business = Depends(get_active_business),
    db: AsyncSession = Depends(get_db),
):
    """Soft delete: the block is kept but no longer blocks bookings."""
    try:
        return await AvailabilityBlockService(db).deactivate_block(business.id, block_id)
    except SchedulingError as e:
        raise to_http_exception(e)
