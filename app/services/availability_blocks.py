from datetime import datetime
from typing import List, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import InvalidInputError, NotFoundError
from app.models.availability_block import AvailabilityBlock, BlockOrigin
from app.schemas.availability_block import (
    AvailabilityBlockCreate,
    AvailabilityBlockUpdate,
)
from app.services.business import BusinessService

logger = structlog.get_logger(__name__)


def _validate_window(start: datetime, end: datetime):
    if start is None or end is None:
        raise InvalidInputError("start_time and end_time are required")
    if start.tzinfo is None or end.tzinfo is None:
        raise InvalidInputError("start_time and end_time must include a timezone")
    if end <= start:
        raise InvalidInputError("end_time must be after start_time")


class AvailabilityBlockService:
    """Manual availability blocks plus the natural-key upsert used by inbound sync."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.business_service = BusinessService(db)

    async def create_block(
        self, business_id: int, data: AvailabilityBlockCreate
    ) -> AvailabilityBlock:
        await self.business_service.get_business(business_id)
        _validate_window(data.start_time, data.end_time)

        block = AvailabilityBlock(
            business_id=business_id,
            start_time=data.start_time,
            end_time=data.end_time,
            origin=BlockOrigin.MANUAL.value,
            title=data.title,
            description=data.description,
            created_by=data.created_by,
            is_active=True,
        )
        self.db.add(block)
        await self.db.commit()
        await self.db.refresh(block)

        logger.info(
            "Manual availability block created",
            block_id=block.id,
            business_id=business_id,
        )
        return block

    async def get_block(self, business_id: int, block_id: int) -> AvailabilityBlock:
        result = await self.db.execute(
            select(AvailabilityBlock).where(
                AvailabilityBlock.id == block_id,
                AvailabilityBlock.business_id == business_id,
            )
        )
        block = result.scalar_one_or_none()
        if not block:
            raise NotFoundError(f"Availability block {block_id} not found")
        return block

    async def list_blocks(
        self, business_id: int, active_only: bool = True
    ) -> List[AvailabilityBlock]:
        await self.business_service.get_business(business_id)

        query = select(AvailabilityBlock).where(
            AvailabilityBlock.business_id == business_id
        )
        if active_only:
            query = query.where(AvailabilityBlock.is_active.is_(True))

        result = await self.db.execute(query.order_by(AvailabilityBlock.start_time))
        return list(result.scalars().all())

    async def list_blocks_in_range(
        self, business_id: int, start: datetime, end: datetime
    ) -> List[AvailabilityBlock]:
        """Active blocks overlapping ``[start, end)``."""
        _validate_window(start, end)
        await self.business_service.get_business(business_id)

        result = await self.db.execute(
            select(AvailabilityBlock)
            .where(
                AvailabilityBlock.business_id == business_id,
                AvailabilityBlock.is_active.is_(True),
                AvailabilityBlock.start_time < end,
                AvailabilityBlock.end_time > start,
            )
            .order_by(AvailabilityBlock.start_time)
        )
        return list(result.scalars().all())

    async def update_block(
        self, business_id: int, block_id: int, data: AvailabilityBlockUpdate
    ) -> AvailabilityBlock:
        block = await self.get_block(business_id, block_id)
        changes = data.model_dump(exclude_unset=True)

        _validate_window(
            changes.get("start_time", block.start_time),
            changes.get("end_time", block.end_time),
        )
        for field, value in changes.items():
            setattr(block, field, value)

        await self.db.commit()
        await self.db.refresh(block)
        logger.info(
            "Availability block updated",
            block_id=block_id,
            fields=sorted(changes),
        )
        return block

    async def deactivate_block(self, business_id: int, block_id: int) -> AvailabilityBlock:
        """Soft delete: the row stays for history but stops blocking."""
        block = await self.get_block(business_id, block_id)
        block.is_active = False
        await self.db.commit()
        await self.db.refresh(block)
        logger.info("Availability block deactivated", block_id=block_id)
        return block

    async def upsert_external_block(
        self,
        business_id: int,
        external_event_id: str,
        start: datetime,
        end: datetime,
        title: Optional[str] = None,
        description: Optional[str] = None,
    ) -> tuple[AvailabilityBlock, bool]:
        """
        Create or refresh the block mirroring one external event.

        Keyed by ``(business_id, external_event_id)`` so repeated pulls never
        duplicate a block. Returns the block and whether it was created.
        Does not commit.
        """
        _validate_window(start, end)

        result = await self.db.execute(
            select(AvailabilityBlock).where(
                AvailabilityBlock.business_id == business_id,
                AvailabilityBlock.external_event_id == external_event_id,
            )
        )
        block = result.scalar_one_or_none()

        if block is None:
            block = AvailabilityBlock(
                business_id=business_id,
                external_event_id=external_event_id,
                origin=BlockOrigin.EXTERNAL_SYNC.value,
                start_time=start,
                end_time=end,
                title=title,
                description=description,
                is_active=True,
            )
            self.db.add(block)
            await self.db.flush()
            return block, True

        block.start_time = start
        block.end_time = end
        block.title = title
        block.description = description
        block.is_active = True
        return block, False

    async def deactivate_external_block(
        self, business_id: int, external_event_id: str
    ) -> bool:
        """Soft delete the block for an event cancelled upstream. Does not commit."""
        result = await self.db.execute(
            select(AvailabilityBlock).where(
                AvailabilityBlock.business_id == business_id,
                AvailabilityBlock.external_event_id == external_event_id,
                AvailabilityBlock.is_active.is_(True),
            )
        )
        block = result.scalar_one_or_none()
        if block is None:
            return False
        block.is_active = False
        return True
