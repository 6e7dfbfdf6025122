from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, model_validator

from app.models.availability_block import BlockOrigin


class AvailabilityBlockCreate(BaseModel):
    start_time: datetime
    end_time: datetime
    title: Optional[str] = None
    description: Optional[str] = None
    created_by: Optional[int] = None

    @model_validator(mode="after")
    def validate_window(self):
        if self.start_time.tzinfo is None or self.end_time.tzinfo is None:
            raise ValueError("start_time and end_time must include a timezone")
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class AvailabilityBlockUpdate(BaseModel):
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    title: Optional[str] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None


class AvailabilityBlock(BaseModel):
    id: int
    business_id: int
    start_time: datetime
    end_time: datetime
    origin: BlockOrigin
    title: Optional[str] = None
    description: Optional[str] = None
    external_event_id: Optional[str] = None
    is_active: bool
    created_by: Optional[int] = None

    class Config:
        from_attributes = True


class AvailabilityBlockRange(BaseModel):
    blocks: List[AvailabilityBlock]
    is_blocked: bool
