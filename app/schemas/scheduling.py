from datetime import date, datetime
from typing import List
from pydantic import BaseModel, Field, model_validator


class CapacityInfo(BaseModel):
    capacity_enabled: bool
    max_capacity: int


class SlotAvailability(BaseModel):
    available: bool
    current_count: int
    max_capacity: int
    slots_remaining: int


class DaySlot(BaseModel):
    start_time: datetime
    end_time: datetime
    available: bool
    current_bookings: int
    max_capacity: int
    slots_remaining: int


class DayAvailability(BaseModel):
    business_id: int
    day: date
    service_duration_minutes: int
    slots: List[DaySlot] = Field(default_factory=list)


class SlotCheckRequest(BaseModel):
    start_time: datetime
    end_time: datetime

    @model_validator(mode="after")
    def validate_window(self):
        if self.start_time.tzinfo is None or self.end_time.tzinfo is None:
            raise ValueError("start_time and end_time must include a timezone")
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self
