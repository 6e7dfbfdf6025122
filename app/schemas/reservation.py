from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from pydantic import BaseModel, Field, field_validator

# Import enums from the model to avoid duplication
from app.models.reservation import ReservationStatus


class ReservationCreate(BaseModel):
    business_id: int
    service_id: int
    user_id: int
    start_time: datetime
    buffer_minutes: Optional[int] = Field(None, ge=0)
    total_price: Optional[Decimal] = Field(None, ge=0)
    notes: Optional[str] = None

    @field_validator("start_time")
    @classmethod
    def require_timezone(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            raise ValueError("start_time must include a timezone")
        return v


class ReservationStatusTransition(BaseModel):
    new_status: ReservationStatus


class Reservation(BaseModel):
    id: int
    business_id: int
    service_id: int
    user_id: int
    start_time: datetime
    end_time: datetime
    buffer_minutes: Optional[int] = None
    status: ReservationStatus
    previous_status: Optional[ReservationStatus] = None
    auto_confirmed: bool
    confirmed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    total_price: Optional[Decimal] = None
    notes: Optional[str] = None
    external_event_id: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ReservationWithDecision(Reservation):
    auto_confirmation_applied: bool = False
    auto_confirmation_reason: Optional[str] = None


class ReservationList(BaseModel):
    reservations: List[Reservation]
    total_count: int
