from fastapi import APIRouter

from app.api.v1.endpoints import (
    auto_confirmation,
    availability,
    availability_blocks,
    google_calendar,
    reservations,
)

api_router = APIRouter()

# Capacity and slot availability
api_router.include_router(availability.router, prefix="/businesses", tags=["availability"])

# Manual availability blocks
api_router.include_router(
    availability_blocks.router, prefix="/businesses", tags=["availability-blocks"]
)

# Booking flow and status transitions
api_router.include_router(
    reservations.router, prefix="/reservations", tags=["reservations"]
)

# Auto-confirmation decisions
api_router.include_router(
    auto_confirmation.router, prefix="/auto-confirmation", tags=["auto-confirmation"]
)

# Google Calendar linkage, sync and push notifications
api_router.include_router(
    google_calendar.router, prefix="/google-calendar", tags=["google-calendar"]
)
