from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.business import Business
from app.models.business_settings import BusinessSettings
from app.models.reservation import Reservation, ReservationStatus
from app.models.service import Service
from app.models.working_hours import WeekDay, WorkingHours


def future_day(days_ahead: int = 7) -> date:
    return (datetime.now(timezone.utc) + timedelta(days=days_ahead)).date()


def at(day: date, hour: int, minute: int = 0) -> datetime:
    """UTC instant on ``day``."""
    return datetime.combine(day, time(hour, minute), tzinfo=timezone.utc)


async def add_reservation(
    db: AsyncSession,
    business: Business,
    service: Service,
    start: datetime,
    minutes: int = 60,
    user_id: int = 100,
    status: ReservationStatus = ReservationStatus.CONFIRMED,
    buffer_minutes=None,
    external_event_id=None,
) -> Reservation:
    reservation = Reservation(
        business_id=business.id,
        service_id=service.id,
        user_id=user_id,
        start_time=start,
        end_time=start + timedelta(minutes=minutes),
        buffer_minutes=buffer_minutes,
        status=status.value,
        external_event_id=external_event_id,
    )
    db.add(reservation)
    await db.commit()
    await db.refresh(reservation)
    return reservation


@pytest.fixture
def day() -> date:
    return future_day()


@pytest.fixture
async def sample_business(db: AsyncSession) -> Business:
    """Business open 09:00-18:00 every day, capacity disabled."""
    business = Business(
        name="Test Salon",
        owner_user_id=1,
        timezone="UTC",
        capacity_enabled=False,
        simultaneous_capacity=1,
    )
    db.add(business)
    await db.flush()

    for weekday in WeekDay:
        db.add(
            WorkingHours(
                business_id=business.id,
                weekday=weekday.value,
                open_time=time(9, 0),
                close_time=time(18, 0),
                is_closed=False,
            )
        )

    await db.commit()
    await db.refresh(business)
    return business


@pytest.fixture
async def sample_service(db: AsyncSession, sample_business: Business) -> Service:
    service = Service(
        business_id=sample_business.id,
        name="Haircut",
        duration_minutes=60,
        price=Decimal("25.00"),
    )
    db.add(service)
    await db.commit()
    await db.refresh(service)
    return service


@pytest.fixture
async def short_service(db: AsyncSession, sample_business: Business) -> Service:
    service = Service(
        business_id=sample_business.id,
        name="Fringe trim",
        duration_minutes=30,
        price=Decimal("10.00"),
    )
    db.add(service)
    await db.commit()
    await db.refresh(service)
    return service


@pytest.fixture
async def auto_confirm_settings(
    db: AsyncSession, sample_business: Business
) -> BusinessSettings:
    business_settings = BusinessSettings(
        business_id=sample_business.id,
        auto_confirm_enabled=True,
        auto_confirm_min_hours=2,
        require_manual_first_booking=False,
        manual_approval_service_ids=[],
        buffer_minutes=15,
    )
    db.add(business_settings)
    await db.commit()
    await db.refresh(business_settings)
    return business_settings
