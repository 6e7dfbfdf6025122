from datetime import timedelta

import pytest
from sqlalchemy import select

from app.core.errors import InvalidInputError, NotFoundError
from app.models.working_hours import WorkingHours
from app.services.availability import AvailabilityService
from tests.fixtures.scheduling_fixtures import add_reservation, at


class TestGetCapacity:
    async def test_capacity_disabled_means_one(self, db, sample_business):
        sample_business.simultaneous_capacity = 4
        await db.commit()

        info = await AvailabilityService(db).get_capacity(sample_business.id)

        assert info.capacity_enabled is False
        assert info.max_capacity == 1

    async def test_capacity_enabled(self, db, sample_business):
        sample_business.capacity_enabled = True
        sample_business.simultaneous_capacity = 3
        await db.commit()

        info = await AvailabilityService(db).get_capacity(sample_business.id)

        assert info.capacity_enabled is True
        assert info.max_capacity == 3

    async def test_capacity_enabled_with_zero_is_one(self, db, sample_business):
        sample_business.capacity_enabled = True
        sample_business.simultaneous_capacity = 0
        await db.commit()

        info = await AvailabilityService(db).get_capacity(sample_business.id)

        assert info.max_capacity == 1

    async def test_unknown_business(self, db):
        with pytest.raises(NotFoundError):
            await AvailabilityService(db).get_capacity(999)


class TestDayAvailability:
    async def test_empty_day_offers_every_quarter_hour(
        self, db, sample_business, sample_service, day
    ):
        result = await AvailabilityService(db).get_day_availability(
            sample_business.id, day, service_id=sample_service.id
        )

        starts = [slot.start_time for slot in result.slots]
        assert starts[0] == at(day, 9)
        assert starts[-1] == at(day, 17)
        assert result.slots[-1].end_time == at(day, 18)
        assert len(starts) == 33
        assert all(slot.available for slot in result.slots)
        assert all(slot.max_capacity == 1 for slot in result.slots)
        assert all(slot.slots_remaining == 1 for slot in result.slots)

    async def test_reservation_with_buffer_blocks_surrounding_slots(
        self, db, sample_business, sample_service, day
    ):
        await add_reservation(
            db, sample_business, sample_service, at(day, 10), buffer_minutes=15
        )

        result = await AvailabilityService(db).get_day_availability(
            sample_business.id, day, service_id=sample_service.id
        )
        by_start = {slot.start_time: slot for slot in result.slots}

        # Any 60 minute slot intersecting [09:45, 11:15) is taken
        for minutes in range(0, 135, 15):
            slot = by_start[at(day, 9) + timedelta(minutes=minutes)]
            assert slot.available is False, slot.start_time
            assert slot.current_bookings == 1

        later = [s for s in result.slots if s.start_time >= at(day, 11, 15)]
        assert later and all(s.available for s in later)

    async def test_duration_without_service(self, db, sample_business, day):
        result = await AvailabilityService(db).get_day_availability(
            sample_business.id, day, duration_minutes=30
        )

        assert result.service_duration_minutes == 30
        assert result.slots[-1].start_time == at(day, 17, 30)

    async def test_closed_weekday_has_no_slots(
        self, db, sample_business, sample_service, day
    ):
        hours = (
            await db.execute(
                select(WorkingHours).where(
                    WorkingHours.business_id == sample_business.id,
                    WorkingHours.weekday == day.weekday(),
                )
            )
        ).scalar_one()
        hours.is_closed = True
        await db.commit()

        result = await AvailabilityService(db).get_day_availability(
            sample_business.id, day, service_id=sample_service.id
        )

        assert result.slots == []

    async def test_defaults_to_slot_granularity(self, db, sample_business, day):
        result = await AvailabilityService(db).get_day_availability(sample_business.id, day)

        assert result.service_duration_minutes == 15
        assert len(result.slots) == 36
        assert result.slots[-1].start_time == at(day, 17, 45)

    async def test_rejects_non_positive_duration(self, db, sample_business, day):
        with pytest.raises(InvalidInputError):
            await AvailabilityService(db).get_day_availability(
                sample_business.id, day, duration_minutes=0
            )

    async def test_unknown_service(self, db, sample_business, day):
        with pytest.raises(NotFoundError):
            await AvailabilityService(db).get_day_availability(
                sample_business.id, day, service_id=12345
            )


class TestCheckSlot:
    async def test_capacity_two_with_two_overlapping_reservations(
        self, db, sample_business, sample_service, day
    ):
        sample_business.capacity_enabled = True
        sample_business.simultaneous_capacity = 2
        await db.commit()
        await add_reservation(db, sample_business, sample_service, at(day, 14))
        await add_reservation(db, sample_business, sample_service, at(day, 14))

        result = await AvailabilityService(db).check_slot(
            sample_business.id, at(day, 14, 30), at(day, 15)
        )

        assert result.available is False
        assert result.current_count == 2
        assert result.max_capacity == 2
        assert result.slots_remaining == 0

    async def test_free_slot(self, db, sample_business, day):
        result = await AvailabilityService(db).check_slot(
            sample_business.id, at(day, 9), at(day, 10)
        )

        assert result.available is True
        assert result.current_count == 0
        assert result.slots_remaining == 1

    async def test_end_before_start_rejected(self, db, sample_business, day):
        with pytest.raises(InvalidInputError):
            await AvailabilityService(db).check_slot(
                sample_business.id, at(day, 10), at(day, 9)
            )

    async def test_naive_datetimes_rejected(self, db, sample_business, day):
        with pytest.raises(InvalidInputError):
            await AvailabilityService(db).check_slot(
                sample_business.id,
                at(day, 9).replace(tzinfo=None),
                at(day, 10).replace(tzinfo=None),
            )
