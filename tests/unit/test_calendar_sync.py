from datetime import datetime, timedelta, timezone

import pytest

from app.core.errors import (
    InvalidInputError,
    NotConfiguredError,
    SyncInProgressError,
)
from app.models.availability_block import BlockOrigin
from app.models.reservation import ReservationStatus
from app.schemas.calendar import SyncDirection
from app.services.availability_blocks import AvailabilityBlockService
from app.services.calendar_sync import CalendarSyncService, build_event
from tests.fixtures.scheduling_fixtures import add_reservation, at


@pytest.fixture
def sync_service(db, fake_provider, sync_lock):
    return CalendarSyncService(db, provider=fake_provider, lock=sync_lock)


async def all_blocks(db, business_id):
    return await AvailabilityBlockService(db).list_blocks(business_id, active_only=False)


class TestBuildEvent:
    async def test_event_is_tagged_as_ours(self, db, calendar_business, sample_service, day):
        reservation = await add_reservation(
            db, calendar_business, sample_service, at(day, 10), status=ReservationStatus.PENDING
        )

        event = build_event(reservation, "Haircut", "Europe/Madrid")

        private = event["extendedProperties"]["private"]
        assert private == {"lobba_source": "true", "lobba_reservation_id": str(reservation.id)}
        assert event["summary"] == f"Haircut - reservation #{reservation.id}"
        assert event["start"]["timeZone"] == "Europe/Madrid"
        start = datetime.fromisoformat(event["start"]["dateTime"])
        assert start == at(day, 10)


class TestOutbound:
    async def test_second_run_pushes_nothing(
        self, db, sync_service, fake_calendar, calendar_business, sample_service, day
    ):
        first = await add_reservation(db, calendar_business, sample_service, at(day, 10))
        await add_reservation(
            db, calendar_business, sample_service, at(day, 12), status=ReservationStatus.PENDING
        )

        result = await sync_service.push_reservations(calendar_business.id)
        again = await sync_service.push_reservations(calendar_business.id)

        assert result.pushed == 2
        assert result.failures == []
        assert again.pushed == 0
        assert len(fake_calendar.own_events()) == 2
        await db.refresh(first)
        assert first.external_event_id in result.event_ids

    async def test_only_future_active_reservations_are_pushed(
        self, db, sync_service, fake_calendar, calendar_business, sample_service, day
    ):
        past = datetime.now(timezone.utc) - timedelta(days=2)
        await add_reservation(db, calendar_business, sample_service, past)
        await add_reservation(
            db, calendar_business, sample_service, at(day, 10), status=ReservationStatus.CANCELLED
        )
        await add_reservation(
            db, calendar_business, sample_service, at(day, 11), external_event_id="already"
        )

        result = await sync_service.push_reservations(calendar_business.id)

        assert result.pushed == 0
        assert fake_calendar.events == {}

    async def test_failed_item_is_reported_and_retried_later(
        self, db, sync_service, fake_calendar, calendar_business, sample_service, day
    ):
        ok = await add_reservation(db, calendar_business, sample_service, at(day, 10))
        broken = await add_reservation(db, calendar_business, sample_service, at(day, 12))
        fake_calendar.failing_reservations.add(str(broken.id))

        result = await sync_service.push_reservations(calendar_business.id)

        assert result.pushed == 1
        assert len(result.failures) == 1
        assert result.failures[0].direction == SyncDirection.OUTBOUND
        assert result.failures[0].item_id == str(broken.id)
        await db.refresh(ok)
        await db.refresh(broken)
        assert ok.external_event_id is not None
        assert broken.external_event_id is None

        fake_calendar.failing_reservations.clear()
        retry = await sync_service.push_reservations(calendar_business.id)
        assert retry.pushed == 1
        assert len(fake_calendar.own_events()) == 2

    async def test_requires_selected_calendar(
        self, db, sync_service, calendar_business
    ):
        calendar_business.google_calendar_id = None
        await db.commit()

        with pytest.raises(NotConfiguredError):
            await sync_service.push_reservations(calendar_business.id)

    async def test_lock_held_elsewhere(self, sync_service, sync_lock, calendar_business):
        sync_lock.held.add(calendar_business.id)

        with pytest.raises(SyncInProgressError):
            await sync_service.push_reservations(calendar_business.id)


class TestInbound:
    async def test_external_event_becomes_block_once(
        self, db, sync_service, fake_calendar, calendar_business, day
    ):
        fake_calendar.add_external_event(at(day, 10), at(day, 11), event_id="ext-1")

        first = await sync_service.pull_events(calendar_business.id)
        second = await sync_service.pull_events(calendar_business.id)

        assert first.pulled == 1
        assert second.pulled == 1
        blocks = await all_blocks(db, calendar_business.id)
        assert len(blocks) == 1
        assert blocks[0].external_event_id == "ext-1"
        assert blocks[0].origin == BlockOrigin.EXTERNAL_SYNC.value
        assert blocks[0].title == "Dentist"
        assert blocks[0].start_time == at(day, 10)

    async def test_own_events_are_not_pulled_back(
        self, db, sync_service, fake_calendar, calendar_business, sample_service, day
    ):
        await add_reservation(db, calendar_business, sample_service, at(day, 10))
        await sync_service.push_reservations(calendar_business.id)

        result = await sync_service.pull_events(calendar_business.id)

        assert result.pulled == 0
        assert result.skipped == 1
        assert await all_blocks(db, calendar_business.id) == []

    async def test_all_day_and_id_less_events_are_skipped(
        self, db, sync_service, fake_calendar, calendar_business, day
    ):
        fake_calendar.add_external_event(at(day, 0), at(day, 0) + timedelta(days=1), all_day=True)
        fake_calendar.events["anonymous"] = {"summary": "No id", "status": "confirmed"}

        result = await sync_service.pull_events(calendar_business.id)

        assert result.pulled == 0
        assert result.skipped == 2
        assert await all_blocks(db, calendar_business.id) == []

    async def test_cancelled_event_deactivates_block(
        self, db, sync_service, fake_calendar, calendar_business, day
    ):
        event = fake_calendar.add_external_event(at(day, 10), at(day, 11))
        await sync_service.pull_events(calendar_business.id)
        event["status"] = "cancelled"

        result = await sync_service.pull_events(calendar_business.id)

        assert result.deactivated == 1
        blocks = await all_blocks(db, calendar_business.id)
        assert len(blocks) == 1
        assert blocks[0].is_active is False

    async def test_cancelled_unknown_event_is_ignored(
        self, db, sync_service, fake_calendar, calendar_business, day
    ):
        fake_calendar.add_external_event(at(day, 10), at(day, 11), status="cancelled")

        result = await sync_service.pull_events(calendar_business.id)

        assert result.deactivated == 0
        assert result.pulled == 0

    async def test_invalid_event_window_is_collected(
        self, db, sync_service, fake_calendar, calendar_business, day
    ):
        fake_calendar.add_external_event(at(day, 11), at(day, 10), event_id="backwards")
        fake_calendar.add_external_event(at(day, 12), at(day, 13), event_id="fine")

        result = await sync_service.pull_events(calendar_business.id)

        assert result.pulled == 1
        assert [f.item_id for f in result.failures] == ["backwards"]
        assert result.failures[0].direction == SyncDirection.INBOUND


class TestFullSync:
    async def test_totals(
        self, db, sync_service, fake_calendar, calendar_business, sample_service, day
    ):
        await add_reservation(db, calendar_business, sample_service, at(day, 10))
        fake_calendar.add_external_event(at(day, 14), at(day, 15))

        result = await sync_service.full_sync(calendar_business.id)

        assert result.reservations_pushed == 1
        assert result.events_pulled == 1
        # The event pushed in this run is seen and skipped on the way back
        assert result.events_skipped == 1
        assert result.failures == []
        await db.refresh(calendar_business)
        assert calendar_business.last_google_sync is not None


class TestLinkage:
    async def test_auth_callback_stores_tokens(
        self, db, sync_service, fake_provider, sample_business
    ):
        business = await sync_service.handle_auth_callback("the-code", sample_business.id)

        assert fake_provider.oauth.exchanged == ["the-code"]
        assert business.google_calendar_enabled is True
        assert business.google_access_token == "access-new"
        assert business.google_refresh_token == "refresh-new"
        assert business.google_sync_enabled is False

    async def test_auth_callback_requires_code(self, sync_service, sample_business):
        with pytest.raises(InvalidInputError):
            await sync_service.handle_auth_callback("", sample_business.id)

    async def test_list_calendars(self, sync_service, calendar_business):
        calendars = await sync_service.list_calendars(calendar_business.id)

        assert [c.id for c in calendars] == ["primary", "team@group.calendar.google.com"]
        assert calendars[0].primary is True
        assert calendars[1].access_role == "writer"

    async def test_set_primary_calendar_enables_sync(
        self, db, sync_service, calendar_business
    ):
        calendar_business.google_sync_enabled = False
        await db.commit()

        business = await sync_service.set_primary_calendar(
            calendar_business.id, "team@group.calendar.google.com"
        )

        assert business.google_calendar_id == "team@group.calendar.google.com"
        assert business.google_sync_enabled is True

    async def test_set_primary_calendar_requires_connection(
        self, sync_service, sample_business
    ):
        with pytest.raises(NotConfiguredError):
            await sync_service.set_primary_calendar(sample_business.id, "primary")

    async def test_disconnect_stops_channel_and_clears_state(
        self, db, sync_service, fake_calendar, calendar_business
    ):
        calendar_business.google_webhook_channel_id = "chan-1"
        calendar_business.google_webhook_resource_id = "res-1"
        calendar_business.google_webhook_expiration = datetime.now(timezone.utc) + timedelta(days=3)
        await db.commit()

        business = await sync_service.disconnect(calendar_business.id)

        assert fake_calendar.stopped_channels == [("chan-1", "res-1")]
        assert business.google_calendar_enabled is False
        assert business.google_sync_enabled is False
        assert business.google_calendar_id is None
        assert business.google_refresh_token is None
        assert business.google_access_token is None
        assert business.google_webhook_channel_id is None
        assert business.google_webhook_expiration is None
