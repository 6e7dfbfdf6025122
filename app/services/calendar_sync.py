"""
Two-way synchronization between reservations and a business's Google Calendar.

Outbound pushes future pending/confirmed reservations that have no external
event yet and records the returned event id, so a second run pushes nothing.
Inbound mirrors foreign events as availability blocks keyed by event id and
skips events we created ourselves, so our own pushes never come back as
blocks. Both directions for one business run under a Redis lock.

Per-item failures are collected into the result and the batch continues.
"""

from datetime import timedelta
from typing import List, Optional, Tuple
from zoneinfo import ZoneInfo

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.errors import (
    InvalidInputError,
    NotConfiguredError,
    SchedulingError,
    UpstreamFailureError,
)
from app.core.redis import redis_client
from app.models.business import Business
from app.models.reservation import SYNCABLE_STATUSES, Reservation
from app.models.service import Service
from app.models.types import utcnow
from app.schemas.calendar import (
    CalendarInfo,
    FullSyncResult,
    InboundSyncResult,
    OutboundSyncResult,
    SyncDirection,
    SyncFailure,
)
from app.services.availability_blocks import AvailabilityBlockService
from app.services.business import BusinessService
from app.services.google_calendar import (
    RESERVATION_MARKER_KEY,
    SOURCE_MARKER_KEY,
    GoogleCalendarClient,
    GoogleCalendarProvider,
    is_own_event,
    parse_event_time,
)

logger = structlog.get_logger(__name__)

EXTERNAL_BLOCK_TITLE = "Busy (Google Calendar)"


def build_event(reservation: Reservation, service_name: str, tz_name: str) -> dict:
    """Calendar event body for one reservation, tagged as ours."""
    zone = ZoneInfo(tz_name)
    description = f"Reservation #{reservation.id}\nStatus: {reservation.status}"
    if reservation.notes:
        description += f"\n\nNotes: {reservation.notes}"

    return {
        "summary": f"{service_name} - reservation #{reservation.id}",
        "description": description,
        "start": {
            "dateTime": reservation.start_time.astimezone(zone).isoformat(),
            "timeZone": tz_name,
        },
        "end": {
            "dateTime": reservation.end_time.astimezone(zone).isoformat(),
            "timeZone": tz_name,
        },
        "extendedProperties": {
            "private": {
                SOURCE_MARKER_KEY: "true",
                RESERVATION_MARKER_KEY: str(reservation.id),
            }
        },
    }


class CalendarSyncService:
    """OAuth linkage, calendar selection and two-way sync for one database session."""

    def __init__(
        self,
        db: AsyncSession,
        provider: Optional[GoogleCalendarProvider] = None,
        lock=None,
    ):
        self.db = db
        self.provider = provider or GoogleCalendarProvider()
        self.lock = lock or redis_client
        self.business_service = BusinessService(db)
        self.block_service = AvailabilityBlockService(db)

    # Linkage

    async def initiate_auth(self, business_id: int) -> str:
        await self.business_service.get_business(business_id)
        return self.provider.oauth.authorization_url(business_id)

    async def handle_auth_callback(self, code: str, business_id: int) -> Business:
        if not code:
            raise InvalidInputError("Missing authorization code")

        business = await self.business_service.get_business(business_id)
        tokens = await self.provider.oauth.exchange_code(code)

        business.google_access_token = tokens.access_token
        business.google_token_expiry = tokens.expires_at
        if tokens.refresh_token:
            business.google_refresh_token = tokens.refresh_token
        business.google_calendar_enabled = True
        await self.db.commit()

        logger.info("Google Calendar connected", business_id=business_id)
        return business

    async def list_calendars(self, business_id: int) -> List[CalendarInfo]:
        business = await self.business_service.get_business(business_id)
        client = await self.provider.get_valid_client(self.db, business)

        calendars = await client.list_calendars()
        return [
            CalendarInfo(
                id=item["id"],
                summary=item.get("summary"),
                primary=bool(item.get("primary", False)),
                access_role=item.get("accessRole"),
                time_zone=item.get("timeZone"),
            )
            for item in calendars
        ]

    async def set_primary_calendar(self, business_id: int, calendar_id: str) -> Business:
        if not calendar_id:
            raise InvalidInputError("Calendar ID is required")

        business = await self.business_service.get_business(business_id)
        if not business.has_calendar_credentials:
            raise NotConfiguredError(
                f"Google Calendar is not connected for business {business_id}"
            )

        business.google_calendar_id = calendar_id
        business.google_sync_enabled = True
        await self.db.commit()

        logger.info(
            "Primary calendar selected", business_id=business_id, calendar_id=calendar_id
        )
        return business

    async def disconnect(self, business_id: int) -> Business:
        """Forget every Google credential and channel for the business."""
        business = await self.business_service.get_business(business_id)

        if business.has_webhook_channel and business.has_calendar_credentials:
            try:
                client = await self.provider.get_valid_client(self.db, business)
                await client.stop_channel(
                    business.google_webhook_channel_id,
                    business.google_webhook_resource_id,
                )
            except SchedulingError as e:
                logger.warning(
                    "Could not stop webhook channel on disconnect",
                    business_id=business_id,
                    error=str(e),
                )

        business.google_calendar_id = None
        business.google_calendar_enabled = False
        business.google_sync_enabled = False
        business.google_refresh_token = None
        business.google_access_token = None
        business.google_token_expiry = None
        business.clear_webhook_channel()
        await self.db.commit()

        logger.info("Google Calendar disconnected", business_id=business_id)
        return business

    # Sync

    async def _sync_target(
        self, business_id: int
    ) -> Tuple[Business, GoogleCalendarClient, str]:
        business = await self.business_service.get_business(business_id)
        if not business.google_calendar_id:
            raise NotConfiguredError(
                f"No Google Calendar selected for business {business_id}"
            )
        client = await self.provider.get_valid_client(self.db, business)
        return business, client, business.google_calendar_id

    async def _push(
        self, business: Business, client: GoogleCalendarClient, calendar_id: str
    ) -> OutboundSyncResult:
        result = OutboundSyncResult()
        now = utcnow()

        rows = (
            await self.db.execute(
                select(Reservation, Service.name)
                .join(Service, Service.id == Reservation.service_id)
                .where(
                    Reservation.business_id == business.id,
                    Reservation.status.in_([s.value for s in SYNCABLE_STATUSES]),
                    Reservation.start_time > now,
                    Reservation.external_event_id.is_(None),
                )
                .order_by(Reservation.start_time)
            )
        ).all()

        for reservation, service_name in rows:
            event = build_event(reservation, service_name, settings.CALENDAR_EVENT_TIMEZONE)
            try:
                created = await client.insert_event(calendar_id, event)
                event_id = created["id"]
            except (UpstreamFailureError, KeyError) as e:
                logger.warning(
                    "Outbound event insert failed",
                    business_id=business.id,
                    reservation_id=reservation.id,
                    error=str(e),
                )
                result.failures.append(
                    SyncFailure(
                        direction=SyncDirection.OUTBOUND,
                        item_id=str(reservation.id),
                        error=str(e),
                    )
                )
                continue

            # Committed per item so a later failure cannot cause a duplicate push
            reservation.external_event_id = event_id
            await self.db.commit()
            result.pushed += 1
            result.event_ids.append(event_id)

        business.last_google_sync = utcnow()
        await self.db.commit()

        logger.info(
            "Outbound sync completed",
            business_id=business.id,
            pushed=result.pushed,
            failed=len(result.failures),
        )
        return result

    async def _pull(
        self, business: Business, client: GoogleCalendarClient, calendar_id: str
    ) -> InboundSyncResult:
        result = InboundSyncResult()
        time_min = utcnow()
        time_max = time_min + timedelta(days=settings.INBOUND_SYNC_WINDOW_DAYS)

        events = await client.list_events(calendar_id, time_min, time_max)

        for event in events:
            event_id = event.get("id")
            if not event_id or is_own_event(event):
                result.skipped += 1
                continue

            if event.get("status") == "cancelled":
                if await self.block_service.deactivate_external_block(
                    business.id, event_id
                ):
                    result.deactivated += 1
                continue

            start = parse_event_time(event.get("start"))
            end = parse_event_time(event.get("end"))
            if start is None or end is None:
                # All-day events carry a date, not a dateTime
                result.skipped += 1
                continue

            try:
                await self.block_service.upsert_external_block(
                    business.id,
                    event_id,
                    start,
                    end,
                    title=event.get("summary") or EXTERNAL_BLOCK_TITLE,
                    description=event.get("description"),
                )
            except InvalidInputError as e:
                result.failures.append(
                    SyncFailure(
                        direction=SyncDirection.INBOUND, item_id=event_id, error=str(e)
                    )
                )
                continue

            result.pulled += 1
            result.event_ids.append(event_id)

        await self.db.commit()

        logger.info(
            "Inbound sync completed",
            business_id=business.id,
            pulled=result.pulled,
            skipped=result.skipped,
            deactivated=result.deactivated,
            failed=len(result.failures),
        )
        return result

    async def push_reservations(self, business_id: int) -> OutboundSyncResult:
        async with self.lock.calendar_sync_lock(business_id):
            business, client, calendar_id = await self._sync_target(business_id)
            return await self._push(business, client, calendar_id)

    async def pull_events(self, business_id: int) -> InboundSyncResult:
        async with self.lock.calendar_sync_lock(business_id):
            business, client, calendar_id = await self._sync_target(business_id)
            return await self._pull(business, client, calendar_id)

    async def full_sync(self, business_id: int) -> FullSyncResult:
        async with self.lock.calendar_sync_lock(business_id):
            business, client, calendar_id = await self._sync_target(business_id)
            outbound = await self._push(business, client, calendar_id)
            inbound = await self._pull(business, client, calendar_id)

        return FullSyncResult(
            reservations_pushed=outbound.pushed,
            events_pulled=inbound.pulled,
            events_skipped=inbound.skipped,
            failures=outbound.failures + inbound.failures,
            timestamp=utcnow(),
        )
