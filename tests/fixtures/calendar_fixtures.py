from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps.calendar import get_calendar_provider, get_sync_lock
from app.core.errors import (
    NotConfiguredError,
    OAuthError,
    SyncInProgressError,
    UpstreamFailureError,
)
from app.main import app
from app.models.business import Business
from app.models.types import utcnow
from app.services.google_calendar import (
    RESERVATION_MARKER_KEY,
    SOURCE_MARKER_KEY,
    TokenSet,
)


class FakeCalendarClient:
    """In-memory stand-in for one Google calendar."""

    def __init__(self):
        self.events: Dict[str, dict] = {}
        self.failing_reservations: set = set()
        self.watch_error: Optional[str] = None
        self.watch_calls: List[dict] = []
        self.stopped_channels: List[tuple] = []
        self.calendars = [
            {"id": "primary", "summary": "Main", "primary": True, "accessRole": "owner"},
            {"id": "team@group.calendar.google.com", "summary": "Team", "accessRole": "writer"},
        ]
        self._counter = 0

    def _next_id(self) -> str:
        self._counter += 1
        return f"evt-{self._counter}"

    def add_external_event(
        self,
        start: datetime,
        end: datetime,
        summary: str = "Dentist",
        status: str = "confirmed",
        all_day: bool = False,
        event_id: Optional[str] = None,
    ) -> dict:
        event_id = event_id or self._next_id()
        if all_day:
            bounds = {
                "start": {"date": start.date().isoformat()},
                "end": {"date": end.date().isoformat()},
            }
        else:
            bounds = {
                "start": {"dateTime": start.isoformat()},
                "end": {"dateTime": end.isoformat()},
            }
        event = {"id": event_id, "summary": summary, "status": status, **bounds}
        self.events[event_id] = event
        return event

    async def list_calendars(self):
        return list(self.calendars)

    async def insert_event(self, calendar_id: str, event: dict) -> dict:
        reservation_id = event["extendedProperties"]["private"][RESERVATION_MARKER_KEY]
        if reservation_id in self.failing_reservations:
            raise UpstreamFailureError("Google Calendar POST failed with HTTP 500")
        stored = {**event, "id": self._next_id(), "status": "confirmed"}
        self.events[stored["id"]] = stored
        return stored

    async def list_events(self, calendar_id: str, time_min, time_max):
        return list(self.events.values())

    async def watch_events(self, calendar_id, channel_id, address, token=None):
        if self.watch_error:
            raise UpstreamFailureError(self.watch_error)
        self.watch_calls.append(
            {"calendar_id": calendar_id, "id": channel_id, "address": address, "token": token}
        )
        expiration = utcnow() + timedelta(days=7)
        return {
            "id": channel_id,
            "resourceId": f"res-{len(self.watch_calls)}",
            "expiration": str(int(expiration.timestamp() * 1000)),
        }

    async def stop_channel(self, channel_id, resource_id):
        self.stopped_channels.append((channel_id, resource_id))

    def own_events(self) -> List[dict]:
        return [
            e
            for e in self.events.values()
            if (e.get("extendedProperties") or {}).get("private", {}).get(SOURCE_MARKER_KEY)
            == "true"
        ]


class FakeOAuth:
    def __init__(self):
        self.exchanged: List[str] = []
        self.fail = False

    def authorization_url(self, business_id: int) -> str:
        return f"https://accounts.google.com/o/oauth2/v2/auth?state={business_id}"

    async def exchange_code(self, code: str) -> TokenSet:
        if self.fail:
            raise OAuthError("Token request failed with HTTP 400")
        self.exchanged.append(code)
        return TokenSet(
            access_token="access-new",
            refresh_token="refresh-new",
            expires_at=utcnow() + timedelta(hours=1),
        )


class FakeCalendarProvider:
    def __init__(self, client: FakeCalendarClient):
        self.client = client
        self.oauth = FakeOAuth()

    async def get_valid_client(self, db, business: Business) -> FakeCalendarClient:
        if not business.google_calendar_enabled or not business.google_refresh_token:
            raise NotConfiguredError(
                f"Google Calendar is not connected for business {business.id}"
            )
        return self.client


class FakeSyncLock:
    """Process-local replacement for the Redis calendar sync lock."""

    def __init__(self):
        self.held = set()

    @asynccontextmanager
    async def calendar_sync_lock(self, business_id: int, expire=None):
        if business_id in self.held:
            raise SyncInProgressError()
        self.held.add(business_id)
        try:
            yield
        finally:
            self.held.discard(business_id)


@pytest.fixture
def fake_calendar() -> FakeCalendarClient:
    return FakeCalendarClient()


@pytest.fixture
def fake_provider(fake_calendar) -> FakeCalendarProvider:
    return FakeCalendarProvider(fake_calendar)


@pytest.fixture
def sync_lock() -> FakeSyncLock:
    return FakeSyncLock()


@pytest.fixture(autouse=True)
def override_calendar_deps(fake_provider, sync_lock):
    app.dependency_overrides[get_calendar_provider] = lambda: fake_provider
    app.dependency_overrides[get_sync_lock] = lambda: sync_lock
    yield
    app.dependency_overrides.pop(get_calendar_provider, None)
    app.dependency_overrides.pop(get_sync_lock, None)


@pytest.fixture
async def calendar_business(db: AsyncSession, sample_business: Business) -> Business:
    """Sample business with Google Calendar connected and a calendar selected."""
    sample_business.google_calendar_enabled = True
    sample_business.google_sync_enabled = True
    sample_business.google_calendar_id = "primary"
    sample_business.google_access_token = "access-token"
    sample_business.google_refresh_token = "refresh-token"
    sample_business.google_token_expiry = datetime.now(timezone.utc) + timedelta(hours=1)
    await db.commit()
    await db.refresh(sample_business)
    return sample_business
