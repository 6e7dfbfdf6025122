"""
Google Calendar v3 and OAuth 2.0 over httpx.

Clients are built per business from its persisted credentials; nothing here
holds module-level auth state. ``GoogleCalendarProvider.get_valid_client``
refreshes an expired access token and persists the new one before handing
the client out, so callers never see half-refreshed credentials.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import quote, urlencode

import httpx
import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.errors import NotConfiguredError, OAuthError, UpstreamFailureError
from app.models.business import Business
from app.models.types import utcnow

logger = structlog.get_logger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_CALENDAR_API = "https://www.googleapis.com/calendar/v3"

SCOPES = [
    "https://www.googleapis.com/auth/calendar",
    "https://www.googleapis.com/auth/calendar.events",
]

# Private extended properties marking events we created
SOURCE_MARKER_KEY = "lobba_source"
RESERVATION_MARKER_KEY = "lobba_reservation_id"

# Refresh a little before the provider would reject the token
TOKEN_REFRESH_MARGIN = timedelta(minutes=5)
REQUEST_TIMEOUT = 30.0


@dataclass
class TokenSet:
    access_token: str
    expires_at: datetime
    refresh_token: Optional[str] = None


def is_own_event(event: Dict[str, Any]) -> bool:
    private = (event.get("extendedProperties") or {}).get("private") or {}
    return private.get(SOURCE_MARKER_KEY) == "true"


def parse_event_time(value: Optional[Dict[str, Any]]) -> Optional[datetime]:
    """``dateTime`` of an event boundary; None for all-day (``date``) events."""
    if not value or not value.get("dateTime"):
        return None
    parsed = datetime.fromisoformat(value["dateTime"].replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def expiration_from_millis(value: Any) -> datetime:
    return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)


class GoogleOAuth:
    """Authorization URL builder and token endpoint client."""

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.transport = transport
        self.client_id = settings.GOOGLE_CLIENT_ID
        self.client_secret = settings.GOOGLE_CLIENT_SECRET
        self.redirect_uri = settings.GOOGLE_REDIRECT_URI

    def _require_client(self):
        if not self.client_id or not self.client_secret:
            raise NotConfiguredError("Google OAuth client credentials are not configured")

    def authorization_url(self, business_id: int) -> str:
        self._require_client()
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": " ".join(SCOPES),
            "access_type": "offline",
            "prompt": "consent",
            "include_granted_scopes": "true",
            "state": str(business_id),
        }
        return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"

    async def _token_request(self, data: Dict[str, str]) -> Dict[str, Any]:
        self._require_client()
        payload = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            **data,
        }
        try:
            async with httpx.AsyncClient(
                transport=self.transport, timeout=REQUEST_TIMEOUT
            ) as client:
                response = await client.post(GOOGLE_TOKEN_URL, data=payload)
        except httpx.HTTPError as e:
            raise OAuthError(f"Token endpoint unreachable: {e}") from e

        if response.status_code != 200:
            logger.error(
                "Google token request failed",
                grant_type=data.get("grant_type"),
                status_code=response.status_code,
                body=response.text[:500],
            )
            raise OAuthError(f"Token request failed with HTTP {response.status_code}")

        tokens = response.json()
        if not tokens.get("access_token"):
            raise OAuthError("No access token in token response")
        return tokens

    @staticmethod
    def _token_set(tokens: Dict[str, Any]) -> TokenSet:
        return TokenSet(
            access_token=tokens["access_token"],
            refresh_token=tokens.get("refresh_token"),
            expires_at=utcnow() + timedelta(seconds=int(tokens.get("expires_in", 3600))),
        )

    async def exchange_code(self, code: str) -> TokenSet:
        tokens = await self._token_request(
            {
                "code": code,
                "grant_type": "authorization_code",
                "redirect_uri": self.redirect_uri,
            }
        )
        return self._token_set(tokens)

    async def refresh(self, refresh_token: str) -> TokenSet:
        tokens = await self._token_request(
            {"refresh_token": refresh_token, "grant_type": "refresh_token"}
        )
        return self._token_set(tokens)


class GoogleCalendarClient:
    """Thin async wrapper over the Calendar v3 endpoints used by sync."""

    def __init__(
        self,
        access_token: str,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.access_token = access_token
        self.transport = transport

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        try:
            async with httpx.AsyncClient(
                base_url=GOOGLE_CALENDAR_API,
                transport=self.transport,
                timeout=REQUEST_TIMEOUT,
                headers={"Authorization": f"Bearer {self.access_token}"},
            ) as client:
                response = await client.request(method, path, params=params, json=json)
        except httpx.HTTPError as e:
            raise UpstreamFailureError(f"Google Calendar unreachable: {e}") from e

        if response.status_code >= 400:
            logger.error(
                "Google Calendar request failed",
                method=method,
                path=path,
                status_code=response.status_code,
                body=response.text[:500],
            )
            raise UpstreamFailureError(
                f"Google Calendar {method} {path} failed with HTTP {response.status_code}"
            )

        if response.status_code == 204 or not response.content:
            return {}
        return response.json()

    async def list_calendars(self) -> List[Dict[str, Any]]:
        data = await self._request("GET", "/users/me/calendarList")
        return data.get("items", [])

    async def insert_event(
        self, calendar_id: str, event: Dict[str, Any]
    ) -> Dict[str, Any]:
        return await self._request(
            "POST",
            f"/calendars/{quote(calendar_id, safe='')}/events",
            params={"sendUpdates": "none"},
            json=event,
        )

    async def list_events(
        self, calendar_id: str, time_min: datetime, time_max: datetime
    ) -> List[Dict[str, Any]]:
        """Expanded events in ``[time_min, time_max)``, following pagination."""
        params = {
            "timeMin": time_min.isoformat(),
            "timeMax": time_max.isoformat(),
            "singleEvents": "true",
            "orderBy": "startTime",
            "showDeleted": "true",
            "maxResults": 250,
        }
        events: List[Dict[str, Any]] = []
        while True:
            data = await self._request(
                "GET", f"/calendars/{quote(calendar_id, safe='')}/events", params=params
            )
            events.extend(data.get("items", []))
            page_token = data.get("nextPageToken")
            if not page_token:
                return events
            params = {**params, "pageToken": page_token}

    async def watch_events(
        self,
        calendar_id: str,
        channel_id: str,
        address: str,
        token: Optional[str] = None,
    ) -> Dict[str, Any]:
        body = {"id": channel_id, "type": "web_hook", "address": address}
        if token:
            body["token"] = token
        return await self._request(
            "POST", f"/calendars/{quote(calendar_id, safe='')}/events/watch", json=body
        )

    async def stop_channel(self, channel_id: str, resource_id: str) -> None:
        await self._request(
            "POST", "/channels/stop", json={"id": channel_id, "resourceId": resource_id}
        )


class GoogleCalendarProvider:
    """Builds per-business calendar clients from persisted credentials."""

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.transport = transport
        self.oauth = GoogleOAuth(transport=transport)

    async def get_valid_client(
        self, db: AsyncSession, business: Business
    ) -> GoogleCalendarClient:
        if not business.google_calendar_enabled or not business.google_refresh_token:
            raise NotConfiguredError(
                f"Google Calendar is not connected for business {business.id}"
            )

        expiry = business.google_token_expiry
        if (
            not business.google_access_token
            or expiry is None
            or expiry <= utcnow() + TOKEN_REFRESH_MARGIN
        ):
            logger.info("Refreshing Google access token", business_id=business.id)
            tokens = await self.oauth.refresh(business.google_refresh_token)
            business.google_access_token = tokens.access_token
            business.google_token_expiry = tokens.expires_at
            if tokens.refresh_token:
                business.google_refresh_token = tokens.refresh_token
            await db.commit()

        return GoogleCalendarClient(business.google_access_token, transport=self.transport)
