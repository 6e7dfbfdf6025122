from typing import Optional
from urllib.parse import quote

import structlog
from fastapi import APIRouter, Depends, Header, Query
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps.calendar import get_calendar_provider, get_sync_lock
from app.core.config import settings
from app.core.database import get_db
from app.core.errors import SchedulingError, to_http_exception
from app.core.redis import RedisClient
from app.schemas.calendar import (
    AuthorizationUrl,
    CalendarList,
    FullSyncResult,
    SetPrimaryCalendarRequest,
    WebhookAck,
    WebhookChannel,
    WebhookSetupRequest,
)
from app.services.calendar_sync import CalendarSyncService
from app.services.google_calendar import GoogleCalendarProvider
from app.services.webhook_lifecycle import WebhookLifecycleManager

logger = structlog.get_logger(__name__)

router = APIRouter()


def get_sync_service(
    db: AsyncSession = Depends(get_db),
    provider: GoogleCalendarProvider = Depends(get_calendar_provider),
    lock: RedisClient = Depends(get_sync_lock),
) -> CalendarSyncService:
    return CalendarSyncService(db, provider=provider, lock=lock)


def get_webhook_manager(
    db: AsyncSession = Depends(get_db),
    provider: GoogleCalendarProvider = Depends(get_calendar_provider),
    sync_service: CalendarSyncService = Depends(get_sync_service),
) -> WebhookLifecycleManager:
    return WebhookLifecycleManager(db, provider=provider, sync_service=sync_service)


def _settings_redirect(business_id: Optional[int], query: str) -> RedirectResponse:
    base = settings.FRONTEND_URL.rstrip("/")
    if business_id is None:
        return RedirectResponse(f"{base}/?{query}")
    return RedirectResponse(f"{base}/salon/{business_id}/settings?{query}")


@router.get("/auth/{business_id}", response_model=AuthorizationUrl)
async def initiate_calendar_auth(
    business_id: int, sync_service: CalendarSyncService = Depends(get_sync_service)
):
    """Google consent URL for connecting the business calendar."""
    try:
        url = await sync_service.initiate_auth(business_id)
    except SchedulingError as e:
        raise to_http_exception(e)
    return AuthorizationUrl(authorization_url=url)


@router.get("/callback")
async def calendar_auth_callback(
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    sync_service: CalendarSyncService = Depends(get_sync_service),
):
    """OAuth redirect target; always answers with a redirect to the settings page."""
    business_id = int(state) if state and state.isdigit() else None

    if error:
        logger.warning("Google OAuth denied", business_id=business_id, error=error)
        return _settings_redirect(
            business_id, f"error=google_auth_failed&reason={quote(error)}"
        )

    if not code or business_id is None:
        return _settings_redirect(business_id, "error=google_auth_failed")

    try:
        await sync_service.handle_auth_callback(code, business_id)
    except SchedulingError as e:
        logger.error("Google OAuth callback failed", business_id=business_id, error=str(e))
        return _settings_redirect(business_id, "error=google_auth_failed")

    return _settings_redirect(business_id, "google_calendar=connected")


@router.post("/webhook", response_model=WebhookAck)
async def receive_webhook(
    x_goog_channel_id: Optional[str] = Header(None),
    x_goog_resource_id: Optional[str] = Header(None),
    x_goog_resource_state: Optional[str] = Header(None),
    x_goog_channel_token: Optional[str] = Header(None),
    manager: WebhookLifecycleManager = Depends(get_webhook_manager),
):
    """Push notification from Google: re-pull the affected business's events."""
    try:
        return await manager.handle_notification(
            x_goog_channel_id,
            x_goog_resource_id,
            x_goog_resource_state,
            channel_token=x_goog_channel_token,
        )
    except SchedulingError as e:
        raise to_http_exception(e)


@router.get("/{business_id}/calendars", response_model=CalendarList)
async def list_calendars(
    business_id: int, sync_service: CalendarSyncService = Depends(get_sync_service)
):
    try:
        calendars = await sync_service.list_calendars(business_id)
    except SchedulingError as e:
        raise to_http_exception(e)
    return CalendarList(calendars=calendars)


@router.put("/{business_id}/calendar")
async def set_primary_calendar(
    business_id: int,
    request: SetPrimaryCalendarRequest,
    sync_service: CalendarSyncService = Depends(get_sync_service),
):
    try:
        await sync_service.set_primary_calendar(business_id, request.calendar_id)
    except SchedulingError as e:
        raise to_http_exception(e)
    return {"success": True, "calendar_id": request.calendar_id}


@router.post("/{business_id}/sync", response_model=FullSyncResult)
async def trigger_full_sync(
    business_id: int, sync_service: CalendarSyncService = Depends(get_sync_service)
):
    """Push pending reservations, then pull external events as blocks."""
    try:
        return await sync_service.full_sync(business_id)
    except SchedulingError as e:
        raise to_http_exception(e)


@router.post("/{business_id}/webhook", response_model=WebhookChannel)
async def setup_webhook(
    business_id: int,
    request: Optional[WebhookSetupRequest] = None,
    manager: WebhookLifecycleManager = Depends(get_webhook_manager),
):
    callback_url = request.callback_url if request else None
    try:
        return await manager.setup_webhook(business_id, callback_url)
    except SchedulingError as e:
        raise to_http_exception(e)


@router.post("/{business_id}/webhook/renew", response_model=WebhookChannel)
async def force_webhook_renewal(
    business_id: int, manager: WebhookLifecycleManager = Depends(get_webhook_manager)
):
    try:
        return await manager.force_renewal(business_id)
    except SchedulingError as e:
        raise to_http_exception(e)


@router.delete("/{business_id}")
async def disconnect_calendar(
    business_id: int, sync_service: CalendarSyncService = Depends(get_sync_service)
):
    """Unlink Google Calendar and forget its credentials."""
    try:
        await sync_service.disconnect(business_id)
    except SchedulingError as e:
        raise to_http_exception(e)
    return {"success": True}
