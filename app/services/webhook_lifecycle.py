"""
Google Calendar push-notification channel lifecycle.

``plan_webhook_maintenance`` is a pure function of the channel states and
``now``; ``WebhookLifecycleManager`` carries out the plan, registers channels
and reconciles incoming notifications.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Iterable, List, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.errors import (
    InvalidInputError,
    NotConfiguredError,
    NotFoundError,
    SyncInProgressError,
)
from app.models.business import Business
from app.models.types import utcnow
from app.schemas.calendar import (
    WebhookAck,
    WebhookChannel,
    WebhookMaintenanceError,
    WebhookMaintenanceSummary,
)
from app.services.business import BusinessService
from app.services.calendar_sync import CalendarSyncService
from app.services.google_calendar import GoogleCalendarProvider, expiration_from_millis
from app.services.notifications import NotificationEmitter

logger = structlog.get_logger(__name__)

HANDSHAKE_STATE = "sync"


class ChannelStatus(Enum):
    NONE = "none"
    ACTIVE = "active"
    EXPIRING_SOON = "expiring_soon"
    EXPIRED = "expired"


@dataclass(frozen=True)
class ChannelState:
    business_id: int
    channel_id: Optional[str]
    expires_at: Optional[datetime]
    sync_enabled: bool
    calendar_enabled: bool

    @classmethod
    def from_business(cls, business: Business) -> "ChannelState":
        return cls(
            business_id=business.id,
            channel_id=business.google_webhook_channel_id,
            expires_at=business.google_webhook_expiration,
            sync_enabled=business.google_sync_enabled,
            calendar_enabled=business.google_calendar_enabled,
        )


@dataclass
class MaintenancePlan:
    renew: List[int] = field(default_factory=list)
    cleanup: List[int] = field(default_factory=list)


def channel_status(
    channel: ChannelState,
    now: datetime,
    renewal_threshold: timedelta = timedelta(hours=48),
) -> ChannelStatus:
    if channel.channel_id is None or channel.expires_at is None:
        return ChannelStatus.NONE
    if channel.expires_at <= now:
        return ChannelStatus.EXPIRED
    if channel.expires_at < now + renewal_threshold:
        return ChannelStatus.EXPIRING_SOON
    return ChannelStatus.ACTIVE


def plan_webhook_maintenance(
    channels: Iterable[ChannelState],
    now: datetime,
    renewal_threshold: timedelta = timedelta(hours=48),
    cleanup_grace: timedelta = timedelta(hours=24),
) -> MaintenancePlan:
    """
    Decide which channels to renew and which to clear.

    Renew: a channel expiring within ``renewal_threshold`` (or already
    expired) whose business still has sync and the calendar enabled.
    Clean up: a channel that expired more than ``cleanup_grace`` ago.
    A channel can appear in both lists; renewals run first and a successful
    one takes it out of the cleanup pass.
    """
    plan = MaintenancePlan()
    for channel in channels:
        status = channel_status(channel, now, renewal_threshold)
        if status is ChannelStatus.NONE:
            continue

        if (
            status in (ChannelStatus.EXPIRING_SOON, ChannelStatus.EXPIRED)
            and channel.sync_enabled
            and channel.calendar_enabled
        ):
            plan.renew.append(channel.business_id)

        if channel.expires_at < now - cleanup_grace:
            plan.cleanup.append(channel.business_id)

    return plan


class WebhookLifecycleManager:
    """Registers, renews, reconciles and retires push-notification channels."""

    def __init__(
        self,
        db: AsyncSession,
        provider: Optional[GoogleCalendarProvider] = None,
        sync_service: Optional[CalendarSyncService] = None,
        notifier: Optional[NotificationEmitter] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.provider = provider or GoogleCalendarProvider()
        self.sync_service = sync_service or CalendarSyncService(db, provider=self.provider)
        self.notifier = notifier or NotificationEmitter(db)
        self.clock = clock
        self.business_service = BusinessService(db)

    async def setup_webhook(
        self, business_id: int, callback_url: Optional[str] = None
    ) -> WebhookChannel:
        business = await self.business_service.get_business(business_id)
        if not business.google_calendar_id:
            raise NotConfiguredError(
                f"No Google Calendar selected for business {business_id}"
            )

        client = await self.provider.get_valid_client(self.db, business)
        channel_id = f"lobba-{business_id}-{int(self.clock().timestamp() * 1000)}"

        response = await client.watch_events(
            business.google_calendar_id,
            channel_id,
            callback_url or settings.webhook_callback_url,
            token=settings.GOOGLE_WEBHOOK_SECRET,
        )

        channel = WebhookChannel(
            channel_id=response.get("id", channel_id),
            resource_id=response["resourceId"],
            expires_at=expiration_from_millis(response["expiration"]),
        )
        business.google_webhook_channel_id = channel.channel_id
        business.google_webhook_resource_id = channel.resource_id
        business.google_webhook_expiration = channel.expires_at
        await self.db.commit()

        logger.info(
            "Webhook channel registered",
            business_id=business_id,
            channel_id=channel.channel_id,
            expires_at=channel.expires_at.isoformat(),
        )
        return channel

    async def handle_notification(
        self,
        channel_id: Optional[str],
        resource_id: Optional[str],
        resource_state: Optional[str],
        channel_token: Optional[str] = None,
    ) -> WebhookAck:
        if not channel_id or not resource_id:
            raise InvalidInputError("Missing webhook headers")

        secret = settings.GOOGLE_WEBHOOK_SECRET
        if secret and channel_token is not None and channel_token != secret:
            logger.warning("Webhook token mismatch", channel_id=channel_id)
            raise InvalidInputError("Invalid channel token")

        business = await self.business_service.get_business_by_channel(
            channel_id, resource_id
        )
        if business is None:
            logger.warning(
                "Webhook for unknown channel",
                channel_id=channel_id,
                resource_id=resource_id,
            )
            raise NotFoundError("Webhook not found")

        if resource_state == HANDSHAKE_STATE:
            logger.info("Webhook handshake acknowledged", business_id=business.id)
            return WebhookAck(business_id=business.id, synced=False)

        try:
            await self.sync_service.pull_events(business.id)
        except SyncInProgressError:
            logger.info("Inbound sync already running", business_id=business.id)
            return WebhookAck(business_id=business.id, synced=False)

        return WebhookAck(business_id=business.id, synced=True)

    async def _channel_states(self) -> List[ChannelState]:
        result = await self.db.execute(
            select(Business).where(Business.google_webhook_channel_id.is_not(None))
        )
        return [ChannelState.from_business(b) for b in result.scalars().all()]

    async def _plan(self, now: datetime) -> MaintenancePlan:
        return plan_webhook_maintenance(
            await self._channel_states(),
            now,
            renewal_threshold=timedelta(hours=settings.WEBHOOK_RENEWAL_THRESHOLD_HOURS),
            cleanup_grace=timedelta(hours=settings.WEBHOOK_CLEANUP_GRACE_HOURS),
        )

    async def _notify_renewal_failed(self, business_id: int, error: str):
        try:
            business = await self.business_service.get_business(business_id)
            await self.notifier.webhook_renewal_failed(business, error)
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            logger.error(
                "Could not record webhook renewal failure",
                business_id=business_id,
                error=str(e),
            )

    async def renew_expiring(self, summary: WebhookMaintenanceSummary):
        plan = await self._plan(self.clock())
        if not plan.renew:
            logger.info("No webhooks need renewal")
            return

        for business_id in plan.renew:
            try:
                await self.setup_webhook(business_id)
                summary.renewed += 1
            except Exception as e:
                await self.db.rollback()
                summary.failed += 1
                summary.errors.append(
                    WebhookMaintenanceError(business_id=business_id, error=str(e))
                )
                logger.error(
                    "Webhook renewal failed",
                    business_id=business_id,
                    error=str(e),
                )
                await self._notify_renewal_failed(business_id, str(e))

    async def cleanup_expired(self, summary: WebhookMaintenanceSummary):
        plan = await self._plan(self.clock())

        for business_id in plan.cleanup:
            try:
                business = await self.business_service.get_business(business_id)
                business.clear_webhook_channel()
                business.google_sync_enabled = False
                await self.notifier.calendar_sync_disabled(business)
                await self.db.commit()
            except Exception as e:
                await self.db.rollback()
                summary.errors.append(
                    WebhookMaintenanceError(business_id=business_id, error=str(e))
                )
                logger.error(
                    "Webhook cleanup failed", business_id=business_id, error=str(e)
                )
                continue

            summary.cleaned += 1
            logger.warning("Expired webhook cleaned up", business_id=business_id)

    async def run_maintenance(self) -> WebhookMaintenanceSummary:
        """Daily sweep: renew what is about to expire, then clear dead channels."""
        summary = WebhookMaintenanceSummary()
        await self.renew_expiring(summary)
        await self.cleanup_expired(summary)

        logger.info(
            "Webhook maintenance completed",
            renewed=summary.renewed,
            failed=summary.failed,
            cleaned=summary.cleaned,
        )
        return summary

    async def force_renewal(self, business_id: int) -> WebhookChannel:
        business = await self.business_service.get_business(business_id)
        if not business.google_sync_enabled:
            raise NotConfiguredError(
                f"Calendar sync is not enabled for business {business_id}"
            )
        return await self.setup_webhook(business_id)
