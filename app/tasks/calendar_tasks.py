import asyncio

import structlog

from app.core.celery import celery_app
from app.core.database import AsyncSessionLocal, engine
from app.core.errors import (
    NotConfiguredError,
    NotFoundError,
    SyncInProgressError,
    UpstreamFailureError,
)
from app.core.redis import redis_client
from app.services.calendar_sync import CalendarSyncService
from app.services.webhook_lifecycle import WebhookLifecycleManager

logger = structlog.get_logger(__name__)


def _run_with_session(operation):
    """Run ``operation(db)`` on a fresh event loop with its own session.

    Pools are disposed afterwards because their connections belong to the
    loop that created them.
    """

    async def runner():
        try:
            async with AsyncSessionLocal() as db:
                return await operation(db)
        finally:
            await redis_client.close()
            await engine.dispose()

    return asyncio.run(runner())


@celery_app.task(bind=True, max_retries=3)
def sync_business_calendar(self, business_id: int):
    """Full two-way sync for one business."""
    try:
        result = _run_with_session(
            lambda db: CalendarSyncService(db).full_sync(business_id)
        )
    except SyncInProgressError:
        logger.info("Calendar sync skipped, already running", business_id=business_id)
        return {"status": "skipped", "reason": "sync_in_progress"}
    except (NotConfiguredError, NotFoundError) as exc:
        logger.warning(
            "Calendar sync not possible", business_id=business_id, error=str(exc)
        )
        return {"status": "failed", "reason": str(exc)}
    except UpstreamFailureError as exc:
        logger.error("Calendar sync failed", business_id=business_id, error=str(exc))
        raise self.retry(exc=exc, countdown=60 * (self.request.retries + 1))

    return {"status": "success", **result.model_dump(mode="json")}


@celery_app.task(bind=True, max_retries=3)
def push_reservation_sync(self, business_id: int):
    """Outbound-only sync queued right after a booking changes."""
    try:
        result = _run_with_session(
            lambda db: CalendarSyncService(db).push_reservations(business_id)
        )
    except SyncInProgressError as exc:
        # A running sync may have selected its rows before this booking existed
        raise self.retry(exc=exc, countdown=30)
    except (NotConfiguredError, NotFoundError) as exc:
        return {"status": "failed", "reason": str(exc)}
    except UpstreamFailureError as exc:
        logger.error("Outbound push failed", business_id=business_id, error=str(exc))
        raise self.retry(exc=exc, countdown=60 * (self.request.retries + 1))

    return {"status": "success", **result.model_dump(mode="json")}


@celery_app.task
def run_webhook_maintenance():
    """Daily renewal and cleanup of Google push-notification channels."""
    logger.info("Starting scheduled webhook maintenance")
    summary = _run_with_session(
        lambda db: WebhookLifecycleManager(db).run_maintenance()
    )
    return summary.model_dump(mode="json")


async def queue_outbound_sync(business) -> bool:
    """Queue ``push_reservation_sync`` for a business that syncs to Google.

    Returns False when the business does not sync or the broker refuses the
    message; the booking stays committed and the next full sync pushes it.
    """
    if not (business.google_sync_enabled and business.google_calendar_id):
        return False
    try:
        push_reservation_sync.delay(business.id)
    except Exception as e:
        logger.warning(
            "Could not queue outbound calendar sync",
            business_id=business.id,
            error=str(e),
        )
        return False
    return True
