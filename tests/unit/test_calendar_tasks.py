from unittest.mock import patch

from celery.schedules import crontab

from app.core.celery import celery_app
from app.core.errors import NotConfiguredError, SyncInProgressError
from app.schemas.calendar import OutboundSyncResult, WebhookMaintenanceSummary
from app.tasks import calendar_tasks


class TestCalendarTasks:
    def test_maintenance_is_scheduled_daily_at_three(self):
        entry = celery_app.conf.beat_schedule["google-calendar-webhook-maintenance"]

        assert entry["task"] == "app.tasks.calendar_tasks.run_webhook_maintenance"
        assert entry["schedule"] == crontab(hour=3, minute=0)

    def test_maintenance_returns_summary(self):
        summary = WebhookMaintenanceSummary(renewed=2, failed=1, cleaned=0)

        with patch.object(calendar_tasks, "_run_with_session", return_value=summary):
            result = calendar_tasks.run_webhook_maintenance()

        assert result == {"renewed": 2, "failed": 1, "cleaned": 0, "errors": []}

    def test_push_success(self):
        outbound = OutboundSyncResult(pushed=1, event_ids=["evt-1"])

        with patch.object(calendar_tasks, "_run_with_session", return_value=outbound):
            result = calendar_tasks.push_reservation_sync(5)

        assert result["status"] == "success"
        assert result["pushed"] == 1

    def test_full_sync_skipped_while_locked(self):
        with patch.object(
            calendar_tasks, "_run_with_session", side_effect=SyncInProgressError()
        ):
            result = calendar_tasks.sync_business_calendar(5)

        assert result == {"status": "skipped", "reason": "sync_in_progress"}

    def test_unconfigured_business_is_not_retried(self):
        with patch.object(
            calendar_tasks,
            "_run_with_session",
            side_effect=NotConfiguredError("No Google Calendar selected for business 5"),
        ):
            result = calendar_tasks.push_reservation_sync(5)

        assert result == {
            "status": "failed",
            "reason": "No Google Calendar selected for business 5",
        }


class TestQueueOutboundSync:
    async def test_queues_for_synced_business(self, calendar_business):
        with patch.object(calendar_tasks, "push_reservation_sync") as task:
            queued = await calendar_tasks.queue_outbound_sync(calendar_business)

        assert queued is True
        task.delay.assert_called_once_with(calendar_business.id)

    async def test_skips_business_without_calendar(self, sample_business):
        with patch.object(calendar_tasks, "push_reservation_sync") as task:
            queued = await calendar_tasks.queue_outbound_sync(sample_business)

        assert queued is False
        task.delay.assert_not_called()

    async def test_broker_error_is_logged_not_raised(self, calendar_business):
        with patch.object(calendar_tasks, "push_reservation_sync") as task:
            task.delay.side_effect = ConnectionError("broker down")
            queued = await calendar_tasks.queue_outbound_sync(calendar_business)

        assert queued is False
