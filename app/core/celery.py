from celery import Celery
from celery.schedules import crontab
from celery.signals import setup_logging
import structlog

from app.core.config import settings
from app.core.logging import configure_logging

logger = structlog.get_logger(__name__)

# Create Celery instance
celery_app = Celery(
    "salon_scheduler",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["app.tasks.calendar_tasks"],
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    result_expires=3600,
    task_routes={
        "app.tasks.calendar_tasks.*": {"queue": "calendar"},
    },
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    worker_max_tasks_per_child=1000,
    beat_schedule={
        "google-calendar-webhook-maintenance": {
            "task": "app.tasks.calendar_tasks.run_webhook_maintenance",
            "schedule": crontab(hour=3, minute=0),
        },
    },
)


@setup_logging.connect
def configure_worker_logging(**kwargs):
    """Route worker logs through the same structlog pipeline as the API."""
    configure_logging()
    logger.info("Celery worker logging configured")
