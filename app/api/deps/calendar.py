from app.core.redis import RedisClient, redis_client
from app.services.google_calendar import GoogleCalendarProvider


def get_calendar_provider() -> GoogleCalendarProvider:
    """Fresh provider per request; credentials are loaded per business."""
    return GoogleCalendarProvider()


def get_sync_lock() -> RedisClient:
    return redis_client
