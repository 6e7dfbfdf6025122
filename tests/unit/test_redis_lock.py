from unittest.mock import AsyncMock

import pytest

from app.core.errors import SyncInProgressError, UpstreamFailureError
from app.core.redis import RedisClient


@pytest.fixture
def redis_mock():
    client = AsyncMock()
    client.set.return_value = True
    client.delete.return_value = 1
    return client


@pytest.fixture
def lock_client(redis_mock, monkeypatch):
    lock = RedisClient()
    monkeypatch.setattr(lock, "get_redis", AsyncMock(return_value=redis_mock))
    return lock


class TestCalendarSyncLock:
    async def test_acquires_and_releases(self, lock_client, redis_mock):
        async with lock_client.calendar_sync_lock(7, expire=60):
            args, kwargs = redis_mock.set.call_args
            assert args[0] == "calendar_sync_lock:7"
            assert kwargs == {"nx": True, "ex": 60}
            token = args[1]
            redis_mock.get.return_value = token

        redis_mock.delete.assert_awaited_once_with("calendar_sync_lock:7")

    async def test_held_lock_raises(self, lock_client, redis_mock):
        redis_mock.set.return_value = None

        with pytest.raises(SyncInProgressError):
            async with lock_client.calendar_sync_lock(7):
                pass

        redis_mock.delete.assert_not_awaited()

    async def test_released_after_error_in_body(self, lock_client, redis_mock):
        with pytest.raises(RuntimeError):
            async with lock_client.calendar_sync_lock(7):
                redis_mock.get.return_value = redis_mock.set.call_args[0][1]
                raise RuntimeError("sync blew up")

        redis_mock.delete.assert_awaited_once()

    async def test_foreign_token_is_not_released(self, lock_client, redis_mock):
        redis_mock.get.return_value = "someone-else"

        assert await lock_client.release_lock("calendar_sync_lock:7", "mine") is False
        redis_mock.delete.assert_not_awaited()

    async def test_redis_outage_is_an_upstream_failure(self, lock_client, redis_mock):
        redis_mock.set.side_effect = ConnectionError("redis down")

        with pytest.raises(UpstreamFailureError, match="redis down"):
            async with lock_client.calendar_sync_lock(7):
                pass

        redis_mock.delete.assert_not_awaited()
