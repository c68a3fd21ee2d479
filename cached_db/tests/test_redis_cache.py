"""
Unit tests for the Redis cache gateway.
"""

import json
import pytest
import structlog
from structlog.testing import capture_logs
from unittest.mock import AsyncMock, MagicMock
from prometheus_client import CollectorRegistry

from cached_db.cache.redis_cache import RedisCache
from cached_db.models import field_identifier
from shared.errors import MissingCacheKey, MissingIdentifier, InvalidTTL
from shared.metrics import MetricsCollector
from shared.test_helpers import EntryFactory


def _identify(id_or_entry):
    identifier = field_identifier("uuid")(id_or_entry)
    if not identifier:
        raise MissingIdentifier()
    return identifier


class TestRedisCache:
    """Test cases for RedisCache."""

    @pytest.fixture
    def redis_client(self):
        """Mock redis.asyncio client."""
        client = AsyncMock()
        client.set.return_value = True
        client.expire.return_value = True
        client.get.return_value = None
        client.delete.return_value = 1
        return client

    @pytest.fixture
    def cache(self, redis_client):
        """Create RedisCache instance."""
        return RedisCache(
            redis_client,
            "unittest",
            field_identifier("uuid"),
            _identify,
            structlog.get_logger("test.cache"),
        )

    @pytest.mark.asyncio
    async def test_set_uses_namespaced_key_and_ttl(self, cache, redis_client):
        entry = EntryFactory.standard_entry()

        result = await cache.set(entry)

        assert result == entry
        redis_client.set.assert_awaited_once_with("unittest:1234567890", json.dumps(entry))
        redis_client.expire.assert_awaited_once_with("unittest:1234567890", 7200)

    @pytest.mark.asyncio
    async def test_set_with_explicit_ttl(self, cache, redis_client):
        await cache.set(EntryFactory.standard_entry(), 60)
        redis_client.expire.assert_awaited_once_with("unittest:1234567890", 60)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("ttl", [0, -5, 1.5, True])
    async def test_set_rejects_invalid_ttl(self, cache, redis_client, ttl):
        with pytest.raises(InvalidTTL) as exc_info:
            await cache.set(EntryFactory.standard_entry(), ttl)

        assert exc_info.value.details == {"table": "unittest", "ttl": ttl}
        redis_client.set.assert_not_awaited()
        redis_client.expire.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_set_without_cache_key(self, cache, redis_client):
        with pytest.raises(MissingCacheKey):
            await cache.set(EntryFactory.entry_without_id())

        redis_client.set.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_set_failure_is_logged_and_raised(self, cache, redis_client):
        redis_client.set.side_effect = ConnectionError("Redis connection failed")

        with capture_logs() as logs:
            with pytest.raises(ConnectionError):
                await cache.set(EntryFactory.standard_entry(), req_id="req-1")

        errors = [log for log in logs if log["log_level"] == "error"]
        assert errors[0]["event"] == "Cannot cache"
        assert errors[0]["req_id"] == "req-1"
        assert errors[0]["id"] == "1234567890"

    @pytest.mark.asyncio
    async def test_fetch_hit(self, cache, redis_client):
        entry = EntryFactory.standard_entry()
        redis_client.get.return_value = json.dumps(entry)

        result = await cache.fetch({"uuid": "1234567890"})

        assert result == entry
        redis_client.get.assert_awaited_once_with("unittest:1234567890")

    @pytest.mark.asyncio
    async def test_fetch_accepts_plain_identifier(self, cache, redis_client):
        redis_client.get.return_value = json.dumps(EntryFactory.standard_entry()).encode()

        result = await cache.fetch("1234567890")

        assert result["foo"] == "bar"

    @pytest.mark.asyncio
    async def test_fetch_miss(self, cache, redis_client):
        result = await cache.fetch({"uuid": "1141516151"})
        assert result is None

    @pytest.mark.asyncio
    async def test_fetch_without_cache_key(self, cache, redis_client):
        with pytest.raises(MissingCacheKey):
            await cache.fetch({})

        redis_client.get.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_fetch_rejected_by_validator(self, redis_client):
        cache = RedisCache(
            redis_client,
            "unittest",
            field_identifier("uuid"),
            _identify,
            structlog.get_logger("test.cache"),
            retrieve_validator=lambda entry: entry["foo"] != "bar",
        )
        redis_client.get.return_value = json.dumps(EntryFactory.standard_entry())

        with capture_logs() as logs:
            result = await cache.fetch({"uuid": "1234567890"})

        assert result is None
        assert any(log["event"] == "Failed validation during fetch" for log in logs)

    @pytest.mark.asyncio
    async def test_invalidate_returns_input(self, cache, redis_client):
        key = {"uuid": "1234567890"}

        result = await cache.invalidate(key)

        assert result is key
        redis_client.delete.assert_awaited_once_with("unittest:1234567890")

    @pytest.mark.asyncio
    async def test_invalidate_with_stored_entry(self, redis_client):
        cache = RedisCache(
            redis_client,
            "sessions",
            lambda e: e.get("token") if isinstance(e, dict) else None,
            _identify,
            structlog.get_logger("test.cache"),
        )

        assert await cache.invalidate("sess-1", stored=EntryFactory.session_entry()) == "sess-1"
        redis_client.delete.assert_awaited_once_with("sessions:tok-abc")

    @pytest.mark.asyncio
    async def test_invalidate_drops_input_and_stored_keys(self, cache, redis_client):
        await cache.invalidate("old-id", stored=EntryFactory.standard_entry())
        redis_client.delete.assert_awaited_once_with("unittest:1234567890", "unittest:old-id")

    @pytest.mark.asyncio
    async def test_invalidate_without_any_key(self, cache, redis_client):
        with pytest.raises(MissingCacheKey):
            await cache.invalidate({}, stored={"foo": "bar"})

        redis_client.delete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_invalidate_missing_key_still_acknowledged(self, cache, redis_client):
        redis_client.delete.return_value = 0
        assert await cache.invalidate("nope") == "nope"

    @pytest.mark.asyncio
    async def test_separate_cache_key_function(self, redis_client):
        cache = RedisCache(
            redis_client,
            "sessions",
            field_identifier("token"),
            _identify,
            structlog.get_logger("test.cache"),
            ttl=300,
        )
        entry = EntryFactory.session_entry()

        await cache.set(entry)

        redis_client.set.assert_awaited_once_with("sessions:tok-abc", json.dumps(entry))
        redis_client.expire.assert_awaited_once_with("sessions:tok-abc", 300)

    @pytest.mark.asyncio
    async def test_hit_and_miss_metrics(self, redis_client):
        registry = CollectorRegistry()
        metrics = MetricsCollector("cached_db", registry)
        cache = RedisCache(
            redis_client,
            "unittest",
            field_identifier("uuid"),
            _identify,
            structlog.get_logger("test.cache"),
            metrics=metrics,
        )

        await cache.fetch("missing")
        redis_client.get.return_value = json.dumps(EntryFactory.standard_entry())
        await cache.fetch("1234567890")

        labels = {"table": "unittest"}
        assert registry.get_sample_value("cache_requests_total", {**labels, "result": "miss"}) == 1
        assert registry.get_sample_value("cache_requests_total", {**labels, "result": "hit"}) == 1


def test_bound_logger_tags_component():
    logger = MagicMock()
    RedisCache(AsyncMock(), "unittest", field_identifier("uuid"), _identify, logger)
    logger.bind.assert_called_once_with(component="cache")
