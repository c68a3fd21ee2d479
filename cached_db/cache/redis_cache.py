"""
Redis caching layer for the cached document store.
"""

import json
from typing import Any, Optional

import redis.asyncio as redis
import structlog

from shared.errors import MissingCacheKey, InvalidTTL
from shared.metrics import MetricsCollector
from ..models import Entry, IdOrEntry, KeyFn, Validator, DEFAULT_CACHE_TTL, describe_id


class RedisCache:
    """Entry cache for one table.

    Keys are namespaced as ``table:cacheKey``; the cache key is derived by
    ``cache_key_fn`` and may differ from the store identifier.
    """

    def __init__(
        self,
        client: redis.Redis,
        table: str,
        cache_key_fn: KeyFn,
        identify: KeyFn,
        logger: structlog.BoundLogger,
        *,
        ttl: int = DEFAULT_CACHE_TTL,
        retrieve_validator: Optional[Validator] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.redis = client
        self.table = table
        self.cache_key_fn = cache_key_fn
        self.identify = identify
        self.ttl = ttl
        self.retrieve_validator = retrieve_validator
        self.metrics = metrics
        self.logger = logger.bind(component="cache")

    def cache_key(self, id_or_entry: IdOrEntry) -> str:
        """Namespaced Redis key for an identifier or entry."""
        key = self.cache_key_fn(id_or_entry)
        if key is None or key == "":
            raise MissingCacheKey(
                "Cache key cannot be undefined or empty",
                details={"table": self.table, "id": describe_id(id_or_entry)},
            )
        return f"{self.table}:{key}"

    def _failed(self, event: str, err: Exception, req_id: Optional[str], **context):
        self.logger.error(event, req_id=req_id, error=str(err), error_type=type(err).__name__, **context)
        if self.metrics is not None:
            self.metrics.record_error(type(err).__name__, self.table)

    async def set(self, entry: Entry, ttl: Optional[int] = None, *, req_id: Optional[str] = None) -> Entry:
        """Cache ``entry`` and set its expiration."""
        ttl = self.ttl if ttl is None else ttl
        if isinstance(ttl, bool) or not isinstance(ttl, int) or ttl <= 0:
            raise InvalidTTL(details={"table": self.table, "ttl": ttl})
        uid = None
        try:
            cache_key = self.cache_key(entry)
            uid = self.identify(entry)
            redis_result = await self.redis.set(cache_key, json.dumps(entry))
            self.logger.debug("Cached entry", req_id=req_id, id=uid, redis_result=redis_result)

            redis_result = await self.redis.expire(cache_key, ttl)
        except Exception as err:
            self._failed("Cannot cache", err, req_id, id=uid)
            raise

        self.logger.debug("Set cache TTL", req_id=req_id, id=uid, ttl=ttl, redis_result=redis_result)
        return entry

    async def fetch(self, id: IdOrEntry, *, req_id: Optional[str] = None) -> Optional[Entry]:
        """Read an entry; None on a miss or when validation rejects it."""
        try:
            cache_key = self.cache_key(id)
            cached_data = await self.redis.get(cache_key)
            entry = json.loads(cached_data) if cached_data else None
        except Exception as err:
            self._failed("Cannot fetch", err, req_id, id=describe_id(id))
            raise

        if not entry:
            self.logger.debug("Not found in cache", req_id=req_id, cache_key=cache_key)
            self._record_access(hit=False)
            return None

        self.logger.debug("Fetched cache", req_id=req_id, cache_key=cache_key)
        if self.retrieve_validator and not self.retrieve_validator(entry):
            self.logger.warning(
                "Failed validation during fetch", req_id=req_id, cache_key=cache_key, select_validation="failed"
            )
            self._record_access(hit=False)
            return None

        self._record_access(hit=True)
        return entry

    def _key_or_none(self, id_or_entry: Any) -> Optional[str]:
        if id_or_entry is None:
            return None
        try:
            return self.cache_key(id_or_entry)
        except MissingCacheKey:
            return None

    async def invalidate(
        self, id: IdOrEntry, *, stored: Optional[Entry] = None, req_id: Optional[str] = None
    ) -> Any:
        """Drop the cached entry; returns ``id`` whether or not it was cached.

        With ``stored``, the key derived from the stored entry is dropped as
        well, since the cache key may come from fields ``id`` does not carry.
        """
        try:
            cache_keys = [k for k in (self._key_or_none(stored), self._key_or_none(id)) if k]
            if not cache_keys:
                self.cache_key(id)
            cache_keys = list(dict.fromkeys(cache_keys))
            redis_result = await self.redis.delete(*cache_keys)
        except Exception as err:
            self._failed("Cannot invalidate", err, req_id, id=describe_id(id))
            raise

        self.logger.debug("Invalidated cache", req_id=req_id, cache_keys=cache_keys, redis_result=redis_result)
        return id

    def _record_access(self, hit: bool):
        if self.metrics is not None:
            self.metrics.record_cache_access(self.table, hit)
