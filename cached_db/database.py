"""
Cache-aside CRUD coordinator.

Reads go through the cache and fall back to the store; writes commit to the
store first and only then refresh or invalidate the cache. Nothing here
undoes a store write when the following cache call fails: the error
propagates and the next ``load`` repairs the cache.

Concurrent calls for the same identifier are not ordered against each other.
Two concurrent ``update`` calls may interleave their store writes and cache
refreshes, and whichever ``load`` finishes last decides the cached copy.
"""

import copy
from typing import Any, Callable, List, Optional, Union

import structlog
from pydantic import ValidationError

from shared.errors import MissingDependency, StoreOperationFailed
from shared.metrics import MetricsCollector
from .cache.redis_cache import RedisCache
from .identifiers import IdentifierGenerator, DEFAULT_MAX_ATTEMPTS
from .models import (
    CachedDatabaseOptions, Entry, IdOrEntry, KeyFn, Validator, Patch, Change,
    as_patch, describe_id, NOT_FOUND_ERROR,
)
from .persistence.gateway import StoreGateway


STORE_METHODS = ("get", "insert", "update", "delete")
CACHE_METHODS = ("set", "get", "delete", "expire")


def _require(dependency: Any, name: str, methods=()) -> Any:
    if dependency is None:
        raise MissingDependency(f"Missing {name}", details={"dependency": name})
    missing = [m for m in methods if not callable(getattr(dependency, m, None))]
    if missing:
        raise MissingDependency(
            f"{name} must provide {', '.join(missing)}",
            details={"dependency": name, "missing": missing},
        )
    return dependency


class CachedDatabase:
    """CRUD over one table of the document store with a Redis read cache.

    The store client and Redis client are shared handles owned by the
    process; this class never closes or recreates them.
    """

    def __init__(
        self,
        *,
        store: Any,
        cache: Any,
        table: str,
        logger: structlog.BoundLogger,
        retrieve_validator: Optional[Validator] = None,
        cache_key_fn: Optional[KeyFn] = None,
        entry_id_fn: Optional[KeyFn] = None,
        id_field: Optional[str] = None,
        id_prefix: Optional[str] = None,
        cache_ttl: Optional[int] = None,
        metrics: Optional[MetricsCollector] = None,
        max_id_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ):
        _require(cache, "redis instance", CACHE_METHODS)
        _require(store, "database connection", STORE_METHODS)
        if not table:
            raise MissingDependency("Missing table", details={"dependency": "table"})
        _require(logger, "structured logger", ("bind",))

        options = {
            "table": table,
            "retrieve_validator": retrieve_validator,
            "cache_key_fn": cache_key_fn,
            "entry_id_fn": entry_id_fn,
        }
        if id_field is not None:
            options["id_field"] = id_field
        if id_prefix is not None:
            options["id_prefix"] = id_prefix
        if cache_ttl is not None:
            options["cache_ttl"] = cache_ttl
        try:
            self.options = CachedDatabaseOptions(**options)
        except ValidationError as e:
            raise MissingDependency(
                f"Invalid configuration: {e}", details={"errors": e.errors(include_url=False)}
            ) from e

        self.table = self.options.table
        self.id_field = self.options.id_field
        self.logger = logger.bind(widget_type="CachedDatabase", table=self.table)
        self.metrics = metrics

        self.store = StoreGateway(
            store,
            self.table,
            self.id_field,
            self.options.resolved_entry_id_fn(),
            self.logger,
            retrieve_validator=retrieve_validator,
            metrics=metrics,
        )
        self.cache = RedisCache(
            cache,
            self.table,
            self.options.resolved_cache_key_fn(),
            self.store.identify,
            self.logger,
            ttl=self.options.cache_ttl,
            retrieve_validator=retrieve_validator,
            metrics=metrics,
        )
        self.identifiers = IdentifierGenerator(
            self.store,
            self.id_field,
            self.logger,
            prefix=self.options.id_prefix,
            max_attempts=max_id_attempts,
        )

    def _has_identifier(self, entry: Entry) -> bool:
        value = entry.get(self.id_field)
        return value is not None and value != ""

    # Basic CRUD operation for cached DB

    async def create(self, entry: Optional[Entry] = None, *, req_id: Optional[str] = None) -> Entry:
        """Persist a new entry, generating its identifier when absent, then cache it."""
        action = "create"
        uid = None
        try:
            to_create = copy.deepcopy(dict(entry or {}))
            if not self._has_identifier(to_create):
                to_create[self.id_field] = await self.identifiers.generate(to_create, req_id=req_id)
            uid = self.store.identify(to_create)

            created = await self.store.create(to_create, req_id=req_id)
            self.logger.debug("Entry created in DB", req_id=req_id, action=action, id=uid)
            return await self.cache.set(created, req_id=req_id)
        except Exception as err:
            self.logger.error("Cannot create entry", req_id=req_id, action=action, id=uid, error=str(err))
            raise

    async def retrieve(self, id: IdOrEntry, *, req_id: Optional[str] = None) -> Optional[Entry]:
        """Read through the cache, loading from the store on a miss."""
        action = "retrieve"
        try:
            cached = await self.cache.fetch(id, req_id=req_id)
            if cached is None:
                self.logger.debug("Entry cache miss", req_id=req_id, action=action, id=describe_id(id), cache="miss")
                return await self.load(id, req_id=req_id)
        except Exception as err:
            self.logger.error("Cannot retrieve entry", req_id=req_id, action=action, id=describe_id(id), error=str(err))
            raise

        self.logger.debug("Entry cache hit", req_id=req_id, action=action, id=describe_id(id), cache="hit")
        return cached

    async def load(self, id: IdOrEntry, *, req_id: Optional[str] = None) -> Optional[Entry]:
        """Get a fresh copy from the store and cache it."""
        action = "load"
        try:
            entry = await self.store.retrieve(id, req_id=req_id)
            if entry is None:
                self.logger.debug("Entry not found", req_id=req_id, action=action, id=describe_id(id))
                return None
            entry = await self.cache.set(entry, req_id=req_id)
        except Exception as err:
            self.logger.error("Cannot load entry", req_id=req_id, action=action, id=describe_id(id), error=str(err))
            raise

        self.logger.debug("Entry loaded", req_id=req_id, action=action, id=describe_id(id))
        return entry

    async def update(
        self,
        id: IdOrEntry,
        patch: Union[Patch, Entry, Callable[[Entry], Entry]],
        *,
        non_atomic: bool = False,
        req_id: Optional[str] = None,
    ) -> Optional[Entry]:
        """Patch the stored entry, then reload it so the cache holds the store's view.

        ``patch`` is a ReplaceFields/ComputeFields variant, or a mapping or
        callable that is wrapped into one.
        """
        action = "update"
        try:
            changes = await self.store.update(id, as_patch(patch), non_atomic=non_atomic, req_id=req_id)
            self.logger.debug(
                "Entry updated in DB", req_id=req_id, action=action, id=describe_id(id), changes=len(changes)
            )
        except Exception as err:
            self.logger.error("Cannot update entry", req_id=req_id, action=action, id=describe_id(id), error=str(err))
            raise

        return await self.load(id, req_id=req_id)

    async def delete(self, id: IdOrEntry, *, req_id: Optional[str] = None) -> IdOrEntry:
        """Remove the entry from the store, then from the cache.

        Deleting an absent entry succeeds, and the cache is invalidated
        either way. The stored entry's cache key is invalidated too, so a
        plain identifier also clears entries cached under another field.
        """
        action = "delete"
        try:
            stored = await self.store.lookup(id, req_id=req_id)
            if stored is not None:
                await self._delete_stored(id, req_id)
                self.logger.debug("Entry deleted from DB", req_id=req_id, action=action, id=describe_id(id))
            else:
                self.logger.debug("Entry already absent from DB", req_id=req_id, action=action, id=describe_id(id))
            return await self.cache.invalidate(id, stored=stored, req_id=req_id)
        except Exception as err:
            self.logger.error("Cannot delete entry", req_id=req_id, action=action, id=describe_id(id), error=str(err))
            raise

    async def _delete_stored(self, id: IdOrEntry, req_id: Optional[str]):
        try:
            await self.store.delete(id, req_id=req_id)
        except StoreOperationFailed as err:
            # Removed concurrently between the existence check and the delete
            if err.first_error != NOT_FOUND_ERROR:
                raise
            self.logger.info("Entry removed concurrently", req_id=req_id, action="delete", id=describe_id(id))

    # Cache operations

    async def cache_set(self, entry: Entry, ttl: Optional[int] = None, *, req_id: Optional[str] = None) -> Entry:
        return await self.cache.set(entry, ttl, req_id=req_id)

    async def cache_fetch(self, id: IdOrEntry, *, req_id: Optional[str] = None) -> Optional[Entry]:
        return await self.cache.fetch(id, req_id=req_id)

    async def cache_invalidate(self, id: IdOrEntry, *, req_id: Optional[str] = None) -> IdOrEntry:
        return await self.cache.invalidate(id, req_id=req_id)

    # DB operations

    async def generate_id(self, entry: Optional[Entry] = None, *, req_id: Optional[str] = None) -> str:
        return await self.identifiers.generate(entry, req_id=req_id)

    async def db_exists(self, id: IdOrEntry, *, req_id: Optional[str] = None) -> bool:
        return await self.store.exists(id, req_id=req_id)

    async def db_create(self, entry: Entry, *, conflict: str = "replace", req_id: Optional[str] = None) -> Entry:
        return await self.store.create(entry, conflict=conflict, req_id=req_id)

    async def db_retrieve(self, id: IdOrEntry, *, req_id: Optional[str] = None) -> Optional[Entry]:
        return await self.store.retrieve(id, req_id=req_id)

    async def db_update(
        self,
        id: IdOrEntry,
        patch: Union[Patch, Entry, Callable[[Entry], Entry]],
        *,
        non_atomic: bool = False,
        req_id: Optional[str] = None,
    ) -> List[Change]:
        return await self.store.update(id, as_patch(patch), non_atomic=non_atomic, req_id=req_id)

    async def db_delete(self, id: IdOrEntry, *, req_id: Optional[str] = None) -> IdOrEntry:
        return await self.store.delete(id, req_id=req_id)

    # DB admin

    async def db_create_table(self, *, req_id: Optional[str] = None) -> str:
        return await self.store.create_table(req_id=req_id)

    async def db_drop_table(self, *, req_id: Optional[str] = None) -> str:
        return await self.store.drop_table(req_id=req_id)

    async def db_create_simple_index(self, field: str, *, req_id: Optional[str] = None) -> str:
        return await self.store.create_simple_index(field, req_id=req_id)

    async def db_create_compound_index(self, name: str, fields: List[str], *, req_id: Optional[str] = None) -> str:
        return await self.store.create_compound_index(name, fields, req_id=req_id)
