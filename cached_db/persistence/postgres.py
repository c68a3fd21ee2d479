"""
PostgreSQL document store for the cached data layer.

Each table holds one JSONB document per primary key. Writes report data
errors (missing rows, duplicate keys, rejected patches) in a WriteResult
instead of raising; driver and connection failures propagate.
"""

import asyncio
import copy
import json
from typing import Dict, Any, Optional, List, Mapping

import asyncpg

from shared.logging import get_logger
from ..models import (
    Entry, Patch, ReplaceFields, ComputeFields, Change, WriteResult, NOT_FOUND_ERROR,
)


CONFLICT_POLICIES = ("error", "replace", "update")


def quote_ident(name: str) -> str:
    """Quote an SQL identifier."""
    return '"' + name.replace('"', '""') + '"'


def quote_literal(value: str) -> str:
    """Quote an SQL string literal for DDL, where parameters are not allowed."""
    return "'" + value.replace("'", "''") + "'"


def index_relation(table: str, name: str) -> str:
    return f"{table}_{name}_idx"


def merge_document(current: Mapping[str, Any], fields: Mapping[str, Any]) -> Entry:
    """Merge ``fields`` into ``current``, recursing into nested objects."""
    merged = dict(current)
    for key, value in fields.items():
        existing = merged.get(key)
        if isinstance(existing, Mapping) and isinstance(value, Mapping):
            merged[key] = merge_document(existing, value)
        else:
            merged[key] = value
    return merged


def _decode(value: Any) -> Entry:
    if isinstance(value, (str, bytes)):
        return json.loads(value)
    return dict(value)


class DocumentStore:
    """JSONB document store over a shared asyncpg pool.

    The pool is owned by the caller; this class never closes it.
    """

    def __init__(self, pool: asyncpg.Pool, index_poll_interval: float = 0.1):
        self.pool = pool
        self.index_poll_interval = index_poll_interval
        self.logger = get_logger("cached_db.persistence.postgres")

    async def get(self, table: str, key: str) -> Optional[Entry]:
        """Point lookup by primary key."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT doc FROM {quote_ident(table)} WHERE key = $1", key
            )

        if not row:
            return None
        return _decode(row["doc"])

    async def insert(self, table: str, key: str, document: Entry, conflict: str = "replace") -> WriteResult:
        """Insert a document, resolving duplicate keys with ``conflict``.

        ``replace`` overwrites the stored document, ``update`` merges into it
        and ``error`` reports the duplicate.
        """
        if conflict not in CONFLICT_POLICIES:
            raise ValueError(f"Unknown conflict policy: {conflict}")

        t = quote_ident(table)
        if conflict == "error":
            on_conflict = "DO NOTHING"
        elif conflict == "replace":
            on_conflict = "DO UPDATE SET doc = EXCLUDED.doc"
        else:
            on_conflict = f"DO UPDATE SET doc = {t}.doc || EXCLUDED.doc"

        sql = f"""
            INSERT INTO {t} (key, doc) VALUES ($1, $2::jsonb)
            ON CONFLICT (key) {on_conflict}
            RETURNING (xmax = 0) AS inserted
        """

        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(sql, key, json.dumps(document))
        except asyncpg.exceptions.CheckViolationError as e:
            return WriteResult.failure(f"Primary key does not match document: {e}")

        if row is None:
            return WriteResult.failure(f"Duplicate primary key `{key}`")
        if row["inserted"]:
            return WriteResult(inserted=1)
        return WriteResult(replaced=1)

    async def update(self, table: str, key: str, patch: Patch, non_atomic: bool = False) -> WriteResult:
        """Apply a patch to one document and return the change.

        The row is locked for the read-compute-write cycle unless
        ``non_atomic`` is set, in which case a concurrent writer may be
        overwritten.
        """
        t = quote_ident(table)
        lock = "" if non_atomic else " FOR UPDATE"

        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    row = await conn.fetchrow(f"SELECT doc FROM {t} WHERE key = $1{lock}", key)
                    if row is None:
                        return WriteResult(skipped=1, errors=1, first_error=NOT_FOUND_ERROR)

                    current = _decode(row["doc"])
                    fields = self._evaluate(patch, current)
                    if isinstance(fields, WriteResult):
                        return fields

                    updated = merge_document(current, fields)
                    if updated == current:
                        return WriteResult(unchanged=1)

                    await conn.execute(
                        f"UPDATE {t} SET doc = $2::jsonb WHERE key = $1",
                        key, json.dumps(updated)
                    )
        except asyncpg.exceptions.CheckViolationError as e:
            return WriteResult.failure(f"Primary key cannot be changed: {e}")

        return WriteResult(replaced=1, changes=[Change(old=current, new=updated)])

    def _evaluate(self, patch: Patch, current: Entry):
        if isinstance(patch, ReplaceFields):
            fields = patch.fields
        elif isinstance(patch, ComputeFields):
            try:
                fields = patch.fn(copy.deepcopy(current))
            except Exception as e:
                return WriteResult.failure(f"Patch function raised {type(e).__name__}: {e}")
        else:
            return WriteResult.failure(f"Unsupported patch type {type(patch).__name__}")

        if not isinstance(fields, Mapping):
            return WriteResult.failure("Patch must evaluate to a mapping")
        return fields

    async def delete(self, table: str, key: str) -> WriteResult:
        """Delete one document by primary key."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"DELETE FROM {quote_ident(table)} WHERE key = $1 RETURNING doc", key
            )

        if row is None:
            return WriteResult(skipped=1, errors=1, first_error=NOT_FOUND_ERROR)
        return WriteResult(deleted=1, changes=[Change(old=_decode(row["doc"]), new=None)])

    async def table_create(self, table: str, primary_key: str) -> Dict[str, Any]:
        """Create a document table keyed by ``primary_key``."""
        t = quote_ident(table)
        async with self.pool.acquire() as conn:
            await conn.execute(f"""
                CREATE TABLE {t} (
                    key TEXT PRIMARY KEY,
                    doc JSONB NOT NULL,
                    CONSTRAINT {quote_ident(table + '_primary_key')}
                        CHECK (doc ->> {quote_literal(primary_key)} = key)
                )
            """)

        self.logger.info("Document table created", table=table, primary_key=primary_key)
        return {"tables_created": 1, "table": table, "primary_key": primary_key}

    async def table_drop(self, table: str) -> Dict[str, Any]:
        async with self.pool.acquire() as conn:
            await conn.execute(f"DROP TABLE {quote_ident(table)}")

        self.logger.info("Document table dropped", table=table)
        return {"tables_dropped": 1, "table": table}

    async def index_create(self, table: str, name: str, fields: List[str]) -> Dict[str, Any]:
        """Create a secondary index over one or more top-level fields.

        The index is built concurrently; use ``index_wait`` before relying on it.
        """
        if not fields:
            raise ValueError("An index needs at least one field")

        expressions = ", ".join(f"((doc ->> {quote_literal(f)}))" for f in fields)
        relation = index_relation(table, name)
        async with self.pool.acquire() as conn:
            await conn.execute(
                f"CREATE INDEX CONCURRENTLY {quote_ident(relation)} "
                f"ON {quote_ident(table)} ({expressions})"
            )

        return {"created": 1, "index": name, "relation": relation, "fields": list(fields)}

    async def index_wait(self, table: str, name: str) -> Dict[str, Any]:
        """Block until the index is valid and ready for queries."""
        relation = index_relation(table, name)
        while True:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    "SELECT indisvalid AND indisready AS ready FROM pg_index "
                    "WHERE indexrelid = to_regclass($1)",
                    quote_ident(relation)
                )

            if row is None:
                raise LookupError(f"Index {name} does not exist on table {table}")
            if row["ready"]:
                return {"index": name, "relation": relation, "ready": True}

            await asyncio.sleep(self.index_poll_interval)

