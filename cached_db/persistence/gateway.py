"""
Table-scoped access to the document store.
"""

from contextlib import nullcontext
from typing import Dict, Any, Optional, List

import structlog

from shared.errors import MissingIdentifier, InvalidPatch, StoreOperationFailed
from shared.metrics import MetricsCollector
from ..models import (
    Entry, IdOrEntry, KeyFn, Validator, Patch, ReplaceFields, ComputeFields,
    Change, WriteResult, describe_id,
)


class StoreGateway:
    """Wraps store calls for one table behind identifier validation.

    Every operation logs a debug event on success and an error event on
    failure, then re-raises.
    """

    def __init__(
        self,
        store: Any,
        table: str,
        id_field: str,
        entry_id_fn: KeyFn,
        logger: structlog.BoundLogger,
        *,
        retrieve_validator: Optional[Validator] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.store = store
        self.table = table
        self.id_field = id_field
        self.entry_id_fn = entry_id_fn
        self.retrieve_validator = retrieve_validator
        self.metrics = metrics
        self.logger = logger.bind(component="store")

    def identify(self, id_or_entry: IdOrEntry) -> str:
        """Derive the store identifier or raise MissingIdentifier."""
        identifier = self.entry_id_fn(id_or_entry)
        if identifier is None or identifier == "":
            raise MissingIdentifier(
                f"{self.id_field} cannot be undefined or empty",
                details={"table": self.table, "id": describe_id(id_or_entry)},
            )
        return str(identifier)

    def _timed(self, operation: str):
        if self.metrics is None:
            return nullcontext()
        return self.metrics.time_operation(self.table, operation)

    def _check(self, operation: str, identifier: Optional[str], result: WriteResult) -> WriteResult:
        if result.errors:
            raise StoreOperationFailed(
                f"Error occurred during {operation} entry",
                details={
                    "table": self.table,
                    "id": identifier,
                    "operation": operation,
                    "result": result.to_dict(),
                },
            )
        return result

    def _failed(self, event: str, err: Exception, req_id: Optional[str], **context):
        details = getattr(err, "details", {}) or {}
        self.logger.error(
            event,
            req_id=req_id,
            error=str(err),
            error_type=type(err).__name__,
            db_result=details.get("result"),
            **context,
        )
        if self.metrics is not None:
            self.metrics.record_error(type(err).__name__, self.table)

    async def exists(self, id: IdOrEntry, *, req_id: Optional[str] = None) -> bool:
        """True iff a record with the identifier is present."""
        return await self.lookup(id, req_id=req_id) is not None

    async def lookup(self, id: IdOrEntry, *, req_id: Optional[str] = None) -> Optional[Entry]:
        """Stored entry for the identifier, without read validation."""
        uid = None
        try:
            uid = self.identify(id)
            with self._timed("exists"):
                entry = await self.store.get(self.table, uid)
        except Exception as err:
            self._failed("Cannot get entry status", err, req_id, id=uid)
            raise

        self.logger.debug("Checked entry status", req_id=req_id, id=uid, is_exist=entry is not None)
        return entry

    async def create(self, entry: Entry, *, conflict: str = "replace", req_id: Optional[str] = None) -> Entry:
        """Insert ``entry``; duplicates are replaced by default."""
        uid = None
        try:
            uid = self.identify(entry)
            with self._timed("create"):
                result = await self.store.insert(self.table, uid, entry, conflict=conflict)
            self._check("create", uid, result)
        except Exception as err:
            self._failed("Cannot create", err, req_id, id=uid)
            raise

        self.logger.debug("Created entry", req_id=req_id, id=uid, db_result=result.to_dict())
        return entry

    async def retrieve(self, id: IdOrEntry, *, req_id: Optional[str] = None) -> Optional[Entry]:
        """Fetch one entry, or None if it is absent or fails validation."""
        uid = None
        try:
            uid = self.identify(id)
            with self._timed("retrieve"):
                entry = await self.store.get(self.table, uid)
        except Exception as err:
            self._failed("Cannot retrieve", err, req_id, id=uid)
            raise

        if entry is None:
            self.logger.debug("Entry does not exist", req_id=req_id, id=uid)
            return None

        self.logger.debug("Retrieved entry", req_id=req_id, id=uid)
        if self.retrieve_validator and not self.retrieve_validator(entry):
            self.logger.warning(
                "Failed validation during retrieve", req_id=req_id, id=uid, select_validation="failed"
            )
            return None
        return entry

    async def update(
        self,
        id: IdOrEntry,
        patch: Patch,
        *,
        non_atomic: bool = False,
        req_id: Optional[str] = None,
    ) -> List[Change]:
        """Apply ``patch`` in the store and return the reported changes.

        Existence is decided by the store: a missing record surfaces as
        StoreOperationFailed.
        """
        uid = None
        try:
            uid = self.identify(id)
            if not isinstance(patch, (ReplaceFields, ComputeFields)):
                raise InvalidPatch(
                    details={"table": self.table, "id": uid, "patch_type": type(patch).__name__}
                )
            with self._timed("update"):
                result = await self.store.update(self.table, uid, patch, non_atomic=non_atomic)
            self._check("update", uid, result)
        except Exception as err:
            self._failed("Cannot update", err, req_id, id=uid)
            raise

        self.logger.debug("Updated entry", req_id=req_id, id=uid, db_result=result.to_dict())
        return result.changes

    async def delete(self, id: IdOrEntry, *, req_id: Optional[str] = None) -> IdOrEntry:
        """Remove one record and return ``id`` unchanged."""
        uid = None
        try:
            uid = self.identify(id)
            with self._timed("delete"):
                result = await self.store.delete(self.table, uid)
            self._check("delete", uid, result)
        except Exception as err:
            self._failed("Cannot delete", err, req_id, id=uid)
            raise

        self.logger.debug("Deleted entry", req_id=req_id, id=uid, db_result=result.to_dict())
        return id

    # Administration

    async def create_table(self, *, req_id: Optional[str] = None) -> str:
        try:
            db_result = await self.store.table_create(self.table, self.id_field)
        except Exception as err:
            self._failed("Cannot create table", err, req_id)
            raise

        self.logger.debug("Created table", req_id=req_id, db_result=db_result)
        return self.table

    async def drop_table(self, *, req_id: Optional[str] = None) -> str:
        try:
            db_result = await self.store.table_drop(self.table)
        except Exception as err:
            self._failed("Cannot drop table", err, req_id)
            raise

        self.logger.debug("Dropped table", req_id=req_id, db_result=db_result)
        return self.table

    async def create_simple_index(self, field: str, *, req_id: Optional[str] = None) -> str:
        """Index one field and wait until the index is queryable."""
        return await self._create_index(field, [field], "simple", req_id)

    async def create_compound_index(self, name: str, fields: List[str], *, req_id: Optional[str] = None) -> str:
        """Index several fields under ``name`` and wait until it is queryable."""
        return await self._create_index(name, list(fields), "compound", req_id)

    async def _create_index(self, name: str, fields: List[str], kind: str, req_id: Optional[str]) -> str:
        context: Dict[str, Any] = {"indexname": name, "fields": fields}
        try:
            db_result = await self.store.index_create(self.table, name, fields)
            self.logger.debug(f"Creating {kind} index", req_id=req_id, db_result=db_result, **context)
            db_result = await self.store.index_wait(self.table, name)
        except Exception as err:
            self._failed(f"Cannot create {kind} index", err, req_id, **context)
            raise

        self.logger.debug(f"Created {kind} index", req_id=req_id, db_result=db_result, **context)
        return name

