"""
Collision-free identifier generation.
"""

import uuid
from typing import Any, Mapping, Optional

import structlog

from shared.errors import IdentifierExhausted
from .persistence.gateway import StoreGateway


DEFAULT_MAX_ATTEMPTS = 1000


class IdentifierGenerator:
    """Generates ``prefix + uuid4`` identifiers unused in the store."""

    def __init__(
        self,
        store: StoreGateway,
        id_field: str,
        logger: structlog.BoundLogger,
        prefix: str = "",
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ):
        self.store = store
        self.id_field = id_field
        self.prefix = prefix
        self.max_attempts = max_attempts
        self.logger = logger.bind(component="identifiers")

    def candidate(self) -> str:
        return f"{self.prefix}{uuid.uuid4()}"

    async def generate(self, entry: Optional[Mapping[str, Any]] = None, *, req_id: Optional[str] = None) -> str:
        """Return an identifier no stored record uses.

        Each candidate is merged into a copy of ``entry`` and checked with a
        point lookup, so custom identifier functions see the full record.
        """
        base = dict(entry or {})
        for attempt in range(1, self.max_attempts + 1):
            identifier = self.candidate()
            if not await self.store.exists({**base, self.id_field: identifier}, req_id=req_id):
                return identifier
            self.logger.warning("Generated identifier already exists", req_id=req_id, id=identifier, attempt=attempt)

        self.logger.error("Cannot generate identifier", req_id=req_id, attempts=self.max_attempts)
        raise IdentifierExhausted(
            details={"table": self.store.table, "attempts": self.max_attempts}
        )
