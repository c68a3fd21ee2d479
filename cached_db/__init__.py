"""
Cache-aside data access over a JSONB document store and Redis.

``CachedDatabase`` is the entry point: one instance per logical table,
sharing process-wide store and Redis handles opened by
``cached_db.connections``.
"""

from .database import CachedDatabase
from .models import ReplaceFields, ComputeFields, Change, WriteResult, as_patch

__all__ = [
    "CachedDatabase",
    "ReplaceFields",
    "ComputeFields",
    "Change",
    "WriteResult",
    "as_patch",
]
