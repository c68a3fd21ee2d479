"""
Data models for the cached document store.
"""

from typing import Dict, Any, Optional, List, Union, Callable, Mapping
from dataclasses import dataclass, field, asdict

from pydantic import BaseModel, ConfigDict, Field

from shared.errors import InvalidPatch


DEFAULT_ID_FIELD = "uuid"
DEFAULT_CACHE_TTL = 7200
NOT_FOUND_ERROR = "Document not found"

Entry = Dict[str, Any]
IdOrEntry = Union[str, Mapping[str, Any]]
KeyFn = Callable[[Any], Any]
Validator = Callable[[Entry], bool]


@dataclass(frozen=True)
class ReplaceFields:
    """Patch that merges a literal mapping of fields into the stored entry."""
    fields: Mapping[str, Any]


@dataclass(frozen=True)
class ComputeFields:
    """Patch computed by the store from the current entry.

    ``fn`` must be a pure function of the current entry returning the
    fields to merge.
    """
    fn: Callable[[Entry], Mapping[str, Any]]


Patch = Union[ReplaceFields, ComputeFields]


def as_patch(value: Any) -> Patch:
    """Wrap a mapping or a callable into the matching patch variant."""
    if isinstance(value, (ReplaceFields, ComputeFields)):
        return value
    if isinstance(value, Mapping):
        return ReplaceFields(dict(value))
    if callable(value):
        return ComputeFields(value)
    raise InvalidPatch(details={"patch_type": type(value).__name__})


@dataclass
class Change:
    """Before/after pair reported by the store for a write."""
    old: Optional[Entry]
    new: Optional[Entry]


@dataclass
class WriteResult:
    """Summary of a store write.

    Errors are reported here rather than raised so callers can decide how to
    surface them.
    """
    inserted: int = 0
    replaced: int = 0
    unchanged: int = 0
    skipped: int = 0
    deleted: int = 0
    errors: int = 0
    first_error: Optional[str] = None
    changes: List[Change] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def failure(cls, message: str) -> "WriteResult":
        return cls(errors=1, first_error=message)


def field_identifier(field_name: str) -> KeyFn:
    """Build a key function reading ``field_name``.

    The returned function accepts either a plain identifier string or a
    mapping holding the field, and returns ``None`` when nothing usable is
    present.
    """
    def identify(id_or_entry: Any) -> Optional[str]:
        if isinstance(id_or_entry, str):
            return id_or_entry or None
        if isinstance(id_or_entry, Mapping):
            value = id_or_entry.get(field_name)
            if value is None or value == "":
                return None
            return value
        return None

    identify.__name__ = f"identify_by_{field_name}"
    return identify


class CachedDatabaseOptions(BaseModel):
    """Construction-time options, validated eagerly."""

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    table: str = Field(..., min_length=1, description="Table name in store and cache")
    id_field: str = Field(default=DEFAULT_ID_FIELD, min_length=1, description="Identifier field name")
    id_prefix: str = Field(default="", description="Prefix for generated identifiers")
    cache_ttl: int = Field(default=DEFAULT_CACHE_TTL, gt=0, description="Cache TTL in seconds")
    retrieve_validator: Optional[Callable[[Entry], bool]] = Field(default=None)
    cache_key_fn: Optional[Callable[[Any], Any]] = Field(default=None)
    entry_id_fn: Optional[Callable[[Any], Any]] = Field(default=None)

    def resolved_entry_id_fn(self) -> KeyFn:
        return self.entry_id_fn or field_identifier(self.id_field)

    def resolved_cache_key_fn(self) -> KeyFn:
        return self.cache_key_fn or field_identifier(self.id_field)


def describe_id(id_or_entry: Any) -> Any:
    """Loggable form of an identifier input."""
    if id_or_entry is None or isinstance(id_or_entry, str):
        return id_or_entry
    if isinstance(id_or_entry, Mapping):
        return dict(id_or_entry)
    return repr(id_or_entry)
