"""
Shared error handling for the cached document store.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error response format."""

    code: str
    message: str
    details: Dict[str, Any] = {}


class DataLayerException(Exception):
    """Base exception for the data layer."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            code=self.code,
            message=self.message,
            details=self.details
        )


class MissingDependency(DataLayerException):
    """Constructor argument absent or of the wrong type."""

    def __init__(self, message: str = "Missing dependency", details: Optional[Dict[str, Any]] = None):
        super().__init__("MISSING_DEPENDENCY", message, details)


class MissingIdentifier(DataLayerException):
    """Identifier could not be derived from the input."""

    def __init__(self, message: str = "Identifier cannot be empty", details: Optional[Dict[str, Any]] = None):
        super().__init__("MISSING_IDENTIFIER", message, details)


class MissingCacheKey(DataLayerException):
    """Cache key could not be derived from the input."""

    def __init__(self, message: str = "Cache key cannot be empty", details: Optional[Dict[str, Any]] = None):
        super().__init__("MISSING_CACHE_KEY", message, details)


class InvalidPatch(DataLayerException):
    """Update payload is neither a field mapping nor a function."""

    def __init__(self, message: str = "Patch must be a mapping or a function", details: Optional[Dict[str, Any]] = None):
        super().__init__("INVALID_PATCH", message, details)


class StoreOperationFailed(DataLayerException):
    """The document store reported errors for a write."""

    def __init__(self, message: str = "Store operation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("STORE_OPERATION_FAILED", message, details)

    @property
    def first_error(self) -> Optional[str]:
        """First error reported by the store, if any."""
        result = self.details.get("result") or {}
        return result.get("first_error")


class IdentifierExhausted(DataLayerException):
    """No unused identifier was found within the attempt bound."""

    def __init__(self, message: str = "Could not generate a unique identifier", details: Optional[Dict[str, Any]] = None):
        super().__init__("IDENTIFIER_EXHAUSTED", message, details)


class ConnectionBootstrapError(DataLayerException):
    """A shared store or cache connection could not be opened."""

    def __init__(self, service: str, message: str = "Connection failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("CONNECTION_BOOTSTRAP_ERROR", f"{service}: {message}", details)


class InvalidTTL(DataLayerException):
    """Cache expiration is not a positive number of seconds."""

    def __init__(self, message: str = "TTL must be a positive number of seconds", details: Optional[Dict[str, Any]] = None):
        super().__init__("INVALID_TTL", message, details)
