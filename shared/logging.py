"""
Structured logging for the cached document store.

Events carry the configured service name and, when a request scope is
active, its ``req_id``. Data layer calls that receive an explicit ``req_id``
keep it.
"""

import sys
import structlog
import logging
import uuid
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional
from contextvars import ContextVar

request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)


def _level(log_level: str) -> int:
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {log_level}")
    return level


class ServiceContext:
    """Processor stamping every event with the owning service name."""

    def __init__(self, service_name: str):
        self.service_name = service_name

    def __call__(self, logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        event_dict.setdefault("service", self.service_name)
        return event_dict


def add_correlation_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add the ambient request ID unless the event already carries one."""
    request_id = request_id_var.get()
    if request_id and not event_dict.get("req_id"):
        event_dict["req_id"] = request_id

    return event_dict


def build_processors(service_name: str, json_logs: bool = True) -> List[Any]:
    """Processor chain shared by every logger of the service."""
    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()
    return [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        ServiceContext(service_name),
        add_correlation_context,
        renderer,
    ]


def configure_logging(service_name: str, log_level: str = "info", json_logs: bool = True) -> None:
    """Route structlog through stdlib logging at ``log_level``."""
    level = _level(log_level)

    structlog.configure(
        processors=build_processors(service_name, json_logs),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    logging.getLogger(service_name).setLevel(level)


def set_request_id(request_id: Optional[str] = None) -> str:
    """Set request ID in context."""
    if request_id is None:
        request_id = str(uuid.uuid4())
    request_id_var.set(request_id)
    return request_id


def clear_context():
    request_id_var.set(None)


@contextmanager
def request_scope(request_id: Optional[str] = None) -> Iterator[str]:
    """Correlate every event logged inside the block with one request ID."""
    token = request_id_var.set(request_id or str(uuid.uuid4()))
    try:
        yield request_id_var.get()
    finally:
        request_id_var.reset(token)


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
