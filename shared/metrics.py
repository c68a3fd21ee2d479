"""
Shared metrics configuration for the cached document store.
"""

from prometheus_client import Counter, Histogram, CollectorRegistry
from typing import Dict, Any, Optional
import time
from contextlib import contextmanager


class MetricsCollector:
    """Centralized metrics collector for cache and store traffic.

    Metrics are only registered when a registry is supplied, so several
    collectors can coexist in one process.
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry
        self._metrics: Dict[str, Any] = {}
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up the data layer metrics."""

        self._metrics["cache_requests_total"] = Counter(
            "cache_requests_total",
            "Total cache lookups",
            ["table", "result"],
            registry=self.registry
        )

        self._metrics["store_operations_total"] = Counter(
            "store_operations_total",
            "Total document store operations",
            ["table", "operation", "status"],
            registry=self.registry
        )

        self._metrics["store_operation_duration_seconds"] = Histogram(
            "store_operation_duration_seconds",
            "Document store operation duration in seconds",
            ["table", "operation"],
            registry=self.registry
        )

        self._metrics["errors_total"] = Counter(
            "errors_total",
            "Total errors",
            ["error_type", "table"],
            registry=self.registry
        )

    def get_metric(self, name: str):
        """Get a metric by name."""
        return self._metrics.get(name)

    def record_cache_access(self, table: str, hit: bool):
        """Record a cache hit or miss."""
        self._metrics["cache_requests_total"].labels(
            table=table,
            result="hit" if hit else "miss"
        ).inc()

    def record_store_operation(self, table: str, operation: str, status: str, duration: float):
        """Record a document store round trip."""
        self._metrics["store_operations_total"].labels(
            table=table,
            operation=operation,
            status=status
        ).inc()

        self._metrics["store_operation_duration_seconds"].labels(
            table=table,
            operation=operation
        ).observe(duration)

    def record_error(self, error_type: str, table: str):
        """Record error metrics."""
        self._metrics["errors_total"].labels(error_type=error_type, table=table).inc()

    @contextmanager
    def time_operation(self, table: str, operation: str):
        """Context manager to time and count a store operation."""
        start_time = time.time()
        status = "ok"
        try:
            yield
        except Exception:
            status = "error"
            raise
        finally:
            self.record_store_operation(table, operation, status, time.time() - start_time)
