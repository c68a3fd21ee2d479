"""
Shared utilities for the cached document store.

This package aggregates common building blocks consumed by the data layer:

- config: Settings via pydantic-settings
- logging: Structured logging with request correlation
- metrics: Prometheus metrics for cache and store traffic
- errors: Canonical error types and responses
- test_helpers: In-memory fakes and entry factories for tests

Only test_helpers may import from cached_db.
"""
