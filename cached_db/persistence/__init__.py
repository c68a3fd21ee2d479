"""
Persistence package for the cached data layer.

Provides the asyncpg-backed JSONB document store and the table-scoped
gateway the coordinator writes through.
"""
