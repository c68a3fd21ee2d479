"""
Cache package for the cached data layer.

Provides the Redis-backed entry cache that the coordinator reads through and
refreshes after every committed store write.
"""
