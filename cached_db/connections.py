"""
Bootstrap for the shared Redis and PostgreSQL handles.
"""

from dataclasses import dataclass
from typing import Optional

import asyncpg
import redis.asyncio as redis

from shared.config import Settings
from shared.errors import ConnectionBootstrapError
from shared.logging import get_logger
from .persistence.postgres import DocumentStore


logger = get_logger("cached_db.connections")


@dataclass
class Connections:
    """Process-wide handles shared by every CachedDatabase instance."""
    redis: redis.Redis
    pool: asyncpg.Pool
    store: DocumentStore


async def open_redis(settings: Settings) -> redis.Redis:
    """Open the Redis client and check it answers."""
    try:
        client = redis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
            socket_connect_timeout=settings.redis_socket_timeout,
            socket_timeout=settings.redis_socket_timeout,
            health_check_interval=30
        )
        await client.ping()
    except Exception as e:
        logger.error("Failed to open Redis connection", error=str(e))
        raise ConnectionBootstrapError("redis", str(e)) from e

    logger.info("Redis connection opened")
    return client


async def open_pool(settings: Settings) -> asyncpg.Pool:
    """Open the asyncpg pool used by the document store."""
    try:
        pool = await asyncpg.create_pool(
            settings.postgres_dsn,
            min_size=settings.postgres_min_pool,
            max_size=settings.postgres_max_pool,
            command_timeout=settings.postgres_command_timeout
        )
    except Exception as e:
        logger.error("Failed to open PostgreSQL pool", error=str(e))
        raise ConnectionBootstrapError("postgres", str(e)) from e

    logger.info("PostgreSQL pool opened")
    return pool


async def open_connections(settings: Settings) -> Connections:
    """Open both handles; the Redis client is closed again if the pool fails."""
    client = await open_redis(settings)
    try:
        pool = await open_pool(settings)
    except ConnectionBootstrapError:
        await client.aclose()
        raise

    store = DocumentStore(pool, index_poll_interval=settings.index_poll_interval)
    return Connections(redis=client, pool=pool, store=store)


async def close_connections(connections: Optional[Connections]):
    """Close the shared handles."""
    if connections is None:
        return
    await connections.pool.close()
    await connections.redis.aclose()
    logger.info("Connections closed")
