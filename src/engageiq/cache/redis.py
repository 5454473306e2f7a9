"""Redis client factory for the shared cache tier and the job queues.

Uses the redis-py async client with connection pooling. Each operation
retries a bounded number of times with exponential backoff; callers never
block on an unbounded reconnect loop.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import redis.asyncio as redis
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import ConnectionError, TimeoutError

from engageiq.config import Settings

if TYPE_CHECKING:
    from redis.asyncio import Redis


def create_redis(config: Settings) -> Redis:
    """Create a Redis client for the configured URL.

    The client is created once at startup and passed to the cache and job
    services.
    """
    return redis.from_url(  # type: ignore[no-untyped-call]
        config.redis_url,
        encoding="utf-8",
        decode_responses=False,
        socket_timeout=config.redis_socket_timeout,
        socket_connect_timeout=config.redis_socket_timeout,
        retry=Retry(ExponentialBackoff(), config.redis_max_retries),
        retry_on_error=[ConnectionError, TimeoutError],
    )


async def close_redis(client: Redis) -> None:
    """Close a client created by :func:`create_redis`."""
    await client.aclose()


def decode(value: bytes | str | None) -> str | None:
    """Decode a Redis reply that may be bytes."""
    if value is None:
        return None
    return value.decode() if isinstance(value, bytes) else value
