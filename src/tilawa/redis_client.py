"""Redis client used by the rate limiter and the readiness check.

Redis is optional: until ``init_redis`` runs, ``get_redis`` raises
RuntimeError and callers treat rate limiting as disabled.
"""

import redis.asyncio as redis

from tilawa.config import Settings

_client: redis.Redis | None = None


async def init_redis(settings: Settings) -> None:
    global _client  # noqa: PLW0603
    _client = redis.from_url(  # type: ignore[no-untyped-call]
        settings.redis_url,
        decode_responses=True,
        max_connections=settings.redis_max_connections,
        socket_timeout=settings.redis_socket_timeout,
        socket_connect_timeout=settings.redis_socket_timeout,
    )


async def close_redis() -> None:
    global _client  # noqa: PLW0603
    if _client is not None:
        await _client.aclose()
    _client = None


def get_redis() -> redis.Redis:
    if _client is None:
        msg = "Redis not initialized. Call init_redis() first."
        raise RuntimeError(msg)
    return _client
