"""ARQ Redis pool management."""

from __future__ import annotations

from arq import create_pool
from arq.connections import ArqRedis, RedisSettings

from notifyhub.core.config import get_settings

settings = get_settings()

_arq_pool: ArqRedis | None = None


def redis_settings() -> RedisSettings:
    return RedisSettings.from_dsn(settings.redis_url)


async def get_arq_pool() -> ArqRedis:
    """Get or create the ARQ Redis pool used to enqueue fan-out jobs."""
    global _arq_pool
    if _arq_pool is None:
        _arq_pool = await create_pool(redis_settings())
    return _arq_pool


async def close_arq_pool() -> None:
    """Close the ARQ Redis pool."""
    global _arq_pool
    if _arq_pool is not None:
        await _arq_pool.aclose()
        _arq_pool = None
