"""Redis store for distributed locks.

Handles:
- Per-user write locks around the position-shift protocol, so two devices
  ranking for the same user cannot interleave their point writes

TTL policies:
- User write lock: 30 seconds by default (USER_LOCK_TTL_SECONDS); a lock
  held by a crashed worker expires on its own
"""

import logging

import redis.asyncio as redis

from playrank.settings import get_settings


# Key prefixes
PREFIX_LOCK = "lock:"
PREFIX_USER_WRITE = "ranking:write:"

# Redis client (initialized on startup)
_redis: redis.Redis | None = None
logger = logging.getLogger("uvicorn.error")


async def init_redis() -> None:
    """Initialize Redis connection."""
    global _redis
    settings = get_settings()
    _redis = redis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        socket_connect_timeout=5,
        socket_timeout=5,
    )
    # Validate connectivity early (especially for `rediss://` in production).
    await _redis.ping()
    logger.info("Redis connected")


async def close_redis() -> None:
    """Close Redis connection."""
    global _redis
    if _redis:
        await _redis.aclose()
        _redis = None


def _get_redis() -> redis.Redis:
    """Get Redis client instance."""
    if _redis is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis


def user_write_lock_key(user_id: str) -> str:
    return f"{PREFIX_USER_WRITE}{user_id}"


# ============================================================
# Distributed locks
# ============================================================


async def acquire_lock(key: str, ttl: int) -> bool:
    """Acquire a distributed lock.

    Args:
        key: Lock key (e.g., user write key).
        ttl: Lock timeout in seconds.

    Returns:
        True if lock acquired, False if already locked.
    """
    lock_key = f"{PREFIX_LOCK}{key}"
    # SET NX (only if not exists) with TTL
    result = await _get_redis().set(lock_key, "1", nx=True, ex=ttl)
    return result is not None


async def release_lock(key: str) -> None:
    """Release a distributed lock.

    Args:
        key: Lock key.
    """
    await _get_redis().delete(f"{PREFIX_LOCK}{key}")
