"""Redis cache primitives.

Every record is wrapped in an envelope stamped with ``CACHE_FORMAT_VERSION``; a
reader that finds a different stamp treats the record as a miss, so payload
shape changes across deployments never leak into the read path.

Effective-group results are keyed by a global membership version counter.
Bumping the counter on any membership mutation invalidates every cached result
at once; TTL bounds staleness if a mutation path ever misses the bump.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Awaitable, Callable, TypeVar

from redis.exceptions import RedisError

from gruff.core.settings import settings
from gruff.utils.redis_client import get_redis_client, redis_key

logger = logging.getLogger(__name__)

T = TypeVar("T")

CACHE_FORMAT_VERSION = 1

EFFECTIVE_GROUPS_PREFIX = "effective_groups"
MEMBERSHIP_VERSION_KEY = ("effective_groups", "version")


def _envelope(value: Any, ttl: int) -> str:
    return json.dumps(
        {
            "data": value,
            "cached_at": time.time(),
            "ttl": ttl,
            "version": CACHE_FORMAT_VERSION,
        },
        default=str,
    )


async def set_cache(key: str, value: Any, ttl: int | None = None) -> None:
    ttl = ttl or settings.default_cache_ttl_seconds
    redis = get_redis_client()
    await redis.setex(key, ttl, _envelope(value, ttl))


async def delete_cache(*keys: str) -> None:
    if not keys:
        return
    redis = get_redis_client()
    await redis.delete(*keys)


async def get_cache(key: str) -> Any | None:
    """Return the cached value, or None on a miss.

    Redis errors propagate: an unreachable cache is a dependency outage, not a miss.
    """
    redis = get_redis_client()
    raw = await redis.get(key)
    if raw is None:
        return None

    try:
        cached = json.loads(raw)
        stamped = cached["version"]
        cached_at = float(cached["cached_at"])
        ttl = float(cached["ttl"])
        data = cached["data"]
    except (ValueError, TypeError, KeyError):
        logger.warning("Discarding undecodable cache record", extra={"cache_key": key})
        await redis.delete(key)
        return None

    if stamped != CACHE_FORMAT_VERSION:
        await redis.delete(key)
        return None
    if time.time() - cached_at > ttl:
        await redis.delete(key)
        return None
    return data


async def _set_cache_quietly(key: str, value: Any, ttl: int | None) -> None:
    try:
        await set_cache(key, value, ttl)
    except RedisError as exc:
        logger.warning("Cache write failed: %s", exc, extra={"cache_key": key})


async def get_or_set(
    key: str,
    fetcher: Callable[[], Awaitable[T]],
    ttl: int | None = None,
    *,
    skip_cache: bool = False,
) -> T:
    """Cache-aside read. A failed cache write never fails the read it accelerates."""
    if skip_cache:
        return await fetcher()

    cached = await get_cache(key)
    if cached is not None:
        return cached

    value = await fetcher()
    await _set_cache_quietly(key, value, ttl)
    return value


async def get_membership_version() -> int:
    redis = get_redis_client()
    raw = await redis.get(redis_key(*MEMBERSHIP_VERSION_KEY))
    try:
        return int(raw) if raw is not None else 0
    except ValueError:
        return 0


async def bump_membership_version() -> int | None:
    """Invalidate every cached effective-group set. Returns the new counter value.

    Called after the membership change is committed; on a cache outage the change
    stands and cached results age out through their TTL.
    """
    try:
        redis = get_redis_client()
        return int(await redis.incr(redis_key(*MEMBERSHIP_VERSION_KEY)))
    except RedisError as exc:
        logger.error("Membership version bump failed: %s", exc)
        return None


async def effective_groups_cache_key(user_id: str) -> str:
    version = await get_membership_version()
    return redis_key(EFFECTIVE_GROUPS_PREFIX, f"v{version}", user_id)
