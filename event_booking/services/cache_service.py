"""
Redis caching service for event listings.

CACHING STRATEGY
================

What we cache:
  - Event listing pages (JSON-serialized EventListResponse payloads)
  - Key pattern: "events:list:{sorted filter query}"

Invalidation:
  - Any change to inventory (booking, cancellation) or to an event
    (create, update) deletes every "events:list:*" key via SCAN
  - TTL expiry (REDIS_CACHE_TTL) as the safety net

Single events and capacity checks are never cached: they must show the
live available_spots counter.

Redis is optional. When it is disabled or unreachable every function
degrades to a no-op / cache miss and the request is served from the DB.
"""

import json
from typing import Optional

import redis.asyncio as redis
from event_booking.core.config import get_settings
from event_booking.core.logging import get_logger
from event_booking.core.metrics import record_cache_operation
from event_booking.schemas.event import EventFilters

logger = get_logger(__name__)
settings = get_settings()

EVENT_LIST_PREFIX = "events:list:"

_redis_client: Optional[redis.Redis] = None


async def get_redis() -> Optional[redis.Redis]:
    """Get or create Redis connection. Returns None if Redis is disabled."""
    global _redis_client

    if not settings.REDIS_ENABLED:
        return None

    if _redis_client is None:
        try:
            _redis_client = redis.from_url(
                settings.REDIS_URL,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
            )
            await _redis_client.ping()
            logger.info("redis_connected", url=settings.REDIS_URL)
        except Exception as e:
            logger.error("redis_connection_failed", error=str(e))
            _redis_client = None
            return None

    return _redis_client


async def close_redis() -> None:
    """Close Redis connection on shutdown."""
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None


def make_event_list_key(filters: EventFilters) -> str:
    return f"{EVENT_LIST_PREFIX}{filters.cache_key()}"


async def get_cached_events(filters: EventFilters) -> Optional[dict]:
    client = await get_redis()
    if not client:
        return None

    key = make_event_list_key(filters)
    try:
        data = await client.get(key)
        record_cache_operation("get", hit=bool(data))
        if data:
            logger.debug("cache_hit", key=key)
            return json.loads(data)
        logger.debug("cache_miss", key=key)
    except Exception as e:
        logger.error("cache_get_error", key=key, error=str(e))

    return None


async def set_cached_events(filters: EventFilters, data: dict) -> None:
    """Cache an event listing page with TTL."""
    client = await get_redis()
    if not client:
        return

    key = make_event_list_key(filters)
    try:
        await client.setex(key, settings.REDIS_CACHE_TTL, json.dumps(data, default=str))
        logger.debug("cache_set", key=key, ttl=settings.REDIS_CACHE_TTL)
    except Exception as e:
        logger.error("cache_set_error", key=key, error=str(e))


async def invalidate_event_cache() -> None:
    """Drop every cached listing page (available_spots or event data changed)."""
    client = await get_redis()
    if not client:
        return

    try:
        deleted = 0
        async for key in client.scan_iter(match=f"{EVENT_LIST_PREFIX}*", count=100):
            await client.delete(key)
            deleted += 1
        logger.info("cache_invalidated", keys_deleted=deleted)
    except Exception as e:
        logger.error("cache_invalidation_error", error=str(e))


async def get_cache_stats() -> dict:
    """Get Redis cache statistics for monitoring."""
    client = await get_redis()
    if not client:
        return {"status": "disabled"}

    try:
        info = await client.info("stats")
        hits = info.get("keyspace_hits", 0)
        misses = info.get("keyspace_misses", 0)
        return {
            "status": "connected",
            "hits": hits,
            "misses": misses,
            "hit_rate": round(hits / max(hits + misses, 1) * 100, 2),
        }
    except Exception as e:
        return {"status": "error", "error": str(e)}
