"""
Redis client utilities.

Provides a lazily initialized asyncio Redis client to avoid import-time connections.
"""

import functools

import redis.asyncio as aioredis

from whatsapp_flows.core.settings import get_settings


@functools.lru_cache()
def get_redis_url() -> str:
    """Get Redis URL from settings (empty string when not configured)."""
    return get_settings().REDIS_URL


@functools.lru_cache()
def get_redis_client() -> aioredis.Redis | None:
    """
    Get asyncio Redis client (cached).

    Returns None when REDIS_URL is not configured.
    """
    url = get_redis_url()
    if not url:
        return None
    return aioredis.from_url(url, decode_responses=True)
