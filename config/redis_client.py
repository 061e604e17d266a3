"""
config/redis_client.py
Async Redis client for catalog caching, the JWT deny-list and request rate limiting.

Redis is optional. When it is not connected, or a call fails, the helpers
fail open: cache misses, tokens are treated as not revoked, requests are
not rate limited. Each failure is logged as a warning.
"""

import json
import logging
from typing import Any, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from config.settings import settings

logger = logging.getLogger(__name__)


# ── Global client (initialized on startup) ───────────────────
redis_client: Optional[aioredis.Redis] = None


async def init_redis() -> None:
    """Initialize the Redis connection pool. The client is published only once it answers."""
    global redis_client
    client = aioredis.from_url(
        settings.REDIS_URL,
        encoding="utf-8",
        decode_responses=True,
        max_connections=50,
    )
    try:
        await client.ping()
    except Exception:
        await client.aclose()
        raise
    redis_client = client


async def close_redis() -> None:
    """Close Redis connection pool."""
    global redis_client
    if redis_client:
        await redis_client.aclose()
        redis_client = None


def get_redis() -> Optional[aioredis.Redis]:
    """FastAPI dependency to get the Redis client, or None when Redis is not connected."""
    return redis_client


# ── Helpers ───────────────────────────────────────────────────
class RedisCache:
    """Thin wrapper over the keys this service owns."""

    def __init__(self, client: Optional[aioredis.Redis]):
        self.client = client

    @property
    def available(self) -> bool:
        return self.client is not None

    # ── Generic Cache ─────────────────────────────────────────
    async def get(self, key: str) -> Optional[Any]:
        if not self.available:
            return None
        try:
            value = await self.client.get(key)
        except RedisError:
            logger.warning("Cache read failed for %s", key, exc_info=True)
            return None
        if value:
            return json.loads(value)
        return None

    async def set(self, key: str, value: Any, ttl: int = settings.REDIS_CACHE_TTL) -> None:
        if not self.available:
            return
        try:
            await self.client.setex(key, ttl, json.dumps(value, default=str))
        except RedisError:
            logger.warning("Cache write failed for %s", key, exc_info=True)

    async def delete(self, key: str) -> None:
        if not self.available:
            return
        try:
            await self.client.delete(key)
        except RedisError:
            logger.warning("Cache delete failed for %s", key, exc_info=True)

    # ── JWT Deny List ─────────────────────────────────────────
    async def revoke_token(self, jti: str, ttl_seconds: int) -> bool:
        """Add JWT ID to deny list until it expires. Returns False if it could not be stored."""
        if not self.available:
            logger.warning("Redis not connected, token %s not deny-listed", jti)
            return False
        try:
            await self.client.setex(f"jwt_revoked:{jti}", ttl_seconds, "1")
        except RedisError:
            logger.warning("Could not deny-list token %s", jti, exc_info=True)
            return False
        return True

    async def is_token_revoked(self, jti: str) -> bool:
        if not self.available:
            return False
        try:
            return await self.client.exists(f"jwt_revoked:{jti}") == 1
        except RedisError:
            logger.warning("Deny-list lookup failed, accepting token %s", jti, exc_info=True)
            return False

    # ── Rate Limiting ─────────────────────────────────────────
    async def check_rate_limit(self, key: str, limit: int, window_seconds: int = 60) -> bool:
        """
        Fixed window rate limiter.
        Returns True if request is allowed, False if rate limited.
        """
        if not self.available:
            return True
        try:
            current_count = await self.client.incr(key)
            if current_count == 1:
                await self.client.expire(key, window_seconds)
        except RedisError:
            logger.warning("Rate limit check failed for %s", key, exc_info=True)
            return True
        return current_count <= limit
