# booking_engine/services/rate_limit.py
"""
Fixed-window request counter in Redis, shared by every app instance.
"""
from __future__ import annotations

import time
from typing import Callable, Optional

import structlog
from redis.exceptions import RedisError

from booking_engine.core.config import settings
from booking_engine.services.redis_client import get_redis_client

logger = structlog.get_logger(__name__)

WINDOW_SECONDS = 60


class RateLimiter:
    def __init__(self, limit: Optional[int] = None, window_seconds: int = WINDOW_SECONDS,
                 client_factory: Callable = get_redis_client):
        self.limit = limit if limit is not None else settings.RATE_LIMIT_PER_MINUTE
        self.window_seconds = window_seconds
        self._client_factory = client_factory

    async def hit(self, channel: str, identity: str) -> bool:
        """Count one request; False once the caller is over the limit. Fails open."""
        if self.limit <= 0:
            return True
        client = self._client_factory()
        if client is None:
            return True

        window = int(time.time() // self.window_seconds)
        key = f"rate:{channel}:{identity}:{window}"
        try:
            count = await client.incr(key)
            if count == 1:
                await client.expire(key, self.window_seconds)
        except (RedisError, OSError) as e:
            logger.warning("rate_limit_unavailable", channel=channel, error=str(e))
            return True

        if count > self.limit:
            logger.info("rate_limited", channel=channel, identity=identity, count=count)
            return False
        return True
