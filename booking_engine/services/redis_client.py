# booking_engine/services/redis_client.py
"""
Shared async Redis client for holds and rate limiting.
Both features degrade when Redis is missing, so None is a valid answer.
"""
from __future__ import annotations

import logging
from typing import Optional

import redis.asyncio as redis

from booking_engine.core.config import settings

logger = logging.getLogger(__name__)

# Redis client singleton
_redis_client: Optional[redis.Redis] = None


def get_redis_client() -> Optional[redis.Redis]:
    """Get or create the async Redis client; None when REDIS_URL is not configured."""
    global _redis_client
    if _redis_client is not None:
        return _redis_client

    redis_url = settings.REDIS_URL
    if not redis_url:
        logger.warning("REDIS_URL not set, holds and rate limiting disabled")
        return None

    # Upstash requires TLS
    if "upstash.io" in redis_url and redis_url.startswith("redis://"):
        redis_url = redis_url.replace("redis://", "rediss://", 1)
        logger.info("Converted Redis URL to SSL for Upstash")

    _redis_client = redis.from_url(
        redis_url,
        decode_responses=True,
        socket_connect_timeout=3,
        socket_timeout=2,
        retry_on_timeout=True,
        health_check_interval=30,
    )
    logger.info("Redis client configured: %s", redis_url.split("@")[-1])
    return _redis_client


def set_redis_client(client: Optional[redis.Redis]) -> None:
    """Swap the shared client (tests install an in-memory double here)."""
    global _redis_client
    _redis_client = client
