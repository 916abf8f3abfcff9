"""Redis client for session lookup and entitlement caching"""
import redis
import json
import logging
from typing import Optional
from reelcoin.core.config import settings

logger = logging.getLogger(__name__)

# Lazy initialization - no connection at import time
_client = None


def get_redis_client():
    """Get or create Redis client (lazy initialization)

    This prevents connection attempts during import, allowing mocks to be applied first.
    """
    global _client
    if _client is None:
        _client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    return _client


# Session TTL (30 days)
SESSION_TTL = 30 * 24 * 60 * 60


def set_session(session_id: str, account_id: str) -> None:
    """Store session in Redis (called by the identity provider integration)"""
    key = f"session:{session_id}"
    get_redis_client().setex(key, SESSION_TTL, account_id)


def get_session(session_id: str) -> Optional[str]:
    """Get account_id from session"""
    key = f"session:{session_id}"
    return get_redis_client().get(key)


def delete_session(session_id: str) -> None:
    """Delete session from Redis"""
    key = f"session:{session_id}"
    get_redis_client().delete(key)


def get_cached_premium(account_id: str) -> Optional[bool]:
    """Get cached premium flag, None on miss or when Redis is unavailable"""
    key = f"cache:premium:{account_id}"
    try:
        cached = get_redis_client().get(key)
    except redis.RedisError as e:
        logger.warning(f"Premium cache read failed for {account_id}: {e}")
        return None
    if cached is None:
        return None
    return json.loads(cached)


def set_cached_premium(account_id: str, is_premium: bool) -> None:
    """Cache premium flag for PREMIUM_CACHE_TTL seconds"""
    key = f"cache:premium:{account_id}"
    try:
        get_redis_client().setex(key, settings.PREMIUM_CACHE_TTL, json.dumps(is_premium))
    except redis.RedisError as e:
        logger.warning(f"Premium cache write failed for {account_id}: {e}")


def invalidate_premium_cache(account_id: str) -> None:
    """Drop the cached premium flag.

    Gracefully handles Redis failures - cache invalidation should not break ledger operations.
    """
    key = f"cache:premium:{account_id}"
    try:
        get_redis_client().delete(key)
    except redis.RedisError as e:
        logger.warning(f"Failed to invalidate premium cache for {account_id}: {e}")
