"""
Redis connection and time-window deduplication.
Prevents duplicate job publishing from repeated transitions or webhook retries.
"""
import logging

logger = logging.getLogger(__name__)

# Redis client (lazily initialized)
_redis_client = None


async def get_redis():
    """Get or create Redis connection."""
    global _redis_client
    if _redis_client is None:
        import redis.asyncio as aioredis
        from dripline.config import get_settings
        _redis_client = aioredis.from_url(
            get_settings().redis_url,
            decode_responses=True,
        )
    return _redis_client


async def close_redis() -> None:
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
    _redis_client = None


async def claim_dedup_key(key: str, window_seconds: int) -> bool:
    """
    Claim a dedup key for window_seconds.
    Returns True if this caller is first (proceed), False if the key is already held.
    """
    try:
        redis = await get_redis()
        # SET NX = only set if not exists. Returns True if set (new), None if exists (dupe).
        was_set = await redis.set(key, "1", nx=True, ex=window_seconds)
        if was_set:
            return True
        logger.info("Duplicate within %ds window: %s", window_seconds, key)
        return False
    except Exception as e:
        # Redis failure should NOT block publishing - assume not duplicate
        logger.warning("Redis dedup check failed: %s. Assuming not duplicate.", str(e))
        return True


async def release_dedup_key(key: str) -> None:
    """Drop a claim whose publish never committed so a retry is not blocked."""
    try:
        redis = await get_redis()
        await redis.delete(key)
    except Exception as e:
        logger.warning("Redis dedup release failed for %s: %s", key, str(e))
