"""
Sliding-window request limiter backed by a Redis sorted set per key.
Members are unique per request, scores are arrival times.
"""
import logging
import time
import uuid
from typing import Optional

from dripline.utils.dedup import get_redis

logger = logging.getLogger(__name__)

KEY_PREFIX = "dripline:ratelimit"
WINDOW_SECONDS = 60


async def check_rate_limit(
    key: str,
    limit: int,
    window: int = WINDOW_SECONDS,
) -> tuple[bool, Optional[int]]:
    """
    Record one request under key and report whether it fits in the window.
    Returns (allowed, retry_after_seconds). Fails open when Redis is down.
    """
    redis_key = f"{KEY_PREFIX}:{key}"
    now = time.time()
    try:
        redis = await get_redis()
        pipe = redis.pipeline()
        pipe.zremrangebyscore(redis_key, 0, now - window)
        pipe.zadd(redis_key, {f"{now}:{uuid.uuid4().hex[:8]}": now})
        pipe.zcard(redis_key)
        pipe.expire(redis_key, window + 1)
        _, _, in_window, _ = await pipe.execute()

        if in_window <= limit:
            return True, None

        oldest = await redis.zrange(redis_key, 0, 0, withscores=True)
        retry_after = int(oldest[0][1] + window - now) if oldest else window
        logger.warning(
            "Rate limit exceeded: key=%s count=%d limit=%d", key, in_window, limit,
        )
        return False, max(retry_after, 1)
    except Exception as e:
        logger.warning("Rate limiter unavailable, allowing request: %s", str(e))
        return True, None
