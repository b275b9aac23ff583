"""
Tests for dripline/utils/rate_limiter.py - Redis sliding window limiter.
"""
import time
import pytest
from unittest.mock import AsyncMock, MagicMock

from dripline.utils.rate_limiter import check_rate_limit


def _pipeline(count: int):
    pipe = MagicMock()
    pipe.execute = AsyncMock(return_value=[0, 1, count, True])
    return pipe


class TestCheckRateLimit:
    @pytest.mark.asyncio
    async def test_under_limit_allowed(self, mock_redis):
        mock_redis.pipeline = MagicMock(return_value=_pipeline(5))

        allowed, retry_after = await check_rate_limit("ip:1.2.3.4", limit=10)

        assert allowed is True
        assert retry_after is None
        pipe = mock_redis.pipeline.return_value
        assert pipe.zadd.call_args.args[0] == "dripline:ratelimit:ip:1.2.3.4"

    @pytest.mark.asyncio
    async def test_over_limit_blocked_with_retry_after(self, mock_redis):
        mock_redis.pipeline = MagicMock(return_value=_pipeline(11))
        mock_redis.zrange = AsyncMock(return_value=[("t", time.time() - 20)])

        allowed, retry_after = await check_rate_limit("ip:1.2.3.4", limit=10, window=60)

        assert allowed is False
        assert 38 <= retry_after <= 40

    @pytest.mark.asyncio
    async def test_retry_after_at_least_one_second(self, mock_redis):
        mock_redis.pipeline = MagicMock(return_value=_pipeline(11))
        mock_redis.zrange = AsyncMock(return_value=[("t", time.time() - 120)])

        _, retry_after = await check_rate_limit("ip:1.2.3.4", limit=10, window=60)

        assert retry_after == 1

    @pytest.mark.asyncio
    async def test_redis_failure_allows_request(self, mock_redis):
        mock_redis.pipeline = MagicMock(side_effect=ConnectionError("redis down"))

        assert await check_rate_limit("ip:1.2.3.4", limit=10) == (True, None)
