"""
Tests for dripline/api/health.py - health check endpoints (liveness, readiness, deep).
"""
import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

from dripline.api.health import (
    health_check,
    readiness_check,
    deep_health_check,
    _check_task_processor,
    APP_VERSION,
)


# ---------------------------------------------------------------------------
# GET /health - basic liveness
# ---------------------------------------------------------------------------


class TestHealthCheck:
    @pytest.mark.asyncio
    async def test_returns_healthy(self):
        result = await health_check()
        assert result["status"] == "healthy"
        assert result["version"] == APP_VERSION
        assert datetime.fromisoformat(result["timestamp"]).tzinfo is not None


# ---------------------------------------------------------------------------
# GET /health/ready - readiness check (DB + Redis)
# ---------------------------------------------------------------------------


class TestReadinessCheck:
    @pytest.mark.asyncio
    async def test_all_healthy_returns_ready(self, mock_redis):
        mock_db = AsyncMock()
        result = await readiness_check(db=mock_db)

        assert result["status"] == "ready"
        assert result["checks"] == {"database": True, "redis": True}

    @pytest.mark.asyncio
    async def test_db_failure_returns_degraded(self, mock_redis):
        mock_db = AsyncMock()
        mock_db.execute = AsyncMock(side_effect=Exception("Connection refused"))

        result = await readiness_check(db=mock_db)

        assert result["status"] == "degraded"
        assert result["checks"]["database"] is False

    @pytest.mark.asyncio
    async def test_redis_failure_returns_degraded(self):
        with patch("dripline.api.health.get_redis", new_callable=AsyncMock, side_effect=ConnectionError("down")):
            result = await readiness_check(db=AsyncMock())

        assert result["status"] == "degraded"
        assert result["checks"]["redis"] is False


# ---------------------------------------------------------------------------
# GET /health/deep
# ---------------------------------------------------------------------------


class TestDeepHealthCheck:
    @pytest.mark.asyncio
    async def test_fresh_heartbeat_is_healthy(self, mock_redis):
        mock_redis.get = AsyncMock(return_value=datetime.now(timezone.utc).isoformat())

        result = await deep_health_check(db=AsyncMock())

        assert result["status"] == "healthy"
        assert result["checks"]["task_processor"]["healthy"] is True

    @pytest.mark.asyncio
    async def test_missing_heartbeat_is_degraded(self, mock_redis):
        mock_redis.get = AsyncMock(return_value=None)

        result = await deep_health_check(db=AsyncMock())

        assert result["status"] == "degraded"
        assert result["checks"]["task_processor"]["error"] == "no heartbeat"

    @pytest.mark.asyncio
    async def test_stale_heartbeat(self, mock_redis):
        stale = datetime.now(timezone.utc) - timedelta(minutes=10)
        mock_redis.get = AsyncMock(return_value=stale.isoformat())

        check = await _check_task_processor()

        assert check["healthy"] is False
        assert check["last_heartbeat_seconds_ago"] >= 599

    @pytest.mark.asyncio
    async def test_database_down_is_unhealthy(self, mock_redis):
        mock_db = AsyncMock()
        mock_db.execute = AsyncMock(side_effect=Exception("Connection refused"))

        result = await deep_health_check(db=mock_db)

        assert result["status"] == "unhealthy"
