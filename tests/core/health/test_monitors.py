"""Tests for the individual health checks."""

import asyncio
from unittest.mock import AsyncMock, Mock, patch

import pytest

from deployguard.core.exceptions import PoolNotInitializedError
from deployguard.core.health.models import HealthStatus
from deployguard.core.health.monitors import (
    HealthMonitor,
    classify_memory,
)


@pytest.fixture
def pool():
    """Pool manager double with a fast successful query."""
    mock_pool = Mock()
    mock_pool.perform_health_check = AsyncMock(return_value=True)
    mock_pool.get_connection_info = AsyncMock(
        return_value={
            "total_connections": 3,
            "active_connections": 1,
            "idle_connections": 2,
            "max_connections": 10,
            "pool_utilization": 30.0,
        }
    )
    return mock_pool


class TestDatabaseCheck:
    """Test the database check."""

    async def test_healthy_with_pool_stats(self, pool, tmp_path):
        """A fast query is healthy and carries pool statistics."""
        monitor = HealthMonitor(pool, marker_dir=tmp_path)

        result = await monitor.check_database()

        assert result.status == HealthStatus.HEALTHY
        assert result.latency < 1000
        assert result.pool == {
            "utilization": 30.0,
            "active_connections": 1,
            "total_connections": 3,
        }

    async def test_slow_query_is_degraded(self, pool, tmp_path):
        """Latency at or above one second degrades the check."""
        monitor = HealthMonitor(pool, marker_dir=tmp_path)

        with patch(
            "deployguard.core.health.monitors.time.perf_counter",
            side_effect=[10.0, 11.5],
        ):
            result = await monitor.check_database()

        assert result.status == HealthStatus.DEGRADED
        assert result.latency == 1500.0

    async def test_missing_pool_stats_are_omitted(self, pool, tmp_path):
        """Unavailable connection info leaves pool empty."""
        pool.get_connection_info.return_value = None
        monitor = HealthMonitor(pool, marker_dir=tmp_path)

        result = await monitor.check_database()

        assert result.status == HealthStatus.HEALTHY
        assert result.pool is None

    async def test_pool_not_initialized_is_unhealthy(self, pool, tmp_path):
        """An unavailable pool reports unhealthy instead of raising."""
        pool.perform_health_check.side_effect = PoolNotInitializedError()
        monitor = HealthMonitor(pool, marker_dir=tmp_path)

        result = await monitor.check_database()

        assert result.status == HealthStatus.UNHEALTHY
        assert "Database not available" in result.error
        pool.get_connection_info.assert_not_called()

    async def test_no_pool_is_unhealthy(self, tmp_path):
        """No pool manager at all reports unhealthy."""
        monitor = HealthMonitor(None, marker_dir=tmp_path)

        result = await monitor.check_database()

        assert result.status == HealthStatus.UNHEALTHY
        assert result.error


class TestMemoryCheck:
    """Test the memory check."""

    @pytest.mark.parametrize(
        "percentage,expected",
        [
            (10.0, HealthStatus.HEALTHY),
            (84.9, HealthStatus.HEALTHY),
            (85.0, HealthStatus.DEGRADED),
            (94.9, HealthStatus.DEGRADED),
            (95.0, HealthStatus.UNHEALTHY),
        ],
    )
    def test_classify_memory(self, percentage, expected):
        """Memory thresholds are 85% and 95%."""
        assert classify_memory(percentage) == expected

    @patch("psutil.Process")
    @patch("psutil.virtual_memory")
    async def test_memory_pressure_degrades(self, mock_memory, mock_process, tmp_path):
        """High used/total ratio degrades the check and reports MB figures."""
        mock_memory.return_value = Mock(used=90 * 1024**2, total=100 * 1024**2)
        mock_process.return_value.memory_info.return_value = Mock(rss=50 * 1024**2)
        monitor = HealthMonitor(None, marker_dir=tmp_path)

        result = await monitor.check_memory()

        assert result.status == HealthStatus.DEGRADED
        assert result.percentage == 90.0
        assert result.usage == 50
        assert result.total == 100

    @patch("psutil.virtual_memory", side_effect=OSError("no /proc"))
    async def test_memory_error_is_unhealthy(self, mock_memory, tmp_path):
        """psutil failures are reported, not raised."""
        monitor = HealthMonitor(None, marker_dir=tmp_path)

        result = await monitor.check_memory()

        assert result.status == HealthStatus.UNHEALTHY
        assert "no /proc" in result.error


class TestSentryCheck:
    """Test the external monitoring check."""

    @patch("deployguard.core.health.monitors.sentry_status")
    async def test_configured(self, mock_status, tmp_path):
        """Active client with a DSN is healthy."""
        mock_status.return_value = {"client_active": True, "dsn_configured": True}

        result = await HealthMonitor(None, marker_dir=tmp_path).check_sentry()

        assert result.status == HealthStatus.HEALTHY
        assert result.dsn == "configured"

    @patch("deployguard.core.health.monitors.sentry_status")
    async def test_not_configured_is_degraded(self, mock_status, tmp_path):
        """Missing monitoring degrades but never fails health."""
        mock_status.return_value = {"client_active": False, "dsn_configured": False}

        result = await HealthMonitor(None, marker_dir=tmp_path).check_sentry()

        assert result.status == HealthStatus.DEGRADED
        assert result.dsn == "not_configured"


class TestFilesystemCheck:
    """Test the filesystem check."""

    async def test_writable_directory(self, tmp_path):
        """Marker file is written and removed."""
        result = await HealthMonitor(None, marker_dir=tmp_path).check_filesystem()

        assert result.status == HealthStatus.HEALTHY
        assert result.writable is True
        assert list(tmp_path.iterdir()) == []

    async def test_overlapping_checks_all_healthy(self, tmp_path):
        """Concurrent checks never remove each other's marker."""
        monitor = HealthMonitor(None, marker_dir=tmp_path)

        for _ in range(20):
            results = await asyncio.gather(*(monitor.check_filesystem() for _ in range(5)))
            assert [r.status for r in results] == [HealthStatus.HEALTHY] * 5

        assert list(tmp_path.iterdir()) == []

    async def test_unwritable_directory(self, tmp_path):
        """I/O errors report unhealthy with writable false."""
        missing = tmp_path / "does-not-exist"

        result = await HealthMonitor(None, marker_dir=missing).check_filesystem()

        assert result.status == HealthStatus.UNHEALTHY
        assert result.writable is False
        assert result.error
