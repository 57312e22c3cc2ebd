"""Health sub-check implementations."""

import logging
import time
import uuid
from pathlib import Path
from typing import Optional

import aiofiles
import aiofiles.os
import psutil

from deployguard.core.observability import sentry_status
from deployguard.db.pool import ConnectionPoolManager

from .models import (
    DatabaseCheck,
    FilesystemCheck,
    HealthStatus,
    MemoryCheck,
    SentryCheck,
)

logger = logging.getLogger(__name__)

# Health thresholds
DATABASE_LATENCY_THRESHOLD_MS = 1000
MEMORY_WARNING_THRESHOLD = 85  # percent
MEMORY_CRITICAL_THRESHOLD = 95  # percent

MARKER_FILE_NAME = ".tmp-health-check"


def classify_memory(percentage: float) -> HealthStatus:
    if percentage < MEMORY_WARNING_THRESHOLD:
        return HealthStatus.HEALTHY
    if percentage < MEMORY_CRITICAL_THRESHOLD:
        return HealthStatus.DEGRADED
    return HealthStatus.UNHEALTHY


class HealthMonitor:
    """Runs the individual health checks. Every check catches its own errors."""

    def __init__(
        self,
        pool: Optional[ConnectionPoolManager],
        marker_dir: Path = Path("."),
    ) -> None:
        self.pool = pool
        self.marker_dir = marker_dir

    async def check_database(self) -> DatabaseCheck:
        """Run a trivial query through the pool and time it."""
        start = time.perf_counter()
        try:
            if self.pool is None:
                raise RuntimeError("Database pool not configured")
            await self.pool.perform_health_check()
        except Exception as e:
            latency = round((time.perf_counter() - start) * 1000, 2)
            logger.warning(f"Database health check failed: {e}")
            return DatabaseCheck(
                status=HealthStatus.UNHEALTHY,
                latency=latency,
                error=str(e),
            )

        latency = round((time.perf_counter() - start) * 1000, 2)
        status = (
            HealthStatus.HEALTHY
            if latency < DATABASE_LATENCY_THRESHOLD_MS
            else HealthStatus.DEGRADED
        )
        pool_info = await self.pool.get_connection_info()

        return DatabaseCheck(
            status=status,
            latency=latency,
            message="Database query succeeded"
            if status == HealthStatus.HEALTHY
            else f"Database latency high: {latency}ms (>{DATABASE_LATENCY_THRESHOLD_MS}ms)",
            pool=(
                {
                    "utilization": pool_info["pool_utilization"],
                    "active_connections": pool_info["active_connections"],
                    "total_connections": pool_info["total_connections"],
                }
                if pool_info
                else None
            ),
        )

    async def check_memory(self) -> MemoryCheck:
        """Classify memory pressure from the used/total ratio."""
        try:
            memory = psutil.virtual_memory()
            percentage = memory.used / memory.total * 100
            process_rss = psutil.Process().memory_info().rss

            return MemoryCheck(
                status=classify_memory(percentage),
                usage=round(process_rss / 1024 / 1024),
                total=round(memory.total / 1024 / 1024),
                percentage=round(percentage, 1),
            )
        except Exception as e:
            logger.warning(f"Memory health check failed: {e}")
            return MemoryCheck(status=HealthStatus.UNHEALTHY, error=str(e))

    async def check_sentry(self) -> SentryCheck:
        """Missing monitoring degrades health, it never fails it."""
        try:
            state = sentry_status()
            configured = state["client_active"] and state["dsn_configured"]
            return SentryCheck(
                status=HealthStatus.HEALTHY if configured else HealthStatus.DEGRADED,
                dsn="configured" if state["dsn_configured"] else "not_configured",
            )
        except Exception as e:
            logger.warning(f"Sentry health check failed: {e}")
            return SentryCheck(status=HealthStatus.DEGRADED, error=str(e))

    async def check_filesystem(self) -> FilesystemCheck:
        """Write and delete a marker file unique to this call."""
        marker = self.marker_dir / f"{MARKER_FILE_NAME}-{uuid.uuid4().hex}"
        try:
            async with aiofiles.open(marker, "w") as f:
                await f.write("health-check")
            await aiofiles.os.remove(marker)
            return FilesystemCheck(status=HealthStatus.HEALTHY, writable=True)
        except Exception as e:
            logger.warning(f"Filesystem health check failed: {e}")
            return FilesystemCheck(
                status=HealthStatus.UNHEALTHY, writable=False, error=str(e)
            )
