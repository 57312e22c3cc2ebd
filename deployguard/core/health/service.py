"""Health service orchestrator."""

import logging
import time
from datetime import datetime, timezone
from typing import Iterable, Optional

from deployguard import __version__
from deployguard.core.observability import (
    add_breadcrumb,
    capture_exception,
    capture_message,
)
from deployguard.core.settings import Settings, settings as default_settings
from deployguard.db.pool import ConnectionPoolManager

from .models import HealthChecks, HealthResponse, HealthStatus
from .monitors import HealthMonitor

logger = logging.getLogger(__name__)

# Application start time for uptime calculation
_start_time = time.time()


def determine_overall_status(statuses: Iterable[HealthStatus]) -> HealthStatus:
    """Healthy only if every check is healthy; anything else degrades."""
    if all(status == HealthStatus.HEALTHY for status in statuses):
        return HealthStatus.HEALTHY
    return HealthStatus.DEGRADED


def http_status_for(status: HealthStatus) -> int:
    """Degraded still serves traffic; only unhealthy maps to 503."""
    return 503 if status == HealthStatus.UNHEALTHY else 200


class HealthService:
    """Health service orchestrator coordinating all health checks."""

    def __init__(
        self,
        pool: Optional[ConnectionPoolManager] = None,
        config: Optional[Settings] = None,
    ) -> None:
        self.config = config or default_settings
        self.monitor = HealthMonitor(pool, marker_dir=self.config.health_marker_dir)

    def _uptime(self) -> float:
        return round(time.time() - _start_time, 2)

    async def get_health_status(self) -> HealthResponse:
        """Evaluate every check and compile the snapshot. Never raises."""
        start = time.perf_counter()
        checks = HealthChecks()

        try:
            checks.database = await self.monitor.check_database()
            checks.memory = await self.monitor.check_memory()
            checks.sentry = await self.monitor.check_sentry()
            checks.filesystem = await self.monitor.check_filesystem()

            overall = determine_overall_status(checks.statuses())
            response = self._build_response(overall, checks, start)

            add_breadcrumb(
                category="health_check",
                message=f"Health check completed: {overall.value}",
                level="info" if overall == HealthStatus.HEALTHY else "warning",
                data={
                    "status": overall.value,
                    "checks": {name: c.status.value for name, c in checks.items()},
                    "response_time": response.response_time,
                },
            )
            if overall != HealthStatus.HEALTHY:
                capture_message(
                    "Health check degraded",
                    level="warning",
                    tags={"feature": "health_check", "status": overall.value},
                )
            return response

        except Exception as e:
            logger.error(f"Health check failed: {e}", exc_info=True)
            response = self._build_response(HealthStatus.UNHEALTHY, checks, start)
            capture_message(
                "Health check failed",
                level="error",
                tags={"feature": "health_check", "status": "unhealthy"},
                contexts={
                    "health": {
                        "status": "unhealthy",
                        "response_time": response.response_time,
                    }
                },
            )
            capture_exception(e, tags={"component": "health-check"})
            return response

    def _build_response(
        self, status: HealthStatus, checks: HealthChecks, start: float
    ) -> HealthResponse:
        return HealthResponse(
            status=status,
            timestamp=datetime.now(timezone.utc),
            version=__version__,
            environment=self.config.environment,
            checks=checks,
            uptime=self._uptime(),
            response_time=round((time.perf_counter() - start) * 1000, 2),
        )
