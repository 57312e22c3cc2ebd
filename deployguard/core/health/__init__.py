"""Health monitoring module."""

from .models import (
    CheckResult,
    HealthChecks,
    HealthResponse,
    HealthStatus,
    LivenessResponse,
    ReadinessCheck,
    ReadinessChecks,
    ReadinessResponse,
    ReadinessStatus,
)
from .readiness import ReadinessService
from .service import HealthService

__all__ = [
    "CheckResult",
    "HealthChecks",
    "HealthResponse",
    "HealthStatus",
    "LivenessResponse",
    "ReadinessCheck",
    "ReadinessChecks",
    "ReadinessResponse",
    "ReadinessStatus",
    "HealthService",
    "ReadinessService",
]
