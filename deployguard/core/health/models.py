"""Health and readiness data models."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class HealthStatus(str, Enum):
    """Health status enumeration."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


class ReadinessStatus(str, Enum):
    """Readiness status enumeration."""

    READY = "ready"
    NOT_READY = "not_ready"
    UNKNOWN = "unknown"


class CheckResult(BaseModel):
    """Individual health check result."""

    model_config = ConfigDict(extra="allow")

    status: HealthStatus = HealthStatus.UNKNOWN
    message: Optional[str] = None
    error: Optional[str] = None


class DatabaseCheck(CheckResult):
    latency: float = Field(0.0, description="Query round-trip in milliseconds")
    pool: Optional[Dict[str, Any]] = Field(
        None, description="Connection statistics from pg_stat_activity"
    )


class MemoryCheck(CheckResult):
    usage: int = Field(0, description="Process resident memory in MB")
    total: int = Field(0, description="Total memory in MB")
    percentage: float = Field(0.0, description="Memory used percentage")


class SentryCheck(CheckResult):
    dsn: str = Field("not_configured", description="configured or not_configured")


class FilesystemCheck(CheckResult):
    writable: Optional[bool] = None


class HealthChecks(BaseModel):
    """The fixed set of health sub-checks."""

    database: DatabaseCheck = Field(default_factory=DatabaseCheck)
    memory: MemoryCheck = Field(default_factory=MemoryCheck)
    sentry: SentryCheck = Field(default_factory=SentryCheck)
    filesystem: FilesystemCheck = Field(default_factory=FilesystemCheck)

    def items(self) -> Iterator[Tuple[str, CheckResult]]:
        for name in type(self).model_fields:
            yield name, getattr(self, name)

    def statuses(self) -> List[HealthStatus]:
        return [check.status for _, check in self.items()]


class HealthResponse(BaseModel):
    """Complete health response model."""

    model_config = ConfigDict(populate_by_name=True)

    status: HealthStatus
    timestamp: datetime
    version: str
    environment: str
    checks: HealthChecks
    uptime: float = Field(..., description="Process uptime in seconds")
    response_time: float = Field(
        0.0, alias="responseTime", description="Probe duration in milliseconds"
    )


class ReadinessCheck(BaseModel):
    """Individual readiness check result."""

    model_config = ConfigDict(extra="allow")

    status: ReadinessStatus = ReadinessStatus.UNKNOWN
    message: Optional[str] = None
    error: Optional[str] = None


class ReadinessChecks(BaseModel):
    """The fixed set of readiness sub-checks."""

    database_connection: ReadinessCheck = Field(default_factory=ReadinessCheck)
    database_migrations: ReadinessCheck = Field(default_factory=ReadinessCheck)
    essential_data: ReadinessCheck = Field(default_factory=ReadinessCheck)
    environment_variables: ReadinessCheck = Field(default_factory=ReadinessCheck)
    sentry_integration: ReadinessCheck = Field(default_factory=ReadinessCheck)

    def items(self) -> Iterator[Tuple[str, ReadinessCheck]]:
        for name in type(self).model_fields:
            yield name, getattr(self, name)

    def all_ready(self) -> bool:
        return all(check.status == ReadinessStatus.READY for _, check in self.items())


class ReadinessResponse(BaseModel):
    """Complete readiness response model."""

    model_config = ConfigDict(populate_by_name=True)

    status: ReadinessStatus
    timestamp: datetime
    version: str
    environment: str
    checks: ReadinessChecks
    response_time: float = Field(
        0.0, alias="responseTime", description="Probe duration in milliseconds"
    )


class LivenessResponse(BaseModel):
    """Lightweight liveness response."""

    status: str = "alive"
    timestamp: datetime
    uptime: int
    pid: int
    memory: Dict[str, float]
    railway: Dict[str, Optional[str]]
    python_version: str
    platform: str
