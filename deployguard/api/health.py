"""Health, readiness and liveness endpoints."""

import os
import platform
import sys
import time
from datetime import datetime, timezone
from typing import Any

import psutil
from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse

from deployguard.core.exceptions import ServiceUnavailableError
from deployguard.core.health import (
    HealthResponse,
    HealthService,
    LivenessResponse,
    ReadinessResponse,
    ReadinessService,
    ReadinessStatus,
)
from deployguard.core.health.service import _start_time, http_status_for
from deployguard.core.settings import settings

router = APIRouter(prefix="/api", tags=["health"])


def _state_service(request: Request, name: str) -> Any:
    service = getattr(request.app.state, name, None)
    if service is None:
        raise ServiceUnavailableError("Health service is not initialized", service=name)
    return service


def get_health_service(request: Request) -> HealthService:
    return _state_service(request, "health_service")


def get_readiness_service(request: Request) -> ReadinessService:
    return _state_service(request, "readiness_service")


@router.get(
    "/health",
    status_code=status.HTTP_200_OK,
    response_model=HealthResponse,
    summary="Health check",
    description="Shallow liveness signal covering database, memory, Sentry and filesystem",
    responses={
        200: {"description": "Service is healthy or degraded"},
        503: {"description": "Health probe failed"},
    },
)
async def health_check(
    health_service: HealthService = Depends(get_health_service),
) -> JSONResponse:
    """Return the health snapshot; degraded still answers 200."""
    result = await health_service.get_health_status()
    return JSONResponse(
        content=result.model_dump(mode="json", by_alias=True),
        status_code=http_status_for(result.status),
    )


@router.get(
    "/ready",
    status_code=status.HTTP_200_OK,
    response_model=ReadinessResponse,
    summary="Readiness check",
    description="Check if the application is ready to receive traffic",
    responses={
        200: {"description": "All readiness checks passed"},
        503: {"description": "One or more readiness checks failed"},
    },
)
async def readiness_check(
    readiness_service: ReadinessService = Depends(get_readiness_service),
) -> JSONResponse:
    """Return the readiness snapshot; anything but ready answers 503."""
    result = await readiness_service.get_readiness_status()
    return JSONResponse(
        content=result.model_dump(mode="json", by_alias=True),
        status_code=200 if result.status == ReadinessStatus.READY else 503,
    )


@router.get(
    "/health/live",
    response_model=LivenessResponse,
    summary="Liveness probe",
    description="Lightweight check that the process is running",
)
async def liveness_check() -> LivenessResponse:
    memory = psutil.virtual_memory()
    rss = psutil.Process().memory_info().rss
    commit = settings.railway_git_commit_sha

    return LivenessResponse(
        timestamp=datetime.now(timezone.utc),
        uptime=int(time.time() - _start_time),
        pid=os.getpid(),
        memory={
            "used": round(rss / 1024 / 1024),
            "total": round(memory.total / 1024 / 1024),
            "percentage": round(memory.used / memory.total * 100),
        },
        railway={
            "environment": settings.railway_environment or "unknown",
            "deployment_id": settings.railway_deployment_id,
            "service": settings.railway_service_name,
            "git_commit": commit[:8] if commit else None,
        },
        python_version=sys.version.split()[0],
        platform=platform.system().lower(),
    )
