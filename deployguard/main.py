"""Main FastAPI application."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI
from starlette.exceptions import HTTPException as StarletteHTTPException

from deployguard import __version__
from deployguard.api import health
from deployguard.config import setup_logging
from deployguard.core.exceptions import DeployGuardError
from deployguard.core.handlers import (
    deploy_guard_error_handler,
    general_exception_handler,
    http_exception_handler,
)
from deployguard.core.health import HealthService, ReadinessService
from deployguard.core.middleware import (
    LoggingMiddleware,
    RequestIDMiddleware,
    SecurityHeadersMiddleware,
)
from deployguard.core.observability import init_sentry
from deployguard.core.settings import Settings, settings as default_settings
from deployguard.db.pool import ConnectionPoolManager
from deployguard.models.common import ApiInfo

logger = logging.getLogger(__name__)


def create_app(
    config: Optional[Settings] = None,
    pool: Optional[ConnectionPoolManager] = None,
) -> FastAPI:
    """Create and configure FastAPI application.

    Args:
        config: Settings to use instead of the environment-derived defaults
        pool: Connection pool manager to use instead of the process-wide instance
    """
    config = config or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Handle application startup and shutdown."""
        setup_logging(config)
        init_sentry(config)

        logger.info(
            f"Starting {config.app_name} health service",
            extra={
                "version": __version__,
                "environment": config.environment,
                "railway": config.is_railway,
            },
        )

        manager = pool or ConnectionPoolManager.get_instance()
        if manager.is_database_available():
            manager.start_health_check()

        app.state.pool = manager
        app.state.health_service = HealthService(pool=manager, config=config)
        app.state.readiness_service = ReadinessService(config=config)

        yield

        logger.info(f"Shutting down {config.app_name} health service")
        await manager.graceful_shutdown()

    app = FastAPI(
        title=config.app_name,
        description="Health, readiness and liveness probes for the deployed application.",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        openapi_tags=[
            {
                "name": "health",
                "description": "Health check and system monitoring endpoints",
            },
        ],
    )

    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(LoggingMiddleware)

    app.add_exception_handler(
        DeployGuardError, deploy_guard_error_handler  # type: ignore[arg-type]
    )
    app.add_exception_handler(
        StarletteHTTPException, http_exception_handler  # type: ignore[arg-type]
    )
    app.add_exception_handler(Exception, general_exception_handler)

    @app.get(
        "/api",
        response_model=ApiInfo,
        summary="API Information",
        description="Service name, version and probe locations",
    )
    async def api_info() -> ApiInfo:
        return ApiInfo(
            name=config.app_name,
            version=__version__,
            environment=config.environment,
            endpoints={
                "health": "/api/health",
                "ready": "/api/ready",
                "live": "/api/health/live",
                "docs": "/docs",
            },
        )

    app.include_router(health.router)

    return app


# Create app instance
app = create_app()
