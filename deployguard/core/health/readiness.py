"""Readiness checks: deeper preconditions for serving traffic."""

import logging
import os
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Callable, Mapping, Optional

from sqlalchemy import bindparam, text
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from deployguard import __version__
from deployguard.core.observability import capture_exception, sentry_status
from deployguard.core.settings import Settings, settings as default_settings
from deployguard.db.pool import to_async_url

from .models import (
    ReadinessCheck,
    ReadinessChecks,
    ReadinessResponse,
    ReadinessStatus,
)

logger = logging.getLogger(__name__)

READINESS_CONNECT_TIMEOUT = 10  # seconds

EXISTING_TABLES_QUERY = text(
    """
    SELECT table_name
    FROM information_schema.tables
    WHERE table_schema = 'public'
    AND table_name IN :names
    """
).bindparams(bindparam("names", expanding=True))

NOT_CONFIGURED = "DATABASE_URL not configured"


def _not_ready(error: str, **details) -> ReadinessCheck:
    return ReadinessCheck(status=ReadinessStatus.NOT_READY, error=error, **details)


class ReadinessService:
    """Evaluates readiness over a dedicated short-lived connection.

    The shared pool is deliberately not used, so readiness does not depend on
    pool exhaustion.
    """

    def __init__(
        self,
        config: Optional[Settings] = None,
        engine_factory: Callable[..., AsyncEngine] = create_async_engine,
        environ: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.config = config or default_settings
        self._engine_factory = engine_factory
        self._environ = environ

    @property
    def environ(self) -> Mapping[str, str]:
        return os.environ if self._environ is None else self._environ

    @asynccontextmanager
    async def _connect(self) -> AsyncIterator[AsyncEngine]:
        engine = self._engine_factory(
            to_async_url(self.config.database_url),
            pool_size=1,
            max_overflow=0,
            connect_args={"timeout": READINESS_CONNECT_TIMEOUT},
        )
        try:
            yield engine
        finally:
            await engine.dispose()

    async def check_database_connection(self) -> ReadinessCheck:
        if not self.config.database_url:
            return _not_ready(NOT_CONFIGURED)
        try:
            async with self._connect() as engine:
                async with engine.connect() as conn:
                    await conn.execute(text("SELECT 1"))
            return ReadinessCheck(
                status=ReadinessStatus.READY,
                message="Database connection successful",
            )
        except Exception as e:
            logger.warning(f"Readiness database connection failed: {e}")
            return _not_ready(str(e))

    async def check_database_migrations(self) -> ReadinessCheck:
        if not self.config.database_url:
            return _not_ready(NOT_CONFIGURED)

        expected = list(self.config.readiness_expected_tables)
        try:
            async with self._connect() as engine:
                async with engine.connect() as conn:
                    result = await conn.execute(
                        EXISTING_TABLES_QUERY, {"names": expected}
                    )
                    existing = [row[0] for row in result.all()]
        except Exception as e:
            logger.warning(f"Readiness migration check failed: {e}")
            return _not_ready(str(e))

        missing = [table for table in expected if table not in existing]
        if missing:
            return _not_ready(
                f"Missing tables: {', '.join(missing)}",
                existing_tables=existing,
                missing_tables=missing,
            )
        return ReadinessCheck(
            status=ReadinessStatus.READY,
            message="All required tables exist",
            existing_tables=existing,
        )

    async def check_essential_data(self) -> ReadinessCheck:
        if not self.config.database_url:
            return _not_ready(NOT_CONFIGURED)

        table = self.config.readiness_reference_table
        try:
            async with self._connect() as engine:
                async with engine.connect() as conn:
                    result = await conn.execute(
                        text(f'SELECT 1 FROM "{table}" LIMIT 1')
                    )
                    has_rows = result.first() is not None
        except Exception as e:
            logger.warning(f"Readiness essential data check failed: {e}")
            return _not_ready(str(e))

        return ReadinessCheck(
            status=ReadinessStatus.READY if has_rows else ReadinessStatus.NOT_READY,
            message="Essential data exists"
            if has_rows
            else f"Reference table {table} is empty",
            reference_table=table,
            data_available=has_rows,
        )

    def check_environment_variables(self) -> ReadinessCheck:
        """Report which required variables are missing, never their values."""
        required = list(self.config.readiness_required_env_vars)
        missing = [name for name in required if not self.environ.get(name)]
        return ReadinessCheck(
            status=ReadinessStatus.READY if not missing else ReadinessStatus.NOT_READY,
            message="All required environment variables present"
            if not missing
            else "Missing environment variables",
            missing_variables=missing,
            total_required=len(required),
            configured=len(required) - len(missing),
        )

    def check_sentry_integration(self) -> ReadinessCheck:
        try:
            state = sentry_status()
        except Exception as e:
            return _not_ready(str(e))

        ready = state["client_active"] and state["dsn_configured"]
        return ReadinessCheck(
            status=ReadinessStatus.READY if ready else ReadinessStatus.NOT_READY,
            message="Sentry properly configured" if ready else "Sentry not configured",
            configured=state["client_active"],
            dsn_present=state["dsn_configured"],
        )

    async def get_readiness_status(self) -> ReadinessResponse:
        """Run every readiness check. Never raises."""
        start = time.perf_counter()
        checks = ReadinessChecks()

        try:
            checks.database_connection = await self.check_database_connection()
            checks.database_migrations = await self.check_database_migrations()
            checks.essential_data = await self.check_essential_data()
            checks.environment_variables = self.check_environment_variables()
            checks.sentry_integration = self.check_sentry_integration()
            status = (
                ReadinessStatus.READY if checks.all_ready() else ReadinessStatus.NOT_READY
            )
        except Exception as e:
            logger.error(f"Readiness check failed: {e}", exc_info=True)
            capture_exception(e, tags={"component": "readiness-check"})
            status = ReadinessStatus.NOT_READY

        return ReadinessResponse(
            status=status,
            timestamp=datetime.now(timezone.utc),
            version=__version__,
            environment=self.config.environment,
            checks=checks,
            response_time=round((time.perf_counter() - start) * 1000, 2),
        )
