"""Database connection pool management."""

import asyncio
import logging
import signal
import sys
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from deployguard.core.exceptions import PoolNotInitializedError, ServiceError
from deployguard.core.observability import (
    RateLimitedReporter,
    add_breadcrumb,
    capture_exception,
)
from deployguard.core.settings import Settings, settings as default_settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

CONNECTION_STATS_QUERY = text(
    """
    SELECT
        count(*) AS total_connections,
        count(*) FILTER (WHERE state = 'active') AS active_connections,
        count(*) FILTER (WHERE state = 'idle') AS idle_connections
    FROM pg_stat_activity
    WHERE datname = current_database()
    """
)


def to_async_url(url: str) -> str:
    """Rewrite a libpq style URL to use the asyncpg driver."""
    for prefix in ("postgres://", "postgresql://"):
        if url.startswith(prefix):
            return "postgresql+asyncpg://" + url[len(prefix):]
    return url


def mask_database_url(url: str) -> str:
    """Hide the password portion of a connection URL."""
    scheme, sep, rest = url.partition("://")
    if not sep or "@" not in rest:
        return url
    credentials, _, host = rest.rpartition("@")
    user, has_password, _ = credentials.partition(":")
    if not has_password:
        return url
    return f"{scheme}://{user}:***@{host}"


class ConnectionPoolManager:
    """Owns the pooled database engine, its self-checks and its shutdown."""

    _instance: Optional["ConnectionPoolManager"] = None

    def __init__(
        self,
        config: Optional[Settings] = None,
        engine_factory: Callable[..., AsyncEngine] = create_async_engine,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.config = config or default_settings
        self.max_connections = self.config.pool_size
        self.idle_timeout = self.config.database_idle_timeout
        self.connect_timeout = self.config.database_connection_timeout
        self.max_lifetime = self.config.database_max_lifetime
        self.ssl = self.config.database_ssl
        self.health_check_interval = self.config.database_health_check_interval

        self._engine_factory = engine_factory
        self._sleep = sleep
        self._engine: Optional[AsyncEngine] = None
        self._health_check_task: Optional[asyncio.Task] = None
        self.health_check_reporter = RateLimitedReporter(
            "Database pool health check",
            window_seconds=60.0,
            tags={"component": "database-pool", "operation": "health-check"},
        )

    @classmethod
    def get_instance(cls) -> "ConnectionPoolManager":
        """Return the process-wide pool manager, creating it on first use."""
        if cls._instance is None:
            instance = cls()
            instance.initialize_pool()
            cls._instance = instance
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        cls._instance = None

    @property
    def engine(self) -> Optional[AsyncEngine]:
        return self._engine

    @property
    def health_check_task(self) -> Optional[asyncio.Task]:
        return self._health_check_task

    def _refusal_reason(self) -> Optional[str]:
        if not self.config.database_url:
            return "DATABASE_URL environment variable is not set - database features will be disabled"
        if self.config.database_url_is_localhost and self.config.is_production:
            return "DATABASE_URL points to localhost in production - database features will be disabled"
        return None

    def _engine_options(self) -> Dict[str, Any]:
        server_settings = {
            "application_name": self.config.railway_service_name,
            "statement_timeout": "30000",
            "idle_in_transaction_session_timeout": "60000",
        }
        connect_args: Dict[str, Any] = {
            "timeout": self.connect_timeout,
            "server_settings": server_settings,
        }
        if self.ssl:
            connect_args["ssl"] = "require"

        return {
            "pool_size": self.max_connections,
            "max_overflow": 0,
            "pool_timeout": self.connect_timeout,
            "pool_recycle": self.max_lifetime,
            "pool_pre_ping": True,
            "echo": self.config.database_debug and not self.config.is_production,
            "connect_args": connect_args,
        }

    def initialize_pool(self) -> bool:
        """Create the pooled engine from configuration.

        Returns:
            bool: True if the pool is available afterwards
        """
        if self._engine is not None:
            return True

        reason = self._refusal_reason()
        if reason:
            logger.warning(reason)
            return False

        logger.info(
            "Initializing database connection pool",
            extra={
                "max_connections": self.max_connections,
                "idle_timeout": self.idle_timeout,
                "connect_timeout": self.connect_timeout,
                "ssl": self.ssl,
                "url": mask_database_url(self.config.database_url),
            },
        )

        try:
            self._engine = self._engine_factory(
                to_async_url(self.config.database_url), **self._engine_options()
            )
        except Exception as e:
            logger.error(f"Failed to initialize database connection pool: {e}")
            capture_exception(
                e, tags={"component": "database-pool", "operation": "initialize"}
            )
            raise

        add_breadcrumb(
            category="database",
            message="Database connection pool initialized",
            data={"max_connections": self.max_connections, "ssl": self.ssl},
        )
        logger.info("Database connection pool initialized successfully")
        return True

    def is_database_available(self) -> bool:
        return self._engine is not None

    def get_database(self) -> AsyncEngine:
        """Return the live engine.

        Raises:
            PoolNotInitializedError: If the pool is unavailable
        """
        if self._engine is None:
            raise PoolNotInitializedError()
        return self._engine

    async def perform_health_check(self) -> bool:
        """Run a trivial query against the pool.

        Raises:
            PoolNotInitializedError: If the pool is unavailable
            ServiceError: If the query fails or returns an unexpected value
        """
        engine = self.get_database()
        try:
            async with engine.connect() as conn:
                result = await conn.execute(text("SELECT 1 AS health_check"))
                value = result.scalar()
        except Exception as e:
            raise ServiceError(f"Database pool health check failed: {e}") from e

        if value != 1:
            raise ServiceError("Unexpected health check result")

        add_breadcrumb(
            category="database",
            message="Database pool health check passed",
            level="debug",
        )
        return True

    async def _health_check_loop(self) -> None:
        while True:
            await self._sleep(self.health_check_interval)
            try:
                await self.perform_health_check()
            except Exception as e:
                self.health_check_reporter.report(e)

    def start_health_check(self) -> Optional[asyncio.Task]:
        """Start the periodic pool self-check on the running event loop."""
        if self.config.database_url_is_localhost and self.config.is_production:
            logger.warning(
                "Database health checks disabled: DATABASE_URL points to localhost in production"
            )
            return None

        if self._health_check_task is None or self._health_check_task.done():
            self._health_check_task = asyncio.create_task(self._health_check_loop())
            logger.info(
                "Database pool health check started",
                extra={"interval_seconds": self.health_check_interval},
            )
        return self._health_check_task

    async def get_connection_info(self) -> Optional[Dict[str, Any]]:
        """Connection counts from pg_stat_activity, or None if unavailable."""
        if self._engine is None:
            return None

        try:
            async with self._engine.connect() as conn:
                result = await conn.execute(CONNECTION_STATS_QUERY)
                row = result.mappings().first()
        except Exception as e:
            logger.error(f"Failed to get connection info: {e}")
            return None

        if row is None:
            return None

        total = int(row["total_connections"])
        return {
            "total_connections": total,
            "active_connections": int(row["active_connections"]),
            "idle_connections": int(row["idle_connections"]),
            "max_connections": self.max_connections,
            "pool_utilization": round(total / self.max_connections * 100, 2),
        }

    async def execute_with_retry(
        self,
        operation: Callable[[AsyncEngine], Awaitable[T]],
        max_retries: int = 3,
        initial_delay: float = 1.0,
    ) -> T:
        """Run an operation against the engine with exponential backoff.

        Args:
            operation: Coroutine function receiving the engine
            max_retries: Total number of attempts
            initial_delay: Seconds to wait after the first failure, doubled each time

        Returns:
            The operation's result

        Raises:
            Exception: The last error once all attempts are exhausted
        """
        last_error: Optional[Exception] = None

        for attempt in range(1, max_retries + 1):
            try:
                return await operation(self.get_database())
            except Exception as e:
                last_error = e
                logger.warning(
                    f"Database operation failed (attempt {attempt}/{max_retries}): {e}"
                )
                add_breadcrumb(
                    category="database",
                    message=f"Database operation retry {attempt}/{max_retries}",
                    level="warning",
                    data={"error": str(e)},
                )

                if attempt < max_retries:
                    await self._sleep(initial_delay * 2 ** (attempt - 1))

        if last_error is None:
            raise ValueError("max_retries must be at least 1")

        capture_exception(
            last_error,
            tags={
                "component": "database-pool",
                "operation": "execute_with_retry",
                "max_retries": str(max_retries),
            },
        )
        raise last_error

    async def graceful_shutdown(self) -> None:
        """Stop self-checks and close every pooled connection. Safe to repeat."""
        task = self._health_check_task
        self._health_check_task = None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        engine = self._engine
        self._engine = None
        if engine is None:
            return

        logger.info("Shutting down database connection pool")
        try:
            await engine.dispose()
            logger.info("Database connection pool closed successfully")
        except Exception as e:
            logger.error(f"Error closing database connection pool: {e}")
            capture_exception(
                e, tags={"component": "database-pool", "operation": "shutdown"}
            )

    def install_signal_handlers(
        self,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        exit_fn: Callable[[int], Any] = sys.exit,
    ) -> None:
        """Shut the pool down and exit with code 0 on SIGINT or SIGTERM."""
        loop = loop or asyncio.get_running_loop()

        async def _shutdown(sig_name: str) -> None:
            logger.info(f"Received {sig_name}, gracefully shutting down database pool")
            await self.graceful_shutdown()
            exit_fn(0)

        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(
                sig, lambda s=sig: asyncio.ensure_future(_shutdown(s.name))
            )

    def get_metrics(self) -> Dict[str, Any]:
        return {
            "max_connections": self.max_connections,
            "idle_timeout": self.idle_timeout,
            "connect_timeout": self.connect_timeout,
            "max_lifetime": self.max_lifetime,
            "ssl_enabled": self.ssl,
            "is_initialized": self._engine is not None,
            "health_check_running": self._health_check_task is not None
            and not self._health_check_task.done(),
        }
