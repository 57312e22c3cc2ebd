"""Common test fixtures and configuration."""

import io
import os
from typing import Callable, List

import httpx
import pytest
from rich.console import Console

# Set testing environment before settings are read
os.environ.setdefault("ENVIRONMENT", "test")

from deployguard.core.settings import Settings  # noqa: E402
from deployguard.db.pool import ConnectionPoolManager  # noqa: E402
from deployguard.deploy.config import OpsSettings  # noqa: E402
from deployguard.deploy.console import StepConsole  # noqa: E402
from deployguard.deploy.probes import HttpProber  # noqa: E402

APP_URL = "https://app.test"


class FakeClock:
    """Monotonic clock that only moves when something sleeps on it."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Service settings isolated from the environment and any .env file."""
    return Settings(
        _env_file=None,
        environment="test",
        database_url=None,
        sentry_dsn=None,
        log_dir=tmp_path / "logs",
        health_marker_dir=tmp_path,
    )


@pytest.fixture
def ops_settings() -> OpsSettings:
    """Deployment tooling settings pointed at a fake application."""
    return OpsSettings(
        _env_file=None,
        health_check_url=f"{APP_URL}/api/health",
        readiness_check_url=f"{APP_URL}/api/ready",
        slack_webhook_url=None,
        railway_environment="production",
        railway_static_url="app.test",
    )


@pytest.fixture
def console_output() -> io.StringIO:
    return io.StringIO()


@pytest.fixture
def quiet_console(console_output) -> StepConsole:
    """StepConsole writing into a buffer instead of the terminal."""
    return StepConsole(
        console=Console(file=console_output, width=200, highlight=False),
        timestamps=False,
    )


@pytest.fixture
def make_prober() -> Callable[[Callable[[httpx.Request], httpx.Response]], HttpProber]:
    """Build an HttpProber whose requests are answered by a handler function."""

    def _make(handler: Callable[[httpx.Request], httpx.Response]) -> HttpProber:
        return HttpProber(transport=httpx.MockTransport(handler))

    return _make


@pytest.fixture(autouse=True)
def reset_pool_singleton():
    """Every test starts without a process-wide pool manager."""
    ConnectionPoolManager.reset_instance()
    yield
    ConnectionPoolManager.reset_instance()


def health_payload(status: str = "healthy", **check_overrides) -> dict:
    """A health endpoint body as the service produces it."""
    checks = {
        "database": {"status": "healthy", "latency": 12.5, "pool": {"utilization": 20.0}},
        "memory": {"status": "healthy", "usage": 120, "total": 2048, "percentage": 40.0},
        "sentry": {"status": "healthy", "dsn": "configured"},
        "filesystem": {"status": "healthy", "writable": True},
    }
    for name, override in check_overrides.items():
        checks[name] = {**checks[name], **override}
    return {
        "status": status,
        "timestamp": "2026-01-01T00:00:00Z",
        "version": "1.0.0",
        "environment": "production",
        "checks": checks,
        "uptime": 100.0,
        "responseTime": 15.0,
    }


def readiness_payload(status: str = "ready") -> dict:
    check = "ready" if status == "ready" else "not_ready"
    return {
        "status": status,
        "checks": {
            name: {"status": check}
            for name in (
                "database_connection",
                "database_migrations",
                "essential_data",
                "environment_variables",
                "sentry_integration",
            )
        },
    }


@pytest.fixture(name="health_payload")
def health_payload_fixture():
    return health_payload


@pytest.fixture(name="readiness_payload")
def readiness_payload_fixture():
    return readiness_payload
