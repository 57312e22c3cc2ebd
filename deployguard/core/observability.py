"""Sentry integration and rate-limited error reporting."""

import logging
import time
from typing import Any, Callable, Dict, Optional

import sentry_sdk

from deployguard import __version__
from deployguard.core.settings import Settings

logger = logging.getLogger(__name__)


def init_sentry(config: Settings) -> bool:
    """Initialize the Sentry SDK when a DSN is configured.

    Returns:
        bool: True if the SDK was initialized
    """
    if not config.sentry_dsn:
        logger.warning("SENTRY_DSN not configured - error monitoring disabled")
        return False

    sentry_sdk.init(
        dsn=config.sentry_dsn,
        environment=config.railway_environment or config.environment,
        release=config.railway_git_commit_sha or __version__,
        traces_sample_rate=config.sentry_traces_sample_rate,
        send_default_pii=False,
    )
    sentry_sdk.set_tag("service", config.railway_service_name)
    if config.railway_deployment_id:
        sentry_sdk.set_tag("deployment_id", config.railway_deployment_id)

    logger.info(
        "Sentry initialized",
        extra={"environment": config.environment, "service": config.railway_service_name},
    )
    return True


def sentry_status() -> Dict[str, bool]:
    """Report whether an SDK client is active and has a DSN."""
    client = sentry_sdk.get_client()
    active = bool(client.is_active())
    dsn = client.options.get("dsn") if active else None
    return {"client_active": active, "dsn_configured": bool(dsn)}


def add_breadcrumb(
    category: str,
    message: str,
    level: str = "info",
    data: Optional[Dict[str, Any]] = None,
) -> None:
    sentry_sdk.add_breadcrumb(
        category=category, message=message, level=level, data=data or {}
    )


def capture_exception(
    error: BaseException, tags: Optional[Dict[str, str]] = None
) -> None:
    sentry_sdk.capture_exception(error, tags=tags or {})


def capture_message(
    message: str,
    level: str = "info",
    tags: Optional[Dict[str, str]] = None,
    contexts: Optional[Dict[str, Dict[str, Any]]] = None,
) -> None:
    sentry_sdk.capture_message(
        message, level=level, tags=tags or {}, contexts=contexts or {}
    )


class RateLimitedReporter:
    """Log and report a recurring failure at most once per window."""

    def __init__(
        self,
        name: str,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        tags: Optional[Dict[str, str]] = None,
    ) -> None:
        self.name = name
        self.window_seconds = window_seconds
        self.tags = tags or {}
        self._clock = clock
        self._last_reported: Optional[float] = None
        self.suppressed = 0

    @property
    def last_reported(self) -> Optional[float]:
        return self._last_reported

    def should_report(self) -> bool:
        now = self._clock()
        if (
            self._last_reported is None
            or now - self._last_reported > self.window_seconds
        ):
            self._last_reported = now
            return True
        return False

    def report(self, error: BaseException) -> bool:
        """Report the error unless one was reported within the window.

        Returns:
            bool: True if the error was logged and sent to Sentry
        """
        if not self.should_report():
            self.suppressed += 1
            return False

        logger.error(
            f"{self.name} failed: {error}",
            extra={"suppressed_since_last_report": self.suppressed},
        )
        self.suppressed = 0
        capture_exception(error, tags=self.tags)
        return True
