"""Post-deployment monitoring with automatic rollback."""

import argparse
import asyncio
import logging
import signal
import sys
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional

from deployguard.config import setup_logging
from deployguard.core.exceptions import RollbackVerificationTimeoutError
from deployguard.core.observability import capture_exception, init_sentry
from deployguard.core.settings import settings as service_settings

from .alerts import AlertType, SlackNotifier
from .config import OpsSettings
from .console import StepConsole
from .platform import RailwayPlatform
from .probes import HttpProber, describe_error

logger = logging.getLogger(__name__)

ROLLBACK_VERIFY_WINDOW = 300.0  # seconds
ROLLBACK_VERIFY_INTERVAL = 10.0  # seconds


class MonitorPhase(str, Enum):
    IDLE = "idle"
    MONITORING = "monitoring"
    ROLLING_BACK = "rolling_back"


class MonitorOutcome(str, Enum):
    COMPLETED = "completed"
    ROLLED_BACK = "rolled_back"
    ROLLBACK_FAILED = "rollback_failed"
    STOPPED = "stopped"
    ALREADY_RUNNING = "already_running"


@dataclass
class HealthCheckRecord:
    timestamp: datetime
    status_code: Optional[int]
    data: Any


@dataclass
class MonitorState:
    """Mutable monitor state. Monitoring and rolling back are exclusive phases."""

    consecutive_failures: int = 0
    phase: MonitorPhase = MonitorPhase.IDLE
    deployment_start_time: Optional[float] = None
    last_health_check: Optional[HealthCheckRecord] = None

    @property
    def is_monitoring(self) -> bool:
        return self.phase == MonitorPhase.MONITORING

    @property
    def rollback_in_progress(self) -> bool:
        return self.phase == MonitorPhase.ROLLING_BACK


class AutoRollbackMonitor:
    """Watches a fresh deployment and rolls back after repeated health failures."""

    def __init__(
        self,
        config: Optional[OpsSettings] = None,
        prober: Optional[HttpProber] = None,
        platform: Optional[RailwayPlatform] = None,
        notifier: Optional[SlackNotifier] = None,
        console: Optional[StepConsole] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or OpsSettings()
        self.console = console or StepConsole()
        self.prober = prober or HttpProber()
        self.platform = platform or RailwayPlatform(
            executable=self.config.railway_cli,
            default_timeout=self.config.command_timeout_seconds,
            deploy_timeout=self.config.deploy_timeout_seconds,
            console=self.console,
        )
        self.notifier = notifier or SlackNotifier(
            self.config.slack_webhook_url, console=self.console
        )
        self.state = MonitorState()
        self._sleep = sleep
        self._clock = clock
        self._stop_event = asyncio.Event()

    @property
    def failure_threshold(self) -> int:
        return self.config.rollback_failure_threshold

    def stop(self) -> None:
        """Request the monitoring loop to end at the next tick boundary.

        A rollback that is already running is left to finish.
        """
        if self.state.is_monitoring:
            self.console.log("🛑 Shutting down monitoring...", "yellow")
            self.state.phase = MonitorPhase.IDLE
        self._stop_event.set()

    async def _pause(self, seconds: float) -> None:
        """Sleep between ticks, waking early when stop() is called."""
        sleeper = asyncio.ensure_future(self._sleep(seconds))
        stopper = asyncio.ensure_future(self._stop_event.wait())
        _, pending = await asyncio.wait(
            {sleeper, stopper}, return_when=asyncio.FIRST_COMPLETED
        )
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

    def _record_failure(self) -> int:
        self.state.consecutive_failures += 1
        return self.state.consecutive_failures

    async def check_health(self) -> bool:
        """One health poll. Only HTTP 200 with status ``healthy`` passes."""
        self.console.log("Performing health check...", "blue")
        try:
            response = await self.prober.get(
                self.config.health_check_url,
                timeout=self.config.health_check_timeout_seconds,
            )
        except Exception as e:
            failures = self._record_failure()
            self.console.log(
                f"❌ Health check error ({failures}/{self.failure_threshold}): "
                f"{describe_error(e)}",
                "red",
            )
            return False

        self.state.last_health_check = HealthCheckRecord(
            timestamp=datetime.now(timezone.utc),
            status_code=response.status_code,
            data=response.data,
        )

        if response.status_code == 200 and response.payload_status == "healthy":
            self.state.consecutive_failures = 0
            self.console.log("✅ Health check passed", "green")
            return True

        failures = self._record_failure()
        self.console.log(
            f"❌ Health check failed ({failures}/{self.failure_threshold})", "red"
        )
        self.console.log(
            f"   Status: {response.status_code}, "
            f"Health: {response.payload_status or 'unknown'}",
            "red",
        )
        self.console.check_statuses(response.checks, "healthy", indent="   ")
        return False

    async def check_readiness(self) -> bool:
        """One readiness poll. Does not affect the failure count."""
        self.console.log("Performing readiness check...", "blue")
        try:
            response = await self.prober.get(
                self.config.readiness_check_url,
                timeout=self.config.health_check_timeout_seconds,
            )
        except Exception as e:
            self.console.log(f"❌ Readiness check error: {describe_error(e)}", "red")
            return False

        if response.status_code == 200 and response.payload_status == "ready":
            self.console.log("✅ Readiness check passed", "green")
            return True

        self.console.log(
            f"❌ Readiness check failed: {response.payload_status or 'unknown'}", "red"
        )
        return False

    async def _tick(self) -> Optional[MonitorOutcome]:
        """Run one monitoring step. Returns an outcome when the loop should end."""
        elapsed = self._clock() - self.state.deployment_start_time
        if elapsed > self.config.monitoring_duration_seconds:
            self.console.log("✅ Monitoring period completed successfully", "green")
            self.state.phase = MonitorPhase.IDLE
            return MonitorOutcome.COMPLETED

        await self.check_health()

        if self.state.consecutive_failures >= self.failure_threshold:
            self.console.log(
                f"🚨 Failure threshold reached "
                f"({self.state.consecutive_failures}/{self.failure_threshold})",
                "red",
            )
            self.state.phase = MonitorPhase.IDLE

            if await self.execute_rollback():
                return MonitorOutcome.ROLLED_BACK
            self.console.log(
                "💥 Critical: Automatic rollback failed - manual intervention required",
                "red",
            )
            return MonitorOutcome.ROLLBACK_FAILED

        remaining = self.config.monitoring_duration_seconds - elapsed
        self.console.log(
            f"⏳ Monitoring continues... {round(remaining)}s remaining", "blue"
        )
        return None

    async def start_monitoring(self) -> MonitorOutcome:
        """Poll health every check interval until the window ends or a rollback runs."""
        if self.state.is_monitoring or self.state.rollback_in_progress:
            self.console.log("⚠️  Monitoring already in progress", "yellow")
            return MonitorOutcome.ALREADY_RUNNING

        self._stop_event.clear()
        self.state.phase = MonitorPhase.MONITORING
        self.state.deployment_start_time = self._clock()
        self.state.consecutive_failures = 0

        self.console.log("🔍 Starting post-deployment monitoring...", "bold")
        self.console.log(
            f"   Check interval: {self.config.rollback_check_interval}ms", "blue"
        )
        self.console.log(f"   Failure threshold: {self.failure_threshold}", "blue")
        self.console.log(
            f"   Monitoring duration: {self.config.monitoring_duration}ms", "blue"
        )

        while True:
            await self._pause(self.config.check_interval_seconds)
            if self._stop_event.is_set() or not self.state.is_monitoring:
                self.state.phase = MonitorPhase.IDLE
                return MonitorOutcome.STOPPED

            try:
                outcome = await self._tick()
            except Exception as e:
                failures = self._record_failure()
                self.console.log(
                    f"❌ Monitoring error ({failures}/{self.failure_threshold}): "
                    f"{describe_error(e)}",
                    "red",
                )
                continue

            if outcome is not None:
                return outcome

    async def wait_for_rollback_completion(
        self,
        max_wait: float = ROLLBACK_VERIFY_WINDOW,
        interval: float = ROLLBACK_VERIFY_INTERVAL,
    ) -> bool:
        """Poll health and readiness until both pass.

        Raises:
            RollbackVerificationTimeoutError: If they do not pass within max_wait
        """
        self.console.log("⏳ Waiting for rollback to complete...", "yellow")
        start = self._clock()

        while self._clock() - start < max_wait:
            try:
                is_healthy = await self.check_health()
                is_ready = await self.check_readiness()
                if is_healthy and is_ready:
                    self.console.log("✅ Rollback verification successful", "green")
                    return True
                self.console.log("⏳ Waiting for rollback to stabilize...", "yellow")
            except Exception as e:
                self.console.log(
                    f"⚠️  Error during rollback verification: {describe_error(e)}",
                    "yellow",
                )
            await self._sleep(interval)

        raise RollbackVerificationTimeoutError(max_wait)

    async def execute_rollback(self) -> bool:
        """Roll back to the previous successful deployment and verify it.

        Returns:
            bool: True if the rollback completed and verified; False on any
            failure or when a rollback is already running
        """
        if self.state.rollback_in_progress:
            self.console.log("⚠️  Rollback already in progress", "yellow")
            return False

        self.state.phase = MonitorPhase.ROLLING_BACK
        self.console.log("🔄 Initiating automatic rollback...", "bold")
        environment = self.config.railway_environment

        try:
            await self.notifier.send_alert(
                AlertType.ROLLBACK_STARTED,
                {
                    "reason": f"{self.state.consecutive_failures} consecutive health check failures",
                    "environment": environment,
                },
            )

            self.console.log("📋 Getting deployment history...", "blue")
            target = await self.platform.find_rollback_target()

            self.console.log(f"🔄 Rolling back to deployment: {target.id}", "yellow")
            await self.platform.rollback(
                target.id, timeout=self.config.rollback_timeout_seconds
            )
            self.console.log("✅ Rollback command executed successfully", "green")

            await self.wait_for_rollback_completion()

            await self.notifier.send_alert(
                AlertType.ROLLBACK_SUCCESS,
                {"rolled_back_to": target.id, "environment": environment},
            )
            self.console.log("🎉 Automatic rollback completed successfully", "green")
            return True

        except Exception as e:
            self.console.log(f"❌ Rollback failed: {describe_error(e)}", "red")
            capture_exception(e, tags={"component": "auto-rollback"})
            await self.notifier.send_alert(
                AlertType.ROLLBACK_FAILED,
                {"error": describe_error(e), "environment": environment},
            )
            return False

        finally:
            self.state.phase = MonitorPhase.IDLE

    async def perform_one_time_check(self) -> bool:
        """Health and readiness once. True iff both pass."""
        self.console.log("🔍 Performing one-time health check...", "bold")

        is_healthy = await self.check_health()
        is_ready = await self.check_readiness()

        if not is_healthy or not is_ready:
            self.console.log(
                "❌ Application is not healthy - consider manual rollback", "red"
            )
            return False

        self.console.log("✅ Application is healthy", "green")
        return True

    async def close(self) -> None:
        await self.prober.close()


COMMANDS = ("monitor", "check", "rollback")


async def _run(command: str, monitor: AutoRollbackMonitor) -> int:
    try:
        if command == "monitor":
            loop = asyncio.get_running_loop()
            try:
                loop.add_signal_handler(signal.SIGINT, monitor.stop)
            except NotImplementedError:
                pass
            outcome = await monitor.start_monitoring()
            return 1 if outcome == MonitorOutcome.ROLLBACK_FAILED else 0

        if command == "check":
            return 0 if await monitor.perform_one_time_check() else 1

        return 0 if await monitor.execute_rollback() else 1
    finally:
        await monitor.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="deployguard-rollback",
        description="Monitor a deployment and roll back automatically on failure",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Commands:
    monitor   Watch health for the monitoring window, rolling back on repeated failures
    check     Run one health and readiness check
    rollback  Roll back to the previous successful deployment now
        """,
    )
    parser.add_argument("command", nargs="?", help="monitor, check or rollback")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point for the rollback tool."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command not in COMMANDS:
        parser.print_usage()
        return 1

    config = OpsSettings()
    setup_logging(service_settings, log_file="deployguard-rollback.log", console=False)
    init_sentry(service_settings)

    return asyncio.run(_run(args.command, AutoRollbackMonitor(config)))


if __name__ == "__main__":
    sys.exit(main())
