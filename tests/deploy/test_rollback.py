"""Tests for the automatic rollback monitor."""

from typing import List
from unittest.mock import AsyncMock, Mock

import httpx
import pytest

from deployguard.core.exceptions import (
    NoPreviousDeploymentError,
    RollbackVerificationTimeoutError,
)
from deployguard.deploy.alerts import AlertType
from deployguard.deploy.platform import DeploymentRecord
from deployguard.deploy.rollback import (
    AutoRollbackMonitor,
    MonitorOutcome,
    MonitorPhase,
    main,
)


class FakeApp:
    """Answers health and readiness requests from a scripted state."""

    def __init__(self, health_payload, readiness_payload):
        self.health_payload = health_payload
        self.readiness_payload = readiness_payload
        self.health_status = "healthy"
        self.health_code = 200
        self.ready = True
        self.health_requests = 0
        self.script: List[int] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/api/health":
            self.health_requests += 1
            if self.script:
                self.health_code = self.script.pop(0)
                self.health_status = "healthy" if self.health_code == 200 else "unhealthy"
            return httpx.Response(
                self.health_code, json=self.health_payload(self.health_status)
            )
        status = "ready" if self.ready else "not_ready"
        return httpx.Response(
            200 if self.ready else 503, json=self.readiness_payload(status)
        )


@pytest.fixture
def fake_app(health_payload, readiness_payload):
    return FakeApp(health_payload, readiness_payload)


@pytest.fixture
def platform():
    mock_platform = Mock()
    mock_platform.find_rollback_target = AsyncMock(
        return_value=DeploymentRecord(id="B", status="SUCCESS")
    )
    mock_platform.rollback = AsyncMock()
    return mock_platform


@pytest.fixture
def notifier():
    return Mock(send_alert=AsyncMock(return_value=True))


@pytest.fixture
def monitor(ops_settings, fake_app, platform, notifier, make_prober, quiet_console, fake_clock):
    return AutoRollbackMonitor(
        config=ops_settings,
        prober=make_prober(fake_app.handler),
        platform=platform,
        notifier=notifier,
        console=quiet_console,
        sleep=fake_clock.sleep,
        clock=fake_clock,
    )


def alert_types(notifier):
    return [call.args[0] for call in notifier.send_alert.await_args_list]


class TestCheckHealth:
    """Test failure counting."""

    async def test_degraded_counts_as_failure(self, monitor, fake_app):
        """Only a healthy payload passes."""
        fake_app.health_status = "degraded"

        assert await monitor.check_health() is False
        assert monitor.state.consecutive_failures == 1
        assert monitor.state.last_health_check.status_code == 200

    async def test_success_resets_failures(self, monitor, fake_app):
        fake_app.health_code = 503
        fake_app.health_status = "unhealthy"
        await monitor.check_health()
        await monitor.check_health()
        assert monitor.state.consecutive_failures == 2

        fake_app.health_code = 200
        fake_app.health_status = "healthy"
        assert await monitor.check_health() is True
        assert monitor.state.consecutive_failures == 0

    async def test_network_error_counts_as_failure(
        self, ops_settings, make_prober, quiet_console, platform, notifier
    ):
        def refuse(request):
            raise httpx.ConnectError("refused", request=request)

        monitor = AutoRollbackMonitor(
            config=ops_settings,
            prober=make_prober(refuse),
            platform=platform,
            notifier=notifier,
            console=quiet_console,
        )

        assert await monitor.check_health() is False
        assert await monitor.check_health() is False
        assert monitor.state.consecutive_failures == 2

    async def test_readiness_does_not_count(self, monitor, fake_app):
        fake_app.ready = False

        assert await monitor.check_readiness() is False
        assert monitor.state.consecutive_failures == 0


class TestMonitoringLoop:
    """Test the polling loop and its outcomes."""

    async def test_threshold_triggers_exactly_one_rollback(
        self, monitor, fake_app, platform, notifier
    ):
        """Three consecutive failures roll back once, then the loop ends."""
        fake_app.health_code = 503
        fake_app.health_status = "unhealthy"

        async def recover(deployment_id, timeout):
            assert monitor.state.rollback_in_progress
            assert not monitor.state.is_monitoring
            fake_app.health_code = 200
            fake_app.health_status = "healthy"

        platform.rollback.side_effect = recover

        outcome = await monitor.start_monitoring()

        assert outcome == MonitorOutcome.ROLLED_BACK
        platform.rollback.assert_awaited_once_with("B", timeout=300.0)
        assert alert_types(notifier) == [
            AlertType.ROLLBACK_STARTED,
            AlertType.ROLLBACK_SUCCESS,
        ]
        assert monitor.state.phase == MonitorPhase.IDLE

    async def test_intermittent_failures_never_roll_back(
        self, monitor, fake_app, platform
    ):
        """Two failures, a success, then two failures stay under the threshold."""
        fake_app.script = [503, 503, 200, 503, 503, 200]

        outcome = await monitor.start_monitoring()

        assert outcome == MonitorOutcome.COMPLETED
        platform.rollback.assert_not_awaited()

    async def test_window_elapses(self, monitor, fake_app, fake_clock):
        """Healthy polling ends after the monitoring duration."""
        outcome = await monitor.start_monitoring()

        assert outcome == MonitorOutcome.COMPLETED
        assert fake_app.health_requests == 20
        assert set(fake_clock.sleeps) == {30.0}
        assert monitor.state.is_monitoring is False

    async def test_rollback_failure_reported(self, monitor, fake_app, platform, notifier):
        """A failed rollback ends the loop with a failure outcome."""
        fake_app.health_status = "unhealthy"
        platform.find_rollback_target.side_effect = NoPreviousDeploymentError()

        outcome = await monitor.start_monitoring()

        assert outcome == MonitorOutcome.ROLLBACK_FAILED
        assert alert_types(notifier) == [
            AlertType.ROLLBACK_STARTED,
            AlertType.ROLLBACK_FAILED,
        ]
        platform.rollback.assert_not_awaited()

    async def test_stop_ends_loop_at_tick_boundary(self, monitor, fake_app):
        """stop() during the wait ends monitoring before the next poll."""

        async def stop_on_first_wait(seconds):
            monitor.stop()

        monitor._sleep = stop_on_first_wait

        outcome = await monitor.start_monitoring()

        assert outcome == MonitorOutcome.STOPPED
        assert monitor.state.is_monitoring is False
        assert fake_app.health_requests == 0

    async def test_second_start_is_rejected(self, monitor):
        monitor.state.phase = MonitorPhase.MONITORING

        assert await monitor.start_monitoring() == MonitorOutcome.ALREADY_RUNNING


class TestExecuteRollback:
    """Test the rollback procedure."""

    async def test_reentrant_call_rejected(self, monitor, platform, notifier):
        """A second rollback while one runs does nothing."""
        monitor.state.phase = MonitorPhase.ROLLING_BACK

        assert await monitor.execute_rollback() is False
        platform.find_rollback_target.assert_not_awaited()
        notifier.send_alert.assert_not_awaited()

    async def test_verification_timeout(self, monitor, fake_app, fake_clock):
        """An application that never recovers times out after five minutes."""
        fake_app.health_status = "unhealthy"

        with pytest.raises(RollbackVerificationTimeoutError):
            await monitor.wait_for_rollback_completion()

        assert set(fake_clock.sleeps) == {10.0}
        assert len(fake_clock.sleeps) == 30

    async def test_unverified_rollback_fails(self, monitor, fake_app, notifier):
        fake_app.ready = False

        assert await monitor.execute_rollback() is False
        assert alert_types(notifier)[-1] == AlertType.ROLLBACK_FAILED
        assert monitor.state.rollback_in_progress is False


class TestOneTimeCheck:
    """Test the check command."""

    async def test_healthy_and_ready(self, monitor):
        assert await monitor.perform_one_time_check() is True

    async def test_not_ready(self, monitor, fake_app):
        fake_app.ready = False

        assert await monitor.perform_one_time_check() is False


class TestCli:
    """Test command-line dispatch."""

    @pytest.mark.parametrize("argv", [[], ["restart"]])
    def test_unknown_command(self, argv, capsys):
        assert main(argv) == 1
        assert "usage" in capsys.readouterr().out.lower()
