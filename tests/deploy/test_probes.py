"""Tests for HTTP probing and endpoint polling."""

import httpx
import pytest

from deployguard.deploy.probes import EndpointPoller, describe_error

URL = "https://preview.test/api/health"


class TestHttpProber:
    """Test HttpProber requests."""

    async def test_json_body(self, make_prober):
        """JSON bodies are parsed and headers lower-cased."""
        prober = make_prober(
            lambda request: httpx.Response(
                200, json={"status": "healthy"}, headers={"X-Frame-Options": "DENY"}
            )
        )

        response = await prober.get(URL)

        assert response.status_code == 200
        assert response.payload_status == "healthy"
        assert response.headers["x-frame-options"] == "DENY"
        assert response.response_time_ms >= 0
        await prober.close()

    async def test_text_body(self, make_prober):
        """Non-JSON bodies are kept as text."""
        prober = make_prober(
            lambda request: httpx.Response(200, text="<!DOCTYPE html><html></html>")
        )

        response = await prober.get("https://preview.test/")

        assert response.data.startswith("<!DOCTYPE html")
        assert response.payload_status is None
        assert response.checks == {}

    async def test_redirects_not_followed(self, make_prober):
        prober = make_prober(
            lambda request: httpx.Response(302, headers={"Location": "https://clerk.test"})
        )

        response = await prober.get("https://preview.test/sign-in")

        assert response.status_code == 302
        assert response.headers["location"] == "https://clerk.test"

    async def test_timeout_propagates(self, make_prober):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        prober = make_prober(handler)

        with pytest.raises(httpx.TimeoutException):
            await prober.get(URL, timeout=0.1)

    def test_describe_error_falls_back_to_type(self):
        assert describe_error(TimeoutError()) == "TimeoutError"
        assert describe_error(OSError("refused")) == "refused"


class TestEndpointPoller:
    """Test polling loops."""

    async def test_health_passes_after_retries(
        self, make_prober, quiet_console, fake_clock, health_payload
    ):
        """Non-healthy answers are retried at the poll interval."""
        answers = iter(
            [
                httpx.Response(503),
                httpx.Response(200, json=health_payload("degraded")),
                httpx.Response(200, json=health_payload("healthy")),
            ]
        )
        poller = EndpointPoller(
            make_prober(lambda request: next(answers)),
            console=quiet_console,
            sleep=fake_clock.sleep,
        )

        assert await poller.wait_for_health_check(URL, max_retries=10) is True
        assert fake_clock.sleeps == [3.0, 3.0]

    async def test_health_exhausts_retries(
        self, make_prober, quiet_console, fake_clock, console_output
    ):
        """Every attempt failing returns False with no sleep after the last."""

        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        poller = EndpointPoller(
            make_prober(handler), console=quiet_console, sleep=fake_clock.sleep
        )

        assert await poller.wait_for_health_check(URL, max_retries=4) is False
        assert len(fake_clock.sleeps) == 3
        assert "refused" in console_output.getvalue()

    async def test_degraded_prints_check_statuses(
        self, make_prober, quiet_console, fake_clock, console_output, health_payload
    ):
        payload = health_payload("degraded", database={"status": "degraded"})
        poller = EndpointPoller(
            make_prober(lambda request: httpx.Response(200, json=payload)),
            console=quiet_console,
            sleep=fake_clock.sleep,
        )

        assert await poller.wait_for_health_check(URL, max_retries=1) is False
        assert "database: degraded" in console_output.getvalue()

    async def test_readiness(self, make_prober, quiet_console, fake_clock, readiness_payload):
        answers = iter(
            [
                httpx.Response(503, json=readiness_payload("not_ready")),
                httpx.Response(200, json=readiness_payload("ready")),
            ]
        )
        poller = EndpointPoller(
            make_prober(lambda request: next(answers)),
            console=quiet_console,
            sleep=fake_clock.sleep,
        )

        assert await poller.wait_for_readiness_check(URL, max_retries=5) is True
        assert fake_clock.sleeps == [3.0]
