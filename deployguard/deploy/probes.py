"""HTTP probing and polling of deployed health endpoints."""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx
from pydantic import BaseModel, Field

from .console import StepConsole

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT = 10.0  # seconds
DEFAULT_POLL_INTERVAL = 3.0  # seconds


def describe_error(error: BaseException) -> str:
    """Exception message, falling back to its type for empty messages."""
    return str(error) or type(error).__name__


class ProbeResponse(BaseModel):
    """Result of a single probe request."""

    status_code: int
    data: Any = None
    headers: Dict[str, str] = Field(default_factory=dict)
    response_time_ms: float = 0.0

    @property
    def payload_status(self) -> Optional[str]:
        """The ``status`` field of a JSON object body, if any."""
        if isinstance(self.data, dict):
            return self.data.get("status")
        return None

    @property
    def checks(self) -> Dict[str, Any]:
        if isinstance(self.data, dict) and isinstance(self.data.get("checks"), dict):
            return self.data["checks"]
        return {}


class HttpProber:
    """GETs URLs and returns parsed bodies.

    Redirects are not followed. Timeouts and connection errors propagate as
    ``httpx`` exceptions.
    """

    def __init__(
        self,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self._transport = transport
        self._clock = clock
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                transport=self._transport,
                follow_redirects=False,
                timeout=DEFAULT_REQUEST_TIMEOUT,
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client connections."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "HttpProber":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def get(self, url: str, timeout: float = DEFAULT_REQUEST_TIMEOUT) -> ProbeResponse:
        """Fetch a URL, parsing the body as JSON when possible."""
        client = await self._get_client()
        start = self._clock()
        response = await client.get(url, timeout=timeout)
        elapsed = round((self._clock() - start) * 1000, 2)

        try:
            data: Any = response.json()
        except ValueError:
            data = response.text

        return ProbeResponse(
            status_code=response.status_code,
            data=data,
            headers={k.lower(): v for k, v in response.headers.items()},
            response_time_ms=elapsed,
        )


class EndpointPoller:
    """Polls health and readiness endpoints until they pass or retries run out."""

    def __init__(
        self,
        prober: HttpProber,
        console: Optional[StepConsole] = None,
        interval: float = DEFAULT_POLL_INTERVAL,
        request_timeout: float = 30.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.prober = prober
        self.console = console or StepConsole(timestamps=False)
        self.interval = interval
        self.request_timeout = request_timeout
        self._sleep = sleep

    async def wait_for_health_check(self, url: str, max_retries: int = 10) -> bool:
        """Poll until the endpoint answers 200 with status ``healthy``.

        Returns:
            bool: False once every attempt has failed
        """
        self.console.log(f"\nWaiting for health check at: {url}", "yellow")

        for attempt in range(1, max_retries + 1):
            self.console.log(f"Health check attempt {attempt}/{max_retries}...", "blue")
            try:
                response = await self.prober.get(url, timeout=self.request_timeout)
                if response.status_code == 200:
                    if response.payload_status == "healthy":
                        self.console.log(
                            "✅ Health check passed - application is healthy", "green"
                        )
                        return True
                    self.console.log(
                        f"⚠️  Health check returned: {response.payload_status}", "yellow"
                    )
                    self.console.check_statuses(response.checks, "healthy")
                else:
                    self.console.log(
                        f"❌ Health check failed with status: {response.status_code}",
                        "red",
                    )
            except Exception as e:
                self.console.log(f"❌ Health check failed: {describe_error(e)}", "red")

            if attempt < max_retries:
                self.console.log(f"Waiting {self.interval}s before retry...", "blue")
                await self._sleep(self.interval)

        return False

    async def wait_for_readiness_check(self, url: str, max_retries: int = 5) -> bool:
        """Poll until the endpoint answers 200 with status ``ready``."""
        self.console.log(f"\nWaiting for readiness check at: {url}", "yellow")

        for attempt in range(1, max_retries + 1):
            self.console.log(f"Readiness check attempt {attempt}/{max_retries}...", "blue")
            try:
                response = await self.prober.get(url, timeout=self.request_timeout)
                if response.status_code == 200 and response.payload_status == "ready":
                    self.console.log(
                        "✅ Readiness check passed - application is ready for traffic",
                        "green",
                    )
                    return True
                self.console.log(
                    f"⚠️  Readiness check failed: "
                    f"{response.payload_status or response.status_code}",
                    "yellow",
                )
                self.console.check_statuses(response.checks, "ready")
            except Exception as e:
                self.console.log(f"❌ Readiness check failed: {describe_error(e)}", "red")

            if attempt < max_retries:
                await self._sleep(self.interval)

        return False
