"""Post-deployment verification suite."""

import argparse
import asyncio
import logging
import sys
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import BaseModel, Field

from deployguard.config import setup_logging
from deployguard.core.settings import settings as service_settings

from .config import OpsSettings
from .console import StepConsole
from .probes import HttpProber, ProbeResponse, describe_error

logger = logging.getLogger(__name__)

MAX_DATABASE_LATENCY_MS = 5000
SLOW_RESPONSE_MS = 5000
SLOW_TEST_MS = 5000
SECURITY_HEADERS = ("x-frame-options", "x-content-type-options", "referrer-policy")

PAGES = (
    {"path": "/", "name": "Home Page"},
    {"path": "/handbook", "name": "Handbook Page"},
    {"path": "/dashboard", "name": "Dashboard Page", "requires_auth": True},
    {"path": "/api/handbook/toc", "name": "API - Table of Contents"},
)
PERFORMANCE_ENDPOINTS = ("/api/health", "/", "/handbook")


class VerificationFailure(Exception):
    """A verification test's assertion did not hold."""


class TestStatus(str, Enum):
    __test__ = False

    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"


class TestResult(BaseModel):
    __test__ = False

    name: str
    status: TestStatus
    duration_ms: float = 0.0
    error: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)


class VerificationReport(BaseModel):
    success: bool
    total_tests: int
    passed: int
    failed: int
    skipped: int
    success_rate: float
    failures: List[Dict[str, Optional[str]]] = Field(default_factory=list)
    average_duration_ms: float = 0.0
    slow_tests: int = 0


class DeploymentVerifier:
    """Runs every verification test against a deployed base URL.

    Each test is independent: a failure is recorded and the next test runs.
    """

    def __init__(
        self,
        base_url: str,
        environment: str = "production",
        prober: Optional[HttpProber] = None,
        console: Optional[StepConsole] = None,
        timeout: float = 30.0,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.environment = environment
        self.prober = prober or HttpProber()
        self.console = console or StepConsole()
        self.timeout = timeout
        self._clock = clock
        self.results: List[TestResult] = []

    async def request(self, path: str) -> ProbeResponse:
        return await self.prober.get(f"{self.base_url}{path}", timeout=self.timeout)

    async def run_test(
        self, name: str, test: Callable[[], Awaitable[Optional[Dict[str, Any]]]]
    ) -> TestResult:
        self.console.log(f"\n🧪 Running test: {name}", "blue")
        start = self._clock()

        try:
            details = await test()
        except Exception as e:
            result = TestResult(
                name=name,
                status=TestStatus.FAILED,
                duration_ms=round((self._clock() - start) * 1000, 2),
                error=describe_error(e),
            )
            self.console.log(f"❌ FAILED: {name} - {result.error}", "red")
        else:
            result = TestResult(
                name=name,
                status=TestStatus.PASSED,
                duration_ms=round((self._clock() - start) * 1000, 2),
                details=details or {},
            )
            self.console.log(f"✅ PASSED: {name} ({round(result.duration_ms)}ms)", "green")

        self.results.append(result)
        return result

    async def verify_health_checks(self) -> None:
        async def health_endpoint() -> Dict[str, Any]:
            response = await self.request("/api/health")
            if response.status_code != 200:
                raise VerificationFailure(
                    f"Health check returned status {response.status_code}"
                )
            if response.payload_status != "healthy":
                raise VerificationFailure(
                    f"Application status is {response.payload_status}, expected healthy"
                )

            checks = response.checks
            failed = [
                name
                for name, check in checks.items()
                if not isinstance(check, dict) or check.get("status") != "healthy"
            ]
            if failed:
                raise VerificationFailure(f"Failed health checks: {', '.join(failed)}")

            return {
                "status": response.payload_status,
                "response_time": response.response_time_ms,
                "checks": len(checks),
            }

        async def readiness_endpoint() -> Dict[str, Any]:
            response = await self.request("/api/ready")
            if response.status_code != 200:
                raise VerificationFailure(
                    f"Readiness check returned status {response.status_code}"
                )
            if response.payload_status != "ready":
                raise VerificationFailure(
                    f"Application readiness is {response.payload_status}, expected ready"
                )
            return {
                "status": response.payload_status,
                "response_time": response.response_time_ms,
            }

        await self.run_test("Health Check Endpoint", health_endpoint)
        await self.run_test("Readiness Check Endpoint", readiness_endpoint)

    async def verify_database_connectivity(self) -> None:
        async def database_connection() -> Dict[str, Any]:
            response = await self.request("/api/health")
            if response.status_code != 200:
                raise VerificationFailure("Health endpoint not accessible")

            db = response.checks.get("database")
            if not isinstance(db, dict):
                raise VerificationFailure("Database check not found in health response")
            if db.get("status") != "healthy":
                raise VerificationFailure(
                    f"Database status is {db.get('status')}: "
                    f"{db.get('error') or 'Unknown error'}"
                )

            latency = db.get("latency") or 0
            if latency > MAX_DATABASE_LATENCY_MS:
                raise VerificationFailure(f"Database latency too high: {latency}ms")

            pool = db.get("pool") or {}
            return {
                "latency": latency,
                "pool_utilization": pool.get("utilization", 0),
                "active_connections": pool.get("active_connections", 0),
            }

        await self.run_test("Database Connection", database_connection)

    async def verify_application_pages(self) -> None:
        for page in PAGES:

            async def check_page(page: Dict[str, Any] = page) -> Dict[str, Any]:
                response = await self.request(page["path"])

                if page.get("requires_auth") and response.status_code in (401, 302):
                    return {
                        "status": response.status_code,
                        "message": "Auth required (expected)",
                    }
                if response.status_code != 200:
                    raise VerificationFailure(
                        f"Page returned status {response.status_code}"
                    )
                if isinstance(response.data, str) and (
                    "<!DOCTYPE html" not in response.data and "<html" not in response.data
                ):
                    raise VerificationFailure("Response does not appear to be valid HTML")

                return {
                    "status": response.status_code,
                    "response_time": response.response_time_ms,
                    "content_length": len(response.data)
                    if isinstance(response.data, str)
                    else 0,
                }

            await self.run_test(page["name"], check_page)

    async def verify_authentication(self) -> None:
        async def sign_in() -> Dict[str, Any]:
            response = await self.request("/sign-in")
            if response.status_code not in (200, 302):
                raise VerificationFailure(
                    f"Sign-in page returned unexpected status {response.status_code}"
                )
            location = response.headers.get("location", "")
            body = response.data if isinstance(response.data, str) else ""
            return {
                "status": response.status_code,
                "has_clerk_integration": "clerk" in location or "clerk" in body,
            }

        await self.run_test("Clerk Authentication Integration", sign_in)

    async def verify_performance(self) -> None:
        async def response_times() -> Dict[str, Any]:
            samples = []
            for endpoint in PERFORMANCE_ENDPOINTS:
                response = await self.request(endpoint)
                samples.append((endpoint, response.response_time_ms))

            slow = [(path, ms) for path, ms in samples if ms > SLOW_RESPONSE_MS]
            if slow:
                listed = ", ".join(f"{path} ({round(ms)}ms)" for path, ms in slow)
                raise VerificationFailure(f"Slow endpoints detected: {listed}")

            return {
                "average_response_time": round(sum(ms for _, ms in samples) / len(samples)),
                "endpoints": len(samples),
                "slow_endpoints": 0,
            }

        await self.run_test("Response Time Performance", response_times)

    async def verify_environment_configuration(self) -> None:
        async def environment() -> Dict[str, Any]:
            response = await self.request("/api/health")
            if response.status_code != 200:
                raise VerificationFailure(
                    "Cannot access health endpoint to verify environment"
                )

            health = response.data if isinstance(response.data, dict) else {}
            if health.get("environment") != "production":
                raise VerificationFailure(
                    f"Environment is {health.get('environment')}, expected production"
                )
            version = health.get("version")
            if not version or version == "unknown":
                raise VerificationFailure("Application version not properly set")

            sentry = response.checks.get("sentry")
            if not isinstance(sentry, dict) or sentry.get("status") != "healthy":
                raise VerificationFailure("Sentry monitoring not properly configured")

            return {
                "environment": health["environment"],
                "version": version,
                "sentry_configured": sentry.get("dsn") == "configured",
            }

        await self.run_test("Environment Configuration", environment)

    async def verify_ssl_and_security(self) -> None:
        async def security() -> Dict[str, Any]:
            response = await self.request("/")
            if not self.base_url.startswith("https://"):
                raise VerificationFailure("Application not using HTTPS in production")

            present = [name for name in SECURITY_HEADERS if response.headers.get(name)]
            return {"https_enabled": True, "security_headers": len(present)}

        await self.run_test("SSL and Security Headers", security)

    def generate_report(self) -> VerificationReport:
        passed = sum(1 for r in self.results if r.status == TestStatus.PASSED)
        failed = [r for r in self.results if r.status == TestStatus.FAILED]
        skipped = sum(1 for r in self.results if r.status == TestStatus.SKIPPED)
        total = len(self.results)
        success_rate = round(passed / total * 100, 1) if total else 0.0

        timed = [r.duration_ms for r in self.results if r.duration_ms > 0]
        average = round(sum(timed) / len(timed)) if timed else 0
        slow = sum(1 for ms in timed if ms > SLOW_TEST_MS)

        self.console.log(f"\n{'=' * 60}", "blue")
        self.console.log("🔍 DEPLOYMENT VERIFICATION REPORT", "bold")
        self.console.log("=" * 60, "blue")
        self.console.log("\n📊 Summary:", "bold")
        self.console.log(f"   Total Tests: {total}")
        self.console.log(f"   Passed: {passed}", "green")
        self.console.log(f"   Failed: {len(failed)}", "red" if failed else "reset")
        self.console.log(f"   Skipped: {skipped}", "yellow")
        self.console.log(
            f"   Success Rate: {success_rate}%", "green" if success_rate >= 90 else "red"
        )

        if failed:
            self.console.log("\n❌ Failed Tests:", "red")
            for result in failed:
                self.console.log(f"   • {result.name}: {result.error}", "red")

        self.console.log("\n📈 Performance Summary:", "bold")
        if timed:
            self.console.log(f"   Average Test Duration: {average}ms")
            if slow:
                self.console.log(f"   Slow Tests (>5s): {slow}", "yellow")

        success = not failed
        self.console.log(
            f"\n🎯 Deployment Status: {'SUCCESS' if success else 'ISSUES DETECTED'}",
            "green" if success else "red",
        )

        return VerificationReport(
            success=success,
            total_tests=total,
            passed=passed,
            failed=len(failed),
            skipped=skipped,
            success_rate=success_rate,
            failures=[{"name": r.name, "error": r.error} for r in failed],
            average_duration_ms=average,
            slow_tests=slow,
        )

    async def run_full_verification(self) -> VerificationReport:
        self.console.log("🚀 Starting Post-Deployment Verification", "bold")
        self.console.log(f"   Target: {self.base_url}", "blue")
        self.console.log(f"   Environment: {self.environment}", "blue")

        self.results = []
        await self.verify_health_checks()
        await self.verify_database_connectivity()
        await self.verify_application_pages()
        await self.verify_authentication()
        await self.verify_performance()
        await self.verify_environment_configuration()
        await self.verify_ssl_and_security()

        return self.generate_report()

    async def close(self) -> None:
        await self.prober.close()


async def run_verification(verifier: DeploymentVerifier) -> int:
    try:
        report = await verifier.run_full_verification()
    finally:
        await verifier.close()
    return 0 if report.success else 1


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point for the verification tool."""
    config = OpsSettings()
    parser = argparse.ArgumentParser(
        prog="deployguard-verify",
        description="Verify a deployment by probing its public endpoints",
    )
    parser.add_argument(
        "--base-url",
        default=config.verification_base_url,
        help="Deployment base URL (defaults to RAILWAY_STATIC_URL or RAILWAY_PUBLIC_DOMAIN)",
    )
    args = parser.parse_args(argv)

    setup_logging(service_settings, log_file="deployguard-verify.log", console=False)

    verifier = DeploymentVerifier(
        args.base_url,
        environment=config.railway_environment,
        timeout=config.verification_timeout_seconds,
    )
    try:
        return asyncio.run(run_verification(verifier))
    except Exception:
        logger.error("Verification failed", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
