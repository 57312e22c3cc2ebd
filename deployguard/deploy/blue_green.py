"""Zero-downtime blue-green deployment over preview deployments."""

import argparse
import asyncio
import logging
import sys
from typing import Any, Awaitable, Callable, List, Optional

from deployguard.config import setup_logging
from deployguard.core.exceptions import (
    CommandFailedError,
    HealthCheckFailedError,
    OperationalError,
    PromotionFailedError,
    ReadinessCheckFailedError,
)
from deployguard.core.observability import capture_exception, init_sentry
from deployguard.core.settings import settings as service_settings

from .config import OpsSettings
from .console import StepConsole
from .platform import CurrentDeployment, PreviewDeployment, RailwayPlatform
from .probes import EndpointPoller, HttpProber, describe_error

logger = logging.getLogger(__name__)


class BlueGreenDeployer:
    """Deploys a preview, gates it on health and readiness, then promotes it."""

    def __init__(
        self,
        config: Optional[OpsSettings] = None,
        platform: Optional[RailwayPlatform] = None,
        poller: Optional[EndpointPoller] = None,
        console: Optional[StepConsole] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.config = config or OpsSettings()
        self.console = console or StepConsole(timestamps=False)
        self.platform = platform or RailwayPlatform(
            executable=self.config.railway_cli,
            default_timeout=self.config.command_timeout_seconds,
            deploy_timeout=self.config.deploy_timeout_seconds,
            console=self.console,
        )
        self.poller = poller or EndpointPoller(
            HttpProber(),
            console=self.console,
            interval=self.config.deploy_interval_seconds,
            request_timeout=self.config.deploy_request_timeout_seconds,
            sleep=sleep,
        )
        self._sleep = sleep

    async def get_current_deployment(self) -> CurrentDeployment:
        try:
            return await self.platform.get_current_deployment()
        except Exception:
            self.console.log("Failed to get current deployment info", "red")
            raise

    async def create_preview_deployment(self) -> PreviewDeployment:
        self.console.log("\n🚀 Creating preview deployment (Blue environment)...", "bold")
        try:
            preview = await self.platform.create_preview_deployment()
        except Exception:
            self.console.log("❌ Failed to create preview deployment", "red")
            raise

        self.console.log(f"✅ Preview deployment created: {preview.url}", "green")
        return preview

    async def wait_for_health_check(self, url: str, max_retries: int) -> bool:
        return await self.poller.wait_for_health_check(url, max_retries=max_retries)

    async def wait_for_readiness_check(self, url: str, max_retries: int) -> bool:
        return await self.poller.wait_for_readiness_check(url, max_retries=max_retries)

    async def promote_preview_to_production(self, preview: PreviewDeployment) -> bool:
        """Redeploy the production service from the verified source.

        Raises:
            PromotionFailedError: If the platform command fails
        """
        self.console.log(
            "\n🔄 Promoting preview to production (Green → Blue switch)...", "bold"
        )
        try:
            await self.platform.redeploy()
        except CommandFailedError as e:
            self.console.log("❌ Failed to promote preview to production", "red")
            raise PromotionFailedError(
                f"Failed to promote preview {preview.url} to production: {e.message}"
            ) from e

        self.console.log("✅ Successfully promoted preview to production", "green")
        return True

    async def rollback(self) -> bool:
        """Roll production back to the previous successful deployment."""
        self.console.log("\n🔄 Initiating rollback to previous version...", "yellow")
        try:
            target = await self.platform.find_rollback_target()
            self.console.log(f"Rolling back to deployment: {target.id}", "yellow")
            await self.platform.rollback(target.id)
        except Exception as e:
            self.console.log(f"❌ Rollback failed: {describe_error(e)}", "red")
            return False

        self.console.log("✅ Rollback completed successfully", "green")
        return True

    async def deploy(self) -> None:
        """Run the whole blue-green sequence.

        Raises:
            OperationalError: On any failed step; production is only touched
            after the preview passed health and readiness
        """
        self.console.log("\n🌟 Starting Blue-Green Deployment Process", "bold")
        self.console.rule("blue")

        self.console.log("\n📊 Getting current deployment information...", "bold")
        current = await self.get_current_deployment()
        self.console.log(f"Current service: {current.service_id}", "blue")
        self.console.log(f"Environment: {current.environment}", "blue")

        preview = await self.create_preview_deployment()

        health_url = f"{preview.url}{self.config.health_check_path}"
        if not await self.wait_for_health_check(
            health_url, self.config.deploy_health_check_retries
        ):
            self.console.log("❌ Preview deployment failed health checks", "red")
            raise HealthCheckFailedError(
                "Health checks failed for preview deployment", url=health_url
            )

        readiness_url = f"{preview.url}{self.config.readiness_check_path}"
        if not await self.wait_for_readiness_check(
            readiness_url, self.config.deploy_readiness_check_retries
        ):
            self.console.log("❌ Preview deployment failed readiness checks", "red")
            raise ReadinessCheckFailedError(
                "Readiness checks failed for preview deployment", url=readiness_url
            )

        await self.promote_preview_to_production(preview)

        self.console.log("\n🏁 Running final health checks on production...", "bold")
        # DNS and routing propagation
        await self._sleep(self.config.propagation_delay_seconds)

        production_url = self.config.production_url
        if not production_url:
            self.console.log(
                "⚠️  No production URL configured - skipping final health check",
                "yellow",
            )
        else:
            final_url = f"{production_url}{self.config.health_check_path}"
            if not await self.wait_for_health_check(
                final_url, self.config.deploy_final_check_retries
            ):
                self.console.log(
                    "⚠️  Production health check failed - considering rollback", "yellow"
                )
                if await self.rollback():
                    raise HealthCheckFailedError(
                        "Deployment failed final health check - rolled back successfully",
                        url=final_url,
                    )
                raise HealthCheckFailedError(
                    "Deployment failed final health check - rollback also failed",
                    url=final_url,
                )

        self.console.log("\n🎉 Blue-Green Deployment Completed Successfully!", "green")
        self.console.rule("green")

    async def close(self) -> None:
        await self.poller.prober.close()


async def run_deployment(deployer: BlueGreenDeployer) -> int:
    """Deploy and translate the outcome into a process exit code."""
    try:
        await deployer.deploy()
        return 0
    except Exception as e:
        deployer.console.log(f"\n💥 Deployment Failed: {describe_error(e)}", "red")
        deployer.console.rule("red")
        if not isinstance(e, OperationalError):
            logger.error("Unexpected deployment error", exc_info=True)
        capture_exception(e, tags={"component": "blue-green-deploy"})
        return 1
    finally:
        await deployer.close()


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point for the blue-green deployment tool."""
    parser = argparse.ArgumentParser(
        prog="deployguard-deploy",
        description="Blue-green deployment using preview deployments",
    )
    parser.parse_args(argv)

    setup_logging(service_settings, log_file="deployguard-deploy.log", console=False)
    init_sentry(service_settings)

    return asyncio.run(run_deployment(BlueGreenDeployer(OpsSettings())))


if __name__ == "__main__":
    sys.exit(main())
