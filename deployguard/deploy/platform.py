"""Adapter over the Railway command-line interface."""

import asyncio
import json
import logging
import re
from typing import Any, Awaitable, Callable, List, NamedTuple, Optional, Sequence

from pydantic import BaseModel, ConfigDict

from deployguard.core.exceptions import (
    CommandFailedError,
    DeploymentUrlNotFoundError,
    NoPreviousDeploymentError,
)

from .console import StepConsole

logger = logging.getLogger(__name__)

URL_PATTERN = re.compile(r"https://\S+")
UUID_PATTERN = re.compile(
    r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}", re.IGNORECASE
)
SUCCESS_STATUS = "SUCCESS"


class DeploymentRecord(BaseModel):
    """One entry of the platform's deployment history, most recent first."""

    model_config = ConfigDict(extra="allow")

    id: str
    status: str


class PreviewDeployment(BaseModel):
    """A detached deployment created for pre-promotion checks."""

    url: str
    id: Optional[str] = None
    status: str = "DEPLOYING"


class CurrentDeployment(BaseModel):
    service_id: Optional[str] = None
    project_id: Optional[str] = None
    environment: Optional[str] = None


class CommandResult(NamedTuple):
    returncode: int
    stdout: str
    stderr: str


CommandRunner = Callable[[Sequence[str], float], Awaitable[CommandResult]]


async def run_command(command: Sequence[str], timeout: float) -> CommandResult:
    """Run a command as a subprocess, killing it when the timeout expires.

    Raises:
        CommandFailedError: If the executable is missing or the timeout expires
    """
    try:
        process = await asyncio.create_subprocess_exec(
            *command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise CommandFailedError(list(command), f"Could not start command: {e}") from e

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError as e:
        process.kill()
        await process.wait()
        raise CommandFailedError(
            list(command), f"Command timed out after {timeout:g}s"
        ) from e

    return CommandResult(
        returncode=process.returncode if process.returncode is not None else -1,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
    )


def select_rollback_target(
    records: Sequence[DeploymentRecord],
) -> Optional[DeploymentRecord]:
    """First successful deployment after the current one (index 0)."""
    for record in records[1:]:
        if record.status == SUCCESS_STATUS:
            return record
    return None


def parse_preview_output(output: str) -> PreviewDeployment:
    """Extract the preview URL (and deployment id, when printed) from CLI output.

    Raises:
        DeploymentUrlNotFoundError: If the output contains no https URL
    """
    match = URL_PATTERN.search(output)
    if not match:
        raise DeploymentUrlNotFoundError(output)

    deployment_id = UUID_PATTERN.search(output)
    return PreviewDeployment(
        url=match.group(0).rstrip(".,;)"),
        id=deployment_id.group(0) if deployment_id else None,
    )


class RailwayPlatform:
    """Runs ``railway`` subcommands and parses their output."""

    def __init__(
        self,
        executable: str = "railway",
        default_timeout: float = 120.0,
        deploy_timeout: float = 900.0,
        runner: CommandRunner = run_command,
        console: Optional[StepConsole] = None,
    ) -> None:
        self.executable = executable
        self.default_timeout = default_timeout
        self.deploy_timeout = deploy_timeout
        self._runner = runner
        self.console = console or StepConsole(timestamps=False)

    async def execute(self, *args: str, timeout: Optional[float] = None) -> str:
        """Run a subcommand and return its trimmed stdout.

        Raises:
            CommandFailedError: On a non-zero exit or timeout
        """
        command = [self.executable, *args]
        self.console.log(f"Executing: {' '.join(command)}", "blue")

        result = await self._runner(command, timeout or self.default_timeout)
        if result.returncode != 0:
            stderr = result.stderr.strip()
            self.console.log(f"Command failed: {stderr or result.returncode}", "red")
            raise CommandFailedError(
                command,
                f"Command failed with exit code {result.returncode}",
                returncode=result.returncode,
                stderr=stderr,
            )
        return result.stdout.strip()

    async def _execute_json(self, *args: str) -> Any:
        output = await self.execute(*args)
        try:
            return json.loads(output)
        except ValueError as e:
            raise CommandFailedError(
                [self.executable, *args], f"Invalid JSON output: {e}"
            ) from e

    async def get_current_deployment(self) -> CurrentDeployment:
        status = await self._execute_json("status", "--json")
        if not isinstance(status, dict):
            status = {}

        def _nested(key: str, field: str) -> Optional[str]:
            value = status.get(key)
            return value.get(field) if isinstance(value, dict) else None

        return CurrentDeployment(
            service_id=_nested("service", "id"),
            project_id=_nested("project", "id"),
            environment=_nested("environment", "name"),
        )

    async def list_deployments(self) -> List[DeploymentRecord]:
        """Deployment history, most recent first."""
        history = await self._execute_json("deployment", "list", "--json")
        if not isinstance(history, list):
            raise CommandFailedError(
                [self.executable, "deployment", "list", "--json"],
                "Deployment history is not a list",
            )
        return [DeploymentRecord.model_validate(item) for item in history]

    async def find_rollback_target(self) -> DeploymentRecord:
        """Raises NoPreviousDeploymentError when nothing can be rolled back to."""
        deployments = await self.list_deployments()
        if len(deployments) < 2:
            raise NoPreviousDeploymentError("No previous deployment found for rollback")

        target = select_rollback_target(deployments)
        if target is None:
            raise NoPreviousDeploymentError()
        return target

    async def rollback(self, deployment_id: str, timeout: Optional[float] = None) -> None:
        await self.execute("deployment", "rollback", deployment_id, timeout=timeout)

    async def create_preview_deployment(self) -> PreviewDeployment:
        output = await self.execute("deploy", "--detach", timeout=self.deploy_timeout)
        return parse_preview_output(output)

    async def redeploy(self) -> None:
        await self.execute("deploy", timeout=self.deploy_timeout)
