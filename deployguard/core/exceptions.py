"""Custom exception hierarchy for the health service and deployment tooling."""

from typing import Any, Dict, Optional


class DeployGuardError(Exception):
    """Base exception for all application errors."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Initialize the error with message and metadata."""
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}


class ServiceError(DeployGuardError):
    """500-level server errors for service failures."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Initialize service error with 500-level status."""
        super().__init__(message, 500, error_code, details)


class ServiceUnavailableError(ServiceError):
    """Error when a required service is unavailable."""

    def __init__(self, message: str, service: Optional[str] = None) -> None:
        """Initialize with service information."""
        details = {"service": service} if service else {}
        super().__init__(message, "SERVICE_UNAVAILABLE", details)
        self.status_code = 503


class PoolNotInitializedError(ServiceUnavailableError):
    """Raised when the database pool was never initialized or has been shut down."""

    def __init__(
        self,
        message: str = "Database not available. Check DATABASE_URL configuration.",
    ) -> None:
        super().__init__(message, service="database")
        self.error_code = "POOL_NOT_INITIALIZED"


class OperationalError(DeployGuardError):
    """Deployment or rollback orchestration failure."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, 500, error_code, details)


class CommandFailedError(OperationalError):
    """Deployment platform CLI exited non-zero or timed out."""

    def __init__(
        self,
        command: list[str],
        message: str,
        returncode: Optional[int] = None,
        stderr: str = "",
    ) -> None:
        details = {
            "command": " ".join(command),
            "returncode": returncode,
            "stderr": stderr,
        }
        super().__init__(message, "COMMAND_FAILED", details)
        self.command = command
        self.returncode = returncode
        self.stderr = stderr


class DeploymentUrlNotFoundError(OperationalError):
    """Preview deployment output did not contain a URL."""

    def __init__(self, output: str = "") -> None:
        super().__init__(
            "Could not extract deployment URL from railway output",
            "DEPLOYMENT_URL_NOT_FOUND",
            {"output": output[-500:]},
        )


class NoPreviousDeploymentError(OperationalError):
    """No earlier successful deployment exists to roll back to."""

    def __init__(self, message: str = "No previous successful deployment found") -> None:
        super().__init__(message, "NO_PREVIOUS_DEPLOYMENT")


class RollbackVerificationTimeoutError(OperationalError):
    """Rolled-back deployment never became healthy and ready in time."""

    def __init__(self, waited_seconds: float) -> None:
        super().__init__(
            "Rollback verification timed out",
            "ROLLBACK_VERIFICATION_TIMEOUT",
            {"waited_seconds": waited_seconds},
        )


class HealthCheckFailedError(OperationalError):
    """A deployment never reported healthy within its retry budget."""

    def __init__(self, message: str, url: Optional[str] = None) -> None:
        super().__init__(message, "HEALTH_CHECK_FAILED", {"url": url})


class ReadinessCheckFailedError(OperationalError):
    """A deployment never reported ready within its retry budget."""

    def __init__(self, message: str, url: Optional[str] = None) -> None:
        super().__init__(message, "READINESS_CHECK_FAILED", {"url": url})


class PromotionFailedError(OperationalError):
    """Promoting the preview deployment to production failed."""

    def __init__(self, message: str = "Failed to promote preview to production") -> None:
        super().__init__(message, "PROMOTION_FAILED")
