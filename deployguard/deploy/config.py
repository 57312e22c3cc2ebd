"""Settings for the deployment command-line tools."""

from typing import Optional

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_APP_URL = "https://your-app.railway.app"


def _ms(value: int) -> float:
    return value / 1000


class OpsSettings(BaseSettings):
    """Deployment tooling settings.

    Durations are read in milliseconds, matching the variables operators
    already set for the deployment pipeline. The ``*_seconds`` properties
    are what the code uses.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Probe targets
    health_check_url: str = Field(default=f"{DEFAULT_APP_URL}/api/health")
    readiness_check_url: str = Field(default=f"{DEFAULT_APP_URL}/api/ready")
    health_check_path: str = Field(default="/api/health")
    readiness_check_path: str = Field(default="/api/ready")

    # Rollback monitor (milliseconds)
    rollback_check_interval: int = Field(default=30000, ge=1)
    health_check_timeout: int = Field(default=10000, ge=1)
    rollback_failure_threshold: int = Field(default=3, ge=1)
    rollback_timeout: int = Field(default=300000, ge=1)
    monitoring_duration: int = Field(default=600000, ge=1)

    # Blue-green deployment
    deploy_health_check_timeout: int = Field(
        default=30000, ge=1, description="Per-request timeout while polling a deployment (ms)"
    )
    deploy_health_check_retries: int = Field(default=10, ge=1)
    deploy_readiness_check_retries: int = Field(default=5, ge=1)
    deploy_final_check_retries: int = Field(default=5, ge=1)
    deploy_health_check_interval: int = Field(default=3000, ge=0)
    deploy_propagation_delay: int = Field(default=10000, ge=0)

    # Platform CLI
    railway_cli: str = Field(default="railway", description="Platform CLI executable")
    platform_command_timeout: int = Field(default=120000, ge=1)
    platform_deploy_timeout: int = Field(default=900000, ge=1)

    # Alerts
    slack_webhook_url: Optional[str] = Field(default=None)

    # Deployment context
    railway_environment: str = Field(default="production")
    railway_service_name: str = Field(default="cfi-handbook")
    railway_static_url: Optional[str] = Field(default=None)
    railway_public_domain: Optional[str] = Field(default=None)

    # Post-deployment verification
    verification_timeout: int = Field(default=30000, ge=1)

    log_level: str = Field(default="INFO")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v_upper

    @field_validator("railway_environment", "railway_service_name")
    @classmethod
    def blank_falls_back(cls, v: str, info: ValidationInfo) -> str:
        if v.strip():
            return v.strip()
        return cls.model_fields[info.field_name].default

    @property
    def check_interval_seconds(self) -> float:
        return _ms(self.rollback_check_interval)

    @property
    def health_check_timeout_seconds(self) -> float:
        return _ms(self.health_check_timeout)

    @property
    def rollback_timeout_seconds(self) -> float:
        return _ms(self.rollback_timeout)

    @property
    def monitoring_duration_seconds(self) -> float:
        return _ms(self.monitoring_duration)

    @property
    def deploy_request_timeout_seconds(self) -> float:
        return _ms(self.deploy_health_check_timeout)

    @property
    def deploy_interval_seconds(self) -> float:
        return _ms(self.deploy_health_check_interval)

    @property
    def propagation_delay_seconds(self) -> float:
        return _ms(self.deploy_propagation_delay)

    @property
    def command_timeout_seconds(self) -> float:
        return _ms(self.platform_command_timeout)

    @property
    def deploy_timeout_seconds(self) -> float:
        return _ms(self.platform_deploy_timeout)

    @property
    def verification_timeout_seconds(self) -> float:
        return _ms(self.verification_timeout)

    @property
    def production_url(self) -> Optional[str]:
        """Public base URL of the production service, if the platform exposes one."""
        host = self.railway_static_url or self.railway_public_domain
        if not host:
            return None
        host = host.rstrip("/")
        if host.startswith(("http://", "https://")):
            return host
        return f"https://{host}"

    @property
    def verification_base_url(self) -> str:
        return self.production_url or DEFAULT_APP_URL

