"""Application settings using Pydantic."""

import re
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

LOCALHOST_MARKERS = ("localhost", "127.0.0.1")
IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class Settings(BaseSettings):
    """Application settings with validation."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="CFI Handbook", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(
        default="development",
        description="Runtime environment (development, test, production)",
    )
    debug: bool = Field(default=False, description="Debug mode")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_dir: Path = Field(default=Path("logs"), description="Directory for log files")

    # Database
    database_url: Optional[str] = Field(
        default=None, description="PostgreSQL connection URL"
    )
    database_ssl: bool = Field(default=False, description="Require SSL connections")
    database_connection_pool_size: Optional[int] = Field(
        default=None,
        description="Maximum pooled connections (15 on Railway, 10 elsewhere)",
        ge=1,
        le=100,
    )
    database_connection_timeout: int = Field(
        default=30, description="Connect timeout in seconds", ge=1, le=300
    )
    database_idle_timeout: int = Field(
        default=600, description="Idle connection timeout in seconds", ge=1
    )
    database_max_lifetime: int = Field(
        default=3600, description="Maximum connection lifetime in seconds", ge=60
    )
    database_debug: bool = Field(default=False, description="Echo SQL statements")
    database_health_check_interval: float = Field(
        default=30.0, description="Seconds between pool self-checks", gt=0
    )

    # Observability
    sentry_dsn: Optional[str] = Field(default=None, description="Sentry DSN")
    sentry_traces_sample_rate: float = Field(
        default=0.1, description="Sentry performance sample rate", ge=0.0, le=1.0
    )

    # Deployment platform context
    railway_environment: Optional[str] = Field(default=None)
    railway_service_name: str = Field(default="cfi-handbook")
    railway_deployment_id: Optional[str] = Field(default=None)
    railway_git_commit_sha: Optional[str] = Field(default=None)
    railway_static_url: Optional[str] = Field(default=None)
    railway_public_domain: Optional[str] = Field(default=None)

    # Probes
    health_marker_dir: Path = Field(
        default=Path("."),
        description="Directory used for the filesystem writability probe",
    )
    readiness_required_env_vars: list[str] = Field(
        default=[
            "DATABASE_URL",
            "NEXT_PUBLIC_CLERK_PUBLISHABLE_KEY",
            "CLERK_SECRET_KEY",
        ],
        description="Environment variables that must be present to serve traffic",
    )
    readiness_expected_tables: list[str] = Field(
        default=["counter", "acs_codes", "user_progress", "page_feedback"],
        description="Tables that must exist in the public schema",
    )
    readiness_reference_table: str = Field(
        default="acs_codes",
        description="Reference table that must contain at least one row",
    )

    # Server
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, description="API port", ge=1, le=65535)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v_upper

    @field_validator("railway_service_name")
    @classmethod
    def validate_service_name(cls, v: str) -> str:
        """Fall back to the default service name when blank."""
        return v.strip() or "cfi-handbook"

    @field_validator("readiness_reference_table")
    @classmethod
    def validate_reference_table(cls, v: str) -> str:
        """Only plain SQL identifiers are accepted."""
        if not IDENTIFIER_PATTERN.match(v):
            raise ValueError(f"Invalid table name: {v!r}")
        return v

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def is_railway(self) -> bool:
        return bool(self.railway_environment)

    @property
    def pool_size(self) -> int:
        """Configured pool size, defaulting higher on the deployment platform."""
        if self.database_connection_pool_size is not None:
            return self.database_connection_pool_size
        return 15 if self.is_railway else 10

    @property
    def database_url_is_localhost(self) -> bool:
        url = self.database_url or ""
        return any(marker in url for marker in LOCALHOST_MARKERS)


# Global settings instance
settings = Settings()
