"""Application configuration using Pydantic BaseSettings."""

import logging

import structlog
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Relational store (wallets, transactions, vouchers)
    database_url: str = Field(alias="DATABASE_URL")
    db_pool_size: int = Field(default=20, alias="DB_POOL_SIZE")

    # Application Environment
    app_env: str = Field(default="development", alias="APP_ENV")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Durable job store
    job_store_url: str = Field(default="redis://localhost:6379/0", alias="JOB_STORE_URL")
    job_ttl_seconds: int = Field(default=7 * 24 * 60 * 60, alias="JOB_TTL_SECONDS")
    idempotency_ttl_seconds: int = Field(default=24 * 60 * 60, alias="IDEMPOTENCY_TTL_SECONDS")

    # GPU fleet controller
    gpu_enabled: bool = Field(default=True, alias="GPU_ENABLED")
    allow_cpu_fallback: bool = Field(default=True, alias="ALLOW_CPU_FALLBACK")
    gpu_autostop_idle_min: float = Field(default=10, alias="GPU_AUTOSTOP_IDLE_MIN")
    gpu_check_interval_seconds: float = Field(default=30, alias="GPU_CHECK_INTERVAL_SECONDS")
    gpu_healthcheck_interval_seconds: float = Field(
        default=5, alias="GPU_HEALTHCHECK_INTERVAL_SECONDS"
    )
    gpu_healthcheck_max_wait_seconds: float = Field(
        default=300, alias="GPU_HEALTHCHECK_MAX_WAIT_SECONDS"
    )
    controller_lease_seconds: int = Field(default=90, alias="CONTROLLER_LEASE_SECONDS")

    # Fleet provider HTTP API
    fleet_provider_endpoint: str = Field(default="", alias="FLEET_PROVIDER_ENDPOINT")
    fleet_provider_api_key: str = Field(default="", alias="FLEET_PROVIDER_API_KEY")
    fleet_provider_timeout_seconds: float = Field(
        default=30.0, alias="FLEET_PROVIDER_TIMEOUT_SECONDS"
    )

    # Worker pollers
    max_concurrent_jobs: int = Field(default=5, alias="MAX_CONCURRENT_JOBS")
    poll_interval_seconds: float = Field(default=1, alias="POLL_INTERVAL_SECONDS")
    worker_lanes: str = Field(default="cpu", alias="WORKER_LANES")
    tool_processor_url: str = Field(default="", alias="TOOL_PROCESSOR_URL")

    @property
    def worker_lanes_list(self) -> list[str]:
        """Parse worker lanes from comma-separated string."""
        return [lane.strip() for lane in self.worker_lanes.split(",") if lane.strip()]

    @model_validator(mode="after")
    def validate_required_config(self) -> "Settings":
        """Validate required configuration on startup.

        Fails fast when the GPU fleet is enabled without provider credentials.
        Validation is skipped in test environments.
        """
        if self.app_env in ("test", "testing"):
            return self

        missing = []

        if self.gpu_enabled and not self.fleet_provider_endpoint:
            missing.append("FLEET_PROVIDER_ENDPOINT: Base URL of the GPU fleet provider API")

        if self.gpu_enabled and not self.fleet_provider_api_key:
            missing.append("FLEET_PROVIDER_API_KEY: Bearer token for the GPU fleet provider API")

        if missing:
            error_msg = "CRITICAL: Missing required environment variables:\n\n" + "\n".join(
                f"  - {m}" for m in missing
            )
            error_msg += "\n\nSet GPU_ENABLED=false to run CPU-only."
            raise ValueError(error_msg)

        return self


def configure_logging(settings: Settings) -> None:
    """Configure structlog based on application environment.

    - Production: JSON output for log aggregation
    - Development: Console output for human readability
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    if settings.app_env == "production":
        renderer_processors = [
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        renderer_processors = [structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            *renderer_processors,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
