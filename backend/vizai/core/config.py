"""Application configuration with validation."""

from enum import Enum
from pydantic_settings import BaseSettings
from pydantic import Field, field_validator, model_validator
from typing import List


class Environment(str, Enum):
    """Application environment."""
    DEVELOPMENT = "development"
    PRODUCTION = "production"


class ConfigurationError(Exception):
    """Raised when application configuration is invalid for the environment."""
    pass


class Settings(BaseSettings):
    """
    Application settings with validation.

    Every knob of the pipeline engine lives here: rate and cost ceilings,
    timeouts, retry policy constants and the generation provider.
    Timeouts are validated against the invocation wall clock so a step
    always leaves headroom to persist its checkpoint.
    """

    # Environment
    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Application environment (development/production)"
    )

    cors_allowed_origins: str = Field(
        default="http://localhost:3000",
        description="Allowed CORS origins (comma-separated)"
    )

    # Database Configuration
    database_url: str = Field(
        default="sqlite:///./vizai.db",
        description="Database connection URL"
    )
    db_pool_size: int = Field(default=5, description="Number of persistent database connections")
    db_max_overflow: int = Field(default=10, description="Extra connections allowed during bursts")
    db_pool_timeout: int = Field(
        default=5,
        description="Seconds to wait for a connection from the pool before raising"
    )
    db_pool_recycle: int = Field(default=1800, description="Seconds before a connection is recycled")
    # Applied as SQLite busy timeout / PostgreSQL statement_timeout.
    storage_timeout_seconds: float = Field(
        default=5.0,
        description="Upper bound for a single storage operation"
    )

    # Generation provider
    # LiteLLM model string, e.g. "gemini/gemini-1.5-flash". Empty = mock generator.
    generation_model: str = Field(
        default="",
        description="LiteLLM model for generation calls (empty = deterministic mock)"
    )
    generation_api_key: str = Field(default="", description="API key for the generation provider")
    generation_api_base: str = Field(default="", description="Base URL for the generation provider (optional)")
    generation_timeout_seconds: float = Field(
        default=25.0,
        description="Wall-clock timeout for one generation call"
    )
    max_output_tokens: int = Field(
        default=2048,
        description="Completion token cap; also the output side of admission estimates"
    )

    # Stateless invocations are killed by the platform after this many seconds.
    invocation_wall_clock_seconds: float = Field(
        default=60.0,
        description="Hard wall-clock ceiling of a single invocation"
    )

    # Rate and budget ceilings (per user)
    rpm_limit: int = Field(default=5, description="Maximum generation requests per user per minute")
    daily_budget_usd: float = Field(default=0.50, description="Maximum generation spend per user per day")
    price_input_per_million: float = Field(
        default=0.075,
        description="Fallback USD price per million input tokens"
    )
    price_output_per_million: float = Field(
        default=0.30,
        description="Fallback USD price per million output tokens"
    )

    # Recovery policy
    job_max_attempts: int = Field(default=3, description="Attempts before a job fails permanently")
    backoff_base_ms: int = Field(default=2000, description="Base of the exponential generation backoff")
    storage_retry_seconds: float = Field(default=5.0, description="Reschedule delay after a storage timeout")
    rpm_jitter_seconds: float = Field(default=5.0, description="Upper bound of jitter added to RPM reschedules")

    compact_summary_max_chars: int = Field(
        default=1500,
        description="Character budget of the compact summary fed to later steps"
    )

    # Health thresholds (reported, never acted upon)
    health_min_success_rate: float = Field(default=0.95)
    health_max_avg_duration_seconds: float = Field(default=120.0)

    worker_poll_interval: int = Field(default=10, description="Seconds between worker polls")

    # Logging Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
    log_format: str = Field(
        default="json",
        description="Log output format: 'json' for structured, 'text' for human-readable"
    )

    def get_cors_origins(self) -> List[str]:
        """Get CORS origins as a list, rejecting wildcards."""
        origins = [origin.strip() for origin in self.cors_allowed_origins.split(',') if origin.strip()]
        if "*" in origins:
            raise ValueError(
                "Wildcard CORS (*) not allowed. "
                "Specify explicit origins in CORS_ALLOWED_ORIGINS"
            )
        return origins

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is one of the standard Python logging levels."""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v_upper

    @field_validator('rpm_limit', 'job_max_attempts')
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Must be at least 1")
        return v

    @model_validator(mode="after")
    def validate_timeouts(self) -> "Settings":
        """Every blocking operation must finish before the invocation is killed."""
        ceiling = self.invocation_wall_clock_seconds
        for name in ("generation_timeout_seconds", "storage_timeout_seconds"):
            value = getattr(self, name)
            if value <= 0 or value >= ceiling:
                raise ValueError(
                    f"{name}={value} must be positive and below "
                    f"invocation_wall_clock_seconds={ceiling}"
                )
        return self

    @property
    def uses_mock_generator(self) -> bool:
        return not self.generation_model

    def validate_production_config(self) -> None:
        """Validate configuration for production environment.

        In production, fails startup when the deterministic mock generator
        or SQLite would be used. In development, returns silently and
        main.py logs warnings instead.

        Raises:
            ConfigurationError: If production config is unsafe.
        """
        errors: list[str] = []

        if self.uses_mock_generator:
            errors.append(
                "GENERATION_MODEL is empty, so the mock generator would serve real users. "
                "Set a LiteLLM model string, e.g. gemini/gemini-1.5-flash"
            )
        elif not self.generation_api_key:
            errors.append("GENERATION_API_KEY is empty.")

        if self.database_url.startswith("sqlite"):
            errors.append(
                "DATABASE_URL points at SQLite. Concurrent workers need PostgreSQL "
                "for the job claim protocol."
            )

        if errors and self.environment == Environment.PRODUCTION:
            raise ConfigurationError(
                "Production configuration is invalid:\n  - " + "\n  - ".join(errors)
            )

    class Config:
        """Pydantic configuration."""
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


# Global settings instance
settings = Settings()
