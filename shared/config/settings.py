"""
Settings Module
===============

Pydantic-based configuration with environment variable loading.

Version: 0.1.0
"""

from enum import Enum
from functools import lru_cache

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Deployment environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class StoreBackend(str, Enum):
    """Rule store implementation used by the API service."""

    MEMORY = "memory"
    POSTGRES = "postgres"


class PostgresSettings(BaseSettings):
    """PostgreSQL database configuration."""

    model_config = SettingsConfigDict(env_prefix="POSTGRES_")

    host: str = "localhost"
    port: int = 5432
    user: str = "regtruth"
    password: SecretStr = SecretStr("regtruth_dev_password")
    db: str = "regulatory_truth"

    @property
    def async_url(self) -> str:
        """Generate async SQLAlchemy connection URL."""
        pwd = self.password.get_secret_value()
        return f"postgresql+asyncpg://{self.user}:{pwd}@{self.host}:{self.port}/{self.db}"


class StalenessSettings(BaseSettings):
    """Evidence re-verification configuration."""

    model_config = SettingsConfigDict(env_prefix="STALENESS_")

    # Days before evidence from a source of the given hierarchy counts as aging.
    # Higher authority sources are verified less often.
    thresholds_by_hierarchy: dict[int, int] = Field(
        default_factory=lambda: {1: 30, 2: 21, 3: 14, 4: 7, 5: 7}
    )
    default_threshold_days: int = 14

    # Grace period for transient HEAD failures
    max_consecutive_failures: int = 3
    unavailable_retry_hours: float = 4
    normal_retry_hours: float = 24

    # Delay between outbound availability checks
    check_delay_seconds: float = 0.5
    batch_limit: int = 100
    recrawl_limit: int = 50


class ComposerSettings(BaseSettings):
    """Rule composition configuration."""

    model_config = SettingsConfigDict(env_prefix="COMPOSER_")

    blocked_domains: list[str] = Field(
        default_factory=lambda: ["heartbeat", "test", "synthetic", "debug"]
    )
    batch_cooldown_seconds: float = 3.0

    # Risk tiers for which an explanation that fails validation rejects the
    # rule instead of falling back to a quote-only explanation.
    strict_explanation_tiers: list[str] = Field(default_factory=list)


class LifecycleSettings(BaseSettings):
    """Rule status transition configuration."""

    model_config = SettingsConfigDict(env_prefix="LIFECYCLE_")

    # Tiers whose quotes must match evidence byte-for-byte before publishing
    exact_match_tiers: list[str] = Field(default_factory=lambda: ["T0", "T1"])


class HttpSettings(BaseSettings):
    """Outbound HTTP configuration for availability checks."""

    model_config = SettingsConfigDict(env_prefix="HTTP_")

    user_agent: str = "RegulatoryTruthBot/1.0 (evidence verification)"
    connect_timeout: float = 10.0
    read_timeout: float = 30.0
    max_retries: int = 2


class CORSSettings(BaseSettings):
    """CORS configuration."""

    model_config = SettingsConfigDict(env_prefix="CORS_")

    origins: str = "http://localhost:3000,http://localhost:5173"
    allow_credentials: bool = True

    @property
    def origins_list(self) -> list[str]:
        """Parse origins string into list."""
        return [o.strip() for o in self.origins.split(",") if o.strip()]


class Settings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables with sensible defaults.
    Use the global `settings` singleton or call `get_settings()`.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # General
    environment: Environment = Environment.DEVELOPMENT
    debug: bool = True
    log_level: LogLevel = LogLevel.INFO

    port: int = Field(default=8010, alias="REGULATORY_TRUTH_PORT")
    store_backend: StoreBackend = StoreBackend.POSTGRES

    # Database connections
    postgres: PostgresSettings = Field(default_factory=PostgresSettings)

    # Pipeline configuration
    staleness: StalenessSettings = Field(default_factory=StalenessSettings)
    composer: ComposerSettings = Field(default_factory=ComposerSettings)
    lifecycle: LifecycleSettings = Field(default_factory=LifecycleSettings)
    http: HttpSettings = Field(default_factory=HttpSettings)

    # Security
    cors: CORSSettings = Field(default_factory=CORSSettings)

    @field_validator("log_level", mode="before")
    @classmethod
    def uppercase_log_level(cls, v: str | LogLevel) -> LogLevel:
        """Ensure log level is uppercase."""
        if isinstance(v, str):
            return LogLevel(v.upper())
        return v

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == Environment.PRODUCTION


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings: Application settings singleton.
    """
    return Settings()
