"""Core configuration management using Pydantic settings."""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import model_validator, field_validator


# Valid log levels
VALID_LOG_LEVELS = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Database
    database_url: str = "sqlite+aiosqlite:///./data/calls.db"
    database_pool_headroom: int = 5
    database_max_overflow: int = 10

    # Redis (redis_url should contain full connection string including port)
    redis_url: str = "redis://localhost:6379/0"

    # Price history source
    birdeye_api_key: str = ""
    birdeye_base_url: str = "https://public-api.birdeye.so"
    birdeye_chain: str = "solana"
    source_timeout_seconds: float = 15.0
    source_max_attempts: int = 3
    source_retry_wait_max_seconds: float = 10.0

    # Verification cadence
    verification_interval_minutes: int = 5
    recheck_interval_minutes: int = 60
    verification_batch_size: int = 100
    verification_worker_pool_size: int = 5
    verification_tick_deadline_seconds: float = 240.0

    # Rate-limit backoff schedule (per token)
    rate_limit_backoff_base_seconds: int = 60
    rate_limit_backoff_max_seconds: int = 3600

    # Consecutive failing ticks before repository health is flagged
    repository_failure_alert_ticks: int = 3

    # Logging
    log_level: str = "INFO"

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is a valid Python logging level."""
        upper_v = v.upper()
        if upper_v not in VALID_LOG_LEVELS:
            raise ValueError(f"log_level must be one of {VALID_LOG_LEVELS}")
        return upper_v

    @field_validator(
        'verification_interval_minutes',
        'recheck_interval_minutes',
        'verification_batch_size',
        'verification_worker_pool_size',
        'database_pool_headroom',
        'source_max_attempts',
        'rate_limit_backoff_base_seconds',
        'repository_failure_alert_ticks',
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Cadence, sizing and backoff values must be positive."""
        if v <= 0:
            raise ValueError("value must be positive")
        return v

    @model_validator(mode='after')
    def validate_config(self) -> 'Settings':
        """Validate configuration after all fields are set."""
        if self.rate_limit_backoff_max_seconds < self.rate_limit_backoff_base_seconds:
            raise ValueError("rate_limit_backoff_max_seconds must be >= rate_limit_backoff_base_seconds")
        if self.source_timeout_seconds <= 0 or self.verification_tick_deadline_seconds <= 0:
            raise ValueError("timeouts must be positive")
        if self.source_retry_wait_max_seconds < 0:
            raise ValueError("source_retry_wait_max_seconds must not be negative")
        return self

    @property
    def source_fetch_budget_seconds(self) -> float:
        """Upper bound for one price fetch including every retry attempt and wait."""
        return (
            self.source_timeout_seconds * self.source_max_attempts
            + self.source_retry_wait_max_seconds * (self.source_max_attempts - 1)
        )


# Global settings instance
settings = Settings()
