"""
Risk Decisioning Core - Configuration Settings

Centralized configuration using Pydantic Settings for type-safe
environment variable handling with validation.

All scoring thresholds and weights live here so they can be tuned
per deployment without code changes.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, computed_field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be overridden via environment variables.
    Example: RISK_THRESHOLD_HIGH=75 will set risk_threshold_high to 75
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # =========================================================================
    # Application Settings
    # =========================================================================
    app_env: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Application environment"
    )
    app_debug: bool = Field(
        default=True,
        description="Enable debug mode"
    )
    app_log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level"
    )

    # =========================================================================
    # Redis Configuration (tracker and trust record storage)
    # =========================================================================
    redis_host: str = Field(
        default="localhost",
        description="Redis server hostname"
    )
    redis_port: int = Field(
        default=6379,
        description="Redis server port"
    )
    redis_db: int = Field(
        default=0,
        description="Redis database number"
    )
    redis_key_prefix: str = Field(
        default="riskguard:",
        description="Prefix for all Redis keys to avoid conflicts"
    )
    redis_password: str | None = Field(
        default=None,
        description="Redis password (optional)"
    )

    @computed_field  # type: ignore[prop-decorator]
    @property
    def redis_url(self) -> str:
        """Construct Redis connection URL."""
        auth = f":{self.redis_password}@" if self.redis_password else ""
        return f"redis://{auth}{self.redis_host}:{self.redis_port}/{self.redis_db}"

    storage_backend: Literal["memory", "redis"] = Field(
        default="memory",
        description="Backend for trackers and trust records"
    )

    # =========================================================================
    # API Configuration
    # =========================================================================
    api_host: str = Field(
        default="0.0.0.0",
        description="API server bind address"
    )
    api_port: int = Field(
        default=8000,
        description="API server port"
    )
    cors_allow_origins: str = Field(
        default="http://localhost:3000",
        description="Comma-separated list of allowed CORS origins"
    )
    rules_path: str | None = Field(
        default=None,
        description="Path to a YAML document of custom rules per organization"
    )

    @computed_field  # type: ignore[prop-decorator]
    @property
    def cors_allow_origins_list(self) -> list[str]:
        """Return CORS origins as a list."""
        if not self.cors_allow_origins:
            return []
        return [origin.strip() for origin in self.cors_allow_origins.split(",") if origin.strip()]

    # =========================================================================
    # Metrics Configuration
    # =========================================================================
    metrics_enabled: bool = Field(
        default=True,
        description="Expose Prometheus metrics at /metrics"
    )

    # =========================================================================
    # Risk Score Thresholds (fraud detection engine, 0-100)
    # =========================================================================
    risk_threshold_low: int = Field(
        default=30,
        ge=0,
        le=100,
        description="Scores at or below this are ALLOW"
    )
    risk_threshold_medium: int = Field(
        default=50,
        ge=0,
        le=100,
        description="Medium risk marker (display only)"
    )
    risk_threshold_high: int = Field(
        default=70,
        ge=0,
        le=100,
        description="Scores at or below this (and above low) are REVIEW"
    )
    risk_threshold_critical: int = Field(
        default=85,
        ge=0,
        le=100,
        description="BLOCK decisions at or above this are high confidence"
    )

    # =========================================================================
    # Amount Thresholds (minor currency units)
    # =========================================================================
    amount_small_cents: int = Field(
        default=500,
        description="Amounts at or below this are 'small' (card testing probe)"
    )
    amount_medium_cents: int = Field(
        default=10000,
        description="Medium amount marker"
    )
    amount_high_cents: int = Field(
        default=50000,
        description="High amount threshold"
    )
    amount_very_high_cents: int = Field(
        default=100000,
        description="Very high amount threshold"
    )

    # =========================================================================
    # Velocity Thresholds (engine inputs)
    # =========================================================================
    velocity_attempts_hour_warning: int = Field(
        default=3,
        description="Attempts per hour that raise an elevated velocity factor"
    )
    velocity_attempts_hour_critical: int = Field(
        default=5,
        description="Attempts per hour that raise a velocity abuse factor"
    )
    velocity_unique_cards_warning: int = Field(
        default=2,
        description="Unique cards per session for a multiple-cards factor"
    )
    velocity_unique_cards_suspicious: int = Field(
        default=3,
        description="Unique cards per session for a card testing factor"
    )
    velocity_unique_cards_critical: int = Field(
        default=5,
        description="Unique cards per session for a critical card testing factor"
    )
    rapid_attempt_seconds: int = Field(
        default=60,
        description="Two attempts closer than this are 'rapid'"
    )

    # =========================================================================
    # Card Testing Tracker Thresholds (suspicion score, 0-100)
    # =========================================================================
    card_testing_cards_warning: int = Field(
        default=2,
        description="Unique cards adding the warning weight"
    )
    card_testing_cards_suspicious: int = Field(
        default=3,
        description="Unique cards adding the suspicious weight"
    )
    card_testing_cards_critical: int = Field(
        default=5,
        description="Unique cards adding the critical weight"
    )
    card_testing_failure_rate_warning: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Failure ratio for the elevated failure reason"
    )
    card_testing_failure_rate_critical: float = Field(
        default=0.8,
        ge=0.0,
        le=1.0,
        description="Failure ratio for the critical failure reason"
    )
    card_testing_burst_window_minutes: int = Field(
        default=5,
        description="Window for the very rapid burst reason"
    )
    card_testing_burst_count: int = Field(
        default=5,
        description="Attempts needed inside the very rapid burst window"
    )
    card_testing_rapid_window_minutes: int = Field(
        default=10,
        description="Window for the rapid burst reason"
    )
    card_testing_rapid_count: int = Field(
        default=3,
        description="Attempts needed inside the rapid burst window"
    )
    card_testing_small_amount_cents: int = Field(
        default=500,
        description="Attempts strictly below this are small-amount probes"
    )
    card_testing_review_score: int = Field(
        default=50,
        ge=0,
        le=100,
        description="Suspicion score that recommends REVIEW"
    )
    card_testing_block_score: int = Field(
        default=80,
        ge=0,
        le=100,
        description="Suspicion score that recommends BLOCK and blocks the session"
    )

    # =========================================================================
    # Composite Score Weights
    # =========================================================================
    composite_risk_weight: float = Field(
        default=0.6,
        ge=0.0,
        le=1.0,
        description="Weight of the fraud engine score in the composite score"
    )
    composite_card_testing_weight: float = Field(
        default=0.4,
        ge=0.0,
        le=1.0,
        description="Weight of the card testing suspicion score in the composite score"
    )

    # =========================================================================
    # Tracker Concurrency
    # =========================================================================
    tracker_max_retries: int = Field(
        default=5,
        ge=1,
        description="Optimistic write attempts before a tracker update fails"
    )
    tracker_ttl_seconds: int = Field(
        default=2592000,
        description="TTL for tracker keys in Redis (30 days)"
    )

    @model_validator(mode="after")
    def _validate_thresholds(self) -> "Settings":
        """Reject threshold orderings that would make decisions ambiguous."""
        if not (self.risk_threshold_low <= self.risk_threshold_high <= self.risk_threshold_critical):
            raise ValueError(
                "Risk thresholds must satisfy low <= high <= critical"
            )
        if self.card_testing_review_score > self.card_testing_block_score:
            raise ValueError(
                "card_testing_review_score must not exceed card_testing_block_score"
            )
        total = self.composite_risk_weight + self.composite_card_testing_weight
        if abs(total - 1.0) > 1e-6:
            raise ValueError(
                f"Composite weights must sum to 1.0 (got {total:.3f})"
            )
        return self


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses LRU cache to avoid re-parsing environment on every call.
    """
    return Settings()


# Singleton settings instance for easy import
settings = get_settings()
