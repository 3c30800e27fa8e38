"""
Configuration management using pydantic-settings.
All settings loaded from environment variables (12-factor app).
"""

from functools import lru_cache
from typing import List

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Security
    jwt_secret: str = Field(
        default="change-this-to-a-secure-random-string-in-production",
        description="JWT signing secret",
    )
    jwt_algorithm: str = Field(default="HS256", description="JWT algorithm")
    jwt_expiration_minutes: int = Field(default=1440, description="JWT expiration (24h)")

    # Database
    db_path: str = Field(default="./data/marketpulse.duckdb", description="DuckDB file path")
    db_threads: int = Field(default=4, description="DuckDB thread count")

    # API
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, description="API port")
    api_reload: bool = Field(default=True, description="Enable hot reload")
    cors_origins: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        description="CORS allowed origins (comma-separated)",
    )

    # Logging
    log_level: str = Field(default="info", description="Log level")
    log_format: str = Field(default="json", description="Log format (json|console)")

    # Analytics
    default_timeframe: str = Field(default="30d", description="Timeframe used when none is given")
    currency_symbol: str = Field(default="Rp", description="Currency prefix used in exports")
    upload_max_rows: int = Field(default=20000, ge=1, description="Max rows accepted per CSV upload")
    export_max_transactions: int = Field(
        default=5000, ge=1, description="Max transaction rows included in exports"
    )

    # Bootstrap user (created on startup when both are set)
    bootstrap_admin_email: str = Field(default="", description="Email of the bootstrap admin")
    bootstrap_admin_password: str = Field(default="", description="Password of the bootstrap admin")

    # Development
    dev_mode: bool = Field(default=True, description="Development mode")
    testing: bool = Field(default=False, description="Testing mode")

    @field_validator("cors_origins")
    @classmethod
    def parse_cors_origins(cls, v: str) -> List[str]:
        """Parse comma-separated CORS origins."""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v


class InsightThresholds(BaseSettings):
    """
    Named thresholds for the business insight rules.

    Every number the insight generator compares against lives here so the
    policy can be audited and overridden (env prefix ``INSIGHT_``) without
    touching the generator.
    """

    model_config = SettingsConfigDict(
        env_prefix="INSIGHT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Revenue growth (percent change vs previous period)
    growth_positive_pct: float = Field(
        default=10.0, description="Growth above this is positive; 0 up to this is neutral"
    )
    growth_high_priority_pct: float = Field(
        default=-10.0, description="Growth below this is high priority"
    )

    # Platform gap ((top - bottom) / top revenue)
    gap_actionable_pct: float = Field(default=50.0, description="Gap above this is actionable")
    gap_high_priority_pct: float = Field(default=70.0, description="Gap above this is high priority")

    # Revenue concentration in the top N groups
    concentration_top_n: int = Field(default=5, ge=1, description="Groups counted as 'top'")
    concentration_negative_pct: float = Field(
        default=80.0, description="Share above this is negative and high priority"
    )
    concentration_neutral_pct: float = Field(default=60.0, description="Share above this is neutral")
    concentration_actionable_pct: float = Field(
        default=70.0, description="Share above this is actionable"
    )

    # Profit margin
    margin_positive_pct: float = Field(default=25.0, description="Margin above this is positive")
    margin_neutral_pct: float = Field(
        default=15.0, description="Margin above this is neutral; below is negative and actionable"
    )
    margin_critical_pct: float = Field(default=10.0, description="Margin below this is high priority")

    # Seasonality (coefficient of variation across monthly revenue)
    seasonality_min_months: int = Field(default=6, ge=2, description="Months needed before reporting")
    seasonality_actionable_cv_pct: float = Field(
        default=30.0, description="Coefficient of variation above this is actionable"
    )

    # Change calculator
    zero_baseline_change_pct: float = Field(
        default=100.0,
        description="Change reported when the previous value is 0 and the current is not",
    )

    @model_validator(mode="after")
    def validate_bands(self) -> "InsightThresholds":
        """Ensure the banded thresholds are ordered."""
        if self.concentration_neutral_pct > self.concentration_negative_pct:
            raise ValueError("concentration_neutral_pct must not exceed concentration_negative_pct")
        if self.margin_neutral_pct > self.margin_positive_pct:
            raise ValueError("margin_neutral_pct must not exceed margin_positive_pct")
        if self.margin_critical_pct > self.margin_neutral_pct:
            raise ValueError("margin_critical_pct must not exceed margin_neutral_pct")
        if self.gap_actionable_pct > self.gap_high_priority_pct:
            raise ValueError("gap_actionable_pct must not exceed gap_high_priority_pct")
        if self.growth_high_priority_pct > 0:
            raise ValueError("growth_high_priority_pct must be zero or negative")
        return self


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to ensure singleton behavior.
    """
    return Settings()


@lru_cache
def get_insight_thresholds() -> InsightThresholds:
    """Get cached insight thresholds."""
    return InsightThresholds()
