"""
Configuration Management for Cashvault Jobs

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Job cadences live here too: when a job runs is configuration,
not business logic.
"""

from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """Ledger database configuration."""

    model_config = SettingsConfigDict(
        env_prefix="DATABASE_",
        extra="ignore"
    )

    path: str = Field(
        default="cashvault.db",
        description="Path to the SQLite ledger database (':memory:' for tests)"
    )
    busy_timeout_ms: int = Field(
        default=5000,
        ge=0,
        description="How long a writer waits for a locked database"
    )


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets audit log configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Path to Google service account credentials JSON"
    )
    spreadsheet_id: str = Field(
        ...,
        description="ID of the Google Sheets spreadsheet to use"
    )
    audit_sheet_name: str = Field(
        default="JobAudit",
        description="Name of the sheet for job audit events"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """Warn if credentials file doesn't exist (but don't fail - might be mounted later)."""
        if not Path(v).exists():
            import warnings
            warnings.warn(
                f"Google credentials file not found at {v}. "
                "Make sure it exists before running the jobs."
            )
        return v


class GeminiSettings(BaseSettings):
    """Gemini LLM configuration for monthly report insights."""

    model_config = SettingsConfigDict(
        env_prefix="GEMINI_",
        extra="ignore"
    )

    api_key: Optional[str] = Field(
        default=None,
        description="Gemini API key (insights fall back to fixed text without it)"
    )
    model_name: str = Field(
        default="gemini-2.0-flash",
        description="Gemini model to use"
    )
    max_tokens: int = Field(
        default=512,
        ge=100,
        le=8192,
        description="Maximum tokens in response"
    )
    temperature: float = Field(
        default=0.4,
        ge=0.0,
        le=1.0,
        description="Model temperature"
    )


class JobSettings(BaseSettings):
    """
    Background job configuration.

    Cron expressions are in standard five-field crontab syntax.
    """

    model_config = SettingsConfigDict(
        env_prefix="JOBS_",
        extra="ignore"
    )

    # Trigger cadences
    recurring_cron: str = Field(
        default="0 0 * * *",
        description="When to check for due recurring transactions"
    )
    budget_alert_cron: str = Field(
        default="0 */6 * * *",
        description="When to check budgets"
    )
    monthly_report_cron: str = Field(
        default="0 0 1 * *",
        description="When to send monthly reports"
    )

    # Per-user throttling of recurring firings
    throttle_limit: int = Field(
        default=10,
        ge=1,
        description="Firings allowed per user within one throttle period"
    )
    throttle_period_seconds: float = Field(
        default=60.0,
        ge=0.0,
        description="Length of the throttle window"
    )
    max_in_flight_per_user: int = Field(
        default=2,
        ge=1,
        description="Concurrent recurring units allowed per user"
    )

    # Retry of a unit whose atomic mutation did not commit
    retry_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts per unit before it is reported as failed"
    )
    retry_wait_multiplier: float = Field(
        default=1.0,
        ge=0.0,
        description="Exponential backoff multiplier in seconds (0 disables waiting)"
    )
    retry_wait_max_seconds: float = Field(
        default=10.0,
        ge=0.0,
    )

    # Budget alerts
    budget_alert_threshold: Decimal = Field(
        default=Decimal("80"),
        gt=0,
        le=100,
        description="Percentage of the budget at which an alert fires"
    )


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    recurring_description_suffix: str = Field(
        default="(Recurring)",
        description="Marker appended to generated transaction descriptions"
    )

    @property
    def is_production(self) -> bool:
        return self.app_environment.lower() == "production"


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Sub-settings are loaded lazily to allow partial configuration

    @property
    def database(self) -> DatabaseSettings:
        return DatabaseSettings()

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def gemini(self) -> GeminiSettings:
        return GeminiSettings()

    @property
    def jobs(self) -> JobSettings:
        return JobSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}, with an
    "<name>_error" entry for each section that failed to load.
    """
    results = {}
    settings = get_settings()

    for name in ("database", "google_sheets", "gemini", "jobs", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
