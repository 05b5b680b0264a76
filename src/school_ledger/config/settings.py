"""Configuration settings for the school ledger engine."""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class LedgerSettings(BaseSettings):
    """Flat settings read from environment variables or a .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Academic year
    academic_year: str = Field(
        default="2024-2025", validation_alias="LEDGER_ACADEMIC_YEAR"
    )
    # 1 reproduces the calendar-year carry-forward anchor
    academic_year_start_month: int = Field(
        default=9, ge=1, le=12, validation_alias="LEDGER_ACADEMIC_YEAR_START_MONTH"
    )

    # Payroll generation throttling
    payroll_rate_limit_attempts: int = Field(
        default=3, validation_alias="LEDGER_PAYROLL_RATE_LIMIT_ATTEMPTS"
    )
    payroll_rate_limit_window_seconds: float = Field(
        default=3600.0, validation_alias="LEDGER_PAYROLL_RATE_LIMIT_WINDOW_SECONDS"
    )
    payroll_rate_limit_block_seconds: float = Field(
        default=7200.0, validation_alias="LEDGER_PAYROLL_RATE_LIMIT_BLOCK_SECONDS"
    )

    # Statutory contribution tables (packaged YAML when unset)
    statutory_rates_path: str | None = Field(
        default=None, validation_alias="LEDGER_STATUTORY_RATES_PATH"
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", validation_alias="LOG_LEVEL"
    )
    log_format: Literal["json", "console"] = Field(
        default="console", validation_alias="LOG_FORMAT"
    )


@lru_cache
def get_settings() -> LedgerSettings:
    """Get cached settings instance."""
    return LedgerSettings()
