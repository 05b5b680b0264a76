"""Tests for configuration settings."""

import pytest

from school_ledger.config.settings import LedgerSettings, get_settings


class TestLedgerSettings:
    """Tests for LedgerSettings."""

    def test_defaults(self, monkeypatch):
        for name in (
            "LEDGER_ACADEMIC_YEAR",
            "LEDGER_ACADEMIC_YEAR_START_MONTH",
            "LOG_LEVEL",
        ):
            monkeypatch.delenv(name, raising=False)

        settings = LedgerSettings(_env_file=None)

        assert settings.academic_year == "2024-2025"
        assert settings.academic_year_start_month == 9
        assert settings.payroll_rate_limit_attempts == 3
        assert settings.payroll_rate_limit_block_seconds == 7200.0
        assert settings.statutory_rates_path is None
        assert settings.log_level == "INFO"

    def test_declared_settings(self):
        # The overdue window is a fixed constant, not a setting
        assert set(LedgerSettings.model_fields) == {
            "academic_year",
            "academic_year_start_month",
            "payroll_rate_limit_attempts",
            "payroll_rate_limit_window_seconds",
            "payroll_rate_limit_block_seconds",
            "statutory_rates_path",
            "log_level",
            "log_format",
        }

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("LEDGER_ACADEMIC_YEAR", "2025")
        monkeypatch.setenv("LEDGER_ACADEMIC_YEAR_START_MONTH", "1")
        monkeypatch.setenv("LEDGER_PAYROLL_RATE_LIMIT_ATTEMPTS", "5")

        settings = LedgerSettings(_env_file=None)

        assert settings.academic_year == "2025"
        assert settings.academic_year_start_month == 1
        assert settings.payroll_rate_limit_attempts == 5

    def test_start_month_out_of_range(self, monkeypatch):
        monkeypatch.setenv("LEDGER_ACADEMIC_YEAR_START_MONTH", "13")

        with pytest.raises(ValueError):
            LedgerSettings(_env_file=None)


class TestGetSettings:
    def test_returns_cached_instance(self):
        assert get_settings() is get_settings()

    def test_cache_clear_rereads_environment(self, monkeypatch):
        monkeypatch.setenv("LEDGER_ACADEMIC_YEAR", "2030-2031")
        get_settings.cache_clear()
        try:
            assert get_settings().academic_year == "2030-2031"
        finally:
            get_settings.cache_clear()
