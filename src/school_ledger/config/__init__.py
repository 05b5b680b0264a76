"""Configuration module for the school ledger."""

from school_ledger.config.logging import configure_logging
from school_ledger.config.settings import LedgerSettings, get_settings

__all__ = ["LedgerSettings", "get_settings", "configure_logging"]
