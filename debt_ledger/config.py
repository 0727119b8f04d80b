"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class DebtLedgerConfig(BaseSettings):
    """Debt ledger configuration"""

    model_config = SettingsConfigDict(
        env_prefix="DEBT_LEDGER_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Storage configuration
    database_url: str = "sqlite:///debt_ledger.db"  # memory:// for in-process storage

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    # Arithmetic configuration
    calculation_precision: int = 28  # Significant digits for intermediate math

    # Schedule configuration
    reference_timezone: str = "UTC"  # Due dates are pinned to this timezone
    due_date_hour: int = 12

    # Overdue classification
    overdue_grace_days: int = 0

    # Listing configuration
    default_page_size: int = 50
    max_page_size: int = 200
    dashboard_debt_limit: int = 50
    dashboard_upcoming_limit: int = 10


# Global configuration instance
config = DebtLedgerConfig()


def get_config() -> DebtLedgerConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> DebtLedgerConfig:
    """Reload configuration from environment"""
    global config
    config = DebtLedgerConfig()
    return config
