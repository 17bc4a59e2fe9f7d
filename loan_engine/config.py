"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from decimal import Decimal
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .currency import Currency


class EngineConfig(BaseSettings):
    """Loan engine configuration"""

    model_config = SettingsConfigDict(
        env_prefix="LOAN_ENGINE_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Business rules configuration
    default_currency: str = "KES"
    default_allocation_strategy: str = "interest_fee_principal_penalty"
    strict_strategy_codes: bool = False  # Raise instead of falling back on unknown codes
    balance_epsilon: Decimal = Decimal("0.0001")  # Closed/overpaid threshold
    timely_epsilon: Decimal = Decimal("0.01")  # Tolerance for TRP comparisons

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stderr

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8091

    @field_validator('default_currency')
    @classmethod
    def validate_currency(cls, v: str) -> str:
        code = v.strip().upper()
        if code not in Currency.__members__:
            raise ValueError(f"Unknown currency code: {v!r}")
        return code


# Global configuration instance
config = EngineConfig()


def get_config() -> EngineConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> EngineConfig:
    """Reload configuration from environment"""
    global config
    config = EngineConfig()
    return config
