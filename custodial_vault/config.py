"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


ONE_UNIT = 10 ** 18  # smallest-denomination units per whole native unit


class VaultConfig(BaseSettings):
    """Custodial vault configuration"""

    model_config = SettingsConfigDict(
        env_prefix="VAULT_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Ledger limits (validated by the ledger at construction)
    withdrawal_limit: int = Field(default=ONE_UNIT, description="Ceiling on any single withdrawal")
    bank_cap: int = Field(default=100 * ONE_UNIT, description="Ceiling on the aggregate held value")

    # Storage configuration
    storage_backend: Literal["memory", "sqlite"] = "memory"
    database_path: str = "vault.db"

    # Payout service; empty keeps payouts in-process
    payout_url: str = ""
    payout_timeout: float = 5.0
    payout_api_key: Optional[str] = None
    payout_lookup_attempts: int = 3

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8095

    # Logging configuration
    log_level: str = "INFO"
    log_format: Literal["json", "text"] = "json"


_config: Optional[VaultConfig] = None


def get_config() -> VaultConfig:
    """Get global configuration instance"""
    global _config
    if _config is None:
        _config = VaultConfig()
    return _config


def reload_config() -> VaultConfig:
    """Reload configuration from environment"""
    global _config
    _config = VaultConfig()
    return _config
