"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class TokenLedgerConfig(BaseSettings):
    """Token ledger host configuration"""

    # Storage configuration
    storage_backend: str = "sqlite"  # sqlite or memory
    database_path: str = "token_ledger.db"

    # Ledger configuration
    amount_bits: int = 32  # width of the unsigned amount type
    initial_supply: Optional[int] = None  # create on startup when set
    creator_account: Optional[str] = None  # hex account id receiving the initial supply

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8095
    api_workers: int = 1
    caller_header: str = "X-Caller"  # trusted identity header set by the gateway

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    enable_event_logging: bool = True

    model_config = SettingsConfigDict(
        env_prefix="TOKEN_LEDGER_",
        env_file=".env",
        case_sensitive=False
    )


# Global configuration instance
config = TokenLedgerConfig()


def get_config() -> TokenLedgerConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> TokenLedgerConfig:
    """Reload configuration from environment"""
    global config
    config = TokenLedgerConfig()
    return config
