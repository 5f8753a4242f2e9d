"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class LedgerConfig(BaseSettings):
    """Banking ledger configuration"""
    
    # Storage configuration
    store_backend: str = "sqlite"  # sqlite, flatfile or memory
    database_path: str = "bank_ledger.db"
    flat_file_path: str = "data/accounts.json"
    
    # Ledger rules
    first_account_number: int = 1001
    lock_timeout_seconds: Optional[float] = None  # None waits forever
    allow_self_transfer: bool = True
    
    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    
    # API configuration
    api_host: str = "127.0.0.1"
    api_port: int = 8090
    
    class Config:
        env_prefix = "BANK_LEDGER_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = LedgerConfig()


def get_config() -> LedgerConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> LedgerConfig:
    """Reload configuration from environment"""
    global config
    config = LedgerConfig()
    return config
