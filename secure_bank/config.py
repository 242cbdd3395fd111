"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import List


DEFAULT_JWT_SECRET = "change-me-in-production"


class BankConfig(BaseSettings):
    """SecureBank service configuration"""

    # Database configuration
    database_url: str = "sqlite:///secure_bank.db"  # memory:// selects the in-memory store
    database_pool_size: int = 10
    database_pool_timeout: float = 30.0  # Seconds to wait for a free connection

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 5000
    cors_origins: List[str] = ["*"]

    # Security configuration
    jwt_secret: str = DEFAULT_JWT_SECRET
    jwt_expiry_hours: int = 24
    jwt_algorithm: str = "HS256"
    scrypt_n: int = 16384
    scrypt_r: int = 8
    scrypt_p: int = 1

    # Logging configuration
    log_level: str = "INFO"

    # Business rules configuration
    opening_balance: str = "5000.00"
    default_account_type: str = "Compte Courant"
    account_number_prefix: str = "FR"
    account_number_length: int = 9
    account_number_attempts: int = 5
    transactions_page_size: int = 10

    class Config:
        env_prefix = "SECURE_BANK_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = BankConfig()


def get_config() -> BankConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> BankConfig:
    """Reload configuration from environment"""
    global config
    config = BankConfig()
    return config
