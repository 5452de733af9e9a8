"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from decimal import Decimal
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class WalletConfig(BaseSettings):
    """Wallet ledger configuration"""

    # Database configuration
    database_url: str = "sqlite:///wallet.db"  # memory:// and postgresql://... also accepted
    database_pool_size: int = 5

    # Ledger rules
    base_currency: str = "INR"
    max_transaction_amount: str = "1000000.00"

    # Rate source configuration
    rate_source_url: str = "https://api.currencyapi.com/v3/latest"
    currency_api_key: str = ""
    rate_source_timeout: float = 2.0  # Never let a slow rate source hang a balance read

    # History paging
    history_page_size: int = 50
    history_max_page_size: int = 200

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 3000
    cors_allowed_origins: str = "*"  # Comma-separated

    # Security configuration
    jwt_secret: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"
    jwt_expiry_hours: int = 24

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    model_config = SettingsConfigDict(
        env_prefix="WALLET_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def max_amount(self) -> Decimal:
        return Decimal(self.max_transaction_amount)

    @property
    def cors_origins(self) -> List[str]:
        return [origin.strip() for origin in self.cors_allowed_origins.split(",") if origin.strip()]


# Global configuration instance
config = WalletConfig()


def get_config() -> WalletConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> WalletConfig:
    """Reload configuration from environment"""
    global config
    config = WalletConfig()
    return config
