"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class PeerLendingConfig(BaseSettings):
    """Peer lending platform configuration"""

    model_config = SettingsConfigDict(
        env_prefix="PEER_LENDING_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Storage configuration
    use_sqlite: bool = False
    sqlite_path: str = "peer_lending.db"

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stderr

    # Loan conventions
    currency: str = "COP"
    default_technology_fee: str = "8000"  # Monthly, in currency units
    min_first_period_days: int = 15

    # Platform economics
    platform_investor_id: str = "banqi_platform_fee"
    platform_commission_rate: str = "0.30"  # Share of investor interest kept by the platform

    # Installment solver
    solver_tolerance: str = "0.01"
    solver_max_iterations: int = 100

    # Reconciliation tolerances
    capacity_tolerance: str = "0.01"
    distribution_tolerance: str = "1.00"

    # Reservations
    reservation_ttl_seconds: int = 300  # 5 minutes

    # Feature flags
    enable_audit_logging: bool = True


# Global configuration instance
config = PeerLendingConfig()


def get_config() -> PeerLendingConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> PeerLendingConfig:
    """Reload configuration from environment"""
    global config
    config = PeerLendingConfig()
    return config
