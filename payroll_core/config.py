"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class PayrollConfig(BaseSettings):
    """Payroll loan engine configuration"""

    # Storage configuration
    use_sqlite: bool = True
    database_path: str = "payroll.db"

    # Loan schedule rules
    payment_day: int = 10  # Day of month deductions fall on
    amount_tolerance: str = "0.01"  # Custom allocation sum tolerance

    # Contract document storage
    blob_store_path: str = "contracts"
    blob_base_url: str = "http://localhost:8090/contracts/download"
    contract_url_ttl_seconds: int = 3600
    signing_secret: str = "change-me-in-production"

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090

    # Security configuration
    auth_enabled: bool = True
    jwt_secret: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"
    jwt_expiry_hours: int = 24

    # Logging configuration
    log_level: str = "INFO"
    log_file: Optional[str] = None  # If None, logs to stdout

    # Feature flags
    enable_audit_logging: bool = True

    class Config:
        env_prefix = "PAYROLL_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = PayrollConfig()


def get_config() -> PayrollConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> PayrollConfig:
    """Reload configuration from environment"""
    global config
    config = PayrollConfig()
    return config
