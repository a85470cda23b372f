"""
SQL Broker - Configuration
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # Application
    APP_NAME: str = "SQL Broker"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # Logging
    LOG_LEVEL: str = "info"
    LOG_JSON: bool = True

    # Metadata store (users' query history, connection profiles)
    DATABASE_URL: str = "sqlite:///./data/sqlbroker.db"

    # Security
    SECRET_KEY: str = "your-super-secret-key-change-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # Credential encryption (Fernet key; generated into the key file when unset)
    ENCRYPTION_KEY: Optional[str] = None
    ENCRYPTION_KEY_FILE: str = "./data/encryption.key"

    # Target connection pools
    POOL_MIN_SIZE: int = 2
    POOL_MAX_SIZE: int = 10
    POOL_IDLE_TIMEOUT_SECONDS: int = 30
    MSSQL_ODBC_DRIVER: str = "ODBC Driver 18 for SQL Server"

    # History maintenance
    HISTORY_RETENTION_DAYS: int = 90
    STALE_RUNNING_GRACE_SECONDS: int = 60
    MAINTENANCE_ENABLED: bool = False
    PURGE_CRON: str = "0 3 * * *"
    SWEEP_CRON: str = "*/15 * * * *"
    MAINTENANCE_TIMEZONE: str = "UTC"

    # CORS
    CORS_ORIGINS: list = ["http://localhost:5173", "http://localhost:3000"]

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
