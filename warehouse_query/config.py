"""
Application configuration.

Settings are loaded from environment variables (or a `.env` file in the
working directory) using pydantic-settings.
"""

from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Process-wide settings for the warehouse query service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Application
    APP_HOST: str = "0.0.0.0"
    APP_PORT: int = 8080
    APP_DEBUG: bool = False
    APP_RELOAD: bool = False
    CORS_ORIGINS: List[str] = ["http://localhost:3000"]

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    LOG_FILE: Optional[str] = None

    # Metadata database (projects, encrypted warehouse credentials, user attributes)
    DATABASE_HOST: str = "localhost"
    DATABASE_PORT: int = 5432
    DATABASE_NAME: str = "warehouse_query"
    DATABASE_USER: str = "postgres"
    DATABASE_PASSWORD: str = ""
    DATABASE_POOL_MIN_SIZE: int = 1
    DATABASE_POOL_MAX_SIZE: int = 10

    # Secret used to derive the credential encryption key
    ENCRYPTION_SECRET: Optional[str] = None

    # Results cache
    RESULTS_CACHE_ENABLED: bool = False
    RESULTS_CACHE_STATE_TIME_SECONDS: int = 86400
    RESULTS_S3_BUCKET: Optional[str] = None
    RESULTS_S3_REGION: Optional[str] = None
    RESULTS_S3_ENDPOINT: Optional[str] = None
    RESULTS_S3_ACCESS_KEY: Optional[str] = None
    RESULTS_S3_SECRET_KEY: Optional[str] = None
    RESULTS_S3_FORCE_PATH_STYLE: bool = False

    # Warehouse execution
    WAREHOUSE_EXECUTOR_MAX_WORKERS: int = 16
    WAREHOUSE_CONNECT_MAX_RETRIES: int = 3
    WAREHOUSE_CONNECT_RETRY_DELAY: float = 1.0
    WAREHOUSE_POOL_MAX_SIZE: int = 5
    QUERY_TIMEOUT_SECONDS: Optional[float] = 300.0
    SSH_CONNECT_TIMEOUT_SECONDS: float = 15.0


# Global settings instance
settings = Settings()
