"""Core configuration settings loaded from environment variables."""
from functools import lru_cache
from typing import Literal
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Core
    APP_ENV: Literal["development", "staging", "production"] = "development"
    APP_NAME: str = "WhatsApp Health Governor"
    API_V1_PREFIX: str = "/api/v1"
    CORS_ORIGINS: list[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]

    # Database
    DB_TYPE: Literal["mysql", "sqlite"] = "sqlite"
    DB_HOST: str = "localhost"
    DB_PORT: int = 3306
    DB_NAME: str = "wa_governor"
    DB_USER: str = "wa_user"
    DB_PASSWORD: str = "change_me"
    DATABASE_URL_OVERRIDE: str = ""  # full SQLAlchemy URL, wins over the DB_* fields

    @property
    def DATABASE_URL(self) -> str:
        if self.DATABASE_URL_OVERRIDE:
            return self.DATABASE_URL_OVERRIDE
        if self.DB_TYPE == "sqlite":
            return "sqlite:///./wa_governor.db"
        return f"mysql+pymysql://{self.DB_USER}:{self.DB_PASSWORD}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"

    # Telemetry source
    TELEMETRY_PROVIDER: Literal["sql", "http", "mock"] = "sql"
    TELEMETRY_HTTP_URL: str = ""
    TELEMETRY_HTTP_API_KEY: str = ""
    TELEMETRY_TIMEOUT_SECONDS: float = 10.0

    # Governor runtime
    GOVERNOR_MAX_WORKERS: int = 4
    GOVERNOR_LOCK_TIMEOUT_SECONDS: float = 30.0
    GOVERNOR_DEFAULT_WINDOW: Literal["24h", "7d", "30d"] = "24h"

    # Scheduler
    SCHEDULER_ENABLED: bool = True
    GOVERNOR_RECALC_INTERVAL_MINUTES: int = 30
    GOVERNOR_STATE_CHECK_INTERVAL_MINUTES: int = 60


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
