from pydantic_settings import BaseSettings
from pydantic import field_validator
from decimal import Decimal
from functools import lru_cache
import json


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str

    # Database Connection Pool Settings (ignored for SQLite)
    DB_POOL_SIZE: int = 10  # Base number of connections in pool
    DB_MAX_OVERFLOW: int = 20  # Extra connections allowed beyond pool_size
    DB_POOL_TIMEOUT: int = 30  # Seconds to wait for connection from pool
    DB_POOL_RECYCLE: int = 1800  # Recycle connections after 30 minutes

    # App Settings
    APP_NAME: str = "Commission Engine"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # CORS - accepts JSON string, comma-separated, or list
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # Rule defaults
    DEFAULT_CURRENCY: str = "MAD"
    DEFAULT_PAYMENT_FREQUENCY: str = "monthly"
    ALLOCATION_TOLERANCE: Decimal = Decimal("0.01")  # Allowed drift from 100% across levels

    # Listing defaults
    CALCULATION_HISTORY_DAYS: int = 90  # Default look-back window for recipient history
    CALCULATION_LIST_LIMIT: int = 100
    PAYMENT_LIST_LIMIT: int = 50

    # Ledger
    RESTRICT_PAID_TO_BATCHING: bool = True  # If True, 'paid' is only reachable through payment generation

    # Payment batching job
    PAYMENT_BATCH_ENABLED: bool = False
    PAYMENT_BATCH_DAY: int = 1  # Day of month to batch the previous month
    PAYMENT_BATCH_HOUR: int = 2
    SCHEDULER_TIMEZONE: str = "UTC"

    @field_validator('CORS_ORIGINS', mode='before')
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return [origin.strip() for origin in v.split(',')]
        return v

    @field_validator('LOG_LEVEL', mode='before')
    @classmethod
    def normalize_log_level(cls, v):
        if isinstance(v, str):
            return v.upper()
        return v

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
