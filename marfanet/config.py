from pydantic_settings import BaseSettings
from pydantic import field_validator
from decimal import Decimal
from typing import Optional
from functools import lru_cache
import json


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./marfanet.db"

    # Database Connection Pool Settings
    DB_POOL_SIZE: int = 10  # Base number of connections in pool
    DB_MAX_OVERFLOW: int = 20  # Extra connections allowed beyond pool_size
    DB_POOL_TIMEOUT: int = 30  # Seconds to wait for connection from pool
    DB_POOL_RECYCLE: int = 1800  # Recycle connections after 30 minutes

    # App Settings
    APP_NAME: str = "MarFanet Ledger Engine"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # CORS - accepts JSON string, comma-separated, or list
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # Cache Settings
    REDIS_URL: Optional[str] = None  # e.g., "redis://localhost:6379/0"
    CACHE_ENABLED: bool = True
    STATS_CACHE_TTL: int = 300  # 5 minutes for dashboard aggregates

    # Default price table (Toman), used when a representative's own cell is empty
    DEFAULT_LIMITED_PRICES: list[Decimal] = [
        Decimal("900"), Decimal("900"), Decimal("900"),
        Decimal("1400"), Decimal("1500"), Decimal("1600"),
    ]
    DEFAULT_UNLIMITED_PRICES: list[Decimal] = [
        Decimal("40000"), Decimal("80000"), Decimal("120000"),
        Decimal("160000"), Decimal("200000"), Decimal("240000"),
    ]

    # Commission
    DEFAULT_COMMISSION_PERCENTAGE: Decimal = Decimal("10")

    # Invoice lifecycle
    INVOICE_DUE_DAYS: int = 30
    INVOICE_NUMBER_PREFIX: str = "INV"
    OVERDUE_REVERTS_ON_PARTIAL_PAYMENT: bool = True  # overdue -> pending on a partial payment

    # Ledger
    LEDGER_MAX_RETRIES: int = 5  # Retries when a concurrent append wins the sequence

    # Batch import
    BATCH_ROW_TIMEOUT_SECONDS: float = 30.0
    BATCH_CONCURRENCY: int = 1  # Rows processed in parallel (1 = sequential)

    # SQLite only: seconds a writer waits for the database lock
    SQLITE_BUSY_TIMEOUT_SECONDS: float = 30.0

    # Background jobs
    OVERDUE_SWEEP_INTERVAL_MINUTES: int = 60
    CACHE_CLEANUP_INTERVAL_MINUTES: int = 10
    SCHEDULER_ENABLED: bool = True
    SCHEDULER_TIMEZONE: str = "Asia/Tehran"

    @field_validator('CORS_ORIGINS', mode='before')
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return [origin.strip() for origin in v.split(',')]
        return v

    @field_validator('DEFAULT_LIMITED_PRICES', 'DEFAULT_UNLIMITED_PRICES', mode='before')
    @classmethod
    def parse_price_table(cls, v):
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return [price.strip() for price in v.split(',')]
        return v

    @field_validator('DEFAULT_LIMITED_PRICES', 'DEFAULT_UNLIMITED_PRICES')
    @classmethod
    def validate_price_table(cls, v):
        if len(v) != 6:
            raise ValueError("Price table must have exactly 6 entries (1-6 months)")
        if any(price <= 0 for price in v):
            raise ValueError("Default prices must be positive")
        return v

    @field_validator('DEFAULT_COMMISSION_PERCENTAGE')
    @classmethod
    def validate_commission_percentage(cls, v):
        if v < 0 or v > 100:
            raise ValueError("Commission percentage must be between 0 and 100")
        return v

    @property
    def cors_origins_list(self) -> list[str]:
        return self.CORS_ORIGINS

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
