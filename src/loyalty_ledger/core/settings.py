from functools import lru_cache
from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="LOYALTY_",
        extra="allow",
    )

    environment: Literal["development", "staging", "production"] = "development"
    service_name: str = "loyalty-ledger"
    version: str = "0.1.0"
    log_level: str = "INFO"

    # Persistence
    database_url: str = "sqlite+aiosqlite:///./loyalty.db"
    database_echo: bool = False
    # Bounded wait for the per-account row lock (SQLite busy timeout / driver timeout)
    database_lock_timeout_seconds: float = 5.0

    # Earning rules
    signup_bonus_points: int = 100
    points_expiry_months: int = 12
    points_per_currency_unit: int = 10
    tier_bonus_applies_multiplier: bool = False

    # Ledger history
    transactions_page_max_limit: int = 100

    # Scheduled jobs
    job_scheduler_enabled: bool = False
    job_schedule_path: str = "config/schedules.toml"

    @field_validator("signup_bonus_points", "points_per_currency_unit")
    @classmethod
    def _ensure_non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("Point settings cannot be negative")
        return value

    @field_validator("points_expiry_months", "transactions_page_max_limit")
    @classmethod
    def _ensure_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("Value must be positive")
        return value

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: object) -> str:
        return str(value or "INFO").upper()


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()
