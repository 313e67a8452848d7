"""
Runtime settings for the lesson credit ledger.

Values come from environment variables prefixed with ``LESSON_LEDGER_``
(or a local ``.env`` file) and are validated by pydantic-settings.
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="LESSON_LEDGER_",
        env_file=".env",
        extra="ignore",
    )

    app_name: str = "Lesson Credit Ledger"
    environment: str = "development"
    log_level: str = "INFO"
    json_logs: bool = False

    # Package terms
    days_per_month: int = Field(default=30, ge=1)
    default_lesson_count: int = Field(default=8, ge=1)
    default_duration_months: int = Field(default=1, ge=1)
    default_package_name: str = "Standard Package"
    legacy_package_name: str = "Existing Package"

    # Freeze handling
    auto_unfreeze_actor: str = "system-auto"
    auto_unfreeze_reason: str = "Freeze period ended - automatically reactivated"

    # Persistence
    max_write_attempts: int = Field(default=5, ge=1)
    write_timeout_seconds: float = Field(default=2.0, gt=0)

    # Credit allocation
    refund_fallback_enabled: bool = True
    expiring_soon_days: int = Field(default=7, ge=0)
    reconcile_on_read: bool = True


@lru_cache()
def get_settings() -> Settings:
    return Settings()
