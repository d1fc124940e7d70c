"""
Runtime configuration.

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

    APP_NAME: str = "Lesson Credit Ledger API"
    API_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: list[str] = Field(default_factory=lambda: ["*"])

    # Label written to Member.membership_type once a member has no package left
    NO_PACKAGE_LABEL: str = "Paketsiz"
    # Name given to packages synthesized for members that predate packages
    BACKFILL_PACKAGE_NAME: str = "Paket"
    SEED_PACKAGE_CATALOG: bool = True
    # Deleting a lesson attendance leaves its credit consumed unless enabled
    REFUND_ON_ATTENDANCE_DELETE: bool = False

    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() == "development"


@lru_cache
def get_settings() -> Settings:
    return Settings()
