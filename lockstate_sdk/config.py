"""
lockstate_sdk/config.py - Runtime settings

Every value can be overridden from the environment with the LOCKSTATE_ prefix,
e.g. LOCKSTATE_PAUSE_COOLDOWN_HOURS=6.
"""
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="LOCKSTATE_",
        env_file=".env",
        extra="ignore",
    )

    # Policy windows
    PAUSE_COOLDOWN_HOURS: float = 12
    RELEASE_DENIAL_COOLDOWN_HOURS: float = 4
    BACKUP_CODE_LENGTH: int = 6

    # Transient notices
    COOLDOWN_NOTICE_SECONDS: int = 5
    VERIFICATION_NOTICE_SECONDS: int = 3
    STORE_ERROR_NOTICE_SECONDS: int = 5
    INFO_NOTICE_SECONDS: int = 3

    # Scheduling
    TICK_INTERVAL_SECONDS: float = 1.0
    POLL_INTERVAL_SECONDS: float = 5.0

    # Local document store
    DATABASE_URL: str = "sqlite:///lockstate.db"

    # Remote document store
    SERVER_URL: str = "http://localhost:8000"
    API_KEY: Optional[str] = None
    MAX_RETRIES: int = 5
    RETRY_MIN_WAIT: float = 1.0
    RETRY_MAX_WAIT: float = 10.0
    HTTP_TIMEOUT: float = 30.0

    # Integrity key for sealed lock combinations
    SECRET_KEY: str = "change-me"

    # Logging
    LOG_LEVEL: str = "INFO"

    @property
    def pause_cooldown_seconds(self) -> int:
        return int(self.PAUSE_COOLDOWN_HOURS * 3600)

    @property
    def release_denial_cooldown_seconds(self) -> int:
        return int(self.RELEASE_DENIAL_COOLDOWN_HOURS * 3600)


@lru_cache
def get_settings() -> Settings:
    return Settings()
