from __future__ import annotations

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Runtime configuration, read from `TERMYX_*` environment variables
    (or a local `.env` file).
    """

    model_config = SettingsConfigDict(
        env_prefix="TERMYX_",
        env_file=".env",
        extra="ignore",
    )

    MONGO_URI: Optional[str] = None
    MONGO_DB: str = "termyx"

    AUDIT_LOG_PATH: str = "logs/audit.log"
    LOG_LEVEL: str = "INFO"

    FREE_TRIAL_LIMIT: int = 2
    IP_SIGNUP_LIMIT: int = 3
    IP_SIGNUP_WINDOW_HOURS: int = 24

    RATE_LIMIT_SWEEP_SECONDS: int = 300
    PLAN_CACHE_TTL_SECONDS: int = 300
    BLOCKLIST_CACHE_TTL_SECONDS: int = 600

    # Seed the disposable-domain blocklist on startup (in-memory backend only)
    SEED_BLOCKED_DOMAINS: bool = True


settings = Settings()
