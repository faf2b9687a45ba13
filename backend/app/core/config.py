# backend/app/core/config.py
"""
Runtime configuration (pydantic-settings).

Values come from the environment first, then `.env`, then the defaults
below. The defaults are only fit for a developer laptop: a production
deployment sets at least SECRET_KEY, RP_ID, RP_ORIGIN and DATABASE_URL.

RP_ID / RP_ORIGIN have to match what the browser reports for the page that
calls navigator.credentials; a mismatch makes every WebAuthn ceremony fail
verification.
"""
from functools import lru_cache
from typing import List

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEV_SECRET_KEY = "INSECURE_DEV_KEY_CHANGE_IN_PRODUCTION"
DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./exstagium.db"

# Sync driver prefixes and their async replacements
_ASYNC_DRIVERS = (
    ("postgres://", "postgresql+asyncpg://"),
    ("postgresql://", "postgresql+asyncpg://"),
    ("sqlite:///", "sqlite+aiosqlite:///"),
)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ─────────────────────────────────────────────────────────────
    # Service
    # ─────────────────────────────────────────────────────────────
    PROJECT_NAME: str = "Exstagium"
    PROJECT_VERSION: str = "1.0.0"
    API_V1_STR: str = "/api/v1"
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # ─────────────────────────────────────────────────────────────
    # Bearer tokens
    # ─────────────────────────────────────────────────────────────
    SECRET_KEY: str = DEV_SECRET_KEY
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24

    # ─────────────────────────────────────────────────────────────
    # WebAuthn relying party
    # ─────────────────────────────────────────────────────────────
    RP_ID: str = "localhost"
    RP_NAME: str = "Exstagium"
    RP_ORIGIN: str = "http://localhost:3000"
    CHALLENGE_TTL_SECONDS: int = 300

    # ─────────────────────────────────────────────────────────────
    # Storage
    # ─────────────────────────────────────────────────────────────
    DATABASE_URL: str = DEFAULT_DATABASE_URL
    # Logs every SQL statement; keep off outside local debugging
    DATABASE_ECHO: bool = False

    # Bound on one transactional unit of work, and the base pause before
    # its single retry
    DB_OPERATION_TIMEOUT_SECONDS: float = 10.0
    DB_RETRY_BACKOFF_SECONDS: float = 0.2

    # ─────────────────────────────────────────────────────────────
    # CORS: comma separated; empty means no cross-origin access at all
    # ─────────────────────────────────────────────────────────────
    CORS_ORIGINS: str = "http://localhost:3000,http://127.0.0.1:3000"

    @field_validator("DATABASE_URL", mode="before")
    @classmethod
    def use_async_driver(cls, v):
        """Rewrite plain postgres/sqlite URLs to their asyncpg/aiosqlite forms."""
        if not v:
            return DEFAULT_DATABASE_URL
        url = v.strip()
        for prefix, replacement in _ASYNC_DRIVERS:
            if url.startswith(prefix):
                return replacement + url[len(prefix):]
        return url

    @property
    def BACKEND_CORS_ORIGINS(self) -> List[str]:
        # chrome-extension:// origins pass through untouched
        return [o.strip() for o in (self.CORS_ORIGINS or "").split(",") if o.strip()]

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
