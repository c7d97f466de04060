"""Centralized settings module — single source of truth for all config.

All secrets loaded exclusively from env vars. Never committed, never logged.
Redaction enforced everywhere via observability.redaction.
"""
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings

_ROOT = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    # ── Environment ──────────────────────────────────────────────
    ENV: Literal["dev", "staging", "prod"] = Field(default="dev")

    # ── MongoDB ──────────────────────────────────────────────────
    MONGO_URL: str = Field(default="mongodb://localhost:27017")
    DB_NAME: str = Field(default="coursegate_dev")

    # ── Caller identity (tokens issued by the platform's auth layer) ──
    JWT_SECRET: str = Field(default="")
    JWT_ALGORITHM: str = Field(default="HS256")

    # ── Media signing ────────────────────────────────────────────
    # Must differ from JWT_SECRET
    MEDIA_SIGNING_SECRET: str = Field(default="")
    STORAGE_BASE_URL: str = Field(default="")  # e.g. https://media.example.com
    CONTENT_GRANT_TTL_S: int = Field(default=1800)  # 30 minutes
    CONTENT_RENEWAL_MARGIN_S: int = Field(default=300)  # renew at 25 min

    # ── Credential authority (client side) ───────────────────────
    CREDENTIAL_AUTHORITY_URL: str = Field(default="http://localhost:8001/api/content/signed-url")
    CREDENTIAL_AUTHORITY_TIMEOUT_S: float = Field(default=10.0)

    # ── Session presence ─────────────────────────────────────────
    SESSION_HEARTBEAT_INTERVAL_S: int = Field(default=120)
    SESSION_RECENCY_WINDOW_S: int = Field(default=300)  # older sessions are stale tabs

    # ── Observability ────────────────────────────────────────────
    LOG_LEVEL: str = Field(default="INFO")
    LOG_REDACTION_ENABLED: bool = Field(default=True)

    model_config = {
        "env_file": str(_ROOT / ".env"),
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
