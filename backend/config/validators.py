"""Startup configuration validation guardrails."""

import logging


logger = logging.getLogger(__name__)


def _require_jwt_secret(settings) -> None:
    """Fail closed if JWT secret is not explicitly configured."""
    if not settings.JWT_SECRET or not settings.JWT_SECRET.strip():
        raise RuntimeError(
            "STARTUP FAILED — JWT_SECRET is required and cannot be empty. "
            "Set JWT_SECRET in backend/.env or container environment and restart the server."
        )


def validate_startup_config(settings) -> None:
    """Centralized startup guardrails for required and warning-level config."""
    _require_jwt_secret(settings)

    required_vars = {
        "MEDIA_SIGNING_SECRET": settings.MEDIA_SIGNING_SECRET,
        "STORAGE_BASE_URL": settings.STORAGE_BASE_URL,
    }

    if settings.MEDIA_SIGNING_SECRET and settings.MEDIA_SIGNING_SECRET == settings.JWT_SECRET:
        raise RuntimeError(
            "STARTUP FAILED — MEDIA_SIGNING_SECRET must differ from JWT_SECRET."
        )

    if settings.CONTENT_RENEWAL_MARGIN_S >= settings.CONTENT_GRANT_TTL_S:
        raise RuntimeError(
            "STARTUP FAILED — CONTENT_RENEWAL_MARGIN_S must be shorter than CONTENT_GRANT_TTL_S."
        )

    missing = [k for k, v in required_vars.items() if not v]
    if missing:
        raise RuntimeError(
            f"STARTUP FAILED — missing required env vars: {', '.join(missing)}\n"
            "Set them in .env or container environment and restart the server."
        )

    if settings.SESSION_RECENCY_WINDOW_S < settings.SESSION_HEARTBEAT_INTERVAL_S:
        logger.warning(
            "CONFIG WARNING: SESSION_RECENCY_WINDOW_S=%d is shorter than the heartbeat interval "
            "(%ds) — live sessions will look stale between heartbeats",
            settings.SESSION_RECENCY_WINDOW_S, settings.SESSION_HEARTBEAT_INTERVAL_S,
        )
