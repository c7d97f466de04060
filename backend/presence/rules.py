"""Presence rules — centralized concurrent-session policy."""
from datetime import datetime, timedelta
from typing import Iterable, List

from config.settings import get_settings
from schemas.session import ConcurrentSession


def get_heartbeat_interval_s() -> int:
    """Seconds between heartbeats of one session."""
    return get_settings().SESSION_HEARTBEAT_INTERVAL_S


def get_recency_window() -> timedelta:
    """Sessions last seen longer ago than this are stale tabs, not live use."""
    return timedelta(seconds=get_settings().SESSION_RECENCY_WINDOW_S)


def recent_concurrent_sessions(
    sessions: Iterable[ConcurrentSession],
    fingerprint: str,
    now: datetime,
    window: timedelta,
) -> List[ConcurrentSession]:
    """Sessions from a different device seen strictly within `window` of `now`.

    A session exactly at the boundary (now - window) is excluded.
    """
    cutoff = now - window
    return [
        s for s in sessions
        if s.device_fingerprint != fingerprint and s.last_active_at > cutoff
    ]
