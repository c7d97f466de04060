"""Heartbeat tracking — session liveness and concurrent-device detection.

Client sends a heartbeat every SESSION_HEARTBEAT_INTERVAL_S (2 min).
A different device seen within SESSION_RECENCY_WINDOW_S (5 min) raises an
advisory SecurityFlag. Nothing here locks accounts; heartbeat never throws
into the caller.

Session record lifecycle:
  absent → active (first heartbeat) → active (refresh, loops) → inactive (terminal)
"""
import asyncio
import contextlib
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, Awaitable, Callable, Optional, Union

from presence.fingerprint import ClientEnvironment, compute_fingerprint
from presence.rules import get_heartbeat_interval_s, get_recency_window, recent_concurrent_sessions
from presence.store import SessionStore
from schemas.session import SecurityFlag, SessionRecord

logger = logging.getLogger(__name__)

FlagCallback = Callable[[SecurityFlag], Union[None, Awaitable[None]]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionRegistrar:
    """Owns one browsing session's record and its heartbeat loop."""

    def __init__(
        self,
        environment: Optional[ClientEnvironment] = None,
        store: Optional[SessionStore] = None,
        *,
        interval_s: Optional[float] = None,
        recency_window: Optional[timedelta] = None,
        clock: Callable[[], datetime] = _utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        on_flag: Optional[FlagCallback] = None,
    ):
        self._env = environment or ClientEnvironment.detect()
        self._store = store or SessionStore()
        self._interval_s = interval_s if interval_s is not None else get_heartbeat_interval_s()
        self._window = recency_window if recency_window is not None else get_recency_window()
        self._clock = clock
        self._sleep = sleep
        self._on_flag = on_flag

        self._session_token: Optional[str] = None
        self._fingerprint: Optional[str] = None
        self._deactivated = False
        self._task: Optional[asyncio.Task] = None
        self._write_lock = asyncio.Lock()

    @property
    def session_token(self) -> Optional[str]:
        return self._session_token

    @property
    def is_deactivated(self) -> bool:
        return self._deactivated

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def _resolve_session_token(self) -> str:
        # Generated once, reused for the life of this session
        if self._session_token is None:
            self._session_token = str(uuid.uuid4())
        return self._session_token

    def fingerprint(self) -> str:
        if self._fingerprint is None:
            self._fingerprint = compute_fingerprint(self._env)
        return self._fingerprint

    async def heartbeat(self, user_id: str) -> Optional[SecurityFlag]:
        """Refresh this session's record; return a SecurityFlag on concurrent use."""
        if not user_id:
            return None
        if self._deactivated:
            logger.debug("Heartbeat ignored, session deactivated: user=%s", user_id)
            return None

        session_token = self._resolve_session_token()
        fingerprint = self.fingerprint()
        flag: Optional[SecurityFlag] = None

        try:
            now = self._clock()
            others = await self._store.list_active_sessions(
                user_id, excluding=session_token, since=now - self._window,
            )
            recent = recent_concurrent_sessions(others, fingerprint, now, self._window)
            if recent:
                flag = SecurityFlag(
                    user_id=user_id,
                    session_token=session_token,
                    device_fingerprint=fingerprint,
                    concurrent_sessions=recent,
                    detected_at=now,
                )
                logger.warning(
                    "Concurrent session detected: user=%s fingerprint=%s others=%d",
                    user_id, fingerprint, len(recent),
                )
                await self._report(flag)

            async with self._write_lock:
                if self._deactivated:
                    return flag
                await self._store.upsert_session(SessionRecord(
                    session_token=session_token,
                    user_id=user_id,
                    device_fingerprint=fingerprint,
                    last_active_at=self._clock(),
                    is_active=True,
                    user_agent=self._env.user_agent or None,
                    country_code=self._env.country_code,
                ))
            logger.debug("Heartbeat recorded: user=%s", user_id)
        except Exception as e:
            logger.error("Session heartbeat failed: user=%s error=%s", user_id, str(e))
        return flag

    async def _report(self, flag: SecurityFlag) -> None:
        """Deliver the advisory notice; failures never block the heartbeat."""
        if self._on_flag is not None:
            try:
                result = self._on_flag(flag)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.warning("Security flag callback failed: user=%s error=%s", flag.user_id, str(e))
        try:
            await self._store.record_security_flag(flag)
        except Exception as e:
            logger.warning("Security flag not persisted: user=%s error=%s", flag.user_id, str(e))

    async def _run(self, user_id: str) -> None:
        logger.info("Session heartbeat started: user=%s interval=%ss", user_id, self._interval_s)
        while not self._deactivated:
            await self.heartbeat(user_id)
            await self._sleep(self._interval_s)

    def start(self, user_id: str) -> asyncio.Task:
        """Start the periodic heartbeat. Idempotent while running."""
        if self._deactivated:
            raise RuntimeError("Session already deactivated; a new login needs a new registrar")
        if not self.is_running:
            self._task = asyncio.create_task(self._run(user_id), name=f"heartbeat:{user_id}")
        return self._task

    async def stop(self) -> None:
        """Cancel the heartbeat loop and wait until it is gone."""
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def deactivate(self, user_id: str) -> None:
        """Logout/unmount: stop heartbeats and mark this session inactive. Best-effort."""
        self._deactivated = True
        await self.stop()
        if not self._session_token or not user_id:
            return
        try:
            async with self._write_lock:
                await self._store.set_session_inactive(self._session_token, user_id)
            logger.info("Session deactivated: user=%s", user_id)
        except Exception as e:
            logger.warning("Session deactivation failed: user=%s error=%s", user_id, str(e))

    @contextlib.asynccontextmanager
    async def track(self, user_id: str) -> AsyncIterator["SessionRegistrar"]:
        """Heartbeat for the duration of the block, deactivate on exit."""
        self.start(user_id)
        try:
            yield self
        finally:
            await self.deactivate(user_id)
