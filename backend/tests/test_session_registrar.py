"""Session Registrar — heartbeats, concurrent-device flags, deactivation.

Covers:
- fingerprint determinism and device separation
- recency window boundary (exactly at the edge is stale)
- idempotent upsert keyed by session_token
- concurrent login scenario on two devices
- failures never escape heartbeat() / deactivate()
- heartbeat loop cadence and cancellation on deactivate
"""
import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from presence.fingerprint import ClientEnvironment, compute_fingerprint
from presence.heartbeat import SessionRegistrar
from presence.rules import recent_concurrent_sessions
from presence.store import SessionStore
from schemas.session import ConcurrentSession

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
WINDOW = timedelta(minutes=5)

LAPTOP = ClientEnvironment(
    user_agent="Mozilla/5.0 (Macintosh; Intel Mac OS X 14_4) Safari/605.1.15",
    language="en-GB",
    screen_width=1512,
    screen_height=982,
    color_depth=30,
    timezone_offset_min=0,
)
PHONE = ClientEnvironment(
    user_agent="Mozilla/5.0 (Linux; Android 14; Pixel 8) Chrome/123.0 Mobile",
    language="en-US",
    screen_width=412,
    screen_height=915,
    color_depth=24,
    timezone_offset_min=300,
)


class Clock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class CountingStore(SessionStore):
    def __init__(self, db):
        super().__init__(db)
        self.calls = 0

    async def upsert_session(self, record):
        self.calls += 1
        return await super().upsert_session(record)

    async def list_active_sessions(self, user_id, excluding=None, since=None):
        self.calls += 1
        return await super().list_active_sessions(user_id, excluding, since)

    async def set_session_inactive(self, session_token, user_id):
        self.calls += 1
        return await super().set_session_inactive(session_token, user_id)


def _registrar(env, db, clock, **kwargs):
    return SessionRegistrar(env, SessionStore(db), interval_s=120, recency_window=WINDOW, clock=clock, **kwargs)


class TestFingerprint:

    def test_same_signals_same_fingerprint(self):
        assert compute_fingerprint(LAPTOP) == compute_fingerprint(LAPTOP.model_copy())

    def test_different_devices_differ(self):
        assert compute_fingerprint(LAPTOP) != compute_fingerprint(PHONE)

    def test_fingerprint_is_short(self):
        assert len(compute_fingerprint(LAPTOP)) == 12

    def test_registrar_fingerprint_stable_across_calls(self, fake_db):
        registrar = _registrar(LAPTOP, fake_db, Clock(T0))
        assert registrar.fingerprint() == registrar.fingerprint() == compute_fingerprint(LAPTOP)

    def test_detect_reads_process_environment(self):
        env = ClientEnvironment.detect()
        assert "Python/" in env.user_agent
        assert compute_fingerprint(env) == compute_fingerprint(ClientEnvironment.detect())


class TestRecencyWindow:

    def test_boundary_is_excluded_and_just_inside_included(self):
        at_edge = ConcurrentSession(device_fingerprint="other", last_active_at=T0 - WINDOW)
        inside = ConcurrentSession(
            device_fingerprint="other", last_active_at=T0 - WINDOW + timedelta(milliseconds=1),
        )
        assert recent_concurrent_sessions([at_edge], "mine", T0, WINDOW) == []
        assert recent_concurrent_sessions([inside], "mine", T0, WINDOW) == [inside]

    def test_same_fingerprint_is_ignored(self):
        twin = ConcurrentSession(device_fingerprint="mine", last_active_at=T0)
        assert recent_concurrent_sessions([twin], "mine", T0, WINDOW) == []


class TestHeartbeat:

    @pytest.mark.asyncio
    async def test_two_heartbeats_one_row_with_latest_timestamp(self, fake_db):
        clock = Clock(T0)
        registrar = _registrar(LAPTOP, fake_db, clock)

        await registrar.heartbeat("user-a")
        clock.advance(minutes=2)
        await registrar.heartbeat("user-a")

        rows = fake_db.user_sessions.docs
        assert len(rows) == 1
        assert rows[0]["session_token"] == registrar.session_token
        assert rows[0]["last_active_at"] == T0 + timedelta(minutes=2)
        assert rows[0]["is_active"] is True
        assert rows[0]["device_fingerprint"] == compute_fingerprint(LAPTOP)
        assert rows[0]["created_at"] is not None

    @pytest.mark.asyncio
    async def test_session_token_reused(self, fake_db):
        registrar = _registrar(LAPTOP, fake_db, Clock(T0))
        await registrar.heartbeat("user-a")
        first = registrar.session_token
        await registrar.heartbeat("user-a")
        assert registrar.session_token == first

    @pytest.mark.asyncio
    async def test_empty_user_is_noop(self, fake_db):
        registrar = _registrar(LAPTOP, fake_db, Clock(T0))
        assert await registrar.heartbeat("") is None
        assert fake_db.user_sessions.docs == []

    @pytest.mark.asyncio
    async def test_concurrent_login_scenario(self, fake_db):
        clock = Clock(T0)
        laptop = _registrar(LAPTOP, fake_db, clock)
        phone = _registrar(PHONE, fake_db, clock)

        assert await laptop.heartbeat("user-a") is None

        clock.advance(minutes=1)
        flag = await phone.heartbeat("user-a")
        assert flag is not None
        assert flag.user_id == "user-a"
        assert flag.device_fingerprint == phone.fingerprint()
        assert [s.device_fingerprint for s in flag.concurrent_sessions] == [laptop.fingerprint()]

        clock.advance(seconds=30)
        assert await laptop.heartbeat("user-a") is not None

        # Phone goes quiet; ten minutes later only the laptop is live
        clock.advance(minutes=10)
        assert await laptop.heartbeat("user-a") is None

    @pytest.mark.asyncio
    async def test_same_device_second_tab_not_flagged(self, fake_db):
        clock = Clock(T0)
        tab1 = _registrar(LAPTOP, fake_db, clock)
        tab2 = _registrar(LAPTOP, fake_db, clock)
        await tab1.heartbeat("user-a")
        assert await tab2.heartbeat("user-a") is None
        assert len(fake_db.user_sessions.docs) == 2

    @pytest.mark.asyncio
    async def test_other_users_sessions_ignored(self, fake_db):
        clock = Clock(T0)
        await _registrar(PHONE, fake_db, clock).heartbeat("user-b")
        assert await _registrar(LAPTOP, fake_db, clock).heartbeat("user-a") is None

    @pytest.mark.asyncio
    async def test_flag_is_reported_and_persisted(self, fake_db):
        clock = Clock(T0)
        notices = []
        await _registrar(LAPTOP, fake_db, clock).heartbeat("user-a")
        phone = _registrar(PHONE, fake_db, clock, on_flag=notices.append)

        flag = await phone.heartbeat("user-a")

        assert notices == [flag]
        assert len(fake_db.security_flags.docs) == 1
        assert fake_db.security_flags.docs[0]["user_id"] == "user-a"
        events = [e["event_type"] for e in fake_db.audit_events.docs]
        assert events == ["session_flagged"]

    @pytest.mark.asyncio
    async def test_async_flag_callback_awaited(self, fake_db):
        clock = Clock(T0)
        seen = []

        async def notify(flag):
            seen.append(flag.user_id)

        await _registrar(LAPTOP, fake_db, clock).heartbeat("user-a")
        await _registrar(PHONE, fake_db, clock, on_flag=notify).heartbeat("user-a")
        assert seen == ["user-a"]

    @pytest.mark.asyncio
    async def test_failing_callback_does_not_block_upsert(self, fake_db):
        clock = Clock(T0)

        def explode(flag):
            raise RuntimeError("toast service down")

        await _registrar(LAPTOP, fake_db, clock).heartbeat("user-a")
        phone = _registrar(PHONE, fake_db, clock, on_flag=explode)
        assert await phone.heartbeat("user-a") is not None
        assert len(fake_db.user_sessions.docs) == 2

    @pytest.mark.asyncio
    async def test_backend_error_is_swallowed(self, fake_db):
        fake_db.user_sessions.fail_with = ConnectionError("mongo unreachable")
        registrar = _registrar(LAPTOP, fake_db, Clock(T0))
        assert await registrar.heartbeat("user-a") is None

    @pytest.mark.asyncio
    async def test_flag_persistence_failure_still_refreshes_session(self, fake_db):
        clock = Clock(T0)
        await _registrar(LAPTOP, fake_db, clock).heartbeat("user-a")
        fake_db.security_flags.fail_with = ConnectionError("write refused")
        phone = _registrar(PHONE, fake_db, clock)
        assert await phone.heartbeat("user-a") is not None
        assert any(d["session_token"] == phone.session_token for d in fake_db.user_sessions.docs)

    @pytest.mark.asyncio
    async def test_naive_timestamps_from_mongo_are_utc(self, fake_db):
        naive_recent = (T0 - timedelta(minutes=1)).replace(tzinfo=None)
        fake_db.user_sessions.docs.append({
            "session_token": "legacy",
            "user_id": "user-a",
            "device_fingerprint": "someone-else",
            "last_active_at": naive_recent,
            "is_active": True,
        })
        flag = await _registrar(LAPTOP, fake_db, Clock(T0)).heartbeat("user-a")
        assert flag is not None

    @pytest.mark.asyncio
    async def test_live_session_found_behind_many_abandoned_rows(self, fake_db):
        phone_fp = compute_fingerprint(PHONE)
        for i in range(150):
            fake_db.user_sessions.docs.append({
                "session_token": f"abandoned-{i}",
                "user_id": "user-a",
                "device_fingerprint": phone_fp,
                "last_active_at": T0 - timedelta(days=3, minutes=i),
                "is_active": True,
            })
        fake_db.user_sessions.docs.append({
            "session_token": "live-phone",
            "user_id": "user-a",
            "device_fingerprint": phone_fp,
            "last_active_at": T0 - timedelta(minutes=1),
            "is_active": True,
        })

        flag = await _registrar(LAPTOP, fake_db, Clock(T0)).heartbeat("user-a")

        assert flag is not None
        assert len(flag.concurrent_sessions) == 1
        assert flag.concurrent_sessions[0].last_active_at == T0 - timedelta(minutes=1)

    @pytest.mark.asyncio
    async def test_store_lists_newest_first_within_window(self, fake_db):
        store = SessionStore(fake_db)
        for token, age in (("old", 10), ("newer", 2), ("newest", 1)):
            fake_db.user_sessions.docs.append({
                "session_token": token,
                "user_id": "user-a",
                "device_fingerprint": "fp",
                "last_active_at": T0 - timedelta(minutes=age),
                "is_active": True,
            })

        sessions = await store.list_active_sessions("user-a", since=T0 - WINDOW)

        assert [s.last_active_at for s in sessions] == [T0 - timedelta(minutes=1), T0 - timedelta(minutes=2)]


class TestDeactivate:

    @pytest.mark.asyncio
    async def test_deactivate_marks_only_current_session(self, fake_db):
        clock = Clock(T0)
        laptop = _registrar(LAPTOP, fake_db, clock)
        phone = _registrar(PHONE, fake_db, clock)
        await laptop.heartbeat("user-a")
        await phone.heartbeat("user-a")

        await laptop.deactivate("user-a")

        by_token = {d["session_token"]: d for d in fake_db.user_sessions.docs}
        assert by_token[laptop.session_token]["is_active"] is False
        assert by_token[phone.session_token]["is_active"] is True
        assert "session_deactivated" in [e["event_type"] for e in fake_db.audit_events.docs]

    @pytest.mark.asyncio
    async def test_deactivated_session_never_reactivated(self, fake_db):
        clock = Clock(T0)
        registrar = _registrar(LAPTOP, fake_db, clock)
        await registrar.heartbeat("user-a")
        await registrar.deactivate("user-a")

        clock.advance(minutes=2)
        assert await registrar.heartbeat("user-a") is None
        assert fake_db.user_sessions.docs[0]["is_active"] is False
        with pytest.raises(RuntimeError):
            registrar.start("user-a")

    @pytest.mark.asyncio
    async def test_deactivate_failure_is_best_effort(self, fake_db):
        registrar = _registrar(LAPTOP, fake_db, Clock(T0))
        await registrar.heartbeat("user-a")
        fake_db.user_sessions.fail_with = ConnectionError("mongo unreachable")
        await registrar.deactivate("user-a")
        assert registrar.is_deactivated

    @pytest.mark.asyncio
    async def test_deactivate_before_any_heartbeat(self, fake_db):
        registrar = _registrar(LAPTOP, fake_db, Clock(T0))
        await registrar.deactivate("user-a")
        assert fake_db.user_sessions.docs == []


class TestHeartbeatLoop:

    @pytest.mark.asyncio
    async def test_loop_uses_interval_and_stops_on_deactivate(self, fake_db):
        slept = []
        parked = asyncio.Event()

        async def fake_sleep(seconds):
            slept.append(seconds)
            parked.set()
            await asyncio.Event().wait()

        store = CountingStore(fake_db)
        registrar = SessionRegistrar(
            LAPTOP, store, interval_s=120, recency_window=WINDOW, clock=Clock(T0), sleep=fake_sleep,
        )
        task = registrar.start("user-a")
        assert registrar.start("user-a") is task

        await asyncio.wait_for(parked.wait(), timeout=1)
        assert slept == [120]
        assert len(fake_db.user_sessions.docs) == 1

        await registrar.deactivate("user-a")
        assert task.done()
        assert not registrar.is_running
        calls_after_teardown = store.calls

        await asyncio.sleep(0)
        assert store.calls == calls_after_teardown
        assert fake_db.user_sessions.docs[0]["is_active"] is False

    @pytest.mark.asyncio
    async def test_track_context_deactivates_on_exit(self, fake_db):
        parked = asyncio.Event()

        async def fake_sleep(seconds):
            parked.set()
            await asyncio.Event().wait()

        registrar = _registrar(LAPTOP, fake_db, Clock(T0), sleep=fake_sleep)
        async with registrar.track("user-a"):
            await asyncio.wait_for(parked.wait(), timeout=1)
            assert registrar.is_running

        assert not registrar.is_running
        assert fake_db.user_sessions.docs[0]["is_active"] is False
