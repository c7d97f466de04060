"""Session store — the backend data service behind the Session Registrar.

All writes are narrow and idempotent: upsert by session_token, update by
session_token + user_id. Rows are never hard-deleted (kept for audit).
"""
import logging
from datetime import datetime, timezone
from typing import List, Optional

from core.database import get_db
from observability.audit_log import log_audit_event
from schemas.audit import AuditEventType
from schemas.session import ConcurrentSession, SecurityFlag, SessionRecord

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    # Mongo hands back naive UTC datetimes unless the client is tz_aware
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SessionStore:
    """MongoDB-backed `user_sessions` access."""

    def __init__(self, db=None):
        self._db = db

    @property
    def db(self):
        return self._db if self._db is not None else get_db()

    async def upsert_session(self, record: SessionRecord) -> None:
        """Insert or refresh the row for record.session_token."""
        await self.db.user_sessions.update_one(
            {"session_token": record.session_token},
            {
                "$set": record.to_doc(),
                "$setOnInsert": {"created_at": datetime.now(timezone.utc)},
            },
            upsert=True,
        )
        logger.debug(
            "Session upserted: user=%s fingerprint=%s",
            record.user_id, record.device_fingerprint,
        )

    async def list_active_sessions(
        self,
        user_id: str,
        excluding: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> List[ConcurrentSession]:
        """Active sessions of `user_id` other than the `excluding` session token.

        `since` restricts the page to rows refreshed after that instant; newest first.
        """
        query: dict = {"user_id": user_id, "is_active": True}
        if excluding:
            query["session_token"] = {"$ne": excluding}
        if since is not None:
            query["last_active_at"] = {"$gt": since}
        cursor = self.db.user_sessions.find(
            query, {"_id": 0, "device_fingerprint": 1, "last_active_at": 1},
        ).sort("last_active_at", -1)
        docs = await cursor.to_list(length=100)
        return [
            ConcurrentSession(
                device_fingerprint=d.get("device_fingerprint"),
                last_active_at=_as_utc(d["last_active_at"]),
            )
            for d in docs
            if d.get("last_active_at") is not None
        ]

    async def set_session_inactive(self, session_token: str, user_id: str) -> bool:
        """Soft-delete one session. Returns True if a row was changed."""
        result = await self.db.user_sessions.update_one(
            {"session_token": session_token, "user_id": user_id},
            {"$set": {"is_active": False}},
        )
        if result.modified_count:
            await log_audit_event(
                AuditEventType.SESSION_DEACTIVATED,
                session_token=session_token,
                user_id=user_id,
                db=self.db,
            )
            return True
        logger.warning("Session not found for deactivation: user=%s", user_id)
        return False

    async def record_security_flag(self, flag: SecurityFlag) -> None:
        """Persist an advisory flag for administrator review."""
        await self.db.security_flags.insert_one(flag.to_doc())
        await log_audit_event(
            AuditEventType.SESSION_FLAGGED,
            session_token=flag.session_token,
            user_id=flag.user_id,
            details={
                "device_fingerprint": flag.device_fingerprint,
                "concurrent_count": len(flag.concurrent_sessions),
            },
            db=self.db,
        )
