"""Session schemas — per-browsing-session liveness records and security flags."""
from datetime import datetime, timezone
from typing import List, Optional
from pydantic import BaseModel, Field


class SessionRecord(BaseModel):
    """One row of `user_sessions`. At most one per session_token."""
    session_token: str
    user_id: str
    device_fingerprint: str
    last_active_at: datetime
    is_active: bool = True
    user_agent: Optional[str] = None
    country_code: Optional[str] = None
    ip_address: Optional[str] = None  # only a server can see the real address

    def to_doc(self) -> dict:
        """Convert to MongoDB document (created_at is set on insert by the store)."""
        return self.model_dump()


class ConcurrentSession(BaseModel):
    """Another live session of the same user, as returned by the backend."""
    device_fingerprint: Optional[str] = None
    last_active_at: datetime


class SecurityFlag(BaseModel):
    """Advisory notice: the account is live on a different device. Never an enforcement action."""
    user_id: str
    session_token: str
    device_fingerprint: str
    concurrent_sessions: List[ConcurrentSession]
    detected_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    message: str = (
        "Your account is being used from another device. "
        "If this wasn't you, please change your password."
    )

    def to_doc(self) -> dict:
        return self.model_dump()
