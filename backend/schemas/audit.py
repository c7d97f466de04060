"""Audit event schemas."""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field
import uuid


class AuditEventType(str, Enum):
    SESSION_FLAGGED = "session_flagged"
    SESSION_DEACTIVATED = "session_deactivated"
    CREDENTIAL_ISSUED = "credential_issued"
    CREDENTIAL_DENIED = "credential_denied"
    AUTH_FAILURE = "auth_failure"


class AuditEvent(BaseModel):
    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    event_type: AuditEventType
    session_token: Optional[str] = None
    user_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    details: Dict[str, Any] = Field(default_factory=dict)
    env: str = "dev"

    def to_doc(self) -> dict:
        d = self.model_dump()
        d["event_type"] = d["event_type"].value if hasattr(d["event_type"], "value") else d["event_type"]
        return d
