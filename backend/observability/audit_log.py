"""Audit logging — persists structured audit events to MongoDB."""
import logging
from typing import Any, Dict, Optional

from config.settings import get_settings
from core.database import get_db
from schemas.audit import AuditEvent, AuditEventType
from observability.redaction import redact_dict

logger = logging.getLogger(__name__)


async def log_audit_event(
    event_type: AuditEventType,
    session_token: Optional[str] = None,
    user_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    db=None,
) -> str:
    """Create and persist an audit event. Returns event_id."""
    event = AuditEvent(
        event_type=event_type,
        session_token=session_token,
        user_id=user_id,
        details=details or {},
        env=get_settings().ENV,
    )
    db = db if db is not None else get_db()
    await db.audit_events.insert_one(event.to_doc())

    # Log with redacted details
    safe_details = redact_dict(details or {})
    logger.info(
        "AUDIT event=%s user=%s details=%s",
        event_type.value,
        user_id,
        safe_details,
    )
    return event.event_id
