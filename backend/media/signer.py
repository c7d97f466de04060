"""Signed object URLs for private media.

A signed URL carries a JWT bound to exactly one bucket/path, valid for
CONTENT_GRANT_TTL_S (30 min). The media origin checks it with
verify_object_token() before serving bytes.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple
from urllib.parse import quote

import jwt

from config.settings import get_settings
from core.exceptions import AuthError, ConfigurationError
from media.storage import StorageObject

logger = logging.getLogger(__name__)

_SIGN_PREFIX = "/storage/v1/object/sign"


def _require_signing_secret() -> str:
    """Fail closed if the media signing secret is not configured."""
    secret = get_settings().MEDIA_SIGNING_SECRET
    if not secret:
        raise ConfigurationError("MEDIA_SIGNING_SECRET is not configured")
    return secret


def sign_object_url(
    obj: StorageObject,
    ttl_s: Optional[int] = None,
    now: Optional[datetime] = None,
) -> Tuple[str, datetime]:
    """Return (signed_url, expires_at) for one storage object."""
    settings = get_settings()
    now = now or datetime.now(timezone.utc)
    expires_at = now + timedelta(seconds=ttl_s if ttl_s is not None else settings.CONTENT_GRANT_TTL_S)
    payload = {
        "url": f"{obj.bucket}/{obj.path}",
        "iat": int(now.timestamp()),
        "exp": int(expires_at.timestamp()),
    }
    token = jwt.encode(payload, _require_signing_secret(), algorithm="HS256")
    base = settings.STORAGE_BASE_URL.rstrip("/")
    signed_url = f"{base}{_SIGN_PREFIX}/{obj.bucket}/{quote(obj.path)}?token={token}"
    logger.debug("Object signed: bucket=%s expires=%s", obj.bucket, expires_at.isoformat())
    return signed_url, datetime.fromtimestamp(payload["exp"], tz=timezone.utc)


def verify_object_token(token: str, obj: StorageObject) -> datetime:
    """Check a signed-URL token for `obj`. Returns its expiry; raises AuthError."""
    try:
        payload = jwt.decode(token, _require_signing_secret(), algorithms=["HS256"])
    except jwt.ExpiredSignatureError:
        logger.warning("Signed URL expired: bucket=%s", obj.bucket)
        raise AuthError("Signed URL expired")
    except jwt.InvalidTokenError as e:
        logger.warning("Invalid signed URL: %s", str(e))
        raise AuthError(f"Invalid signed URL: {str(e)}")
    if payload.get("url") != f"{obj.bucket}/{obj.path}":
        raise AuthError("Signed URL does not match object")
    return datetime.fromtimestamp(payload["exp"], tz=timezone.utc)
