"""Credential issuer — server side of POST /api/content/signed-url.

authorize → external pass-through or sign the private storage object.
Audit trail records every issue and every refusal.
"""
import logging

from access.providers import classify
from config.settings import get_settings
from core.exceptions import CredentialDeniedError, StorageUrlError
from media.authorization import authorize_content_access
from media.signer import sign_object_url
from media.storage import bucket_for_kind, is_platform_storage_url, parse_storage_url
from observability.audit_log import log_audit_event
from schemas.access import ContentKind, OriginKind, SignedUrlResponse
from schemas.audit import AuditEventType

logger = logging.getLogger(__name__)


async def issue_access_credential(
    user_id: str, content_id: str, kind: ContentKind,
) -> SignedUrlResponse:
    """Authorize `user_id` for the content and return its access credential."""
    settings = get_settings()
    try:
        source_url = await authorize_content_access(user_id, content_id, kind)
    except CredentialDeniedError as e:
        await log_audit_event(
            AuditEventType.CREDENTIAL_DENIED,
            user_id=user_id,
            details={"content_id": content_id, "kind": kind.value, "reason": e.message},
        )
        raise

    # Known providers, or anything not on our storage host, are returned as-is
    if (
        classify(source_url) == OriginKind.EXTERNAL
        or not is_platform_storage_url(source_url, settings.STORAGE_BASE_URL)
    ):
        logger.info("External content passed through: user=%s content=%s", user_id, content_id)
        return SignedUrlResponse(signed_url=source_url, is_external=True)

    obj = parse_storage_url(source_url)
    if obj is None:
        raise StorageUrlError("Invalid storage URL format")
    if obj.bucket != bucket_for_kind(kind):
        logger.warning(
            "Unexpected bucket for %s: content=%s bucket=%s", kind.value, content_id, obj.bucket,
        )

    signed_url, expires_at = sign_object_url(obj)
    await log_audit_event(
        AuditEventType.CREDENTIAL_ISSUED,
        user_id=user_id,
        details={
            "content_id": content_id,
            "kind": kind.value,
            "bucket": obj.bucket,
            "expires_at": expires_at.isoformat(),
        },
    )
    return SignedUrlResponse(signed_url=signed_url, is_external=False, expires_at=expires_at)
