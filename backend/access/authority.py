"""Credential authority client — turns (content_id, kind) into a signed URL.

Authorization (enrollment / ownership / role) is entirely the authority's
business; this side only distinguishes terminal refusals from transient
failures:
  401/403/404 and other 4xx → CredentialDeniedError (never retried silently)
  network errors, 408/429, 5xx, malformed bodies → CredentialUnavailableError
"""
import logging
import time
from abc import ABC, abstractmethod
from typing import Callable, Optional, Union

import httpx
from pydantic import ValidationError

from config.settings import get_settings
from core.exceptions import CredentialDeniedError, CredentialUnavailableError
from schemas.access import ContentKind, IssuedCredential

logger = logging.getLogger(__name__)

_TRANSIENT_STATUSES = {408, 429}


class CredentialAuthority(ABC):
    """Abstract credential-issuing authority."""

    @abstractmethod
    async def issue_access_credential(
        self, content_id: str, content_kind: ContentKind,
    ) -> IssuedCredential:
        """Authorize the caller and return a (possibly time-limited) URL."""
        ...


class HttpCredentialAuthority(CredentialAuthority):
    """Calls POST {CREDENTIAL_AUTHORITY_URL} with the caller's bearer token."""

    def __init__(
        self,
        access_token: Union[str, Callable[[], str]],
        url: Optional[str] = None,
        timeout_s: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self._access_token = access_token
        self._url = url or settings.CREDENTIAL_AUTHORITY_URL
        self._timeout_s = timeout_s if timeout_s is not None else settings.CREDENTIAL_AUTHORITY_TIMEOUT_S
        self._transport = transport

    def _bearer(self) -> str:
        token = self._access_token() if callable(self._access_token) else self._access_token
        return f"Bearer {token}"

    async def issue_access_credential(
        self, content_id: str, content_kind: ContentKind,
    ) -> IssuedCredential:
        start = time.monotonic()
        try:
            async with httpx.AsyncClient(timeout=self._timeout_s, transport=self._transport) as client:
                response = await client.post(
                    self._url,
                    json={"contentId": content_id, "urlType": ContentKind(content_kind).value},
                    headers={"Authorization": self._bearer()},
                )
        except httpx.HTTPError as e:
            logger.warning("[Authority] Request failed: content=%s error=%s", content_id, str(e))
            raise CredentialUnavailableError(f"Credential authority unreachable: {e}") from e

        latency_ms = (time.monotonic() - start) * 1000
        status = response.status_code

        if status >= 400:
            message = _error_message(response)
            if 400 <= status < 500 and status not in _TRANSIENT_STATUSES:
                logger.warning(
                    "[Authority] Denied: content=%s status=%d error=%s", content_id, status, message,
                )
                raise CredentialDeniedError(message, status_code=status)
            logger.warning(
                "[Authority] Failed: content=%s status=%d error=%s", content_id, status, message,
            )
            raise CredentialUnavailableError(message)

        try:
            data = response.json()
        except ValueError as e:
            raise CredentialUnavailableError("Credential authority returned invalid JSON") from e
        if not isinstance(data, dict) or data.get("error") or not data.get("signedUrl"):
            message = data.get("error") if isinstance(data, dict) else None
            raise CredentialUnavailableError(message or "Failed to get signed URL")

        try:
            issued = IssuedCredential(
                url=data["signedUrl"],
                expires_at=data.get("expiresAt"),
                is_external=bool(data.get("isExternal", False)),
            )
        except ValidationError as e:
            raise CredentialUnavailableError(f"Malformed credential: {e}") from e

        logger.info(
            "[Authority] Issued: content=%s external=%s latency=%.0fms",
            content_id, issued.is_external, latency_ms,
        )
        return issued


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
        if isinstance(body, dict) and body.get("error"):
            return str(body["error"])
    except ValueError:
        pass
    return f"Credential authority responded {response.status_code}"
