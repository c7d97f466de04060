"""Content Access Broker — time-limited credentials for protected media.

Flow per content item:
  1. classify(original_url) == external → pass the provider URL through, no expiry.
  2. internal → ask the credential authority for a signed URL.
  3. authority failure → fall back to the original URL, flag the grant
     (degraded / denied), never raise, never schedule renewal.

A renewal that fails transiently keeps the still-valid credential and retries
within its remaining lifetime (every RENEWAL_RETRY_S once it has expired).
A denial is terminal.

An active grant is silently re-resolved CONTENT_RENEWAL_MARGIN_S before it
expires (25 min into a 30 min grant). Exactly one renewal task exists per
broker; it is cancelled on teardown and whenever another item replaces the
current one, and a generation counter keeps late results from overwriting a
newer grant.
"""
import asyncio
import contextlib
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional, Set, Union

from pydantic import BaseModel

from access.authority import CredentialAuthority
from access.providers import embed_info, provider_display_name
from config.settings import get_settings
from core.exceptions import CredentialDeniedError, CredentialError
from schemas.access import AccessGrant, ContentKind, GrantStatus, OriginKind

logger = logging.getLogger(__name__)

MIN_RENEWAL_DELAY_S = 1.0
RENEWAL_RETRY_S = 30.0

UpdateCallback = Callable[[AccessGrant], Union[None, Awaitable[None]]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def renewal_delay(grant: AccessGrant, now: datetime, margin: timedelta) -> Optional[float]:
    """Seconds from `now` until the grant should be re-resolved, or None if it never expires."""
    if grant.expires_at is None:
        return None
    remaining = (grant.expires_at - now).total_seconds()
    delay = remaining - margin.total_seconds()
    if delay <= 0:
        # Grant shorter than the margin: renew halfway through what is left
        delay = max(remaining / 2, MIN_RENEWAL_DELAY_S)
    return delay


@dataclass(frozen=True)
class _Target:
    content_id: str
    original_url: Optional[str]
    content_kind: ContentKind


class BrokerState(BaseModel):
    """What a consuming view observes."""
    credential: Optional[str] = None
    is_loading: bool = False
    error: Optional[str] = None
    is_external: bool = False


class ContentAccessBroker:
    """Resolves and keeps fresh the credential of one content item at a time."""

    def __init__(
        self,
        authority: CredentialAuthority,
        *,
        renewal_margin: Optional[timedelta] = None,
        default_ttl: Optional[timedelta] = None,
        clock: Callable[[], datetime] = _utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        on_update: Optional[UpdateCallback] = None,
    ):
        settings = get_settings()
        self._authority = authority
        self._margin = renewal_margin if renewal_margin is not None else timedelta(
            seconds=settings.CONTENT_RENEWAL_MARGIN_S
        )
        self._default_ttl = default_ttl if default_ttl is not None else timedelta(
            seconds=settings.CONTENT_GRANT_TTL_S
        )
        self._clock = clock
        self._sleep = sleep
        self._on_update = on_update

        self._target: Optional[_Target] = None
        self._grant: Optional[AccessGrant] = None
        self._is_loading = False
        self._generation = 0
        self._renewal_task: Optional[asyncio.Task] = None
        self._inflight: Set[asyncio.Task] = set()

    # ── Observable state ─────────────────────────────────────────

    @property
    def grant(self) -> Optional[AccessGrant]:
        return self._grant

    @property
    def credential(self) -> Optional[str]:
        return self._grant.credential if self._grant else None

    @property
    def error(self) -> Optional[str]:
        return self._grant.error if self._grant else None

    @property
    def is_external(self) -> bool:
        return bool(self._grant and self._grant.is_external)

    @property
    def is_loading(self) -> bool:
        return self._is_loading

    @property
    def renewal_pending(self) -> bool:
        return self._renewal_task is not None and not self._renewal_task.done()

    def state(self) -> BrokerState:
        return BrokerState(
            credential=self.credential,
            is_loading=self.is_loading,
            error=self.error,
            is_external=self.is_external,
        )

    # ── Operations ───────────────────────────────────────────────

    async def resolve(
        self,
        content_id: str,
        original_url: Optional[str],
        content_kind: Union[ContentKind, str],
    ) -> AccessGrant:
        """Obtain a grant for the item, replacing whatever was watched before."""
        if not content_id:
            raise ValueError("content_id is required")
        target = _Target(content_id, original_url, ContentKind(content_kind))
        return await self._resolve(target)

    async def refetch(self) -> Optional[AccessGrant]:
        """Manual re-resolution of the current item."""
        if self._target is None:
            return None
        return await self._resolve(self._target)

    def watch(
        self,
        content_id: str,
        original_url: Optional[str],
        content_kind: Union[ContentKind, str],
    ) -> asyncio.Task:
        """Fire-and-forget resolve; observe the result via state()/on_update."""
        task = asyncio.create_task(
            self.resolve(content_id, original_url, content_kind),
            name=f"resolve:{content_id}",
        )
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    async def teardown(self) -> None:
        """Stop watching: cancel renewal and in-flight resolves, forget the item."""
        self._generation += 1
        content_id = self._target.content_id if self._target else None
        self._target = None
        self._grant = None
        self._is_loading = False

        current = asyncio.current_task()
        pending = [t for t in (self._renewal_task, *self._inflight) if t is not None and t is not current]
        self._renewal_task = None
        for task in pending:
            task.cancel()
        for task in pending:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        if content_id:
            logger.debug("Broker torn down: content=%s", content_id)

    async def __aenter__(self) -> "ContentAccessBroker":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.teardown()

    # ── Internals ────────────────────────────────────────────────

    def _cancel_renewal(self) -> None:
        task = self._renewal_task
        # A renewal re-resolving its own item stays tracked so teardown can cancel it
        if task is None or task is asyncio.current_task():
            return
        self._renewal_task = None
        task.cancel()

    async def _resolve(self, target: _Target, renewing: bool = False) -> AccessGrant:
        self._cancel_renewal()
        self._generation += 1
        generation = self._generation
        self._target = target

        embed = embed_info(target.original_url)
        if embed.is_external:
            grant = AccessGrant(
                content_id=target.content_id,
                content_kind=target.content_kind,
                origin_kind=OriginKind.EXTERNAL,
                credential=target.original_url,
                issued_at=self._clock(),
                status=GrantStatus.EXTERNAL,
                provider=embed.provider,
                embed_url=embed.embed_url,
            )
            logger.debug(
                "External content passed through: content=%s provider=%s",
                target.content_id, provider_display_name(embed.provider, target.content_kind),
            )
            await self._publish(grant)
            return grant

        self._is_loading = True
        grant = await self._issue(target)

        if generation != self._generation:
            # Superseded by a newer resolve or torn down while waiting
            logger.debug("Discarding stale grant: content=%s", target.content_id)
            return grant

        self._is_loading = False
        if renewing and grant.status == GrantStatus.DEGRADED:
            return await self._renewal_failed(grant, target, generation)
        await self._publish(grant)
        if grant.status == GrantStatus.ACTIVE:
            self._schedule_renewal(grant, target, generation)
        return grant

    async def _renewal_failed(self, failed: AccessGrant, target: _Target, generation: int) -> AccessGrant:
        """Transient renewal failure: keep the current credential while it lasts and retry."""
        now = self._clock()
        current = self._grant
        if (
            current is not None
            and current.status == GrantStatus.ACTIVE
            and current.expires_at is not None
            and current.is_valid_at(now)
        ):
            remaining = (current.expires_at - now).total_seconds()
            delay = max(min(RENEWAL_RETRY_S, remaining / 2), MIN_RENEWAL_DELAY_S)
            logger.warning(
                "Renewal failed, keeping current credential: content=%s retry_in=%.0fs error=%s",
                target.content_id, delay, failed.error,
            )
            self._start_renewal(delay, target, generation)
            return current

        logger.warning(
            "Renewal failed after expiry, falling back to original URL: content=%s error=%s",
            target.content_id, failed.error,
        )
        await self._publish(failed)
        self._start_renewal(RENEWAL_RETRY_S, target, generation)
        return failed

    async def _issue(self, target: _Target) -> AccessGrant:
        base = dict(content_id=target.content_id, content_kind=target.content_kind)
        try:
            issued = await self._authority.issue_access_credential(target.content_id, target.content_kind)
        except CredentialDeniedError as e:
            logger.warning("Credential denied: content=%s error=%s", target.content_id, e.message)
            return AccessGrant(
                **base,
                origin_kind=OriginKind.INTERNAL,
                credential=target.original_url,
                issued_at=self._clock(),
                status=GrantStatus.DENIED,
                error=e.message,
            )
        except CredentialError as e:
            logger.warning(
                "Credential unavailable, falling back to original URL: content=%s error=%s",
                target.content_id, e.message,
            )
            return self._degraded(target, e.message)
        except Exception as e:
            logger.error("Credential issuance crashed: content=%s error=%s", target.content_id, str(e))
            return self._degraded(target, "Failed to load content")

        issued_at = self._clock()
        if issued.is_external:
            return AccessGrant(
                **base,
                origin_kind=OriginKind.EXTERNAL,
                credential=issued.url,
                issued_at=issued_at,
                status=GrantStatus.EXTERNAL,
            )
        expires_at = issued.expires_at or issued_at + self._default_ttl
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return AccessGrant(
            **base,
            origin_kind=OriginKind.INTERNAL,
            credential=issued.url,
            issued_at=issued_at,
            expires_at=expires_at,
            status=GrantStatus.ACTIVE,
        )

    def _degraded(self, target: _Target, message: str) -> AccessGrant:
        return AccessGrant(
            content_id=target.content_id,
            content_kind=target.content_kind,
            origin_kind=OriginKind.INTERNAL,
            credential=target.original_url,
            issued_at=self._clock(),
            status=GrantStatus.DEGRADED,
            error=message,
        )

    async def _publish(self, grant: AccessGrant) -> None:
        self._grant = grant
        self._is_loading = False
        if self._on_update is None:
            return
        try:
            result = self._on_update(grant)
            if asyncio.iscoroutine(result):
                await result
        except Exception as e:
            logger.warning("Grant update callback failed: content=%s error=%s", grant.content_id, str(e))

    def _schedule_renewal(self, grant: AccessGrant, target: _Target, generation: int) -> None:
        delay = renewal_delay(grant, self._clock(), self._margin)
        if delay is None:
            return
        self._start_renewal(delay, target, generation)

    def _start_renewal(self, delay: float, target: _Target, generation: int) -> None:
        self._renewal_task = asyncio.create_task(
            self._renew_after(delay, target, generation),
            name=f"renew:{target.content_id}",
        )
        logger.debug("Renewal scheduled: content=%s in=%.0fs", target.content_id, delay)

    async def _renew_after(self, delay: float, target: _Target, generation: int) -> None:
        await self._sleep(delay)
        if generation != self._generation or self._target is not target:
            return
        logger.info("Renewing credential: content=%s", target.content_id)
        await self._resolve(target, renewing=True)
