"""DispatchGate: which providers a user may use, and live credentials for them.

Every outbound call that needs a provider credential goes through
:meth:`DispatchGate.resolve_credential`, which refreshes expired
credentials on use and deletes links whose refresh grant was revoked.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from nowplaying.shared.models import ProviderKind, ProviderLink
from nowplaying.shared.repositories import CredentialRepository

from .errors import NotConnected, RefreshRevoked
from .providers import ProviderRegistry, utc_now

logger = logging.getLogger(__name__)

REFRESH_MARGIN = timedelta(seconds=60)


@dataclass
class Eligibility:
    eligible: bool
    reason: str | None = None


@dataclass
class TwitterPolicy:
    """Deployment rules for who may connect and post to Twitter."""

    enabled: bool = True
    client_configured: bool = False
    require_misskey: bool = False
    allowed_hosts: list[str] = field(default_factory=list)

    @classmethod
    def from_settings(cls, settings) -> TwitterPolicy:
        return cls(
            enabled=settings.twitter_enabled,
            client_configured=bool(settings.twitter_client_id and settings.twitter_client_secret),
            require_misskey=settings.twitter_require_misskey,
            allowed_hosts=settings.twitter_allowed_host_list,
        )

    @property
    def available(self) -> bool:
        return self.enabled and self.client_configured

    def check(self, misskey: ProviderLink | None) -> Eligibility:
        if not self.enabled:
            return Eligibility(False, "Twitter integration is disabled")
        if not self.client_configured:
            return Eligibility(False, "Twitter API credentials not configured")
        if self.require_misskey and misskey is None:
            return Eligibility(False, "Misskey connection required")
        if self.require_misskey and self.allowed_hosts:
            host = (misskey.instance_host or "").lower() if misskey else ""
            if host not in self.allowed_hosts:
                return Eligibility(False, "Your Misskey instance is not in the allowed list")
        return Eligibility(True)


class DispatchGate:
    def __init__(
        self,
        credentials: CredentialRepository,
        registry: ProviderRegistry,
        policy: TwitterPolicy,
        *,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.credentials = credentials
        self.registry = registry
        self.policy = policy
        self._clock = clock
        self._locks: dict[tuple[str, ProviderKind], asyncio.Lock] = {}

    # ------------------------------------------------------------------
    # Eligibility
    # ------------------------------------------------------------------

    async def eligibility(self, user_id: str) -> dict[ProviderKind, Eligibility]:
        """Derived from the current links on every call; nothing is cached."""
        misskey = await self.credentials.get_link(user_id, ProviderKind.MISSKEY)
        return {
            ProviderKind.SPOTIFY: Eligibility(True),
            ProviderKind.MISSKEY: Eligibility(True),
            ProviderKind.TWITTER: self.policy.check(misskey),
        }

    async def twitter_eligibility(self, user_id: str) -> Eligibility:
        return (await self.eligibility(user_id))[ProviderKind.TWITTER]

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    def _lock_for(self, user_id: str, kind: ProviderKind) -> asyncio.Lock:
        key = (user_id, kind)
        if key not in self._locks:
            if len(self._locks) > 1024:
                for k in [k for k, lock in self._locks.items() if not lock.locked()]:
                    del self._locks[k]
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    def _is_stale(self, link: ProviderLink) -> bool:
        return link.is_expired(self._clock(), REFRESH_MARGIN)

    async def resolve_credential(
        self,
        user_id: str,
        kind: ProviderKind,
        *,
        force_refresh: bool = False,
    ) -> ProviderLink:
        """Return a link whose access credential is not expired.

        ``force_refresh`` is for callers that just got a 401 with the stored
        credential. Refreshes for one (user, kind) are coalesced in-process;
        across workers the compare-and-swap in the store decides.
        """
        link = await self.credentials.get_link(user_id, kind)
        if link is None:
            raise NotConnected(f"{kind} not connected")
        if not force_refresh and not self._is_stale(link):
            return link

        async with self._lock_for(user_id, kind):
            # Double-check after acquiring lock
            current = await self.credentials.get_link(user_id, kind)
            if current is None:
                raise NotConnected(f"{kind} not connected")
            if current.access_token != link.access_token:
                return current
            if not force_refresh and not self._is_stale(current):
                return current
            return await self._refresh(current)

    async def _refresh(self, link: ProviderLink) -> ProviderLink:
        user_id, kind = link.user_id, link.provider

        if not link.refresh_token:
            if link.is_expired(self._clock()):
                await self.credentials.delete_link_if_unchanged(user_id, kind, link.access_token)
                logger.info(f"Dropped expired {kind} link without refresh token: {user_id}")
                raise NotConnected(f"{kind} credential expired")
            return link

        try:
            credential = await self.registry[kind].refresh(link)
        except RefreshRevoked:
            deleted = await self.credentials.delete_link_if_unchanged(
                user_id, kind, link.access_token
            )
            if not deleted:
                current = await self.credentials.get_link(user_id, kind)
                if current is not None:
                    return current
            logger.warning(f"{kind} refresh revoked, link removed: {user_id}")
            raise NotConnected(f"{kind} authorization was revoked") from None

        refreshed = link.with_credential(
            credential.access_token, credential.refresh_token, credential.expires_at
        )
        if await self.credentials.replace_link_if_unchanged(refreshed, link.access_token):
            logger.debug(f"Refreshed {kind} credential for {user_id}")
            return refreshed

        # Another writer got there first; take what it stored
        current = await self.credentials.get_link(user_id, kind)
        if current is None:
            raise NotConnected(f"{kind} not connected")
        return current

    async def invalidate(self, link: ProviderLink) -> None:
        """Report that *link*'s access credential is rejected even after a refresh.

        A credential with no refresh path can never recover, so the link is
        removed and :class:`NotConnected` raised. Links that can still be
        refreshed are left alone. The delete only applies if the stored
        credential is still the rejected one.
        """
        if link.refresh_token:
            return
        user_id, kind = link.user_id, link.provider
        if not await self.credentials.delete_link_if_unchanged(user_id, kind, link.access_token):
            # Relinked meanwhile; the new credential gets its own chance
            return
        logger.warning(f"{kind} credential rejected, link removed: {user_id}")
        raise NotConnected(f"{kind} authorization was revoked")
