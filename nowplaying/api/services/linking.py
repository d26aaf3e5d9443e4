"""LinkingOrchestrator: connect and disconnect providers for a user.

A link moves Unlinked -> HandshakeStarted -> Linked (or fails). The
HandshakeStarted state is a server-side LinkingAttempt, consumed exactly
once by the callback that completes it.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from nowplaying.shared.models import LinkingAttempt, ProviderKind, ProviderLink, User
from nowplaying.shared.repositories import CredentialRepository, LinkingAttemptRepository

from .api_tokens import generate_url_token, hash_token, token_hint
from .dispatch import DispatchGate
from .errors import (
    AlreadyLinked,
    HandshakeExpired,
    LinkError,
    NotAllowed,
    ProviderRejected,
    StateMismatch,
    Unauthenticated,
)
from .profile_service import forget_spotify_identity
from .providers import CallbackParams, HandshakeStart, Identity, ProviderRegistry, utc_now

logger = logging.getLogger(__name__)


@dataclass
class LinkResult:
    user: User
    link: ProviderLink


class LinkingOrchestrator:
    def __init__(
        self,
        credentials: CredentialRepository,
        attempts: LinkingAttemptRepository,
        registry: ProviderRegistry,
        gate: DispatchGate,
        *,
        attempt_ttl: timedelta = timedelta(minutes=10),
        clock: Callable[[], datetime] = utc_now,
    ):
        self.credentials = credentials
        self.attempts = attempts
        self.registry = registry
        self.gate = gate
        self.attempt_ttl = attempt_ttl
        self._clock = clock

    # ------------------------------------------------------------------
    # Start
    # ------------------------------------------------------------------

    async def start_link(
        self,
        user: User | None,
        kind: ProviderKind,
        params: dict[str, str] | None = None,
    ) -> HandshakeStart:
        """Begin a handshake and remember it as a LinkingAttempt.

        Spotify without a user is the login flow. Every other provider needs
        an authenticated user.
        """
        if kind is ProviderKind.SPOTIFY:
            if user is not None and await self.credentials.get_link(user.id, kind):
                raise AlreadyLinked("Spotify is already connected")
        elif user is None:
            raise Unauthenticated("Not logged in")

        if kind is ProviderKind.TWITTER:
            eligibility = await self.gate.twitter_eligibility(user.id)
            if not eligibility.eligible:
                raise NotAllowed(eligibility.reason or "Twitter is not available")

        handshake = await self.registry[kind].begin_handshake(params or {})
        await self.attempts.create_attempt(
            LinkingAttempt(
                state=handshake.state,
                provider=kind,
                user_id=user.id if user else None,
                instance_host=handshake.instance_host,
                code_verifier=handshake.code_verifier,
            )
        )
        logger.info(f"{kind} handshake started for {user.id if user else 'login'}")
        return handshake

    # ------------------------------------------------------------------
    # Complete
    # ------------------------------------------------------------------

    async def _take_attempt(
        self,
        kind: ProviderKind,
        state: str | None,
        session_user: User | None,
        bound_state: str | None,
    ) -> LinkingAttempt:
        if not state:
            raise HandshakeExpired("Missing state")

        attempt = await self.attempts.consume_attempt(state)
        if attempt is None:
            raise HandshakeExpired("Unknown or already used state")
        if attempt.provider is not kind:
            raise StateMismatch("State belongs to another provider")
        if attempt.is_expired(self._clock(), self.attempt_ttl):
            raise HandshakeExpired("Linking attempt expired")

        if attempt.user_id is not None:
            if session_user is None or session_user.id != attempt.user_id:
                raise StateMismatch("Callback does not match the signed-in user")
        elif not bound_state or not secrets.compare_digest(bound_state, state):
            raise StateMismatch("Callback was not started by this browser")
        return attempt

    async def complete_link(
        self,
        kind: ProviderKind,
        callback: CallbackParams,
        *,
        session_user: User | None = None,
        bound_state: str | None = None,
    ) -> LinkResult:
        """Finish a handshake from the provider's callback and store the link.

        ``bound_state`` is the state value the browser held in a cookie; it is
        only consulted for the Spotify login flow, which has no session user.
        """
        attempt = await self._take_attempt(kind, callback.state, session_user, bound_state)

        if kind is ProviderKind.TWITTER:
            eligibility = await self.gate.twitter_eligibility(attempt.user_id)
            if not eligibility.eligible:
                raise NotAllowed(eligibility.reason or "Twitter is not available")

        adapter = self.registry[kind]
        credential = await adapter.complete_handshake(callback, attempt)
        identity = await adapter.identify(credential)

        if kind is ProviderKind.SPOTIFY:
            user = await self._anchor_user(attempt, identity)
            forget_spotify_identity(user.id)
        else:
            user = session_user

        link = await self.credentials.put_link(
            ProviderLink(
                user_id=user.id,
                provider=kind,
                access_token=credential.access_token,
                external_id=identity.external_id,
                username=identity.username,
                avatar_url=identity.avatar_url,
                refresh_token=credential.refresh_token,
                expires_at=credential.expires_at,
                instance_host=credential.instance_host,
            )
        )
        logger.info(f"{kind} linked for user {user.id} as {identity.username}")
        return LinkResult(user=user, link=link)

    async def _anchor_user(self, attempt: LinkingAttempt, identity: Identity) -> User:
        """Create or refresh the user a Spotify identity belongs to."""
        if attempt.user_id is not None:
            user = await self.credentials.get_user(attempt.user_id)
            if user is None:
                raise Unauthenticated("User not found")
            if user.spotify_user_id != identity.external_id:
                logger.warning(f"Spotify relink for {user.id} used another account")
                raise ProviderRejected("account_mismatch")
            await self.credentials.update_user_profile(
                user.id, identity.display_name, identity.avatar_url
            )
            user.display_name = identity.display_name
            user.avatar_url = identity.avatar_url
            return user

        # New users get an unrevealed URL token; regenerating shows one
        url_token = generate_url_token()
        return await self.credentials.upsert_user(
            identity.external_id,
            identity.display_name,
            identity.avatar_url,
            url_token_hash=hash_token(url_token),
            url_token_hint=token_hint(url_token),
        )

    # ------------------------------------------------------------------
    # Unlink
    # ------------------------------------------------------------------

    async def unlink(self, user: User, kind: ProviderKind) -> bool:
        """Remove the link, then revoke provider-side on a best-effort basis."""
        if kind is ProviderKind.SPOTIFY:
            raise NotAllowed("Spotify account cannot be disconnected")

        link = await self.credentials.get_link(user.id, kind)
        if link is None:
            return False

        await self.credentials.delete_link(user.id, kind)
        logger.info(f"{kind} unlinked for user {user.id}")

        try:
            await self.registry[kind].revoke(link)
        except LinkError as e:
            logger.warning(f"{kind} revoke failed for {user.id}: {e.message}")
        return True
