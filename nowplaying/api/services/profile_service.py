"""User profile projection for the dashboard.

Spotify display attributes are refreshed opportunistically through a short
TTL cache; a failed refresh never fails the request.
"""

import logging

from nowplaying.shared.cache import AsyncTTLCache, cached
from nowplaying.shared.models import ProviderKind, ProviderLink, User
from nowplaying.shared.repositories import CredentialRepository

from .dispatch import DispatchGate
from .errors import LinkError
from .providers import Identity, ProviderCredential, SpotifyAdapter

logger = logging.getLogger(__name__)

_profile_cache = AsyncTTLCache(maxsize=512, ttl=300)


def _identity_key(user_id: str) -> str:
    return f"profile:{user_id}"


def forget_spotify_identity(user_id: str) -> None:
    """Drop the cached Spotify name and avatar, e.g. after the user relinks."""
    _profile_cache.forget(_identity_key(user_id))


def _link_view(link: ProviderLink | None) -> dict:
    if link is None:
        return {"connected": False}
    view = {
        "connected": True,
        "user_id": link.external_id,
        "username": link.username,
        "avatar_url": link.avatar_url,
    }
    if link.instance_host:
        view["instance_host"] = link.instance_host
    return view


class ProfileService:
    def __init__(
        self,
        credentials: CredentialRepository,
        gate: DispatchGate,
        spotify: SpotifyAdapter,
    ) -> None:
        self.credentials = credentials
        self.gate = gate
        self.spotify = spotify

    @cached(
        cache=_profile_cache,
        key_func=lambda self, user_id: _identity_key(user_id),
        retry_on=(LinkError,),
    )
    async def _fetch_spotify_identity(self, user_id: str) -> Identity:
        link = await self.gate.resolve_credential(user_id, ProviderKind.SPOTIFY)
        return await self.spotify.identify(ProviderCredential(access_token=link.access_token))

    async def refresh_display(self, user: User) -> User:
        """Pull the current Spotify name and avatar into *user* if they changed."""
        try:
            identity = await self._fetch_spotify_identity(user.id)
        except LinkError as e:
            logger.debug(f"Profile refresh skipped for {user.id}: {e.code}")
            return user

        if (identity.display_name, identity.avatar_url) != (user.display_name, user.avatar_url):
            await self.credentials.update_user_profile(
                user.id, identity.display_name, identity.avatar_url
            )
            user.display_name = identity.display_name
            user.avatar_url = identity.avatar_url
        return user

    async def get_profile(self, user: User) -> dict:
        """Dashboard view of the user and each provider's connection state."""
        user = await self.refresh_display(user)
        links = {link.provider: link for link in await self.credentials.list_links(user.id)}
        return {
            "user_id": user.id,
            "spotify_user_id": user.spotify_user_id,
            "display_name": user.display_name,
            "avatar_url": user.avatar_url,
            "spotify": _link_view(links.get(ProviderKind.SPOTIFY)),
            "misskey": _link_view(links.get(ProviderKind.MISSKEY)),
            "twitter": _link_view(links.get(ProviderKind.TWITTER)),
            "api_url_token_hint": user.api_url_token_hint,
            "api_header_token_enabled": user.api_header_token_enabled,
        }
