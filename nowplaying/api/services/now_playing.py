"""Post the user's current Spotify track to the connected destinations."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from nowplaying.shared.models import ProviderKind, ProviderLink, User

from .dispatch import DispatchGate
from .errors import LinkError, NotConnected, ProviderRejected, ProviderUnauthorized
from .providers import MisskeyAdapter, SpotifyAdapter, TwitterAdapter

logger = logging.getLogger(__name__)


class PostTarget(StrEnum):
    MISSKEY = "misskey"
    TWITTER = "twitter"
    BOTH = "both"

    @classmethod
    def parse(cls, value: str | None) -> PostTarget:
        """Unknown or missing values mean both."""
        try:
            return cls((value or "").lower())
        except ValueError:
            return cls.BOTH

    def includes(self, kind: ProviderKind) -> bool:
        return self is PostTarget.BOTH or self.value == kind.value


@dataclass
class TrackData:
    content_type: str
    name: str
    artist: str
    url: str

    def post_text(self) -> str:
        if self.content_type == "episode":
            return f"{self.name} / {self.artist}\n#NowPlaying\n{self.url}"
        return f"{self.name} / {self.artist}\n#NowPlaying #PsrPlaying\n{self.url}"


@dataclass
class PostResult:
    success: bool
    message: str
    results: dict[str, str] = field(default_factory=dict)


def parse_player(data: dict[str, Any] | None) -> TrackData | None:
    """Extract what to post from a Spotify player response."""
    if not data:
        return None
    item = data.get("item") or {}
    content_type = data.get("currently_playing_type")
    url = (item.get("external_urls") or {}).get("spotify", "")

    if content_type == "track":
        artists = ", ".join(a.get("name", "") for a in item.get("artists") or [])
        return TrackData("track", item.get("name", ""), artists, url)
    if content_type == "episode":
        show = (item.get("show") or {}).get("name", "")
        return TrackData("episode", item.get("name", ""), show, url)
    return None


class NowPlayingService:
    def __init__(
        self,
        gate: DispatchGate,
        spotify: SpotifyAdapter,
        misskey: MisskeyAdapter,
        twitter: TwitterAdapter,
    ) -> None:
        self.gate = gate
        self.spotify = spotify
        self.misskey = misskey
        self.twitter = twitter

    async def _call_with_credential(
        self,
        user_id: str,
        kind: ProviderKind,
        call: Callable[[ProviderLink], Awaitable[Any]],
    ) -> Any:
        """Run *call* with a live credential, refreshing and retrying once on 401.

        A second 401 on a credential that cannot be refreshed removes the
        link (:class:`NotConnected`).
        """
        link = await self.gate.resolve_credential(user_id, kind)
        try:
            return await call(link)
        except ProviderUnauthorized:
            logger.info(f"{kind} answered 401 for {user_id}, refreshing")
            link = await self.gate.resolve_credential(user_id, kind, force_refresh=True)
            try:
                return await call(link)
            except ProviderUnauthorized:
                await self.gate.invalidate(link)
                raise ProviderRejected(f"{kind} token rejected after refresh") from None

    async def current_track(self, user_id: str) -> TrackData | None:
        data = await self._call_with_credential(
            user_id,
            ProviderKind.SPOTIFY,
            lambda link: self.spotify.get_player(link.access_token),
        )
        return parse_player(data)

    async def _post_misskey(self, user_id: str, text: str) -> str:
        try:
            await self._call_with_credential(
                user_id,
                ProviderKind.MISSKEY,
                lambda link: self.misskey.create_note(link, text),
            )
        except NotConnected:
            return "not connected"
        except LinkError as e:
            return f"error: {e.message}"
        return "success"

    async def _post_twitter(self, user_id: str, text: str) -> str:
        eligibility = await self.gate.twitter_eligibility(user_id)
        if not eligibility.eligible:
            return f"error: {eligibility.reason}"
        try:
            await self._call_with_credential(
                user_id,
                ProviderKind.TWITTER,
                lambda link: self.twitter.create_tweet(link, text),
            )
        except NotConnected:
            return "not connected"
        except LinkError as e:
            return f"error: {e.message}"
        return "success"

    async def post(self, user: User, target: PostTarget) -> PostResult:
        """Fetch the current track and fan it out to *target*.

        Raises :class:`NotConnected` when Spotify itself is not linked.
        """
        track = await self.current_track(user.id)
        if track is None:
            return PostResult(success=False, message="nothing is playing")

        text = track.post_text()
        kinds = [k for k in (ProviderKind.MISSKEY, ProviderKind.TWITTER) if target.includes(k)]
        posters = {
            ProviderKind.MISSKEY: self._post_misskey,
            ProviderKind.TWITTER: self._post_twitter,
        }
        statuses = await asyncio.gather(*(posters[k](user.id, text) for k in kinds))
        results = {k.value: status for k, status in zip(kinds, statuses, strict=True)}

        success = any(status == "success" for status in results.values())
        logger.info(f"Posted now playing for {user.id}: {results}")
        return PostResult(success=success, message=text, results=results)
