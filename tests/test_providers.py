"""Adapter behaviour against the fake provider server."""

import base64
import hashlib
from datetime import timedelta
from urllib.parse import parse_qs, urlparse

import pytest
from prometheus_client import REGISTRY

from nowplaying.api.services import (
    InvalidInstance,
    ProviderRejected,
    ProviderUnauthorized,
    RefreshRevoked,
    StateMismatch,
)
from nowplaying.api.services.providers import CallbackParams, ProviderCredential
from nowplaying.shared.models import LinkingAttempt, ProviderKind, ProviderLink


def _query(url: str) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}


def _link(kind, **kwargs) -> ProviderLink:
    defaults = {"user_id": "u1", "provider": kind, "access_token": "old-access"}
    defaults.update(kwargs)
    return ProviderLink(**defaults)


# ============================================
# Spotify
# ============================================


async def test_spotify_authorize_url(spotify):
    start = await spotify.begin_handshake({})
    url = urlparse(start.redirect_url)
    query = _query(start.redirect_url)

    assert url.netloc == "accounts.spotify.com" and url.path == "/authorize"
    assert query["client_id"] == "spotify-client"
    assert query["redirect_uri"] == "http://api.test/api/auth/spotify/callback"
    assert query["scope"] == "user-read-currently-playing user-read-playback-state"
    assert query["state"] == start.state
    assert len(start.state) >= 32


async def test_spotify_exchange_uses_basic_auth(spotify, server, clock):
    attempt = LinkingAttempt(state="s1", provider=ProviderKind.SPOTIFY)
    credential = await spotify.complete_handshake(
        CallbackParams(state="s1", code="good-code"), attempt
    )

    assert credential.access_token == "spotify-access-1"
    assert credential.refresh_token == "spotify-refresh-1"
    assert credential.expires_at == clock() + timedelta(seconds=3600)

    token_request = server.requests[-1]
    expected = base64.b64encode(b"spotify-client:spotify-secret").decode()
    assert token_request.headers["authorization"] == f"Basic {expected}"


async def test_spotify_callback_error_and_state(spotify):
    attempt = LinkingAttempt(state="s1", provider=ProviderKind.SPOTIFY)

    with pytest.raises(ProviderRejected):
        await spotify.complete_handshake(CallbackParams(state="s1", error="access_denied"), attempt)
    with pytest.raises(StateMismatch):
        await spotify.complete_handshake(CallbackParams(state="other", code="c"), attempt)
    with pytest.raises(ProviderRejected):
        await spotify.complete_handshake(CallbackParams(state="s1", code="bad-code"), attempt)


async def test_spotify_identify(spotify):
    identity = await spotify.identify(ProviderCredential(access_token="t"))

    assert identity.external_id == "spotify-user-1"
    assert identity.display_name == "Soli"
    assert identity.avatar_url == "https://i.scdn.co/image/soli"


async def test_spotify_refresh_keeps_old_refresh_token_when_not_rotated(spotify, server):
    server.rotate_refresh_token = False
    credential = await spotify.refresh(_link(ProviderKind.SPOTIFY, refresh_token="keep-me"))

    assert credential.access_token.startswith("spotify-access-")
    assert credential.refresh_token == "keep-me"


async def test_spotify_refresh_revoked_vs_transient(spotify, server):
    link = _link(ProviderKind.SPOTIFY, refresh_token="r")

    server.refresh_error = "invalid_grant"
    with pytest.raises(RefreshRevoked):
        await spotify.refresh(link)

    server.refresh_error = None
    server.refresh_status = 503
    with pytest.raises(ProviderRejected):
        await spotify.refresh(link)


async def test_spotify_player(spotify, server):
    data = await spotify.get_player("t")
    assert data["currently_playing_type"] == "track"

    server.player = None
    assert await spotify.get_player("t") is None

    server.unauthorized_tokens.add("expired")
    with pytest.raises(ProviderUnauthorized):
        await spotify.get_player("expired")


# ============================================
# Misskey
# ============================================


async def test_misskey_begin_normalizes_and_checks_meta(misskey, server):
    start = await misskey.begin_handshake({"instance_host": "https://misskey.io/"})

    assert start.instance_host == "misskey.io"
    assert start.redirect_url.startswith(f"https://misskey.io/miauth/{start.state}?")
    query = _query(start.redirect_url)
    assert query["name"] == "Spotify NowPlaying"
    assert query["callback"] == "http://api.test/api/miauth/callback"
    assert query["permission"] == "write:notes,read:account"
    assert server.paths("misskey.io") == ["/api/meta"]


async def test_misskey_begin_rejects_unreachable_instance(misskey):
    with pytest.raises(InvalidInstance):
        await misskey.begin_handshake({"instance_url": "not-misskey.example.com"})


async def test_misskey_check_and_identify(misskey, server):
    attempt = LinkingAttempt(state="sess-1", provider=ProviderKind.MISSKEY, instance_host="misskey.io")
    credential = await misskey.complete_handshake(CallbackParams(state="sess-1"), attempt)

    assert credential.access_token == "misskey-token-sess-1"
    assert credential.refresh_token is None
    assert credential.expires_at is None
    assert credential.instance_host == "misskey.io"

    identity = await misskey.identify(credential)
    assert identity.external_id == "9xyz"
    assert identity.username == "soli"
    assert identity.avatar_url == "https://misskey.io/avatar/soli"


async def test_misskey_check_not_ok(misskey, server):
    server.miauth_ok = False
    attempt = LinkingAttempt(state="sess-1", provider=ProviderKind.MISSKEY, instance_host="misskey.io")

    with pytest.raises(ProviderRejected):
        await misskey.complete_handshake(CallbackParams(state="sess-1"), attempt)


async def test_misskey_create_note(misskey, server):
    link = _link(ProviderKind.MISSKEY, access_token="mk", instance_host="misskey.io")
    await misskey.create_note(link, "hello")

    assert server.notes == [{"i": "mk", "text": "hello", "visibility": "public"}]


# ============================================
# Twitter
# ============================================


async def test_twitter_authorize_url_uses_pkce(twitter):
    start = await twitter.begin_handshake({})
    query = _query(start.redirect_url)

    assert start.redirect_url.startswith("https://x.com/i/oauth2/authorize?")
    assert query["scope"] == "tweet.read tweet.write users.read offline.access"
    assert query["code_challenge_method"] == "S256"
    assert query["redirect_uri"] == "http://api.test/api/twitter/callback"

    digest = hashlib.sha256(start.code_verifier.encode()).digest()
    expected = base64.urlsafe_b64encode(digest).rstrip(b"=").decode()
    assert query["code_challenge"] == expected


async def test_twitter_exchange_sends_verifier(twitter, server):
    attempt = LinkingAttempt(state="s", provider=ProviderKind.TWITTER, code_verifier="v" * 64)
    credential = await twitter.complete_handshake(CallbackParams(state="s", code="c"), attempt)

    assert credential.access_token == "twitter-access-1"
    form = parse_qs(server.requests[-1].content.decode())
    assert form["code_verifier"] == ["v" * 64]


async def test_twitter_identify_revoke_and_tweet(twitter, server):
    identity = await twitter.identify(ProviderCredential(access_token="t"))
    assert (identity.external_id, identity.username) == ("tw-42", "soli_tw")
    assert identity.avatar_url == "https://pbs.twimg.com/soli.jpg"

    link = _link(ProviderKind.TWITTER, access_token="tw-token")
    await twitter.create_tweet(link, "now playing")
    await twitter.revoke(link)

    assert server.tweets == [{"text": "now playing"}]
    assert server.revoked == ["tw-token"]


async def test_twitter_refresh_invalid_request_is_revoked(twitter, server):
    server.refresh_error = "invalid_request"

    with pytest.raises(RefreshRevoked):
        await twitter.refresh(_link(ProviderKind.TWITTER, refresh_token="r"))


async def test_provider_calls_are_counted_and_timed(spotify):
    def sample(name, **labels):
        return REGISTRY.get_sample_value(name, labels) or 0

    ok = {"provider": "spotify", "method": "GET", "status": "2xx"}
    timing = "provider_api_request_duration_seconds_count"
    calls = sample("provider_api_requests_total", **ok)
    timed = sample(timing, provider="spotify")

    await spotify.get_player("t")

    assert sample("provider_api_requests_total", **ok) == calls + 1
    assert sample(timing, provider="spotify") == timed + 1
