"""HTTP surface, driven through TestClient with in-memory services.

The lifespan is not entered, so no database connection is attempted.
"""

from urllib.parse import parse_qs, urlparse

import pytest
from fastapi.testclient import TestClient
from prometheus_client import REGISTRY

from nowplaying.api.app import create_app
from nowplaying.api.core.dependencies import (
    get_api_token_service,
    get_dispatch_gate,
    get_linking_orchestrator,
    get_now_playing_service,
    get_profile_service,
    get_session_manager,
)
from nowplaying.shared.models import ProviderKind, ProviderLink

FRONTEND = "http://app.test"


@pytest.fixture
def client(sessions, orchestrator, api_tokens, profiles, now_playing, gate):
    app = create_app()
    app.dependency_overrides.update(
        {
            get_session_manager: lambda: sessions,
            get_linking_orchestrator: lambda: orchestrator,
            get_api_token_service: lambda: api_tokens,
            get_profile_service: lambda: profiles,
            get_now_playing_service: lambda: now_playing,
            get_dispatch_gate: lambda: gate,
        }
    )
    return TestClient(app, follow_redirects=False)


def _login(client: TestClient) -> str:
    """Run the Spotify login flow and return the new user's id."""
    start = client.get("/api/auth/spotify")
    assert start.status_code == 302
    state = parse_qs(urlparse(start.headers["location"]).query)["state"][0]

    callback = client.get("/api/auth/spotify/callback", params={"code": "c", "state": state})
    assert callback.headers["location"] == f"{FRONTEND}/dashboard"

    return client.get("/api/auth/check").json()["user_id"]


def _link_misskey(credentials, user_id: str) -> None:
    credentials.links[(user_id, ProviderKind.MISSKEY)] = ProviderLink(
        user_id=user_id,
        provider=ProviderKind.MISSKEY,
        access_token="misskey-token-0",
        external_id="9xyz",
        username="soli",
        instance_host="misskey.io",
    )


# ============================================
# Login and session
# ============================================


def test_login_sets_session_cookie(client):
    start = client.get("/api/auth/spotify")

    assert start.headers["location"].startswith("https://accounts.spotify.com/authorize?")
    assert "oauth_state" in start.cookies

    _login(client)
    assert "session_token" in client.cookies

    me = client.get("/api/me")
    assert me.status_code == 200
    body = me.json()
    assert body["display_name"] == "Soli"
    assert body["spotify"]["connected"] is True
    assert body["spotify"]["user_id"] == "spotify-user-1"
    assert body["misskey"]["connected"] is False
    assert len(body["api_url_token_hint"]) == 4


def test_signed_in_user_skips_spotify_consent(client):
    _login(client)

    response = client.get("/api/auth/spotify")
    assert response.headers["location"] == f"{FRONTEND}/dashboard"


def test_callback_without_state_cookie(client):
    start = client.get("/api/auth/spotify")
    state = parse_qs(urlparse(start.headers["location"]).query)["state"][0]
    client.cookies.clear()

    response = client.get("/api/auth/spotify/callback", params={"code": "c", "state": state})

    assert response.headers["location"] == f"{FRONTEND}/login?error=state_mismatch"
    assert "session_token" not in client.cookies


def test_callback_with_unknown_state(client):
    response = client.get("/api/auth/spotify/callback", params={"code": "c", "state": "nope"})

    assert response.headers["location"] == f"{FRONTEND}/login?error=handshake_expired"


def test_me_requires_session(client):
    response = client.get("/api/me")

    assert response.status_code == 401
    assert response.json() == {"error": "unauthenticated", "message": "Not logged in"}


def test_logout(client, session_repo):
    _login(client)

    assert client.post("/api/logout").json() == {"message": "Logged out successfully"}
    assert session_repo.sessions == {}
    assert client.get("/api/auth/check").json()["authenticated"] is False


def test_spotify_cannot_be_disconnected(client):
    _login(client)

    response = client.delete("/api/auth/spotify")

    assert response.status_code == 403
    assert response.json()["error"] == "not_allowed"


# ============================================
# Config
# ============================================


def test_config_anonymous(client):
    assert client.get("/api/config").json() == {
        "twitter_available": True,
        "twitter_eligibility": {"eligible": False, "reason": "Not authenticated"},
    }


def test_config_reports_caller_eligibility(client, policy):
    policy.require_misskey = True
    _login(client)

    body = client.get("/api/config").json()
    assert body["twitter_available"] is True
    assert body["twitter_eligibility"] == {
        "eligible": False,
        "reason": "Misskey connection required",
    }


# ============================================
# Misskey and Twitter linking
# ============================================


def test_miauth_flow(client, credentials):
    user_id = _login(client)

    start = client.post("/api/miauth/start", json={"instance_url": "https://Misskey.io/"})
    assert start.status_code == 200
    auth_url = urlparse(start.json()["auth_url"])
    assert auth_url.netloc == "misskey.io"
    session_id = auth_url.path.rsplit("/", 1)[-1]

    callback = client.get("/api/miauth/callback", params={"session": session_id})
    assert callback.headers["location"] == f"{FRONTEND}/dashboard?success=misskey_connected"
    assert credentials.links[(user_id, ProviderKind.MISSKEY)].instance_host == "misskey.io"

    assert client.delete("/api/miauth").json() == {"message": "misskey disconnected"}
    assert (user_id, ProviderKind.MISSKEY) not in credentials.links


@pytest.mark.parametrize("body", [{}, {"instance_host": "192.168.1.1"}])
def test_miauth_start_rejects_bad_instance(client, body):
    _login(client)

    response = client.post("/api/miauth/start", json=body)

    assert response.status_code == 400
    assert response.json()["error"] == "invalid_instance"


def test_miauth_token_rejected_by_instance(client, server):
    _login(client)
    start = client.post("/api/miauth/start", json={"instance_host": "misskey.io"})
    session_id = urlparse(start.json()["auth_url"]).path.rsplit("/", 1)[-1]
    server.unauthorized_tokens.add(f"misskey-token-{session_id}")

    callback = client.get("/api/miauth/callback", params={"session": session_id})

    assert callback.headers["location"] == f"{FRONTEND}/dashboard?error=provider_rejected"


def test_miauth_callback_without_session(client):
    response = client.get("/api/miauth/callback", params={"session": "abc"})

    assert response.headers["location"] == f"{FRONTEND}/login?error=unauthenticated"


def test_twitter_flow(client, credentials):
    user_id = _login(client)

    start = client.get("/api/twitter/start")
    assert start.status_code == 302
    state = parse_qs(urlparse(start.headers["location"]).query)["state"][0]

    callback = client.get("/api/twitter/callback", params={"code": "c", "state": state})
    assert callback.headers["location"] == f"{FRONTEND}/dashboard?success=twitter_connected"
    assert credentials.links[(user_id, ProviderKind.TWITTER)].username == "soli_tw"


def test_twitter_start_not_allowed(client, policy):
    policy.require_misskey = True
    _login(client)

    response = client.get("/api/twitter/start")

    assert response.status_code == 403
    assert response.json() == {"error": "not_allowed", "message": "Misskey connection required"}


def test_twitter_callback_error_redirects(client):
    _login(client)

    response = client.get("/api/twitter/callback", params={"error": "access_denied", "state": "x"})

    assert response.headers["location"] == f"{FRONTEND}/dashboard?error=handshake_expired"


# ============================================
# Posting
# ============================================


def test_post_with_regenerated_url_token(client, credentials, server):
    user_id = _login(client)
    _link_misskey(credentials, user_id)

    issued = client.post("/api/settings/api-url-token/regenerate").json()
    assert issued["post_url"] == f"http://api.test/api/post/{issued['token']}"
    assert issued["hint"] == issued["token"][-4:]

    response = client.get(f"/api/post/{issued['token']}", params={"target": "misskey"})

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "message": "Idol / YOASOBI\n#NowPlaying #PsrPlaying\nhttps://open.spotify.com/track/1",
        "results": {"misskey": "success"},
    }
    assert len(server.notes) == 1


def test_post_with_header_token(client, credentials):
    user_id = _login(client)
    _link_misskey(credentials, user_id)
    url_token = client.post("/api/settings/api-url-token/regenerate").json()["token"]

    header = client.post("/api/settings/header-token").json()
    assert header["enabled"] is True

    missing = client.get(f"/api/post/{url_token}")
    assert missing.status_code == 401
    assert missing.json()["message"] == "authorization header required"

    ok = client.get(
        f"/api/post/{url_token}", headers={"Authorization": f"Bearer {header['token']}"}
    )
    assert ok.status_code == 200

    assert client.delete("/api/settings/header-token").json() == {
        "enabled": False,
        "token": None,
    }
    assert client.get(f"/api/post/{url_token}").status_code == 200


def test_post_unknown_token(client):
    response = client.get("/api/post/unknown")

    assert response.status_code == 401
    assert response.json() == {"success": False, "message": "token not found", "results": {}}


def test_post_without_spotify_link(client, credentials):
    user_id = _login(client)
    url_token = client.post("/api/settings/api-url-token/regenerate").json()["token"]
    del credentials.links[(user_id, ProviderKind.SPOTIFY)]

    response = client.get(f"/api/post/{url_token}")

    assert response.status_code == 400
    assert response.json()["message"] == "spotify not connected"


def test_post_when_nothing_is_playing(client, server):
    _login(client)
    url_token = client.post("/api/settings/api-url-token/regenerate").json()["token"]
    server.player = None

    response = client.get(f"/api/post/{url_token}")

    assert response.status_code == 200
    assert response.json()["success"] is False
    assert response.json()["message"] == "nothing is playing"


# ============================================
# Service endpoints
# ============================================


def test_health_and_ping(client):
    assert client.get("/health").json()["status"] == "healthy"
    assert client.get("/ping").text == "pong"


def test_status_reports_database_without_a_pool(client):
    # The lifespan is not entered, so no pool was ever opened
    body = client.get("/status").json()

    assert body["service"] == "nowplaying-api"
    assert body["db_connected"] is False
    assert body["uptime_seconds"] >= 0
    assert client.get("/").json()["status"] == "running"


def _sample(name: str, **labels) -> float:
    return REGISTRY.get_sample_value(name, labels) or 0


def test_metrics_count_callbacks_and_requests(client):
    spotify_ok = {"platform": "spotify", "status": "success"}
    twitter_anon = {"platform": "twitter", "status": "unauthenticated"}
    check = {"method": "GET", "path": "/api/auth/check", "status": "200"}
    before = {
        "login": _sample("oauth_callbacks_total", **spotify_ok),
        "anon": _sample("oauth_callbacks_total", **twitter_anon),
        "check": _sample("http_requests_total", **check),
    }

    client.get("/api/twitter/callback", params={"code": "c", "state": "s"})
    _login(client)

    assert _sample("oauth_callbacks_total", **spotify_ok) == before["login"] + 1
    assert _sample("oauth_callbacks_total", **twitter_anon) == before["anon"] + 1
    assert _sample("http_requests_total", **check) == before["check"] + 1

    response = client.get("/metrics")
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    assert "oauth_callbacks_total" in response.text
    assert 'path="/api/auth/check"' in response.text


def test_metrics_label_failed_callback_with_error_code(client):
    labels = {"platform": "spotify", "status": "handshake_expired"}
    before = _sample("oauth_callbacks_total", **labels)

    client.get("/api/auth/spotify/callback", params={"code": "c", "state": "nope"})

    assert _sample("oauth_callbacks_total", **labels) == before + 1


def test_unmatched_paths_share_one_label(client):
    labels = {"method": "GET", "path": "unmatched", "status": "404"}
    before = _sample("http_requests_total", **labels)

    client.get("/no/such/page")
    client.get("/another/missing/page")

    assert _sample("http_requests_total", **labels) == before + 2
