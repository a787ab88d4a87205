"""
tests/test_api_routes.py — FastAPI Route Integration Tests
============================================================
Drives the app built by ``create_app`` with an in-memory SQLite engine and
a fakeredis mirror.  Discord REST calls are patched out.

These tests verify:
- Auth guards and guild access checks
- Feed and subscriber CRUD, channel ownership and feed limits
- The OAuth login/authorize/logout flow
- Public endpoints and the generic error shape
"""

from __future__ import annotations

from unittest.mock import AsyncMock, patch
from urllib.parse import parse_qs, urlparse

import pytest
from conftest import (
    FOREIGN_CHANNEL_ID,
    GUILD_ID,
    OTHER_CHANNEL_ID,
    TEXT_CHANNEL_ID,
    VISITOR_ID,
    login,
    make_token,
)
from sqlalchemy import func, select

from rsspanel.constants import SESSION_COOKIE
from rsspanel.database.models import OAuthState, WebSession
from rsspanel.services import feed_service, user_service
from rsspanel.services.discord_api import DiscordResponseError

FEEDS = f"/api/guilds/{GUILD_ID}/feeds"


def _new_feed(client, url="https://example.com/rss", channel=TEXT_CHANNEL_ID, **extra):
    return client.post(FEEDS, json={"title": "Example", "url": url, "channel": str(channel), **extra})


@pytest.fixture
def manager(client, db_engine):
    """Client logged in as a member the mirror knows can manage the guild."""
    login(client, db_engine)
    return client


# ===========================================================================
# Health / public endpoints
# ===========================================================================
class TestPublicEndpoints:
    def test_health_returns_ok(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}

    def test_config(self, client):
        resp = client.get("/api/config")
        assert resp.status_code == 200
        body = resp.json()
        assert body["client_id"] == "4242"
        assert body["max_feeds"] == 2
        assert "token" not in repr(body)

    def test_stats(self, client):
        resp = client.get("/api/stats")
        assert resp.status_code == 200
        assert resp.json()["total_guilds"] == 2

    def test_bot_user(self, client, seeded_mirror):
        assert client.get("/api/users/@bot").status_code == 404

        from conftest import fake_user
        seeded_mirror.recognize_user(fake_user(77, "rssbot", bot=True))
        seeded_mirror.set_bot_user_id(77)
        resp = client.get("/api/users/@bot")
        assert resp.status_code == 200
        assert resp.json()["username"] == "rssbot"


# ===========================================================================
# Auth guards
# ===========================================================================
class TestAuthGuards:
    PROTECTED = [
        "/api/users/@me",
        "/api/users/@me/guilds",
        f"/api/guilds/{GUILD_ID}",
        f"/api/guilds/{GUILD_ID}/channels",
        FEEDS,
    ]

    @pytest.mark.parametrize("endpoint", PROTECTED)
    def test_no_cookie_returns_401(self, client, endpoint):
        resp = client.get(endpoint)
        assert resp.status_code == 401
        assert resp.json() == {"code": 401, "message": "Unauthorized"}

    def test_forged_cookie_returns_401(self, client):
        client.cookies.set(SESSION_COOKIE, "forged.jwt.value")
        assert client.get("/api/users/@me").status_code == 401

    def test_unknown_guild_returns_404(self, manager):
        resp = manager.get("/api/guilds/9999")
        assert resp.status_code == 404
        assert resp.json()["message"] == "Unknown guild"

    def test_visitor_without_permission_returns_403(self, client, db_engine):
        user_service.store_web_cache(
            db_engine, VISITOR_ID, "guilds",
            [{"id": str(GUILD_ID), "permissions": "0", "owner": False}], 600,
        )
        login(client, db_engine, user_id=VISITOR_ID, username="visitor")
        resp = client.get(f"/api/guilds/{GUILD_ID}")
        assert resp.status_code == 403

    def test_owner_from_oauth_guilds_is_allowed(self, client, db_engine):
        user_service.store_web_cache(
            db_engine, VISITOR_ID, "guilds",
            [{"id": str(GUILD_ID), "permissions": "0", "owner": True}], 600,
        )
        login(client, db_engine, user_id=VISITOR_ID, username="visitor")
        assert client.get(f"/api/guilds/{GUILD_ID}").status_code == 200

    def test_expired_token_is_refreshed_and_saved(self, client, db_engine):
        stale = {**make_token(), "expires_at": 1}
        session = login(client, db_engine, token=stale)
        fresh = make_token()
        fresh["access_token"] = "refreshed"
        with patch(
            "rsspanel.services.auth_service.refresh_token", AsyncMock(return_value=fresh)
        ):
            assert client.get(f"/api/guilds/{GUILD_ID}").status_code == 200

        from rsspanel.services.session_service import load_session
        assert load_session(db_engine, session.sid).token["access_token"] == "refreshed"


# ===========================================================================
# Users
# ===========================================================================
class TestUsers:
    def test_me_uses_web_cache(self, manager, db_engine):
        user_service.store_web_cache(db_engine, "500", "user", {"id": "500", "username": "m"}, 600)
        resp = manager.get("/api/users/@me")
        assert resp.status_code == 200
        assert resp.json()["username"] == "m"

    def test_me_fetches_from_discord(self, manager):
        fetch = AsyncMock(return_value={"id": "500", "username": "fresh"})
        with patch("rsspanel.services.discord_api.get_json", fetch):
            resp = manager.get("/api/users/@me")
        assert resp.json()["username"] == "fresh"
        assert fetch.call_args.kwargs["bearer"] == "access-abc"

    def test_my_guilds_filters_to_manageable_bot_guilds(self, manager, db_engine):
        user_service.store_web_cache(db_engine, "500", "guilds", [
            {"id": str(GUILD_ID), "permissions": str(1 << 4), "owner": False},
            {"id": "2000", "permissions": "0", "owner": False},
            {"id": "7777", "permissions": str(1 << 3), "owner": False},
        ], 600)
        resp = manager.get("/api/users/@me/guilds")
        assert resp.status_code == 200
        guilds = resp.json()
        assert [g["id"] for g in guilds] == [str(GUILD_ID)]
        assert guilds[0]["limit"] == 2
        assert guilds[0]["name"] == "Test Guild"

    def test_discord_failure_keeps_upstream_status(self, manager):
        error = DiscordResponseError(429, {"message": "You are being rate limited."})
        with patch("rsspanel.services.discord_api.get_json", AsyncMock(side_effect=error)):
            resp = manager.get("/api/users/@me")
        assert resp.status_code == 429
        assert resp.json() == {"code": 429, "message": "You are being rate limited."}


# ===========================================================================
# Guild
# ===========================================================================
class TestGuildRoutes:
    def test_get_guild(self, manager):
        resp = manager.get(f"/api/guilds/{GUILD_ID}")
        assert resp.status_code == 200
        body = resp.json()
        assert body["id"] == str(GUILD_ID)
        assert body["profile"] is None
        assert body["limit"] == 2

    def test_patch_creates_profile(self, manager):
        resp = manager.patch(f"/api/guilds/{GUILD_ID}", json={"prefix": "!", "locale": "fr"})
        assert resp.status_code == 200
        assert resp.json()["prefix"] == "!"
        assert manager.get(f"/api/guilds/{GUILD_ID}").json()["profile"]["locale"] == "fr"

    def test_patch_validation_error_shape(self, manager):
        resp = manager.patch(f"/api/guilds/{GUILD_ID}", json={"prefix": "x" * 50})
        assert resp.status_code == 400
        assert resp.json()["message"] == "Validation failed"
        assert resp.json()["errors"]

    def test_channels_sorted_by_name(self, manager):
        resp = manager.get(f"/api/guilds/{GUILD_ID}/channels")
        assert [c["id"] for c in resp.json()] == [str(OTHER_CHANNEL_ID), str(TEXT_CHANNEL_ID)]

    def test_roles(self, manager):
        resp = manager.get(f"/api/guilds/{GUILD_ID}/roles")
        assert [r["name"] for r in resp.json()] == ["mods", "everyone"]


# ===========================================================================
# Feeds
# ===========================================================================
class TestFeedRoutes:
    def test_create_and_list(self, manager):
        resp = _new_feed(manager)
        assert resp.status_code == 201
        assert resp.json()["channel_id"] == str(TEXT_CHANNEL_ID)

        listed = manager.get(FEEDS).json()
        assert [f["url"] for f in listed] == ["https://example.com/rss"]

    def test_create_rejects_foreign_channel(self, manager):
        resp = _new_feed(manager, channel=FOREIGN_CHANNEL_ID)
        assert resp.status_code == 403

    def test_create_rejects_bad_url(self, manager):
        resp = _new_feed(manager, url="not a url")
        assert resp.status_code == 400

    def test_feed_limit_enforced(self, manager):
        assert _new_feed(manager, url="https://a.example/rss").status_code == 201
        assert _new_feed(manager, url="https://b.example/rss").status_code == 201
        resp = _new_feed(manager, url="https://c.example/rss")
        assert resp.status_code == 403
        assert "limit" in resp.json()["message"]

    def test_edit_checks_channel_only_when_supplied(self, manager):
        feed_id = _new_feed(manager).json()["id"]

        resp = manager.patch(f"{FEEDS}/{feed_id}", json={"title": "Renamed"})
        assert resp.status_code == 200
        assert resp.json()["title"] == "Renamed"

        resp = manager.patch(f"{FEEDS}/{feed_id}", json={"channel": str(FOREIGN_CHANNEL_ID)})
        assert resp.status_code == 403

        resp = manager.patch(f"{FEEDS}/{feed_id}", json={"channel": str(OTHER_CHANNEL_ID)})
        assert resp.json()["channel_id"] == str(OTHER_CHANNEL_ID)

    def test_delete(self, manager):
        feed_id = _new_feed(manager).json()["id"]
        assert manager.delete(f"{FEEDS}/{feed_id}").status_code == 204
        assert manager.get(FEEDS).json() == []

    @pytest.mark.parametrize("method, suffix", [
        ("patch", ""),
        ("delete", ""),
        ("get", "/schedule"),
        ("get", "/articles"),
        ("get", "/subscribers"),
    ])
    def test_unknown_feed_returns_404(self, manager, method, suffix):
        kwargs = {"json": {}} if method == "patch" else {}
        resp = getattr(manager, method)(f"{FEEDS}/999{suffix}", **kwargs)
        assert resp.status_code == 404
        assert resp.json()["message"] == "Unknown feed"

    def test_feed_of_another_guild_is_404(self, manager, db_engine):
        other = feed_service.create_feed(db_engine, 2000, {
            "title": "x", "url": "https://x.example", "channel_id": FOREIGN_CHANNEL_ID,
        })
        assert manager.get(f"{FEEDS}/{other['id']}/schedule").status_code == 404

    def test_schedule(self, manager):
        feed_id = _new_feed(manager).json()["id"]
        resp = manager.get(f"{FEEDS}/{feed_id}/schedule")
        assert resp.status_code == 200
        assert resp.json()["refresh_rate_minutes"] == 10.0

    def test_articles(self, manager):
        feed_id = _new_feed(manager).json()["id"]
        articles = [{"title": "A", "link": "https://a"}]
        with patch.object(feed_service, "fetch_articles", AsyncMock(return_value=articles)):
            resp = manager.get(f"{FEEDS}/{feed_id}/articles")
        assert resp.status_code == 200
        assert resp.json()["articles"] == articles
        assert "title" in resp.json()["placeholders"]

    def test_articles_invalid_feed(self, manager):
        feed_id = _new_feed(manager).json()["id"]
        failing = AsyncMock(side_effect=ValueError("Not a valid feed"))
        with patch.object(feed_service, "fetch_articles", failing):
            resp = manager.get(f"{FEEDS}/{feed_id}/articles")
        assert resp.status_code == 400


# ===========================================================================
# Test sends (rate limited)
# ===========================================================================
class TestSendMessage:
    def test_sends_to_feed_channel_then_rate_limits(self, manager):
        feed_id = _new_feed(manager).json()["id"]
        send = AsyncMock(return_value={"id": "m1"})
        with patch.object(feed_service, "send_article", send):
            first = manager.post(f"{FEEDS}/{feed_id}/message", json={"article": {"title": "A"}})
            second = manager.post(f"{FEEDS}/{feed_id}/message", json={"article": {"title": "A"}})

        assert first.status_code == 200
        assert first.json() == {"id": "m1", "channel_id": str(TEXT_CHANNEL_ID)}
        assert send.await_args.args[1] == TEXT_CHANNEL_ID

        assert second.status_code == 429
        assert second.json()["message"] == "Wait 10 seconds after sending a message to try again"
        assert int(second.headers["Retry-After"]) > 0
        assert send.await_count == 1

    def test_explicit_channel_must_belong_to_guild(self, manager):
        feed_id = _new_feed(manager).json()["id"]
        with patch.object(feed_service, "send_article", AsyncMock()) as send:
            resp = manager.post(f"{FEEDS}/{feed_id}/message", json={
                "article": {"title": "A"}, "channel": str(FOREIGN_CHANNEL_ID),
            })
        assert resp.status_code == 403
        send.assert_not_awaited()


# ===========================================================================
# Subscribers
# ===========================================================================
class TestSubscriberRoutes:
    def test_crud(self, manager):
        feed_id = _new_feed(manager).json()["id"]
        base = f"{FEEDS}/{feed_id}/subscribers"

        created = manager.post(base, json={"type": "role", "id": "1201"})
        assert created.status_code == 201
        sub_id = created.json()["id"]

        assert manager.post(base, json={"type": "role", "id": "1201"}).status_code == 409
        assert manager.post(base, json={"type": "channel", "id": "1"}).status_code == 400

        edited = manager.patch(f"{base}/{sub_id}", json={"type": "user"})
        assert edited.json()["type"] == "user"

        other_id = manager.post(base, json={"type": "role", "id": "1202"}).json()["id"]
        clash = manager.patch(f"{base}/{other_id}", json={"type": "user", "id": "1201"})
        assert clash.status_code == 409
        assert clash.json() == {"code": 409, "message": "Already subscribed"}
        assert manager.delete(f"{base}/{other_id}").status_code == 204

        assert [s["id"] for s in manager.get(base).json()] == [sub_id]
        assert manager.delete(f"{base}/{sub_id}").status_code == 204
        assert manager.delete(f"{base}/{sub_id}").status_code == 404


# ===========================================================================
# OAuth flow
# ===========================================================================
class TestOAuthFlow:
    def test_login_redirects_with_stored_state(self, client, db_session):
        resp = client.get("/login", follow_redirects=False)
        assert resp.status_code == 307
        location = urlparse(resp.headers["location"])
        state = parse_qs(location.query)["state"][0]
        assert db_session.get(OAuthState, state) is not None

    def test_authorize_rejects_unknown_state(self, client):
        resp = client.get("/authorize?code=abc&state=bogus", follow_redirects=False)
        assert resp.status_code == 400

    def test_authorize_creates_session(self, client, db_session):
        state = parse_qs(urlparse(
            client.get("/login", follow_redirects=False).headers["location"]
        ).query)["state"][0]

        identity = {"id": "500", "username": "manager"}
        with patch(
            "rsspanel.services.auth_service.create_auth_token",
            AsyncMock(return_value=make_token()),
        ), patch("rsspanel.services.discord_api.get_json", AsyncMock(return_value=identity)):
            resp = client.get(f"/authorize?code=abc&state={state}", follow_redirects=False)

        assert resp.status_code == 307
        assert resp.headers["location"] == "/cp"
        assert SESSION_COOKIE in resp.cookies
        assert db_session.scalar(select(func.count()).select_from(WebSession)) == 1

        # State is single-use
        again = client.get(f"/authorize?code=abc&state={state}", follow_redirects=False)
        assert again.status_code == 400

        # The new cookie authenticates API calls
        assert client.get(f"/api/guilds/{GUILD_ID}").status_code == 200

    def test_logout_revokes_and_clears(self, manager, db_session):
        revoke = AsyncMock()
        with patch("rsspanel.services.auth_service.revoke_auth_token", revoke):
            resp = manager.get("/logout", follow_redirects=False)
        assert resp.status_code == 307
        assert resp.headers["location"] == "/"
        revoke.assert_awaited_once()
        assert db_session.scalar(select(func.count()).select_from(WebSession)) == 0

    def test_logout_without_session(self, client):
        resp = client.get("/logout", follow_redirects=False)
        assert resp.status_code == 307


class TestBodyLimit:
    def test_oversized_body_rejected(self, manager):
        resp = manager.post(
            FEEDS,
            content=b"x" * (2 * 1024 * 1024 + 1),
            headers={"content-type": "application/json"},
        )
        assert resp.status_code == 413

    def test_chunked_body_without_length_rejected(self, manager):
        chunks = iter([b"x" * (1024 * 1024)] * 3)
        resp = manager.post(FEEDS, content=chunks, headers={"content-type": "application/json"})
        assert resp.status_code == 413
        assert resp.json()["code"] == 413
