"""Tests for the OAuth session managers (Google and Strava).

Covers:
- Authorization URL parameters per provider
- Callback handling: success, provider errors, invalid state, exchange
  failures, missing refresh token, write failures
- Lazy refresh around the 60 second safety margin
- Refresh token preservation and rotation
- Refresh failures: rejection -> revoked, transient -> expired_access
- Disconnect

No real network requests are made; provider endpoints are served by
``httpx.MockTransport``.
"""

from __future__ import annotations

from unittest.mock import patch
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest

from localhub.errors import (
    DocumentWriteError,
    NotConnectedError,
    OAuthCallbackError,
    ProviderNotConfiguredError,
)
from localhub.oauth import ConnectionState, GoogleOAuthManager, OAuthTokens, StravaOAuthManager
from localhub.oauth.google import GOOGLE_TOKEN_URL, GOOGLE_USERINFO_URL
from localhub.oauth.strava import STRAVA_TOKEN_URL

pytestmark = pytest.mark.unit

BASE_URL = "http://localhost:3000"
UI_ORIGIN = "http://localhost:4200"

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class FakeProvider:
    """Serves token/userinfo responses and records every request."""

    def __init__(self, routes: dict[tuple[str, str], object] | None = None) -> None:
        self.routes = dict(routes or {})
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = f"{request.url.scheme}://{request.url.host}{request.url.path}"
        response = self.routes.get((request.method, url))
        if response is None:
            return httpx.Response(404, json={"error": "unexpected request"})
        if isinstance(response, Exception):
            raise response
        # Fresh copy so one canned response can serve repeated requests.
        return httpx.Response(
            response.status_code, headers=response.headers, content=response.content
        )

    def form(self, index: int = -1) -> dict[str, str]:
        parsed = parse_qs(self.requests[index].content.decode())
        return {key: values[0] for key, values in parsed.items()}


def _make_manager(cls, store, clock, provider: FakeProvider, *, configured: bool = True):
    client = httpx.AsyncClient(transport=httpx.MockTransport(provider))
    return cls(
        store,
        client_id="client-id" if configured else "",
        client_secret="client-secret" if configured else "",
        base_url=BASE_URL,
        ui_origin=UI_ORIGIN,
        http_client=client,
        clock=clock,
    )


def _google_token_response(**overrides) -> httpx.Response:
    body = {
        "access_token": "ya29.access",
        "refresh_token": "1//refresh",
        "expires_in": 3599,
        "token_type": "Bearer",
    }
    body.update(overrides)
    return httpx.Response(200, json={k: v for k, v in body.items() if v is not None})


def _query(url: str) -> dict[str, str]:
    return {key: values[0] for key, values in parse_qs(urlsplit(url).query).items()}


# ---------------------------------------------------------------------------
# Authorization URL
# ---------------------------------------------------------------------------


class TestAuthorizationUrl:
    def test_google_parameters(self, store, clock, alice):
        manager = _make_manager(GoogleOAuthManager, store, clock, FakeProvider())
        url = manager.authorization_url(alice)
        assert url.startswith("https://accounts.google.com/o/oauth2/v2/auth?")
        query = _query(url)
        assert query["client_id"] == "client-id"
        assert query["redirect_uri"] == f"{BASE_URL}/api/plugins/calendar/google/callback"
        assert query["response_type"] == "code"
        assert query["state"] == "alice"
        assert query["access_type"] == "offline"
        assert query["prompt"] == "consent"
        assert "https://www.googleapis.com/auth/calendar.events" in query["scope"].split()
        assert "client-secret" not in url

    def test_strava_parameters(self, store, clock, alice):
        manager = _make_manager(StravaOAuthManager, store, clock, FakeProvider())
        query = _query(manager.authorization_url(alice))
        assert query["redirect_uri"] == f"{BASE_URL}/api/plugins/strava/callback"
        assert query["scope"] == "activity:read_all"
        assert query["approval_prompt"] == "force"

    def test_not_configured(self, store, clock, alice):
        manager = _make_manager(GoogleOAuthManager, store, clock, FakeProvider(), configured=False)
        assert manager.is_configured is False
        with pytest.raises(ProviderNotConfiguredError) as exc_info:
            manager.authorization_url(alice)
        assert exc_info.value.code == "calendar_not_configured"
        assert "GOOGLE_CLIENT_ID" in exc_info.value.message


# ---------------------------------------------------------------------------
# Callback
# ---------------------------------------------------------------------------


class TestCompleteAuthorization:
    async def test_google_success(self, store, clock):
        provider = FakeProvider(
            {
                ("POST", GOOGLE_TOKEN_URL): _google_token_response(),
                ("GET", GOOGLE_USERINFO_URL): httpx.Response(200, json={"email": "a@example.com"}),
            }
        )
        manager = _make_manager(GoogleOAuthManager, store, clock, provider)

        principal = await manager.complete_authorization(code="auth-code", state="alice")

        assert principal.user_id == "alice"
        form = provider.form(0)
        assert form["grant_type"] == "authorization_code"
        assert form["code"] == "auth-code"
        assert form["redirect_uri"] == f"{BASE_URL}/api/plugins/calendar/google/callback"
        assert provider.requests[1].headers["Authorization"] == "Bearer ya29.access"

        assert store.get("calendar", "google-calendar", "alice") == {
            "connected": True,
            "email": "a@example.com",
        }
        assert store.get("calendar", "google-calendar-tokens", "alice") == {
            "refresh_token": "1//refresh",
            "access_token": "ya29.access",
            "expires_at": int(clock.now) + 3599,
        }
        assert store.get("user-management", "profile", "alice")["connectedApps"] == ["calendar"]

    async def test_userinfo_failure_is_ignored(self, store, clock):
        provider = FakeProvider(
            {
                ("POST", GOOGLE_TOKEN_URL): _google_token_response(),
                ("GET", GOOGLE_USERINFO_URL): httpx.Response(500),
            }
        )
        manager = _make_manager(GoogleOAuthManager, store, clock, provider)
        await manager.complete_authorization(code="c", state="alice")
        assert store.get("calendar", "google-calendar", "alice") == {"connected": True}

    async def test_missing_expires_in_defaults_to_an_hour(self, store, clock):
        provider = FakeProvider({("POST", GOOGLE_TOKEN_URL): _google_token_response(expires_in=None)})
        manager = _make_manager(GoogleOAuthManager, store, clock, provider)
        await manager.complete_authorization(code="c", state="alice")
        tokens = store.get("calendar", "google-calendar-tokens", "alice")
        assert tokens["expires_at"] == int(clock.now) + 3600

    @pytest.mark.parametrize(
        ("error", "expected"),
        [("access_denied", "access_denied"), ("server_error", "provider_error")],
    )
    async def test_provider_error(self, store, clock, error, expected):
        provider = FakeProvider()
        manager = _make_manager(GoogleOAuthManager, store, clock, provider)
        with pytest.raises(OAuthCallbackError) as exc_info:
            await manager.complete_authorization(code=None, state="alice", error=error)
        assert exc_info.value.code == expected
        assert provider.requests == []

    @pytest.mark.parametrize(
        ("code", "state"),
        [(None, "alice"), ("c", None), ("c", ""), ("c", "../alice"), ("c", "a" * 129)],
    )
    async def test_invalid_callback(self, store, clock, code, state):
        manager = _make_manager(GoogleOAuthManager, store, clock, FakeProvider())
        with pytest.raises(OAuthCallbackError) as exc_info:
            await manager.complete_authorization(code=code, state=state)
        assert exc_info.value.code == "invalid_callback"

    async def test_not_configured(self, store, clock):
        manager = _make_manager(
            StravaOAuthManager, store, clock, FakeProvider(), configured=False
        )
        with pytest.raises(OAuthCallbackError) as exc_info:
            await manager.complete_authorization(code="c", state="alice")
        assert exc_info.value.code == "not_configured"

    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(400, json={"error": "invalid_grant"}),
            httpx.Response(200, text="not json"),
            httpx.Response(200, json={"refresh_token": "r"}),
            httpx.ConnectError("boom"),
        ],
    )
    async def test_exchange_failure(self, store, clock, response):
        provider = FakeProvider({("POST", GOOGLE_TOKEN_URL): response})
        manager = _make_manager(GoogleOAuthManager, store, clock, provider)
        with pytest.raises(OAuthCallbackError) as exc_info:
            await manager.complete_authorization(code="c", state="alice")
        assert exc_info.value.code == "token_failed"
        assert store.get_or_default("calendar", "google-calendar-tokens", "alice") is None

    async def test_no_refresh_token(self, store, clock):
        provider = FakeProvider(
            {("POST", GOOGLE_TOKEN_URL): _google_token_response(refresh_token=None)}
        )
        manager = _make_manager(GoogleOAuthManager, store, clock, provider)
        with pytest.raises(OAuthCallbackError) as exc_info:
            await manager.complete_authorization(code="c", state="alice")
        assert exc_info.value.code == "no_refresh_token"

    async def test_reconnect_without_refresh_token_keeps_previous(self, store, clock, alice):
        store.put("calendar", "google-calendar-tokens", {"refresh_token": "old"}, "alice")
        provider = FakeProvider(
            {("POST", GOOGLE_TOKEN_URL): _google_token_response(refresh_token=None)}
        )
        manager = _make_manager(GoogleOAuthManager, store, clock, provider)
        await manager.complete_authorization(code="c", state="alice")
        assert manager.vault.load(alice).refresh_token == "old"

    async def test_save_failure(self, store, clock):
        provider = FakeProvider({("POST", GOOGLE_TOKEN_URL): _google_token_response()})
        manager = _make_manager(GoogleOAuthManager, store, clock, provider)
        with patch.object(store, "put", side_effect=DocumentWriteError("Write failed")):
            with pytest.raises(OAuthCallbackError) as exc_info:
                await manager.complete_authorization(code="c", state="alice")
        assert exc_info.value.code == "save_failed"

    async def test_strava_success(self, store, clock):
        token_body = {
            "access_token": "strava-access",
            "refresh_token": "strava-refresh",
            "expires_at": 1_800_000_000,
            "expires_in": 21600,
            "athlete": {
                "id": 42,
                "username": "runner",
                "firstname": "Ada",
                "lastname": "L",
                "profile_medium": "https://img/medium.jpg",
                "city": "ignored",
            },
        }
        provider = FakeProvider({("POST", STRAVA_TOKEN_URL): httpx.Response(200, json=token_body)})
        manager = _make_manager(StravaOAuthManager, store, clock, provider)

        await manager.complete_authorization(code="c", state="bob")

        assert store.get("strava", "strava-connection", "bob") == {
            "connected": True,
            "athlete": {
                "id": 42,
                "username": "runner",
                "firstname": "Ada",
                "lastname": "L",
                "profile": "https://img/medium.jpg",
            },
        }
        assert store.get("strava", "strava-tokens", "bob")["expires_at"] == 1_800_000_000
        assert store.get("user-management", "profile", "bob")["connectedApps"] == ["strava"]


# ---------------------------------------------------------------------------
# Refresh
# ---------------------------------------------------------------------------


class TestEnsureConnection:
    def _store_tokens(self, store, clock, *, expires_in: int, refresh_token: str = "r-1"):
        store.put(
            "calendar",
            "google-calendar-tokens",
            {
                "refresh_token": refresh_token,
                "access_token": "old-access",
                "expires_at": int(clock.now) + expires_in,
            },
            "alice",
        )

    async def test_fresh_token_is_not_refreshed(self, store, clock, alice):
        self._store_tokens(store, clock, expires_in=120)
        provider = FakeProvider()
        manager = _make_manager(GoogleOAuthManager, store, clock, provider)

        assert await manager.get_access_token(alice) == "old-access"
        assert provider.requests == []

    async def test_token_inside_margin_is_refreshed(self, store, clock, alice):
        self._store_tokens(store, clock, expires_in=30)
        provider = FakeProvider(
            {("POST", GOOGLE_TOKEN_URL): _google_token_response(
                access_token="new-access", refresh_token=None, expires_in=3600
            )}
        )
        manager = _make_manager(GoogleOAuthManager, store, clock, provider)

        connection = await manager.ensure_connection(alice)

        assert connection.state is ConnectionState.connected
        assert connection.access_token == "new-access"
        assert provider.form() == {
            "client_id": "client-id",
            "client_secret": "client-secret",
            "refresh_token": "r-1",
            "grant_type": "refresh_token",
        }
        assert store.get("calendar", "google-calendar-tokens", "alice") == {
            "refresh_token": "r-1",
            "access_token": "new-access",
            "expires_at": int(clock.now) + 3600,
        }

    async def test_rotated_refresh_token_overwrites(self, store, clock, alice):
        self._store_tokens(store, clock, expires_in=-10)
        provider = FakeProvider(
            {("POST", GOOGLE_TOKEN_URL): _google_token_response(refresh_token="r-2")}
        )
        manager = _make_manager(GoogleOAuthManager, store, clock, provider)
        await manager.ensure_connection(alice)
        assert manager.vault.load(alice).refresh_token == "r-2"

    async def test_missing_access_token_triggers_refresh(self, store, clock, alice):
        store.put("calendar", "google-calendar-tokens", {"refresh_token": "r-1"}, "alice")
        provider = FakeProvider({("POST", GOOGLE_TOKEN_URL): _google_token_response()})
        manager = _make_manager(GoogleOAuthManager, store, clock, provider)
        assert await manager.get_access_token(alice) == "ya29.access"

    @pytest.mark.parametrize("status", [400, 401])
    async def test_rejected_refresh_is_revoked(self, store, clock, alice, status):
        self._store_tokens(store, clock, expires_in=0)
        provider = FakeProvider(
            {("POST", GOOGLE_TOKEN_URL): httpx.Response(status, json={"error": "invalid_grant"})}
        )
        manager = _make_manager(GoogleOAuthManager, store, clock, provider)

        connection = await manager.ensure_connection(alice)

        assert connection.state is ConnectionState.revoked
        assert connection.access_token is None
        # Tokens are never deleted on failure.
        assert manager.vault.load(alice).refresh_token == "r-1"

    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(500),
            httpx.Response(429),
            httpx.Response(200, json={"token_type": "Bearer"}),
            httpx.ReadTimeout("slow"),
        ],
    )
    async def test_transient_failure_is_expired_access(self, store, clock, alice, response):
        self._store_tokens(store, clock, expires_in=0)
        provider = FakeProvider({("POST", GOOGLE_TOKEN_URL): response})
        manager = _make_manager(GoogleOAuthManager, store, clock, provider)

        connection = await manager.ensure_connection(alice)

        assert connection.state is ConnectionState.expired_access
        assert await manager.get_access_token(alice) is None
        # Each call retries: failures are not cached.
        assert len(provider.requests) == 2

    async def test_require_access_token_when_disconnected(self, store, clock, alice):
        manager = _make_manager(GoogleOAuthManager, store, clock, FakeProvider())
        with pytest.raises(NotConnectedError) as exc_info:
            await manager.require_access_token(alice)
        assert exc_info.value.code == "calendar_not_connected"
        assert exc_info.value.message == "Not connected to Google Calendar"

    async def test_strava_refresh_uses_absolute_expiry(self, store, clock, alice):
        store.put(
            "strava",
            "strava-tokens",
            {"refresh_token": "s-1", "access_token": "a", "expires_at": int(clock.now)},
            "alice",
        )
        provider = FakeProvider(
            {
                ("POST", STRAVA_TOKEN_URL): httpx.Response(
                    200,
                    json={
                        "access_token": "s-access",
                        "refresh_token": "s-2",
                        "expires_at": int(clock.now) + 21600,
                        "expires_in": 5,
                    },
                )
            }
        )
        manager = _make_manager(StravaOAuthManager, store, clock, provider)

        assert await manager.get_access_token(alice) == "s-access"
        assert store.get("strava", "strava-tokens", "alice") == {
            "refresh_token": "s-2",
            "access_token": "s-access",
            "expires_at": int(clock.now) + 21600,
        }

    async def test_refreshed_token_used_even_if_cache_write_fails(self, store, clock, alice):
        self._store_tokens(store, clock, expires_in=0)
        provider = FakeProvider({("POST", GOOGLE_TOKEN_URL): _google_token_response()})
        manager = _make_manager(GoogleOAuthManager, store, clock, provider)
        with patch.object(manager.vault, "save", side_effect=DocumentWriteError("Write failed")):
            assert await manager.get_access_token(alice) == "ya29.access"


# ---------------------------------------------------------------------------
# Disconnect
# ---------------------------------------------------------------------------


class TestDisconnect:
    def test_clears_connection_tokens_and_registry(self, store, clock, alice):
        manager = _make_manager(GoogleOAuthManager, store, clock, FakeProvider())
        manager.vault.save(alice, OAuthTokens(refresh_token="r"))
        store.put("user-management", "profile", {"connectedApps": ["calendar", "strava"]}, "alice")

        manager.disconnect(alice)

        assert store.get("calendar", "google-calendar", "alice") == {"connected": False}
        assert store.get("calendar", "google-calendar-tokens", "alice") == {}
        assert store.get("user-management", "profile", "alice")["connectedApps"] == ["strava"]
        assert manager.connection(alice).state is ConnectionState.disconnected

    def test_without_prior_connection(self, store, clock, alice):
        manager = _make_manager(StravaOAuthManager, store, clock, FakeProvider())
        manager.disconnect(alice)
        assert store.get("strava", "strava-tokens", "alice") == {}
        assert store.get("strava", "strava-connection", "alice") == {"connected": False}

    def test_write_failures_are_not_raised(self, store, clock, alice):
        manager = _make_manager(StravaOAuthManager, store, clock, FakeProvider())
        with patch.object(store, "put", side_effect=DocumentWriteError("Write failed")):
            manager.disconnect(alice)
