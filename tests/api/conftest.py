"""Shared fixtures and helpers for LocalHub API tests.

Covers:
- ``FakeUpstream``: a route table served through ``httpx.MockTransport``
  standing in for Google and Strava
- Service and app builders wired to those fakes
- An ``httpx.AsyncClient`` talking to the app through ``ASGITransport``
"""

from __future__ import annotations

import time
from collections.abc import Callable

import httpx
import pytest

from localhub.api.app import create_app
from localhub.api.deps import HubServices, build_services
from localhub.config import HubConfig, ProviderCredentials

Route = httpx.Response | Callable[[httpx.Request], httpx.Response]


class FakeUpstream:
    """Route table keyed by ``(method, url without query)``; unknown routes are 404."""

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], Route] = {}
        self.requests: list[httpx.Request] = []

    def add(self, method: str, url: str, route: Route) -> None:
        self.routes[(method, url)] = route

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = f"{request.url.scheme}://{request.url.host}{request.url.path}"
        route = self.routes.get((request.method, url))
        if route is None:
            return httpx.Response(404, json={"error": "no such route"})
        if callable(route):
            return route(request)
        return httpx.Response(route.status_code, headers=route.headers, content=route.content)


def make_config(
    data_dir, *, configured: bool = True, allowed_plugin_ids: tuple[str, ...] = ()
) -> HubConfig:
    credentials = {
        "google": ProviderCredentials("gid", "gsecret") if configured else ProviderCredentials(),
        "strava": ProviderCredentials("sid", "ssecret") if configured else ProviderCredentials(),
    }
    return HubConfig(
        data_dir=data_dir,
        base_url="http://localhost:3000",
        cors_origin="http://localhost:4200",
        allowed_plugin_ids=allowed_plugin_ids,
        **credentials,
    )


def make_services(config: HubConfig, google: FakeUpstream, strava: FakeUpstream) -> HubServices:
    return build_services(
        config,
        google_transport=httpx.MockTransport(google),
        strava_transport=httpx.MockTransport(strava),
    )


def _seed_tokens(store, plugin_id: str, key: str, user_id: str, access_token: str) -> None:
    """Store a fresh (one hour) token document for *user_id*."""
    store.put(
        plugin_id,
        key,
        {
            "refresh_token": "refresh",
            "access_token": access_token,
            "expires_at": int(time.time()) + 3600,
        },
        user_id,
    )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def seed_tokens():
    return _seed_tokens


@pytest.fixture
def google_api() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def strava_api() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
async def services(tmp_path, google_api, strava_api):
    hub = make_services(make_config(tmp_path / "data"), google_api, strava_api)
    yield hub
    await hub.aclose()


@pytest.fixture
def app(services):
    return create_app(services=services)


@pytest.fixture
async def client(app):
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://test"
    ) as client:
        yield client


@pytest.fixture
async def unconfigured_client(tmp_path, google_api, strava_api):
    """Client for an app with no provider credentials."""
    hub = make_services(make_config(tmp_path / "data", configured=False), google_api, strava_api)
    app = create_app(services=hub)
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://test"
    ) as client:
        yield client
    await hub.aclose()


@pytest.fixture
def allowed_plugin_ids() -> tuple[str, ...]:
    """Plugin allow-list for ``restricted_client``; override with parametrize."""
    return ("habits", "strava", "calendar", "runner")


@pytest.fixture
async def restricted_services(tmp_path, google_api, strava_api, allowed_plugin_ids):
    config = make_config(tmp_path / "data", allowed_plugin_ids=allowed_plugin_ids)
    hub = make_services(config, google_api, strava_api)
    yield hub
    await hub.aclose()


@pytest.fixture
async def restricted_client(restricted_services):
    """Client for an app whose store only accepts ``allowed_plugin_ids``."""
    app = create_app(services=restricted_services)
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://test"
    ) as client:
        yield client
