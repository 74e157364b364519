"""Service container and FastAPI dependencies for the LocalHub API.

Provides:
- ``HubServices``: the document store, OAuth managers, gateways and the
  shared ``httpx.AsyncClient`` instances built from a ``HubConfig``.
- Dependency functions that fetch those services from ``app.state`` and
  resolve the calling ``Principal`` from the ``X-User-Id`` header.

Tests swap services with ``app.dependency_overrides`` or by building
``HubServices`` around ``httpx.MockTransport`` clients.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import httpx
from fastapi import Depends, Header, Request

from localhub.calendar import GoogleCalendarGateway
from localhub.config import HubConfig
from localhub.core.logging import set_user_context
from localhub.errors import InvalidIdentifierError
from localhub.identity import USER_ID_HEADER, IdentifierSanitizer, Principal, sanitize_user_id
from localhub.oauth import GoogleOAuthManager, StravaOAuthManager
from localhub.storage import DocumentStore
from localhub.strava import StravaActivitiesGateway

logger = logging.getLogger(__name__)


@dataclass
class HubServices:
    """Everything a request handler needs, wired from one ``HubConfig``."""

    config: HubConfig
    store: DocumentStore
    google: GoogleOAuthManager
    calendar: GoogleCalendarGateway
    strava: StravaOAuthManager
    strava_activities: StravaActivitiesGateway
    http_clients: list[httpx.AsyncClient] = field(default_factory=list)

    async def aclose(self) -> None:
        for client in self.http_clients:
            await client.aclose()
        self.http_clients.clear()


def build_services(
    config: HubConfig,
    *,
    google_transport: httpx.AsyncBaseTransport | None = None,
    strava_transport: httpx.AsyncBaseTransport | None = None,
) -> HubServices:
    """Wire the store, OAuth managers and gateways for *config*.

    One ``httpx.AsyncClient`` is created per provider. The Strava client
    skips TLS verification when ``strava_insecure_tls`` is set (local
    development behind intercepting proxies only).
    """
    store = DocumentStore(config.data_dir, IdentifierSanitizer(config.allowed_plugin_ids))

    timeout = httpx.Timeout(config.http_timeout)
    google_client = httpx.AsyncClient(timeout=timeout, transport=google_transport)
    strava_client = httpx.AsyncClient(
        timeout=timeout,
        transport=strava_transport,
        verify=not config.strava_insecure_tls,
    )
    if config.strava_insecure_tls:
        logger.warning("TLS verification disabled for Strava requests (LOCALHUB_DEV_INSECURE_TLS)")

    google = GoogleOAuthManager(
        store,
        client_id=config.google.client_id,
        client_secret=config.google.client_secret,
        base_url=config.base_url,
        ui_origin=config.cors_origin,
        http_client=google_client,
    )
    strava = StravaOAuthManager(
        store,
        client_id=config.strava.client_id,
        client_secret=config.strava.client_secret,
        base_url=config.base_url,
        ui_origin=config.cors_origin,
        http_client=strava_client,
    )
    return HubServices(
        config=config,
        store=store,
        google=google,
        calendar=GoogleCalendarGateway(
            google, store, google_client, concurrency=config.batch_concurrency
        ),
        strava=strava,
        strava_activities=StravaActivitiesGateway(strava, strava_client),
        http_clients=[google_client, strava_client],
    )


# ---------------------------------------------------------------------------
# Service dependencies
# ---------------------------------------------------------------------------


def get_services(request: Request) -> HubServices:
    """FastAPI dependency: the ``HubServices`` attached by the app lifespan."""
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise RuntimeError("HubServices not initialized; create the app with create_app()")
    return services


def get_store(services: HubServices = Depends(get_services)) -> DocumentStore:
    return services.store


def get_google_oauth(services: HubServices = Depends(get_services)) -> GoogleOAuthManager:
    return services.google


def get_calendar_gateway(services: HubServices = Depends(get_services)) -> GoogleCalendarGateway:
    return services.calendar


def get_strava_oauth(services: HubServices = Depends(get_services)) -> StravaOAuthManager:
    return services.strava


def get_strava_gateway(services: HubServices = Depends(get_services)) -> StravaActivitiesGateway:
    return services.strava_activities


# ---------------------------------------------------------------------------
# Caller identity
# ---------------------------------------------------------------------------


async def get_principal(
    x_user_id: str | None = Header(default=None, alias=USER_ID_HEADER),
) -> Principal:
    """FastAPI dependency: the required caller identity.

    Raises ``MissingUserContextError`` / ``InvalidIdentifierError`` (both
    400) when the header is absent or malformed.
    """
    principal = Principal.from_header(x_user_id)
    set_user_context(principal.user_id)
    return principal


async def get_optional_user_id(
    x_user_id: str | None = Header(default=None, alias=USER_ID_HEADER),
) -> str | None:
    """FastAPI dependency: the optional user scope for store endpoints.

    A blank or absent header means the shared scope; a malformed one is
    rejected rather than silently falling back to shared data.
    """
    try:
        user_id = sanitize_user_id(x_user_id)
    except InvalidIdentifierError as exc:
        raise InvalidIdentifierError("user id", x_user_id, f"Invalid {USER_ID_HEADER} header") from exc
    set_user_context(user_id)
    return user_id
