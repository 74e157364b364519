"""OAuth session manager: authorization, code exchange and lazy refresh.

One manager exists per provider (see :mod:`localhub.oauth.google` and
:mod:`localhub.oauth.strava`). Each drives the per-user state machine::

    disconnected --authorize--> pending --callback--> connected
    connected --(access stale)--> expired_access --refresh ok--> connected
    expired_access --refresh rejected--> revoked
    *  --disconnect--> disconnected

The ``state`` query parameter carries the plain user id. It correlates the
callback with the user that started the flow; it is not a signed nonce.

Refresh is lazy and inline: the first call in a request that needs an
access token refreshes it when it is missing or within 60 seconds of
expiry. Refresh failures are never cached and never delete stored tokens;
the next request simply tries again.

Secret material (client_secret, tokens, authorization codes) is never
logged.
"""

from __future__ import annotations

import abc
import json
import logging
import time
from collections.abc import Callable
from typing import Any
from urllib.parse import urlencode

import httpx
from pydantic import ValidationError

from localhub.errors import (
    DocumentWriteError,
    InvalidIdentifierError,
    NotConnectedError,
    OAuthCallbackError,
    ProviderNotConfiguredError,
)
from localhub.identity import Principal
from localhub.oauth.tokens import ConnectionState, OAuthConnection, OAuthTokens, TokenVault
from localhub.registry import update_connected_apps
from localhub.storage import DocumentStore

logger = logging.getLogger(__name__)

DEFAULT_EXPIRES_IN_SECONDS = 3600

# Callback error codes placed in the UI redirect.
ERROR_INVALID_CALLBACK = "invalid_callback"
ERROR_NOT_CONFIGURED = "not_configured"
ERROR_TOKEN_FAILED = "token_failed"
ERROR_NO_REFRESH_TOKEN = "no_refresh_token"
ERROR_SAVE_FAILED = "save_failed"
ERROR_ACCESS_DENIED = "access_denied"
ERROR_PROVIDER = "provider_error"


class TokenEndpointError(Exception):
    """Raised when a provider token endpoint call fails.

    ``status_code`` is ``None`` for transport failures and malformed bodies.
    """

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)

    @property
    def is_rejection(self) -> bool:
        """True when the provider explicitly refused the grant (4xx, not 429)."""
        return self.status_code is not None and 400 <= self.status_code < 500 and (
            self.status_code != 429
        )


class OAuthSessionManager(abc.ABC):
    """Provider-agnostic OAuth session manager.

    Subclasses set the provider constants and implement
    :meth:`_connection_document` (what the UI sees after connecting) and the
    redirect URL builders.

    Parameters
    ----------
    store:
        Document store holding the connection and token documents.
    client_id / client_secret:
        Provider app credentials. Empty values mean "not configured".
    base_url:
        Public URL of this server, used to build the redirect URI.
    ui_origin:
        Origin of the web UI; callbacks redirect back to it.
    http_client:
        Shared ``httpx.AsyncClient`` for provider calls.
    clock:
        Returns the current epoch time in seconds.
    """

    # Provider identity
    provider: str
    display_name: str
    app_id: str
    """Identifier recorded in the user's ``connectedApps``."""

    # Storage layout
    plugin_id: str
    connection_key: str
    tokens_key: str

    # Endpoints
    authorize_url: str
    token_url: str
    scope: str
    callback_mount: str
    """Path under ``/api/plugins`` that the callback route is mounted at."""

    # Error codes surfaced to clients
    not_connected_code: str
    not_configured_code: str
    credential_env_names: tuple[str, str]

    def __init__(
        self,
        store: DocumentStore,
        *,
        client_id: str,
        client_secret: str,
        base_url: str,
        ui_origin: str,
        http_client: httpx.AsyncClient,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._client_id = client_id.strip()
        self._client_secret = client_secret.strip()
        self._base_url = base_url.rstrip("/")
        self._ui_origin = ui_origin.rstrip("/")
        self._http_client = http_client
        self._clock = clock
        self.vault = TokenVault(store, plugin_id=self.plugin_id, key=self.tokens_key)

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    @property
    def is_configured(self) -> bool:
        return bool(self._client_id and self._client_secret)

    @property
    def not_configured_message(self) -> str:
        id_env, secret_env = self.credential_env_names
        return f"{self.display_name} is not configured. Set {id_env} and {secret_env}."

    @property
    def not_connected_message(self) -> str:
        return f"Not connected to {self.display_name}"

    @property
    def redirect_uri(self) -> str:
        return f"{self._base_url}/api/plugins/{self.callback_mount}/callback"

    def require_configured(self) -> None:
        if not self.is_configured:
            raise ProviderNotConfiguredError(
                self.not_configured_message, code=self.not_configured_code
            )

    # ------------------------------------------------------------------
    # Authorization
    # ------------------------------------------------------------------

    def _authorize_extra_params(self) -> dict[str, str]:
        return {}

    def authorization_url(self, principal: Principal) -> str:
        """Build the provider authorization URL for *principal*.

        Raises ``ProviderNotConfiguredError`` when app credentials are absent.
        """
        self.require_configured()
        params = {
            "client_id": self._client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": self.scope,
            "state": principal.user_id,
            **self._authorize_extra_params(),
        }
        logger.info("%s OAuth flow started for user %s", self.display_name, principal.user_id)
        return f"{self.authorize_url}?{urlencode(params)}"

    async def complete_authorization(
        self,
        *,
        code: str | None,
        state: str | None,
        error: str | None = None,
    ) -> Principal:
        """Handle the provider callback and persist the new connection.

        Writes the connection document, then the token document (a failed
        write short-circuits the rest), then flips the registry bit.

        Raises
        ------
        OAuthCallbackError
            With the short error code for the UI redirect.
        """
        if error:
            logger.warning("%s OAuth provider error: %s", self.display_name, error)
            raise OAuthCallbackError(
                ERROR_ACCESS_DENIED if error == "access_denied" else ERROR_PROVIDER
            )

        principal = Principal.from_state(state)
        if not code or principal is None:
            logger.warning("%s OAuth callback missing code or valid state", self.display_name)
            raise OAuthCallbackError(ERROR_INVALID_CALLBACK)

        if not self.is_configured:
            raise OAuthCallbackError(ERROR_NOT_CONFIGURED)

        try:
            token_data = await self._post_token_endpoint(
                {
                    "code": code,
                    "client_id": self._client_id,
                    "client_secret": self._client_secret,
                    "redirect_uri": self.redirect_uri,
                    "grant_type": "authorization_code",
                }
            )
        except TokenEndpointError as exc:
            logger.warning("%s token exchange failed: %s", self.display_name, exc)
            raise OAuthCallbackError(ERROR_TOKEN_FAILED) from exc

        try:
            previous = self.vault.load(principal)
        except InvalidIdentifierError as exc:
            logger.error(
                "%s tokens cannot be stored for user %s: %s",
                self.display_name,
                principal.user_id,
                exc,
            )
            raise OAuthCallbackError(ERROR_SAVE_FAILED) from exc
        try:
            tokens = self._tokens_from_response(token_data, previous)
        except ValidationError as exc:
            logger.warning(
                "%s token response for user %s has no refresh token",
                self.display_name,
                principal.user_id,
            )
            raise OAuthCallbackError(ERROR_NO_REFRESH_TOKEN) from exc
        except ValueError as exc:
            logger.warning("%s token response unusable: %s", self.display_name, exc)
            raise OAuthCallbackError(ERROR_TOKEN_FAILED) from exc

        connection_doc = await self._connection_document(token_data, tokens)

        try:
            self._store.put(
                self.plugin_id, self.connection_key, connection_doc, principal.user_id
            )
            self.vault.save(principal, tokens)
        except (DocumentWriteError, InvalidIdentifierError) as exc:
            logger.error(
                "%s connection for user %s could not be saved: %s",
                self.display_name,
                principal.user_id,
                exc,
            )
            raise OAuthCallbackError(ERROR_SAVE_FAILED) from exc

        update_connected_apps(self._store, principal, self.app_id, True)
        logger.info("%s connected for user %s", self.display_name, principal.user_id)
        return principal

    @abc.abstractmethod
    async def _connection_document(
        self, token_data: dict[str, Any], tokens: OAuthTokens
    ) -> dict[str, Any]:
        """Return the user-facing connection document for a fresh connection."""

    @abc.abstractmethod
    def success_redirect_url(self) -> str:
        """UI URL to redirect to after a successful callback."""

    @abc.abstractmethod
    def error_redirect_url(self, error_code: str) -> str:
        """UI URL to redirect to after a failed callback."""

    # ------------------------------------------------------------------
    # Token lifecycle
    # ------------------------------------------------------------------

    def _expires_at(self, token_data: dict[str, Any]) -> int:
        expires_in = token_data.get("expires_in")
        if isinstance(expires_in, bool) or not isinstance(expires_in, int | float):
            expires_in = DEFAULT_EXPIRES_IN_SECONDS
        elif expires_in <= 0:
            expires_in = DEFAULT_EXPIRES_IN_SECONDS
        return int(self._clock()) + int(expires_in)

    def _tokens_from_response(
        self,
        token_data: dict[str, Any],
        previous: OAuthTokens | None,
    ) -> OAuthTokens:
        """Merge a token endpoint response over the previously stored tokens.

        A response without ``refresh_token`` keeps the previous one; one
        with it overwrites. Raises ``ValueError``/``ValidationError`` when
        no refresh token is available at all or the access token is missing.
        """
        access_token = token_data.get("access_token")
        if not isinstance(access_token, str) or not access_token.strip():
            raise ValueError("token response is missing a non-empty access_token")

        refresh_token = token_data.get("refresh_token")
        if not isinstance(refresh_token, str) or not refresh_token.strip():
            refresh_token = previous.refresh_token if previous is not None else ""

        return OAuthTokens(
            refresh_token=refresh_token,
            access_token=access_token,
            expires_at=self._expires_at(token_data),
        )

    def connection(self, principal: Principal) -> OAuthConnection:
        """Explicit connection state from stored tokens, without network calls."""
        return OAuthConnection.from_tokens(self.vault.load(principal), self._clock())

    async def ensure_connection(self, principal: Principal) -> OAuthConnection:
        """Return the connection, refreshing the access token if it is stale.

        The result is ``connected`` only when a fresh access token is
        available. A provider rejection yields ``revoked``; transport
        errors, 5xx and malformed bodies yield ``expired_access``. Stored
        tokens are left in place either way.
        """
        current = self.connection(principal)
        if current.state is not ConnectionState.expired_access:
            return current
        assert current.tokens is not None

        if not self.is_configured:
            logger.warning(
                "%s access token for user %s is stale and the provider is not configured",
                self.display_name,
                principal.user_id,
            )
            return current

        try:
            token_data = await self._post_token_endpoint(
                {
                    "client_id": self._client_id,
                    "client_secret": self._client_secret,
                    "refresh_token": current.tokens.refresh_token,
                    "grant_type": "refresh_token",
                }
            )
            refreshed = self._tokens_from_response(token_data, current.tokens)
        except TokenEndpointError as exc:
            logger.warning(
                "%s token refresh failed for user %s: %s",
                self.display_name,
                principal.user_id,
                exc,
            )
            if exc.is_rejection:
                return OAuthConnection(ConnectionState.revoked, current.tokens)
            return current
        except (ValidationError, ValueError) as exc:
            logger.warning(
                "%s token refresh for user %s returned an unusable payload: %s",
                self.display_name,
                principal.user_id,
                exc,
            )
            return current

        try:
            self.vault.save(principal, refreshed)
        except DocumentWriteError:
            logger.warning(
                "%s refreshed token for user %s could not be cached; using it for this request",
                self.display_name,
                principal.user_id,
            )
        logger.debug("%s access token refreshed for user %s", self.display_name, principal.user_id)
        return OAuthConnection(ConnectionState.connected, refreshed)

    async def get_access_token(self, principal: Principal) -> str | None:
        """Return a fresh access token, or ``None`` when there is no usable one."""
        return (await self.ensure_connection(principal)).access_token

    async def require_access_token(self, principal: Principal) -> str:
        """Like :meth:`get_access_token` but raises ``NotConnectedError``."""
        access_token = await self.get_access_token(principal)
        if access_token is None:
            raise NotConnectedError(self.not_connected_message, code=self.not_connected_code)
        return access_token

    # ------------------------------------------------------------------
    # Disconnect
    # ------------------------------------------------------------------

    def disconnect(self, principal: Principal) -> None:
        """Clear the connection and tokens. Best effort: never raises on storage failure."""
        try:
            self._store.put(
                self.plugin_id, self.connection_key, {"connected": False}, principal.user_id
            )
        except (DocumentWriteError, InvalidIdentifierError) as exc:
            logger.warning(
                "%s disconnect: connection document not cleared for user %s: %s",
                self.display_name,
                principal.user_id,
                exc,
            )
        try:
            self.vault.clear(principal)
        except (DocumentWriteError, InvalidIdentifierError) as exc:
            logger.warning(
                "%s disconnect: tokens not cleared for user %s: %s",
                self.display_name,
                principal.user_id,
                exc,
            )
        update_connected_apps(self._store, principal, self.app_id, False)
        logger.info("%s disconnected for user %s", self.display_name, principal.user_id)

    def connection_document(self, principal: Principal) -> dict[str, Any]:
        """The stored user-facing connection document, ``{}`` when absent."""
        doc = self._store.get_or_default(self.plugin_id, self.connection_key, principal.user_id)
        return doc if isinstance(doc, dict) else {}

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------

    async def _post_token_endpoint(self, data: dict[str, str]) -> dict[str, Any]:
        try:
            response = await self._http_client.post(
                self.token_url,
                data=data,
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise TokenEndpointError(f"Network error contacting token endpoint: {exc}") from exc

        if response.status_code < 200 or response.status_code >= 300:
            # Status only: the body may echo request details.
            raise TokenEndpointError(
                f"Token endpoint returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except json.JSONDecodeError as exc:
            raise TokenEndpointError(f"Invalid JSON in token response: {exc.msg}") from exc
        if not isinstance(payload, dict):
            raise TokenEndpointError("Token response is not a JSON object")
        return payload

    def _bearer(self, access_token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {access_token}"}
