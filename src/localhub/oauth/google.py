"""Google OAuth session manager (Calendar scopes)."""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import urlencode

import httpx

from localhub.oauth.session import OAuthSessionManager
from localhub.oauth.tokens import OAuthTokens

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"

GOOGLE_CALENDAR_SCOPES = (
    "openid",
    "email",
    "https://www.googleapis.com/auth/calendar.readonly",
    "https://www.googleapis.com/auth/calendar.events",
)

CALENDAR_PLUGIN_ID = "calendar"
GOOGLE_CONNECTION_KEY = "google-calendar"
GOOGLE_TOKENS_KEY = "google-calendar-tokens"


class GoogleOAuthManager(OAuthSessionManager):
    """OAuth session manager for Google Calendar.

    Authorization always requests offline access with a forced consent
    prompt so Google issues a refresh token on every connect.
    """

    provider = "google"
    display_name = "Google Calendar"
    app_id = "calendar"

    plugin_id = CALENDAR_PLUGIN_ID
    connection_key = GOOGLE_CONNECTION_KEY
    tokens_key = GOOGLE_TOKENS_KEY

    authorize_url = GOOGLE_AUTH_URL
    token_url = GOOGLE_TOKEN_URL
    scope = " ".join(GOOGLE_CALENDAR_SCOPES)
    callback_mount = "calendar/google"

    not_connected_code = "calendar_not_connected"
    not_configured_code = "calendar_not_configured"
    credential_env_names = ("GOOGLE_CLIENT_ID", "GOOGLE_CLIENT_SECRET")

    def _authorize_extra_params(self) -> dict[str, str]:
        return {"access_type": "offline", "prompt": "consent"}

    async def _fetch_email(self, access_token: str) -> str | None:
        try:
            response = await self._http_client.get(
                GOOGLE_USERINFO_URL, headers=self._bearer(access_token)
            )
        except httpx.HTTPError as exc:
            logger.debug("Google userinfo request failed: %s", exc)
            return None
        if response.status_code < 200 or response.status_code >= 300:
            logger.debug("Google userinfo returned HTTP %s", response.status_code)
            return None
        try:
            payload = response.json()
        except ValueError:
            return None
        email = payload.get("email") if isinstance(payload, dict) else None
        return email if isinstance(email, str) and email else None

    async def _connection_document(
        self, token_data: dict[str, Any], tokens: OAuthTokens
    ) -> dict[str, Any]:
        doc: dict[str, Any] = {"connected": True}
        if tokens.access_token:
            email = await self._fetch_email(tokens.access_token)
            if email:
                doc["email"] = email
        return doc

    def success_redirect_url(self) -> str:
        return f"{self._ui_origin}/plugins/calendar?connected=1"

    def error_redirect_url(self, error_code: str) -> str:
        return f"{self._ui_origin}/plugins/calendar?{urlencode({'error': error_code})}"
