"""Strava OAuth session manager.

Strava returns an absolute ``expires_at`` with every token response and
rotates the refresh token on refresh, so both are taken from the response
when present. The athlete summary arrives with the code exchange; no extra
profile call is needed.
"""

from __future__ import annotations

from typing import Any
from urllib.parse import urlencode

from localhub.oauth.session import OAuthSessionManager
from localhub.oauth.tokens import OAuthTokens

STRAVA_AUTH_URL = "https://www.strava.com/oauth/authorize"
STRAVA_TOKEN_URL = "https://www.strava.com/oauth/token"
STRAVA_SCOPE = "activity:read_all"

STRAVA_PLUGIN_ID = "strava"
STRAVA_CONNECTION_KEY = "strava-connection"
STRAVA_TOKENS_KEY = "strava-tokens"

_ATHLETE_FIELDS = ("username", "firstname", "lastname")


def athlete_summary(raw: object) -> dict[str, Any] | None:
    """Reduce a Strava athlete object to the fields shown in the UI."""
    if not isinstance(raw, dict):
        return None
    summary: dict[str, Any] = {}
    if isinstance(raw.get("id"), int):
        summary["id"] = raw["id"]
    for field in _ATHLETE_FIELDS:
        value = raw.get(field)
        if isinstance(value, str) and value:
            summary[field] = value
    profile = raw.get("profile") or raw.get("profile_medium")
    if isinstance(profile, str) and profile:
        summary["profile"] = profile
    return summary


class StravaOAuthManager(OAuthSessionManager):
    """OAuth session manager for Strava activities."""

    provider = "strava"
    display_name = "Strava"
    app_id = "strava"

    plugin_id = STRAVA_PLUGIN_ID
    connection_key = STRAVA_CONNECTION_KEY
    tokens_key = STRAVA_TOKENS_KEY

    authorize_url = STRAVA_AUTH_URL
    token_url = STRAVA_TOKEN_URL
    scope = STRAVA_SCOPE
    callback_mount = "strava"

    not_connected_code = "strava_not_connected"
    not_configured_code = "strava_not_configured"
    credential_env_names = ("STRAVA_CLIENT_ID", "STRAVA_CLIENT_SECRET")

    def _authorize_extra_params(self) -> dict[str, str]:
        return {"approval_prompt": "force"}

    def _expires_at(self, token_data: dict[str, Any]) -> int:
        expires_at = token_data.get("expires_at")
        if isinstance(expires_at, int | float) and not isinstance(expires_at, bool):
            return int(expires_at)
        return super()._expires_at(token_data)

    async def _connection_document(
        self, token_data: dict[str, Any], tokens: OAuthTokens
    ) -> dict[str, Any]:
        doc: dict[str, Any] = {"connected": True}
        athlete = athlete_summary(token_data.get("athlete"))
        if athlete is not None:
            doc["athlete"] = athlete
        return doc

    def success_redirect_url(self) -> str:
        return f"{self._ui_origin}/plugins/runner/recent?strava=connected"

    def error_redirect_url(self, error_code: str) -> str:
        query = urlencode({"strava": "error", "message": error_code})
        return f"{self._ui_origin}/plugins/runner/recent?{query}"
