"""Strava activities gateway."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import httpx

from localhub.errors import NotConnectedError, UpstreamError
from localhub.identity import Principal
from localhub.oauth.strava import StravaOAuthManager

logger = logging.getLogger(__name__)

STRAVA_API_BASE_URL = "https://www.strava.com/api/v3"
ATHLETE_ACTIVITIES_URL = f"{STRAVA_API_BASE_URL}/athlete/activities"

DEFAULT_PAGE = 1
DEFAULT_PER_PAGE = 30
MAX_PER_PAGE = 100
DEFAULT_ACTIVITY_NAME = "Activity"

LIST_ACTIVITIES_ERROR = "Failed to fetch Strava activities"
SESSION_EXPIRED_MESSAGE = "Strava session expired. Please reconnect."


def _number(value: Any) -> int | float | None:
    if isinstance(value, bool) or not isinstance(value, int | float):
        return None
    return value


def _text(value: Any) -> str | None:
    return value if isinstance(value, str) else None


@dataclass(frozen=True)
class StravaActivity:
    id: int | None
    name: str
    type: str | None = None
    sport_type: str | None = None
    start_date: str | None = None
    start_date_local: str | None = None
    distance: float | None = None
    moving_time: int | float | None = None
    elapsed_time: int | float | None = None
    total_elevation_gain: float | None = None

    @classmethod
    def from_api(cls, item: Mapping[str, Any]) -> StravaActivity:
        raw_id = item.get("id")
        return cls(
            id=raw_id if isinstance(raw_id, int) and not isinstance(raw_id, bool) else None,
            name=_text(item.get("name")) or DEFAULT_ACTIVITY_NAME,
            type=_text(item.get("type")),
            sport_type=_text(item.get("sport_type")),
            start_date=_text(item.get("start_date")),
            start_date_local=_text(item.get("start_date_local")),
            distance=_number(item.get("distance")),
            moving_time=_number(item.get("moving_time")),
            elapsed_time=_number(item.get("elapsed_time")),
            total_elevation_gain=_number(item.get("total_elevation_gain")),
        )


def clamp_paging(page: int | None, per_page: int | None) -> tuple[int, int]:
    """Clamp paging to ``page >= 1`` and ``1 <= per_page <= 100``.

    ``None`` or zero falls back to the defaults.
    """
    page = page or DEFAULT_PAGE
    per_page = per_page or DEFAULT_PER_PAGE
    return max(1, page), min(MAX_PER_PAGE, max(1, per_page))


class StravaActivitiesGateway:
    """Reads the authenticated athlete's activities."""

    def __init__(self, oauth: StravaOAuthManager, http_client: httpx.AsyncClient) -> None:
        self._oauth = oauth
        self._http_client = http_client

    @property
    def oauth(self) -> StravaOAuthManager:
        return self._oauth

    async def list_activities(
        self,
        principal: Principal,
        page: int | None = DEFAULT_PAGE,
        per_page: int | None = DEFAULT_PER_PAGE,
    ) -> list[StravaActivity]:
        """Return one page of the athlete's activities, most recent first.

        Raises
        ------
        NotConnectedError
            No usable token, or Strava rejected it (401).
        UpstreamError
            Any other non-2xx response, transport failure or malformed body.
        """
        page, per_page = clamp_paging(page, per_page)
        access_token = await self._oauth.require_access_token(principal)
        try:
            response = await self._http_client.get(
                ATHLETE_ACTIVITIES_URL,
                params={"page": page, "per_page": per_page},
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.HTTPError as exc:
            logger.error("Strava activities fetch failed for user %s: %s", principal.user_id, exc)
            raise UpstreamError(LIST_ACTIVITIES_ERROR) from exc

        if response.status_code == 401:
            raise NotConnectedError(SESSION_EXPIRED_MESSAGE, code=self._oauth.not_connected_code)
        if response.status_code < 200 or response.status_code >= 300:
            logger.error(
                "Strava activities API error %s: %s",
                response.status_code,
                " ".join(response.text.split())[:200],
            )
            raise UpstreamError(LIST_ACTIVITIES_ERROR, upstream_status=response.status_code)

        try:
            payload = response.json()
        except ValueError as exc:
            raise UpstreamError(LIST_ACTIVITIES_ERROR, upstream_status=response.status_code) from exc
        if not isinstance(payload, list):
            raise UpstreamError(LIST_ACTIVITIES_ERROR, upstream_status=response.status_code)

        return [StravaActivity.from_api(item) for item in payload if isinstance(item, dict)]
