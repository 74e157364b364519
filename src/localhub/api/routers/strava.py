"""Strava endpoints (OAuth and recent activities)."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Header, Query
from fastapi.responses import RedirectResponse

from localhub.api.deps import get_principal, get_strava_gateway, get_strava_oauth
from localhub.api.models import AuthUrlResponse, ErrorResponse, OkResponse
from localhub.api.models.strava import (
    StravaActivitiesResponse,
    StravaActivityModel,
    StravaConnectionResponse,
)
from localhub.errors import OAuthCallbackError
from localhub.identity import USER_ID_HEADER, Principal
from localhub.oauth import StravaOAuthManager
from localhub.strava import StravaActivitiesGateway

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/plugins/strava", tags=["strava"])


@router.get("/auth-url", response_model=AuthUrlResponse, response_model_exclude_none=True)
async def strava_auth_url(
    x_user_id: str | None = Header(default=None, alias=USER_ID_HEADER),
    oauth: StravaOAuthManager = Depends(get_strava_oauth),
) -> AuthUrlResponse:
    if not oauth.is_configured:
        return AuthUrlResponse(error=oauth.not_configured_message)
    principal = await get_principal(x_user_id)
    return AuthUrlResponse(url=oauth.authorization_url(principal))


@router.get("/callback")
async def strava_callback(
    code: str | None = Query(default=None),
    state: str | None = Query(default=None),
    error: str | None = Query(default=None),
    oauth: StravaOAuthManager = Depends(get_strava_oauth),
) -> RedirectResponse:
    try:
        await oauth.complete_authorization(code=code, state=state, error=error)
    except OAuthCallbackError as exc:
        return RedirectResponse(url=oauth.error_redirect_url(exc.code), status_code=302)
    return RedirectResponse(url=oauth.success_redirect_url(), status_code=302)


@router.post("/disconnect", response_model=OkResponse)
async def strava_disconnect(
    principal: Principal = Depends(get_principal),
    oauth: StravaOAuthManager = Depends(get_strava_oauth),
) -> OkResponse:
    oauth.disconnect(principal)
    return OkResponse()


@router.get("/connection", response_model=StravaConnectionResponse)
async def strava_connection(
    principal: Principal = Depends(get_principal),
    oauth: StravaOAuthManager = Depends(get_strava_oauth),
) -> StravaConnectionResponse:
    """Connection flag and athlete summary from the stored document; no token needed."""
    doc = oauth.connection_document(principal)
    athlete = doc.get("athlete")
    return StravaConnectionResponse(
        connected=bool(doc.get("connected")),
        athlete=athlete if isinstance(athlete, dict) else None,
    )


@router.get(
    "/activities",
    response_model=StravaActivitiesResponse,
    responses={
        400: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
)
async def strava_activities(
    page: int | None = Query(default=None),
    per_page: int | None = Query(default=None),
    principal: Principal = Depends(get_principal),
    gateway: StravaActivitiesGateway = Depends(get_strava_gateway),
) -> StravaActivitiesResponse:
    """Recent activities; ``page`` >= 1 and ``per_page`` clamped to 1-100."""
    gateway.oauth.require_configured()
    activities = await gateway.list_activities(principal, page, per_page)
    return StravaActivitiesResponse(
        activities=[StravaActivityModel.model_validate(a, from_attributes=True) for a in activities]
    )
