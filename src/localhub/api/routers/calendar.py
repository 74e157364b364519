"""Google Calendar endpoints.

OAuth:
  GET  /api/plugins/calendar/google/auth-url     authorization URL for the caller
  GET  /api/plugins/calendar/google/callback     provider redirect target
  POST /api/plugins/calendar/google/disconnect   clear connection and tokens

Events (primary calendar):
  GET  /api/plugins/calendar/google/events                 one UTC month
  POST /api/plugins/calendar/google/events                 batch create all-day events
  POST /api/plugins/calendar/google/events/delete          batch delete by id
  GET  /api/plugins/calendar/google/events/tracked         ids created by LocalHub
  POST /api/plugins/calendar/google/events/replace         replace the tracked batch
  POST /api/plugins/calendar/google/events/tracked/clear   delete the tracked batch
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from fastapi import APIRouter, Depends, Header, Query
from fastapi.responses import RedirectResponse

from localhub.api.deps import get_calendar_gateway, get_google_oauth, get_principal
from localhub.api.models import AuthUrlResponse, ErrorResponse, OkResponse
from localhub.api.models.calendar import (
    CalendarEventModel,
    CalendarEventsResponse,
    CreateEventsRequest,
    CreateEventsResponse,
    DeleteEventsRequest,
    DeleteEventsResponse,
    ReplaceEventsResponse,
    TrackedEventsResponse,
)
from localhub.calendar import GoogleCalendarGateway
from localhub.errors import OAuthCallbackError
from localhub.identity import USER_ID_HEADER, Principal
from localhub.oauth import GoogleOAuthManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/plugins/calendar/google", tags=["calendar"])

_ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    502: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


# ---------------------------------------------------------------------------
# OAuth
# ---------------------------------------------------------------------------


@router.get("/auth-url", response_model=AuthUrlResponse, response_model_exclude_none=True)
async def google_auth_url(
    x_user_id: str | None = Header(default=None, alias=USER_ID_HEADER),
    oauth: GoogleOAuthManager = Depends(get_google_oauth),
) -> AuthUrlResponse:
    """Return the Google authorization URL for the caller.

    An unconfigured provider is reported in the body with HTTP 200 so the
    UI can show setup instructions.
    """
    if not oauth.is_configured:
        return AuthUrlResponse(error=oauth.not_configured_message)
    principal = await get_principal(x_user_id)
    return AuthUrlResponse(url=oauth.authorization_url(principal))


@router.get("/callback")
async def google_callback(
    code: str | None = Query(default=None),
    state: str | None = Query(default=None),
    error: str | None = Query(default=None),
    oauth: GoogleOAuthManager = Depends(get_google_oauth),
) -> RedirectResponse:
    """Complete the OAuth flow and redirect back to the calendar UI."""
    try:
        await oauth.complete_authorization(code=code, state=state, error=error)
    except OAuthCallbackError as exc:
        return RedirectResponse(url=oauth.error_redirect_url(exc.code), status_code=302)
    return RedirectResponse(url=oauth.success_redirect_url(), status_code=302)


@router.post("/disconnect", response_model=OkResponse)
async def google_disconnect(
    principal: Principal = Depends(get_principal),
    oauth: GoogleOAuthManager = Depends(get_google_oauth),
) -> OkResponse:
    oauth.disconnect(principal)
    return OkResponse()


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


@router.get("/events", response_model=CalendarEventsResponse, responses=_ERROR_RESPONSES)
async def list_events(
    year: int | None = Query(default=None),
    month: int | None = Query(default=None),
    principal: Principal = Depends(get_principal),
    gateway: GoogleCalendarGateway = Depends(get_calendar_gateway),
) -> CalendarEventsResponse:
    """List primary-calendar events in a UTC month (default: the current month)."""
    gateway.oauth.require_configured()
    now = datetime.now(UTC)
    events = await gateway.list_events(
        principal,
        year if year is not None else now.year,
        month if month is not None else now.month,
    )
    return CalendarEventsResponse(events=[CalendarEventModel.from_event(e) for e in events])


@router.post(
    "/events",
    response_model=CreateEventsResponse,
    response_model_exclude_none=True,
    responses=_ERROR_RESPONSES,
)
async def create_events(
    body: CreateEventsRequest,
    principal: Principal = Depends(get_principal),
    gateway: GoogleCalendarGateway = Depends(get_calendar_gateway),
) -> CreateEventsResponse:
    """Create one all-day event per item. Partial failure is still a 200."""
    gateway.oauth.require_configured()
    result = await gateway.create_events(principal, body.events, body.color_id)
    return CreateEventsResponse.from_result(result)


@router.post(
    "/events/delete",
    response_model=DeleteEventsResponse,
    response_model_exclude_none=True,
    responses=_ERROR_RESPONSES,
)
async def delete_events(
    body: DeleteEventsRequest,
    principal: Principal = Depends(get_principal),
    gateway: GoogleCalendarGateway = Depends(get_calendar_gateway),
) -> DeleteEventsResponse:
    result = await gateway.delete_events(principal, body.event_ids)
    return DeleteEventsResponse.from_result(result)


@router.get("/events/tracked", response_model=TrackedEventsResponse)
async def tracked_events(
    principal: Principal = Depends(get_principal),
    gateway: GoogleCalendarGateway = Depends(get_calendar_gateway),
) -> TrackedEventsResponse:
    return TrackedEventsResponse(event_ids=gateway.tracked_event_ids(principal))


@router.post(
    "/events/replace",
    response_model=ReplaceEventsResponse,
    response_model_exclude_none=True,
    responses=_ERROR_RESPONSES,
)
async def replace_events(
    body: CreateEventsRequest,
    principal: Principal = Depends(get_principal),
    gateway: GoogleCalendarGateway = Depends(get_calendar_gateway),
) -> ReplaceEventsResponse:
    """Delete the previously tracked events, then create and track *events*."""
    gateway.oauth.require_configured()
    result = await gateway.replace_tracked_events(principal, body.events, body.color_id)
    creation = result.creation
    errors = result.errors + creation.errors
    return ReplaceEventsResponse(
        previous_deleted=result.previous_deleted,
        created=creation.created,
        created_ids=creation.created_ids,
        failed=creation.failed,
        errors=errors or None,
    )


@router.post(
    "/events/tracked/clear",
    response_model=DeleteEventsResponse,
    response_model_exclude_none=True,
    responses=_ERROR_RESPONSES,
)
async def clear_tracked_events(
    principal: Principal = Depends(get_principal),
    gateway: GoogleCalendarGateway = Depends(get_calendar_gateway),
) -> DeleteEventsResponse:
    result = await gateway.clear_tracked_events(principal)
    return DeleteEventsResponse.from_result(result)
