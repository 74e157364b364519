"""Google Calendar gateway: list, batch create and batch delete events.

All calls go to the user's primary calendar with the access token from
:class:`~localhub.oauth.google.GoogleOAuthManager`. The token is resolved
once per operation, before any fan-out.

Batch operations run items through a bounded worker pool
(``asyncio.Semaphore``) and aggregate results in input order. A failing
item is reported in ``errors`` and never aborts the batch.

Events created by this system are tracked in the user scoped document
``runner/calendarEventIds`` so that a new batch can replace the previous
one as a unit.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta
from typing import Any
from urllib.parse import quote

import httpx

from localhub.errors import DocumentWriteError, InvalidRequestError, UpstreamError
from localhub.identity import Principal
from localhub.oauth.google import GoogleOAuthManager
from localhub.storage import DocumentStore

logger = logging.getLogger(__name__)

GOOGLE_CALENDAR_API_BASE_URL = "https://www.googleapis.com/calendar/v3"
PRIMARY_EVENTS_URL = f"{GOOGLE_CALENDAR_API_BASE_URL}/calendars/primary/events"

RUNNER_PLUGIN_ID = "runner"
TRACKED_EVENTS_KEY = "calendarEventIds"

DEFAULT_BATCH_CONCURRENCY = 4
DEFAULT_EVENT_TITLE = "Run"
UNTITLED_EVENT_SUMMARY = "(No title)"
LIST_EVENTS_ERROR = "Failed to fetch calendar events"

# Google Calendar event colour palette ids.
COLOR_ID_PATTERN = re.compile(r"[1-9]|1[01]")
DATE_PATTERN = re.compile(r"\d{4}-\d{2}-\d{2}")

# Statuses meaning "already gone" on delete.
_ALREADY_DELETED_STATUSES = frozenset({404, 410})


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CalendarEvent:
    id: str | None
    summary: str
    start: str | None
    end: str | None
    html_link: str | None = None
    color_id: str | None = None

    @classmethod
    def from_api(cls, item: Mapping[str, Any]) -> CalendarEvent:
        summary = item.get("summary")
        return cls(
            id=_optional_str(item.get("id")),
            summary=summary if isinstance(summary, str) else UNTITLED_EVENT_SUMMARY,
            start=_event_time(item.get("start")),
            end=_event_time(item.get("end")),
            html_link=_optional_str(item.get("htmlLink")),
            color_id=_optional_str(item.get("colorId")),
        )


@dataclass
class CreateEventsResult:
    created_ids: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def created(self) -> int:
        return len(self.created_ids)

    @property
    def failed(self) -> int:
        return len(self.errors)


@dataclass
class DeleteEventsResult:
    deleted: int = 0
    failed_ids: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.failed_ids)


@dataclass
class ReplaceEventsResult:
    previous_deleted: int
    creation: CreateEventsResult
    errors: list[str] = field(default_factory=list)
    """Deletion and tracking errors; creation errors live on ``creation``."""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _optional_str(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def _event_time(value: Any) -> str | None:
    if not isinstance(value, Mapping):
        return None
    return _optional_str(value.get("dateTime")) or _optional_str(value.get("date"))


def _rfc3339_millis(value: datetime) -> str:
    return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def month_window(year: int, month: int) -> tuple[str, str]:
    """Inclusive UTC bounds of a calendar month as RFC 3339 strings.

    Raises ``InvalidRequestError`` for a month outside 1-12 or a year that
    cannot be represented.
    """
    if not 1 <= month <= 12 or not 1 <= year <= 9999:
        raise InvalidRequestError("Invalid year or month")
    start = datetime(year, month, 1, tzinfo=UTC)
    if month == 12:
        next_month = date(year + 1, 1, 1) if year < 9999 else None
    else:
        next_month = date(year, month + 1, 1)
    if next_month is None:
        end = datetime(year, 12, 31, 23, 59, 59, 999000, tzinfo=UTC)
    else:
        last_day = next_month - timedelta(days=1)
        end = datetime(
            last_day.year, last_day.month, last_day.day, 23, 59, 59, 999000, tzinfo=UTC
        )
    return _rfc3339_millis(start), _rfc3339_millis(end)


def normalize_color_id(value: Any) -> str | None:
    """Return *value* when it is a Google event colour id ``"1"``-``"11"``."""
    if isinstance(value, str) and COLOR_ID_PATTERN.fullmatch(value):
        return value
    return None


def parse_event_date(value: Any) -> date | None:
    if not isinstance(value, str) or DATE_PATTERN.fullmatch(value) is None:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        return None


def all_day_event_payload(
    item: Mapping[str, Any], day: date, color_id: str | None
) -> dict[str, Any]:
    """Build the Google event body for an all-day event (end date is exclusive)."""
    title = item.get("title")
    payload: dict[str, Any] = {
        "summary": title.strip() if isinstance(title, str) and title.strip() else DEFAULT_EVENT_TITLE,
        "start": {"date": day.isoformat()},
        "end": {"date": (day + timedelta(days=1)).isoformat()},
    }
    description = item.get("description")
    if isinstance(description, str):
        payload["description"] = description
    if color_id is not None:
        payload["colorId"] = color_id
    return payload


def _error_snippet(response: httpx.Response, limit: int = 80) -> str:
    text = " ".join(response.text.split())
    return text[:limit] if text else f"HTTP {response.status_code}"


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------


class GoogleCalendarGateway:
    """Calendar operations for one provider account per user.

    Parameters
    ----------
    oauth:
        Google session manager supplying per-user access tokens.
    store:
        Document store holding the tracked event ids.
    http_client:
        Shared ``httpx.AsyncClient`` for Calendar API calls.
    concurrency:
        Maximum number of in-flight requests per batch operation.
    """

    def __init__(
        self,
        oauth: GoogleOAuthManager,
        store: DocumentStore,
        http_client: httpx.AsyncClient,
        *,
        concurrency: int = DEFAULT_BATCH_CONCURRENCY,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self._oauth = oauth
        self._store = store
        self._http_client = http_client
        self._concurrency = concurrency

    @property
    def oauth(self) -> GoogleOAuthManager:
        return self._oauth

    async def _run_bounded[T, R](
        self, items: Sequence[T], worker: Callable[[T], Awaitable[R]]
    ) -> list[R]:
        semaphore = asyncio.Semaphore(self._concurrency)

        async def run(item: T) -> R:
            async with semaphore:
                return await worker(item)

        return list(await asyncio.gather(*(run(item) for item in items)))

    # ------------------------------------------------------------------
    # List
    # ------------------------------------------------------------------

    async def list_events(self, principal: Principal, year: int, month: int) -> list[CalendarEvent]:
        """Return the primary calendar's events in the given UTC month.

        Raises
        ------
        InvalidRequestError
            If *month* is outside 1-12.
        NotConnectedError
            If the user has no usable access token.
        UpstreamError
            On a non-2xx response or a malformed body.
        """
        time_min, time_max = month_window(year, month)
        access_token = await self._oauth.require_access_token(principal)
        params = {
            "timeMin": time_min,
            "timeMax": time_max,
            "singleEvents": "true",
            "orderBy": "startTime",
        }
        try:
            response = await self._http_client.get(
                PRIMARY_EVENTS_URL,
                params=params,
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.HTTPError as exc:
            logger.error("Calendar events fetch failed for user %s: %s", principal.user_id, exc)
            raise UpstreamError(LIST_EVENTS_ERROR) from exc

        if response.status_code < 200 or response.status_code >= 300:
            logger.error(
                "Google Calendar API error %s: %s",
                response.status_code,
                _error_snippet(response, 200),
            )
            raise UpstreamError(LIST_EVENTS_ERROR, upstream_status=response.status_code)

        try:
            payload = response.json()
        except ValueError as exc:
            raise UpstreamError(LIST_EVENTS_ERROR, upstream_status=response.status_code) from exc
        items = payload.get("items", []) if isinstance(payload, dict) else None
        if not isinstance(items, list):
            raise UpstreamError(LIST_EVENTS_ERROR, upstream_status=response.status_code)

        return [CalendarEvent.from_api(item) for item in items if isinstance(item, dict)]

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create_events(
        self,
        principal: Principal,
        events: Sequence[Mapping[str, Any]],
        color_id: Any = None,
    ) -> CreateEventsResult:
        """Create one all-day event per item (``{date, title?, description?}``).

        Raises ``InvalidRequestError`` for an empty batch and
        ``NotConnectedError`` when no access token is available. Per-item
        failures are collected in the result.
        """
        if not events:
            raise InvalidRequestError("No events provided")
        access_token = await self._oauth.require_access_token(principal)
        return await self._create_with_token(access_token, events, normalize_color_id(color_id))

    async def _create_with_token(
        self,
        access_token: str,
        events: Sequence[Mapping[str, Any]],
        color_id: str | None,
    ) -> CreateEventsResult:
        headers = {"Authorization": f"Bearer {access_token}"}

        async def create_one(item: Mapping[str, Any]) -> tuple[str | None, str | None]:
            raw_date = item.get("date") if isinstance(item, Mapping) else None
            day = parse_event_date(raw_date)
            if day is None:
                return None, f"Invalid date: {raw_date}"
            label = day.isoformat()
            try:
                response = await self._http_client.post(
                    PRIMARY_EVENTS_URL,
                    json=all_day_event_payload(item, day, color_id),
                    headers=headers,
                )
            except httpx.HTTPError as exc:
                return None, f"{label}: {exc}"[:200]
            if response.status_code < 200 or response.status_code >= 300:
                return None, f"{label}: {_error_snippet(response)}"
            try:
                created = response.json()
            except ValueError:
                created = None
            event_id = created.get("id") if isinstance(created, dict) else None
            if not isinstance(event_id, str) or not event_id:
                return None, f"{label}: response did not include an event id"
            return event_id, None

        result = CreateEventsResult()
        for event_id, error in await self._run_bounded(list(events), create_one):
            if event_id is not None:
                result.created_ids.append(event_id)
            if error is not None:
                result.errors.append(error)
        logger.info("Created %d calendar event(s), %d failed", result.created, result.failed)
        return result

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    async def delete_events(
        self, principal: Principal, event_ids: Sequence[Any]
    ) -> DeleteEventsResult:
        """Delete events by id. Already-deleted events (404/410) count as deleted.

        An empty (or all-invalid) id list returns immediately without
        resolving an access token.
        """
        ids = _clean_event_ids(event_ids)
        if not ids:
            return DeleteEventsResult()
        access_token = await self._oauth.require_access_token(principal)
        return await self._delete_with_token(access_token, ids)

    async def _delete_with_token(self, access_token: str, ids: list[str]) -> DeleteEventsResult:
        headers = {"Authorization": f"Bearer {access_token}"}

        async def delete_one(event_id: str) -> str | None:
            url = f"{PRIMARY_EVENTS_URL}/{quote(event_id, safe='')}"
            try:
                response = await self._http_client.delete(url, headers=headers)
            except httpx.HTTPError as exc:
                logger.warning("Calendar delete failed for event %s: %s", event_id, exc)
                return f"{event_id}: {exc}"[:200]
            if response.status_code in _ALREADY_DELETED_STATUSES:
                logger.debug("Event %s already deleted (HTTP %s)", event_id, response.status_code)
                return None
            if response.status_code < 200 or response.status_code >= 300:
                logger.warning(
                    "Calendar delete failed for event %s: HTTP %s %s",
                    event_id,
                    response.status_code,
                    _error_snippet(response, 100),
                )
                return f"{event_id}: HTTP {response.status_code}"
            return None

        result = DeleteEventsResult()
        for event_id, error in zip(ids, await self._run_bounded(ids, delete_one), strict=True):
            if error is None:
                result.deleted += 1
            else:
                result.failed_ids.append(event_id)
                result.errors.append(error)
        logger.info("Deleted %d calendar event(s), %d failed", result.deleted, result.failed)
        return result

    # ------------------------------------------------------------------
    # Tracked events
    # ------------------------------------------------------------------

    def tracked_event_ids(self, principal: Principal) -> list[str]:
        """Event ids created by this system and not yet replaced or cleared."""
        raw = self._store.get_or_default(
            RUNNER_PLUGIN_ID, TRACKED_EVENTS_KEY, principal.user_id, default=[]
        )
        return _clean_event_ids(raw if isinstance(raw, list) else [])

    def _save_tracked(self, principal: Principal, event_ids: list[str]) -> str | None:
        try:
            self._store.put(RUNNER_PLUGIN_ID, TRACKED_EVENTS_KEY, event_ids, principal.user_id)
        except DocumentWriteError as exc:
            logger.error(
                "Tracked calendar event ids could not be saved for user %s: %s",
                principal.user_id,
                exc,
            )
            return "Tracked event ids could not be saved"
        return None

    async def replace_tracked_events(
        self,
        principal: Principal,
        events: Sequence[Mapping[str, Any]],
        color_id: Any = None,
    ) -> ReplaceEventsResult:
        """Delete the previously tracked events, create *events* and track them.

        Deletion is always attempted first and its failures do not stop
        creation; they are reported in ``errors``. The new tracked set is
        exactly the created ids of this batch. An empty *events* list only
        removes the previous batch.
        """
        access_token = await self._oauth.require_access_token(principal)

        previous = self.tracked_event_ids(principal)
        deletion = (
            await self._delete_with_token(access_token, previous)
            if previous
            else DeleteEventsResult()
        )

        creation = (
            await self._create_with_token(access_token, events, normalize_color_id(color_id))
            if events
            else CreateEventsResult()
        )

        errors = list(deletion.errors)
        save_error = self._save_tracked(principal, creation.created_ids)
        if save_error is not None:
            errors.append(save_error)

        return ReplaceEventsResult(
            previous_deleted=deletion.deleted,
            creation=creation,
            errors=errors,
        )

    async def clear_tracked_events(self, principal: Principal) -> DeleteEventsResult:
        """Delete all tracked events and stop tracking them; failures are reported."""
        previous = self.tracked_event_ids(principal)
        if not previous:
            return DeleteEventsResult()
        access_token = await self._oauth.require_access_token(principal)
        result = await self._delete_with_token(access_token, previous)
        save_error = self._save_tracked(principal, [])
        if save_error is not None:
            result.errors.append(save_error)
        return result


def _clean_event_ids(values: Sequence[Any]) -> list[str]:
    return [value for value in values if isinstance(value, str) and value]
