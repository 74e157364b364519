"""Pydantic models for the Google Calendar endpoints.

Request bodies are permissive: individual malformed events are reported
per item in the batch result rather than failing the whole request.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from localhub.calendar import CalendarEvent, CreateEventsResult, DeleteEventsResult


class CalendarEventModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str | None = None
    summary: str
    start: str | None = None
    end: str | None = None
    html_link: str | None = Field(default=None, serialization_alias="htmlLink")
    color_id: str | None = Field(default=None, serialization_alias="colorId")

    @classmethod
    def from_event(cls, event: CalendarEvent) -> CalendarEventModel:
        return cls(
            id=event.id,
            summary=event.summary,
            start=event.start,
            end=event.end,
            html_link=event.html_link,
            color_id=event.color_id,
        )


class CalendarEventsResponse(BaseModel):
    events: list[CalendarEventModel]


class CreateEventsRequest(BaseModel):
    """``{"events": [{date, title?, description?}], "colorId"?: "1".."11"}``."""

    model_config = ConfigDict(populate_by_name=True)

    events: list[Any] = Field(default_factory=list)
    color_id: Any = Field(default=None, alias="colorId")

    @field_validator("events", mode="before")
    @classmethod
    def _coerce_events(cls, value: Any) -> list[Any]:
        if not isinstance(value, list):
            return []
        return [item if isinstance(item, dict) else {} for item in value]


class DeleteEventsRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    event_ids: list[Any] = Field(default_factory=list, alias="eventIds")

    @field_validator("event_ids", mode="before")
    @classmethod
    def _coerce_ids(cls, value: Any) -> list[Any]:
        return value if isinstance(value, list) else []


class CreateEventsResponse(BaseModel):
    created: int
    created_ids: list[str] = Field(serialization_alias="createdIds")
    failed: int
    errors: list[str] | None = None

    @classmethod
    def from_result(cls, result: CreateEventsResult) -> CreateEventsResponse:
        return cls(
            created=result.created,
            created_ids=result.created_ids,
            failed=result.failed,
            errors=result.errors or None,
        )


class DeleteEventsResponse(BaseModel):
    deleted: int
    failed: int = 0
    errors: list[str] | None = None

    @classmethod
    def from_result(cls, result: DeleteEventsResult) -> DeleteEventsResponse:
        return cls(deleted=result.deleted, failed=result.failed, errors=result.errors or None)


class ReplaceEventsResponse(CreateEventsResponse):
    previous_deleted: int = Field(serialization_alias="previousDeleted")


class TrackedEventsResponse(BaseModel):
    event_ids: list[str] = Field(serialization_alias="eventIds")
