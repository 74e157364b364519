"""Pydantic models for the Strava endpoints."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel


class StravaActivityModel(BaseModel):
    id: int | None = None
    name: str
    type: str | None = None
    sport_type: str | None = None
    start_date: str | None = None
    start_date_local: str | None = None
    distance: float | None = None
    moving_time: int | float | None = None
    elapsed_time: int | float | None = None
    total_elevation_gain: float | None = None


class StravaActivitiesResponse(BaseModel):
    activities: list[StravaActivityModel]


class StravaConnectionResponse(BaseModel):
    """Connection flag and athlete summary. Never includes tokens."""

    connected: bool
    athlete: dict[str, Any] | None = None
