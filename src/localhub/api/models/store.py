"""Pydantic models for the plugin document store endpoints."""

from __future__ import annotations

from pydantic import BaseModel

DEFAULT_USER_EMOJI = "👤"


class KeysResponse(BaseModel):
    keys: list[str]


class UserSummary(BaseModel):
    """A user with a ``user-management`` data directory."""

    id: str
    name: str = ""
    emoji: str = DEFAULT_USER_EMOJI


class UsersResponse(BaseModel):
    users: list[UserSummary]
