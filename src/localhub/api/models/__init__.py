"""Shared Pydantic response models for the LocalHub API.

Error responses use a flat envelope, ``{"error": "...", "code": "..."}``,
which the web UI renders directly.
"""

from __future__ import annotations

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error response envelope."""

    error: str
    code: str | None = None


class HealthResponse(BaseModel):
    status: str = "ok"
    timestamp: str


class OkResponse(BaseModel):
    ok: bool = True


class AuthUrlResponse(BaseModel):
    """Authorization URL, or an ``error`` when the provider is not configured."""

    url: str | None = None
    error: str | None = None
