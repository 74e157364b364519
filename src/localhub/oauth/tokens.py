"""Token vault: OAuth tokens stored as plugin documents.

Tokens are not kept in a separate physical store: each provider owns a
user scoped document (e.g. ``calendar/google-calendar-tokens``) holding::

    {"refresh_token": "...", "access_token": "...", "expires_at": 1735689600}

An empty object means "disconnected". The connection state is made explicit
with :class:`ConnectionState` rather than inferred from optional fields at
each call site.

Secret material is never logged; ``OAuthTokens`` redacts itself in repr.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from localhub.identity import Principal
from localhub.storage import DocumentStore

logger = logging.getLogger(__name__)

# An access token is treated as stale this many seconds before it expires.
ACCESS_TOKEN_SAFETY_MARGIN_SECONDS = 60


class OAuthTokens(BaseModel):
    """Provider-issued token set for one (provider, user) pair."""

    model_config = ConfigDict(extra="ignore")

    refresh_token: str
    access_token: str | None = None
    expires_at: int | None = None

    @field_validator("refresh_token")
    @classmethod
    def _require_refresh_token(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("refresh_token must be a non-empty string")
        return normalized

    @field_validator("access_token")
    @classmethod
    def _normalize_access_token(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None

    @field_validator("expires_at", mode="before")
    @classmethod
    def _coerce_expires_at(cls, value: Any) -> int | None:
        if value is None or isinstance(value, bool):
            return None
        if isinstance(value, int | float):
            return int(value)
        return None

    def is_access_fresh(self, now: float) -> bool:
        """True iff the cached access token is usable beyond the safety margin."""
        if self.access_token is None or self.expires_at is None:
            return False
        return self.expires_at > now + ACCESS_TOKEN_SAFETY_MARGIN_SECONDS

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)

    def __repr__(self) -> str:
        return (
            "OAuthTokens("
            "refresh_token=<REDACTED>, "
            f"access_token={'<REDACTED>' if self.access_token else None}, "
            f"expires_at={self.expires_at!r})"
        )

    __str__ = __repr__


class ConnectionState(StrEnum):
    """State of an OAuth connection for one (provider, user) pair."""

    disconnected = "disconnected"
    """No tokens stored, or explicitly cleared."""

    connected = "connected"
    """Refresh token present and the access token is fresh."""

    expired_access = "expired_access"
    """Access token missing or stale; refresh not attempted or failed transiently."""

    revoked = "revoked"
    """The provider rejected the refresh token on the last attempt."""


@dataclass(frozen=True)
class OAuthConnection:
    """Explicit connection state with the data that state carries.

    ``tokens`` is ``None`` exactly when ``state`` is ``disconnected``.
    """

    state: ConnectionState
    tokens: OAuthTokens | None = None

    def __post_init__(self) -> None:
        if (self.state is ConnectionState.disconnected) != (self.tokens is None):
            raise ValueError(f"tokens must be present iff state != disconnected ({self.state})")

    @classmethod
    def disconnected(cls) -> OAuthConnection:
        return cls(ConnectionState.disconnected)

    @classmethod
    def from_tokens(cls, tokens: OAuthTokens | None, now: float) -> OAuthConnection:
        if tokens is None:
            return cls.disconnected()
        if tokens.is_access_fresh(now):
            return cls(ConnectionState.connected, tokens)
        return cls(ConnectionState.expired_access, tokens)

    @property
    def access_token(self) -> str | None:
        """The access token, only when the connection is usable."""
        if self.state is ConnectionState.connected and self.tokens is not None:
            return self.tokens.access_token
        return None


class TokenVault:
    """Reads and writes one provider's token document for each user."""

    def __init__(self, store: DocumentStore, *, plugin_id: str, key: str) -> None:
        self._store = store
        self.plugin_id = plugin_id
        self.key = key

    def load(self, principal: Principal) -> OAuthTokens | None:
        """Return the stored tokens, or ``None`` when disconnected.

        An absent, empty or malformed document (no usable refresh token)
        all mean disconnected.
        """
        raw = self._store.get_or_default(self.plugin_id, self.key, principal.user_id)
        if not isinstance(raw, dict) or not raw:
            return None
        try:
            return OAuthTokens.model_validate(raw)
        except ValidationError:
            logger.debug(
                "Token document %s/%s for user %s has no usable refresh token",
                self.plugin_id,
                self.key,
                principal.user_id,
            )
            return None

    def save(self, principal: Principal, tokens: OAuthTokens) -> None:
        """Persist *tokens*. Raises ``DocumentWriteError`` on failure."""
        self._store.put(self.plugin_id, self.key, tokens.to_document(), principal.user_id)

    def clear(self, principal: Principal) -> None:
        """Overwrite the token document with ``{}``. Raises ``DocumentWriteError``."""
        self._store.put(self.plugin_id, self.key, {}, principal.user_id)
