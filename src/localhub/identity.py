"""Identifier sanitization and the caller ``Principal``.

Every plugin id, document key and user id passes through this module before
it reaches the filesystem or an OAuth provider. The grammars are strict and
matched against the whole string (``re.fullmatch``), so path separators,
``..``, NUL bytes and trailing newlines are rejected rather than filtered.

- Plugin id: ``[a-z0-9-]+``, optionally restricted to an allow-list.
- Document key: ``[a-zA-Z0-9_-]+``.
- User id: trimmed, then ``[a-zA-Z0-9_-]{1,128}``. Empty means "no user scope".
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass

from localhub.errors import InvalidIdentifierError, MissingUserContextError

PLUGIN_ID_PATTERN = re.compile(r"[a-z0-9-]+")
KEY_PATTERN = re.compile(r"[a-zA-Z0-9_-]+")
USER_ID_PATTERN = re.compile(r"[a-zA-Z0-9_-]{1,128}")

USER_ID_HEADER = "X-User-Id"
_MISSING_USER_MESSAGE = f"Missing or invalid {USER_ID_HEADER} header"


class IdentifierSanitizer:
    """Validates identifiers against the grammars and the plugin allow-list."""

    def __init__(self, allowed_plugin_ids: Iterable[str] = ()) -> None:
        self._allowed_plugin_ids = frozenset(allowed_plugin_ids)

    @property
    def allowed_plugin_ids(self) -> frozenset[str]:
        return self._allowed_plugin_ids

    def plugin_id(self, value: object) -> str:
        if not isinstance(value, str) or PLUGIN_ID_PATTERN.fullmatch(value) is None:
            raise InvalidIdentifierError("plugin id", value, "Invalid pluginId")
        if self._allowed_plugin_ids and value not in self._allowed_plugin_ids:
            raise InvalidIdentifierError("plugin id", value, "Invalid pluginId")
        return value

    def key(self, value: object) -> str:
        if not isinstance(value, str) or KEY_PATTERN.fullmatch(value) is None:
            raise InvalidIdentifierError("key", value, "Invalid key")
        return value

    def user_id(self, value: object) -> str | None:
        """Return the sanitized user id, or ``None`` when no user scope was given."""
        return sanitize_user_id(value)

    def is_plugin_id_valid(self, value: object) -> bool:
        try:
            self.plugin_id(value)
        except InvalidIdentifierError:
            return False
        return True


def sanitize_user_id(value: object) -> str | None:
    """Trim and validate a user id.

    Returns ``None`` for ``None`` or a blank string. Raises
    ``InvalidIdentifierError`` for anything else that does not match.
    """
    if value is None:
        return None
    if not isinstance(value, str):
        raise InvalidIdentifierError("user id", value, "Invalid userId")
    trimmed = value.strip()
    if not trimmed:
        return None
    if USER_ID_PATTERN.fullmatch(trimmed) is None:
        raise InvalidIdentifierError("user id", value, "Invalid userId")
    return trimmed


def is_valid_user_id(value: object) -> bool:
    try:
        return sanitize_user_id(value) is not None
    except InvalidIdentifierError:
        return False


@dataclass(frozen=True)
class Principal:
    """A validated caller identity.

    Threaded explicitly through every OAuth, gateway and registry call. Only
    the constructors below produce one, so holding a ``Principal`` means the
    user id has already passed sanitization.
    """

    user_id: str

    def __post_init__(self) -> None:
        if sanitize_user_id(self.user_id) != self.user_id:
            raise InvalidIdentifierError("user id", self.user_id, _MISSING_USER_MESSAGE)

    @classmethod
    def from_header(cls, raw: str | None) -> Principal:
        """Build a principal from the ``X-User-Id`` header value.

        Raises
        ------
        MissingUserContextError
            If the header is absent or blank.
        InvalidIdentifierError
            If the header does not match the user id grammar.
        """
        try:
            user_id = sanitize_user_id(raw)
        except InvalidIdentifierError as exc:
            raise InvalidIdentifierError("user id", raw, _MISSING_USER_MESSAGE) from exc
        if user_id is None:
            raise MissingUserContextError(_MISSING_USER_MESSAGE)
        return cls(user_id)

    @classmethod
    def from_state(cls, state: str | None) -> Principal | None:
        """Recover the principal carried in an OAuth ``state`` parameter."""
        try:
            user_id = sanitize_user_id(state)
        except InvalidIdentifierError:
            return None
        return cls(user_id) if user_id is not None else None
