"""Error taxonomy shared by the store, OAuth and gateway layers.

Every error carries the HTTP ``status_code`` and a machine-readable ``code``
so the API layer can convert it to the ``{"error": ..., "code": ...}``
envelope without knowing which component raised it.

Status code mapping:
- ``InvalidIdentifierError`` → 400
- ``MissingUserContextError`` → 400
- ``InvalidRequestError`` → 400
- ``DocumentNotFoundError`` → 404
- ``NotConnectedError`` → 403
- ``DocumentWriteError`` → 500
- ``UpstreamError`` → 502
- ``ProviderNotConfiguredError`` → 503
"""

from __future__ import annotations


class LocalHubError(Exception):
    """Base class for all domain errors."""

    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, message: str, *, code: str | None = None) -> None:
        self.message = message
        if code is not None:
            self.code = code
        super().__init__(message)


class InvalidIdentifierError(LocalHubError, ValueError):
    """Raised when a plugin id, document key or user id fails sanitization."""

    status_code = 400
    code = "invalid_identifier"

    def __init__(self, kind: str, value: object, message: str | None = None) -> None:
        self.kind = kind
        self.value = value
        super().__init__(message or f"Invalid {kind}")


class MissingUserContextError(LocalHubError):
    """Raised when an operation needs a user scope that was not supplied."""

    status_code = 400
    code = "missing_user"


class DocumentNotFoundError(LocalHubError):
    """Raised when a document is absent or its content is not valid JSON."""

    status_code = 404
    code = "not_found"

    def __init__(self, plugin_id: str, key: str, user_id: str | None = None) -> None:
        self.plugin_id = plugin_id
        self.key = key
        self.user_id = user_id
        super().__init__("Not found")


class DocumentWriteError(LocalHubError):
    """Raised when a document cannot be written. Never retried internally."""

    status_code = 500
    code = "write_failed"


class NotConnectedError(LocalHubError):
    """Raised when no usable OAuth access token exists for the caller.

    ``code`` is provider specific (``calendar_not_connected``,
    ``strava_not_connected``) so clients can render a reconnect action.
    """

    status_code = 403
    code = "not_connected"


class UpstreamError(LocalHubError):
    """Raised when a provider returns a non-2xx status or a malformed body."""

    status_code = 502
    code = "upstream_error"

    def __init__(
        self,
        message: str,
        *,
        upstream_status: int | None = None,
        code: str | None = None,
    ) -> None:
        self.upstream_status = upstream_status
        super().__init__(message, code=code)


class ProviderNotConfiguredError(LocalHubError):
    """Raised when a provider's client id/secret pair is not configured."""

    status_code = 503
    code = "not_configured"


class OAuthCallbackError(LocalHubError):
    """Raised when an OAuth callback cannot complete.

    ``code`` is the short error code placed in the UI redirect query string
    (``invalid_callback``, ``not_configured``, ``token_failed``, ...).
    """

    status_code = 400

    def __init__(self, code: str, message: str | None = None) -> None:
        super().__init__(message or code, code=code)


class InvalidRequestError(LocalHubError):
    """Raised when a request body or query parameter is unusable."""

    status_code = 400
    code = "invalid_request"
