"""Plugin document store endpoints.

Provides opaque JSON persistence for frontend plugins:

- ``GET /api/plugins/{plugin_id}/store``        list document keys
- ``GET /api/plugins/{plugin_id}/store/{key}``  read a document
- ``PUT /api/plugins/{plugin_id}/store/{key}``  overwrite a document
- ``GET /api/plugins/user-management/users``    list known users

``X-User-Id`` is optional here: without it the shared (non user scoped)
documents are addressed.
"""

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from localhub.api.deps import get_optional_user_id, get_store
from localhub.api.models import ErrorResponse
from localhub.api.models.store import DEFAULT_USER_EMOJI, KeysResponse, UsersResponse, UserSummary
from localhub.errors import InvalidIdentifierError, InvalidRequestError
from localhub.registry import PROFILE_KEY, USER_MANAGEMENT_PLUGIN_ID
from localhub.storage import DocumentStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/plugins", tags=["store"])

_ERROR_RESPONSES = {400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}}


def _require_document_path(
    store: DocumentStore, plugin_id: str, key: str, user_id: str | None
) -> None:
    if store.resolve_path(plugin_id, key, user_id) is None:
        raise InvalidIdentifierError("document", f"{plugin_id}/{key}", "Invalid pluginId or key")


@router.get("/user-management/users", response_model=UsersResponse)
async def list_users(store: DocumentStore = Depends(get_store)) -> UsersResponse:
    """List users with a ``user-management`` data directory, with name and emoji."""
    users = []
    if not store.is_plugin_id_valid(USER_MANAGEMENT_PLUGIN_ID):
        return UsersResponse(users=users)
    for user_id in store.list_user_ids(USER_MANAGEMENT_PLUGIN_ID):
        profile = store.get_or_default(USER_MANAGEMENT_PLUGIN_ID, PROFILE_KEY, user_id)
        if not isinstance(profile, dict):
            profile = {}
        name = profile.get("name")
        emoji = profile.get("emoji")
        users.append(
            UserSummary(
                id=user_id,
                name=name if isinstance(name, str) else "",
                emoji=emoji if isinstance(emoji, str) else DEFAULT_USER_EMOJI,
            )
        )
    return UsersResponse(users=users)


@router.get("/{plugin_id}/store", response_model=KeysResponse, responses=_ERROR_RESPONSES)
async def list_keys(
    plugin_id: str,
    store: DocumentStore = Depends(get_store),
    user_id: str | None = Depends(get_optional_user_id),
) -> KeysResponse:
    if not store.is_plugin_id_valid(plugin_id):
        raise InvalidIdentifierError("plugin id", plugin_id, "Invalid pluginId")
    return KeysResponse(keys=store.list_keys(plugin_id, user_id))


@router.get("/{plugin_id}/store/{key}", responses=_ERROR_RESPONSES)
async def read_document(
    plugin_id: str,
    key: str,
    store: DocumentStore = Depends(get_store),
    user_id: str | None = Depends(get_optional_user_id),
) -> JSONResponse:
    """Return the stored JSON value verbatim. 404 when absent or malformed."""
    _require_document_path(store, plugin_id, key, user_id)
    return JSONResponse(content=store.get(plugin_id, key, user_id))


@router.put("/{plugin_id}/store/{key}", responses=_ERROR_RESPONSES)
async def write_document(
    plugin_id: str,
    key: str,
    request: Request,
    store: DocumentStore = Depends(get_store),
    user_id: str | None = Depends(get_optional_user_id),
) -> JSONResponse:
    """Overwrite the document with the request body and echo it back."""
    _require_document_path(store, plugin_id, key, user_id)
    raw = await request.body()
    if not raw.strip():
        raise InvalidRequestError("Request body is empty")
    try:
        value = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise InvalidRequestError("Request body is not valid JSON") from exc

    store.put(plugin_id, key, value, user_id)
    logger.debug("Stored %s/%s (user=%s)", plugin_id, key, user_id)
    return JSONResponse(content=value)
