"""Connection registry: the ``connectedApps`` list on the user profile.

A denormalized UI cache of OAuth state, updated by the OAuth session
managers on every connect and disconnect. It is never the source of truth
for whether tokens exist and tolerates going stale (no locking); the next
profile load self-corrects the UI.
"""

from __future__ import annotations

import logging
from typing import Any

from localhub.errors import DocumentNotFoundError, DocumentWriteError, InvalidIdentifierError
from localhub.identity import Principal
from localhub.storage import DocumentStore

logger = logging.getLogger(__name__)

USER_MANAGEMENT_PLUGIN_ID = "user-management"
PROFILE_KEY = "profile"
CONNECTED_APPS_FIELD = "connectedApps"


def load_profile(store: DocumentStore, principal: Principal) -> dict[str, Any]:
    """Return the user's profile, falling back to the legacy shared profile.

    The shared (non user scoped) profile predates per-user profiles; reading
    it here is the one-time migration path. The fallback applies only when
    the user document is absent, not when it holds ``null``. Non-object
    documents are treated as an empty profile.
    """
    try:
        profile = store.get(USER_MANAGEMENT_PLUGIN_ID, PROFILE_KEY, principal.user_id)
    except DocumentNotFoundError:
        profile = store.get_or_default(USER_MANAGEMENT_PLUGIN_ID, PROFILE_KEY)
    return dict(profile) if isinstance(profile, dict) else {}


def connected_apps(profile: dict[str, Any]) -> list[str]:
    apps = profile.get(CONNECTED_APPS_FIELD)
    if not isinstance(apps, list):
        return []
    return [app for app in apps if isinstance(app, str)]


def update_connected_apps(
    store: DocumentStore,
    principal: Principal,
    app_id: str,
    connected: bool,
) -> bool:
    """Add or remove *app_id* from the user's ``connectedApps``.

    Always writes the user scoped profile. Returns ``False`` (after logging)
    when the profile cannot be read or written, including when the
    ``user-management`` namespace is outside the plugin allow-list.
    """
    try:
        profile = load_profile(store, principal)
        apps = connected_apps(profile)
        if connected:
            if app_id not in apps:
                apps.append(app_id)
        else:
            apps = [app for app in apps if app != app_id]
        profile[CONNECTED_APPS_FIELD] = apps
        store.put(USER_MANAGEMENT_PLUGIN_ID, PROFILE_KEY, profile, principal.user_id)
    except (DocumentWriteError, InvalidIdentifierError) as exc:
        logger.warning(
            "Could not update connectedApps for user %s (app=%s, connected=%s): %s",
            principal.user_id,
            app_id,
            connected,
            exc,
        )
        return False
    logger.info(
        "connectedApps updated for user %s: %s %s",
        principal.user_id,
        "added" if connected else "removed",
        app_id,
    )
    return True
