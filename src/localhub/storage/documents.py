"""Sandboxed JSON document store for plugins.

Documents live on the local filesystem under the configured data root::

    {data_root}/plugins/{plugin_id}/{key}.json            # shared
    {data_root}/plugins/{plugin_id}/{user_id}/{key}.json  # user scoped

The layout is part of the contract: other plugins scan it (e.g. "list all
users who have data for plugin X").

All identity resolution goes through :meth:`DocumentStore.resolve_path`, so
every read, write and list shares the same sanitization. Identifiers are
validated before any path is built; nothing is filtered afterwards.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

from localhub.errors import DocumentNotFoundError, DocumentWriteError, InvalidIdentifierError
from localhub.identity import IdentifierSanitizer, is_valid_user_id

logger = logging.getLogger(__name__)

type JsonValue = None | bool | int | float | str | list[JsonValue] | dict[str, JsonValue]

PLUGINS_DIR = "plugins"
DOCUMENT_SUFFIX = ".json"


class DocumentStore:
    """Filesystem-backed store of opaque JSON documents.

    Writes replace the whole file (temporary file + ``os.replace``); there is
    no partial update, versioning or delete primitive. Reads treat a missing
    file and malformed JSON alike as absence.

    Args:
        data_root: Root directory; documents live under ``data_root/plugins``.
        sanitizer: Identifier sanitizer, carrying the plugin allow-list.
    """

    def __init__(self, data_root: Path | str, sanitizer: IdentifierSanitizer | None = None):
        self.data_root = Path(data_root)
        self.sanitizer = sanitizer or IdentifierSanitizer()

    @property
    def plugins_root(self) -> Path:
        return self.data_root / PLUGINS_DIR

    # ------------------------------------------------------------------
    # Identity resolution
    # ------------------------------------------------------------------

    def _plugin_dir(self, plugin_id: str, user_id: str | None = None) -> Path:
        pid = self.sanitizer.plugin_id(plugin_id)
        uid = self.sanitizer.user_id(user_id)
        base = self.plugins_root / pid
        return base / uid if uid is not None else base

    def _document_path(self, plugin_id: str, key: str, user_id: str | None = None) -> Path:
        directory = self._plugin_dir(plugin_id, user_id)
        return directory / f"{self.sanitizer.key(key)}{DOCUMENT_SUFFIX}"

    def resolve_path(self, plugin_id: str, key: str, user_id: str | None = None) -> Path | None:
        """Return the document path, or ``None`` if any identifier is invalid."""
        try:
            return self._document_path(plugin_id, key, user_id)
        except InvalidIdentifierError:
            return None

    def is_plugin_id_valid(self, plugin_id: str) -> bool:
        return self.sanitizer.is_plugin_id_valid(plugin_id)

    # ------------------------------------------------------------------
    # Read / write
    # ------------------------------------------------------------------

    def get(self, plugin_id: str, key: str, user_id: str | None = None) -> JsonValue:
        """Read and parse a document.

        Raises
        ------
        InvalidIdentifierError
            If any identifier fails sanitization.
        DocumentNotFoundError
            If the file is missing or does not contain valid JSON.
        """
        path = self._document_path(plugin_id, key, user_id)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise DocumentNotFoundError(plugin_id, key, user_id) from None
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Unreadable document %s: %s", path, exc)
            raise DocumentNotFoundError(plugin_id, key, user_id) from None

        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            logger.warning("Malformed JSON in document %s: %s", path, exc.msg)
            raise DocumentNotFoundError(plugin_id, key, user_id) from None

    def get_or_default(
        self,
        plugin_id: str,
        key: str,
        user_id: str | None = None,
        *,
        default: Any = None,
    ) -> Any:
        """Like :meth:`get` but returns *default* when the document is absent."""
        try:
            return self.get(plugin_id, key, user_id)
        except DocumentNotFoundError:
            return default

    def put(
        self,
        plugin_id: str,
        key: str,
        value: JsonValue,
        user_id: str | None = None,
    ) -> None:
        """Overwrite a document with *value*, creating parent directories.

        Raises
        ------
        InvalidIdentifierError
            If any identifier fails sanitization.
        DocumentWriteError
            On any serialization or I/O failure. Not retried.
        """
        path = self._document_path(plugin_id, key, user_id)
        try:
            payload = json.dumps(value, indent=2, ensure_ascii=False)
        except (TypeError, ValueError) as exc:
            raise DocumentWriteError(f"Value is not JSON serializable: {exc}") from exc

        tmp_name: str | None = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=path.parent, prefix=f".{path.stem}.", suffix=".tmp"
            )
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
            os.replace(tmp_name, path)
        except OSError as exc:
            logger.error("Write failed for document %s: %s", path, exc)
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)
            raise DocumentWriteError("Write failed") from exc

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    def list_keys(self, plugin_id: str, user_id: str | None = None) -> list[str]:
        """Return the keys of the documents directly in the resolved directory."""
        directory = self._plugin_dir(plugin_id, user_id)
        try:
            entries = list(directory.iterdir())
        except (FileNotFoundError, NotADirectoryError):
            return []
        except OSError as exc:
            logger.warning("Cannot list %s: %s", directory, exc)
            return []
        return sorted(
            entry.name[: -len(DOCUMENT_SUFFIX)]
            for entry in entries
            if entry.is_file() and entry.name.endswith(DOCUMENT_SUFFIX)
        )

    def list_user_ids(self, plugin_id: str) -> list[str]:
        """Return user ids with a data directory under *plugin_id*.

        Only subdirectories whose names independently pass user id
        sanitization are reported.
        """
        directory = self._plugin_dir(plugin_id)
        try:
            entries = list(directory.iterdir())
        except (FileNotFoundError, NotADirectoryError):
            return []
        except OSError as exc:
            logger.warning("Cannot list %s: %s", directory, exc)
            return []
        return sorted(
            entry.name for entry in entries if entry.is_dir() and _is_exact_user_id(entry.name)
        )


def _is_exact_user_id(name: str) -> bool:
    # Directory names with surrounding whitespace would sanitize to a different id.
    return is_valid_user_id(name) and name == name.strip()
