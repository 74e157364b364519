"""Sandboxed JSON document storage for plugins."""

from localhub.storage.documents import DocumentStore, JsonValue

__all__ = ["DocumentStore", "JsonValue"]
