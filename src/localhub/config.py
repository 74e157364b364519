"""LocalHub configuration loading and validation.

Reads environment variables (optionally seeded from a ``.env`` file in the
working directory, never overriding variables already set) and returns a
validated HubConfig dataclass.

Provider secrets are only ever read from the environment; nothing here is
persisted.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

DEFAULT_PORT = 3000
DEFAULT_HOST = "127.0.0.1"
DEFAULT_CORS_ORIGIN = "http://localhost:4200"
DEFAULT_BATCH_CONCURRENCY = 4
DEFAULT_HTTP_TIMEOUT_SECONDS = 30.0

_LOG_FORMATS = ("text", "json")
_TRUTHY = ("1", "true", "yes", "on")


class ConfigError(Exception):
    """Raised when configuration is malformed or invalid."""


@dataclass
class LoggingConfig:
    """Logging configuration from ``LOCALHUB_LOG_*``."""

    level: str = "INFO"
    format: str = "text"  # "text" or "json"
    log_root: Path | None = None


@dataclass
class ProviderCredentials:
    """OAuth app credentials for one provider. Empty means not configured."""

    client_id: str = ""
    client_secret: str = ""

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def __repr__(self) -> str:
        secret = "<REDACTED>" if self.client_secret else "''"
        return f"ProviderCredentials(client_id={self.client_id!r}, client_secret={secret})"


@dataclass
class HubConfig:
    """Parsed LocalHub server configuration."""

    data_dir: Path = field(default_factory=lambda: Path.cwd() / "data")
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    cors_origin: str = DEFAULT_CORS_ORIGIN
    base_url: str = f"http://localhost:{DEFAULT_PORT}"
    allowed_plugin_ids: tuple[str, ...] = ()
    google: ProviderCredentials = field(default_factory=ProviderCredentials)
    strava: ProviderCredentials = field(default_factory=ProviderCredentials)
    strava_insecure_tls: bool = False
    batch_concurrency: int = DEFAULT_BATCH_CONCURRENCY
    http_timeout: float = DEFAULT_HTTP_TIMEOUT_SECONDS
    public_dir: Path | None = None
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _parse_int(env: Mapping[str, str], name: str, default: int, *, minimum: int) -> int:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from None
    if value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {value}")
    return value


def _parse_plugin_ids(raw: str | None) -> tuple[str, ...]:
    if not raw:
        return ()
    return tuple(part.strip() for part in raw.split(",") if part.strip())


def load_config(
    env: Mapping[str, str] | None = None,
    *,
    dotenv_path: Path | None = None,
) -> HubConfig:
    """Build a :class:`HubConfig` from the environment.

    Parameters
    ----------
    env:
        Variables to read. Defaults to ``os.environ`` after loading
        ``.env``; an explicit mapping skips ``.env`` loading entirely.
    dotenv_path:
        ``.env`` file to load when *env* is not given. Defaults to the
        nearest ``.env`` found from the working directory.

    Raises
    ------
    ConfigError
        If a numeric variable or the log format is malformed.
    """
    if env is None:
        load_dotenv(dotenv_path=dotenv_path, override=False)
        env = os.environ

    port = _parse_int(env, "PORT", DEFAULT_PORT, minimum=0)
    concurrency = _parse_int(
        env, "LOCALHUB_BATCH_CONCURRENCY", DEFAULT_BATCH_CONCURRENCY, minimum=1
    )

    log_format = env.get("LOCALHUB_LOG_FORMAT", "text").strip().lower() or "text"
    if log_format not in _LOG_FORMATS:
        raise ConfigError(f"LOCALHUB_LOG_FORMAT must be one of {_LOG_FORMATS}, got {log_format!r}")
    log_root = env.get("LOCALHUB_LOG_ROOT", "").strip()

    data_dir = env.get("LOCALHUB_DATA", "").strip()
    public_dir = env.get("PUBLIC_DIR", "").strip()
    base_url = env.get("LOCALHUB_BASE_URL", "").strip() or f"http://localhost:{port}"

    return HubConfig(
        data_dir=Path(data_dir) if data_dir else Path.cwd() / "data",
        host=env.get("HOST", "").strip() or DEFAULT_HOST,
        port=port,
        cors_origin=env.get("CORS_ORIGIN", "").strip() or DEFAULT_CORS_ORIGIN,
        base_url=base_url.rstrip("/"),
        allowed_plugin_ids=_parse_plugin_ids(env.get("LOCALHUB_PLUGIN_IDS")),
        google=ProviderCredentials(
            client_id=env.get("GOOGLE_CLIENT_ID", "").strip(),
            client_secret=env.get("GOOGLE_CLIENT_SECRET", "").strip(),
        ),
        strava=ProviderCredentials(
            client_id=env.get("STRAVA_CLIENT_ID", "").strip(),
            client_secret=env.get("STRAVA_CLIENT_SECRET", "").strip(),
        ),
        strava_insecure_tls=env.get("LOCALHUB_DEV_INSECURE_TLS", "").strip().lower() in _TRUTHY,
        batch_concurrency=concurrency,
        public_dir=Path(public_dir) if public_dir else None,
        logging=LoggingConfig(
            level=env.get("LOCALHUB_LOG_LEVEL", "").strip().upper() or "INFO",
            format=log_format,
            log_root=Path(log_root) if log_root else None,
        ),
    )
