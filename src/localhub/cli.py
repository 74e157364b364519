"""CLI for LocalHub: run the API server and inspect stored plugin data."""

from __future__ import annotations

import logging
import sys

import click

from localhub import __version__
from localhub.config import ConfigError, HubConfig, load_config
from localhub.core.logging import configure_logging
from localhub.errors import InvalidIdentifierError
from localhub.identity import IdentifierSanitizer
from localhub.storage import DocumentStore

logger = logging.getLogger(__name__)


def _load_config_or_exit() -> HubConfig:
    try:
        return load_config()
    except ConfigError as exc:
        click.echo(f"Configuration error: {exc}", err=True)
        sys.exit(2)


def _open_store(config: HubConfig) -> DocumentStore:
    return DocumentStore(config.data_dir, IdentifierSanitizer(config.allowed_plugin_ids))


@click.group()
@click.version_option(version=__version__)
def cli() -> None:
    """LocalHub: local-first personal dashboard backend."""


@cli.command()
@click.option("--host", default=None, help="Bind address (default: HOST or 127.0.0.1)")
@click.option("--port", type=int, default=None, help="Port (default: PORT or 3000)")
def serve(host: str | None, port: int | None) -> None:
    """Start the LocalHub API server."""
    import uvicorn

    from localhub.api.app import create_app

    config = _load_config_or_exit()
    if host is not None:
        config.host = host
    if port is not None:
        config.port = port

    configure_logging(
        level=config.logging.level,
        fmt=config.logging.format,
        log_root=config.logging.log_root,
    )
    click.echo(f"LocalHub API listening on http://{config.host}:{config.port}")
    uvicorn.run(
        create_app(config),
        host=config.host,
        port=config.port,
        log_config=None,
    )


@cli.command()
@click.argument("plugin_id")
@click.option("--user", "user_id", default=None, help="List a user's documents instead")
def keys(plugin_id: str, user_id: str | None) -> None:
    """List document keys stored for PLUGIN_ID."""
    store = _open_store(_load_config_or_exit())
    try:
        found = store.list_keys(plugin_id, user_id)
    except InvalidIdentifierError as exc:
        click.echo(f"Error: {exc.message}", err=True)
        sys.exit(1)
    if not found:
        click.echo("No documents found.")
        return
    for key in found:
        click.echo(key)


@cli.command()
@click.argument("plugin_id")
def users(plugin_id: str) -> None:
    """List user ids that have data for PLUGIN_ID."""
    store = _open_store(_load_config_or_exit())
    try:
        found = store.list_user_ids(plugin_id)
    except InvalidIdentifierError as exc:
        click.echo(f"Error: {exc.message}", err=True)
        sys.exit(1)
    if not found:
        click.echo("No users found.")
        return
    for user_id in found:
        click.echo(user_id)
