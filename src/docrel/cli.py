"""CLI for docrel: provision storage and inspect entity configuration."""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path

import click

from docrel.app import Docrel
from docrel.config import CONFIG_FILENAME, ConfigError, DocrelConfig, load_config
from docrel.core.logging import configure_logging
from docrel.db import Database

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(CONFIG_FILENAME)

_config_option = click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, path_type=Path),
    default=DEFAULT_CONFIG_PATH,
    help="Path to docrel.toml (or the directory containing it)",
)


@click.group()
@click.version_option(version="0.1.0")
def cli() -> None:
    """docrel: numeric-key relational access over a document store."""


def _load(config_path: Path) -> DocrelConfig:
    try:
        config = load_config(config_path)
    except ConfigError as exc:
        click.echo(f"Config error: {exc}", err=True)
        sys.exit(1)
    configure_logging(config.logging.level, config.logging.format)
    return config


async def _init_db(config: DocrelConfig) -> None:
    db = config.database
    if db.backend == "postgres":
        database = Database.from_url(db.url) if db.url else Database.from_env()
        await database.provision()
    docrel = await Docrel.from_config(config)
    try:
        await docrel.start()
    finally:
        await docrel.close()


@cli.command("init-db")
@_config_option
def init_db(config_path: Path) -> None:
    """Create the database, the document tables and the unique indexes."""
    config = _load(config_path)
    if config.database.backend == "memory":
        click.echo("Memory backend configured; nothing to provision.")
        return
    asyncio.run(_init_db(config))
    click.echo(f"Initialised storage for {len(config.entities)} entity type(s)")


@cli.command("entities")
@_config_option
def entities_cmd(config_path: Path) -> None:
    """List the configured entity types and their relations."""
    config = _load(config_path)
    if not config.entities:
        click.echo(f"No entities configured in {config_path}")
        return

    click.echo(f"{'Entity':<24} {'Id field':<24} {'Collection':<24} {'Relations'}")
    click.echo("-" * 96)
    for definition in sorted(config.entities, key=lambda d: d.name):
        relations = ", ".join(
            f"{r.field}->{r.target}{'[]' if r.many else ''}" for r in definition.relations
        )
        click.echo(
            f"{definition.name:<24} {definition.id_field:<24} "
            f"{definition.collection:<24} {relations or '(none)'}"
        )
