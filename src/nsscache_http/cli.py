"""Administrative command-line interface."""

from __future__ import annotations

import sys
from pathlib import Path

import click
import uvicorn
from safir.asyncio import run_with_asyncio
from safir.click import display_help

from .dependencies.config import config_dependency
from .exceptions import DirectoryError
from .factory import Factory
from .main import create_openapi

__all__ = [
    "help",
    "main",
    "openapi_schema",
    "refresh",
    "run",
]


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(message="%(version)s")
def main() -> None:
    """Administrative command-line interface for nsscache-http."""


@main.command()
@click.argument("topic", default=None, required=False, nargs=1)
@click.pass_context
def help(ctx: click.Context, topic: str | None) -> None:
    """Show help for any command."""
    display_help(main, ctx, topic)


@main.command()
@click.option(
    "--output",
    default=None,
    type=click.Path(path_type=Path),
    help="Output path (output to stdout if not given).",
)
def openapi_schema(*, output: Path | None) -> None:
    """Generate the OpenAPI schema."""
    schema = create_openapi()
    if output:
        output.parent.mkdir(exist_ok=True)
        output.write_text(schema)
    else:
        sys.stdout.write(schema)


@main.command()
@click.option(
    "--config-path",
    envvar="NSSCACHE_HTTP_CONFIG_PATH",
    type=click.Path(path_type=Path),
    default=None,
    help="Application configuration file.",
)
@run_with_asyncio
async def refresh(*, config_path: Path | None) -> None:
    """Retrieve the maps from LDAP once and report their sizes.

    Nothing is cached or served. Use this to check the LDAP configuration.
    """
    if config_path:
        config_dependency.set_config_path(config_path)
    config = await config_dependency()
    cache = Factory(config).create_snapshot_cache()
    try:
        snapshot = await cache.refresh()
    except DirectoryError as e:
        raise click.ClickException(str(e)) from e
    stats = snapshot.stats
    click.echo(
        f"accounts: {stats.accounts}\ngroups: {stats.groups}\n"
        f"shadow: {stats.shadow}"
    )


@main.command()
@click.option(
    "--config-path",
    envvar="NSSCACHE_HTTP_CONFIG_PATH",
    type=click.Path(path_type=Path),
    default=None,
    help="Application configuration file.",
)
def run(*, config_path: Path | None) -> None:
    """Run the application."""
    if config_path:
        config_dependency.set_config_path(config_path)
    config = config_dependency.config()
    uvicorn.run(
        "nsscache_http.main:create_app",
        factory=True,
        host=config.server.host,
        port=config.server.port,
    )
