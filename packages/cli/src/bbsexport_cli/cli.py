"""CLI entry point for bbsexport.

Commands:
  export   export one or more repositories into a migration archive
"""

from __future__ import annotations

import importlib.metadata
import logging

import click
from rich.console import Console
from rich.logging import RichHandler

from bbsexport_cli.commands.export import export_cmd

console = Console()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
        force=True,
    )


@click.group()
@click.version_option(
    version=importlib.metadata.version("bbsexport"),
    prog_name="bbsexport",
)
@click.option(
    "--config",
    "config_path",
    default=".bbsexport.yml",
    show_default=True,
    help="Path to the configuration file.",
    envvar="BBSEXPORT_CONFIG",
)
@click.option("--verbose", "-v", is_flag=True, help="Log every request and serialized record.")
@click.pass_context
def main(ctx: click.Context, config_path: str, verbose: bool):
    """Export Bitbucket Server repositories into a migration archive."""
    _configure_logging(verbose)

    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


main.add_command(export_cmd)
