"""export command: export repositories into a migration archive."""

from __future__ import annotations

import click

from bbsexport_core.bitbucket.connection import BitbucketServerError, Connection
from bbsexport_core.export import ExportJob, parse_repository
from bbsexport_core.exporters.repository import RepositoryExporter
from bbsexport_store.git import GitError


def _validate_repositories(ctx, param, values):
    for value in values:
        try:
            parse_repository(value)
        except ValueError as e:
            raise click.BadParameter(str(e)) from e
    return values


@click.command("export")
@click.option(
    "--repo",
    "repositories",
    multiple=True,
    required=True,
    callback=_validate_repositories,
    help="Repository to export as PROJECT/slug. Repeat for several repositories.",
)
@click.option("--output", "-o", "output", default=None, help="Path of the archive to write.")
@click.option(
    "--models",
    multiple=True,
    type=click.Choice(sorted(RepositoryExporter.OPTIONAL_MODELS)),
    default=None,
    help="Optional data to include. Repeat for several; overrides config file.",
)
@click.option("--keep-staging", is_flag=True, help="Keep the staging directory if the export fails.")
@click.option("--no-git", "no_git", is_flag=True, help="Skip cloning git data.")
@click.pass_context
def export_cmd(
    ctx,
    repositories: tuple[str, ...],
    output: str | None,
    models: tuple[str, ...],
    keep_staging: bool,
    no_git: bool,
):
    """Export Bitbucket Server repositories into a single archive.

    \b
    Required environment variables:
      BITBUCKET_SERVER_URL            Base URL of the server
      BITBUCKET_SERVER_API_TOKEN      Personal access token, or
      BITBUCKET_SERVER_API_USERNAME   and
      BITBUCKET_SERVER_API_PASSWORD   for basic auth
    """
    from bbsexport_core.config import load_config
    from bbsexport_cli.auth import resolve_credentials

    config_path = (ctx.obj or {}).get("config_path", ".bbsexport.yml")
    config = load_config(config_path, cli_overrides={"models": list(models) or None, "output": output})

    if not config.get("base_url"):
        raise click.UsageError("No server URL found. Set BITBUCKET_SERVER_URL.")

    models = config.get("models") or []
    unknown = sorted(set(models) - set(RepositoryExporter.OPTIONAL_MODELS))
    if unknown:
        raise click.UsageError(f"Unknown models in config: {', '.join(unknown)}")

    credentials = resolve_credentials(config)
    if credentials is None:
        raise click.UsageError(
            "No credentials found. Set BITBUCKET_SERVER_API_TOKEN, or "
            "BITBUCKET_SERVER_API_USERNAME and BITBUCKET_SERVER_API_PASSWORD."
        )

    try:
        connection = Connection(
            config["base_url"],
            read_timeout=config.get("read_timeout"),
            open_timeout=config.get("open_timeout"),
            retries=config.get("retries"),
            ssl_verify=config.get("ssl_verify", True),
            http_cache=config.get("http_cache", False),
            **credentials,
        )
        job = ExportJob(
            connection,
            list(repositories),
            models=models,
            output_path=config.get("output"),
            keep_staging=keep_staging,
            clone=not no_git,
        )
        job.run()
    except (BitbucketServerError, GitError) as e:
        raise click.ClickException(str(e)) from e