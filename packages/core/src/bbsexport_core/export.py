"""One export run: a set of repositories on one server into one archive."""

from __future__ import annotations

import logging
import time
from pathlib import Path

from rich.console import Console

from bbsexport_core.bitbucket.connection import Connection
from bbsexport_core.bitbucket.resources import BitbucketServer
from bbsexport_core.dispatch import Dispatcher, Outcome
from bbsexport_core.exporters.repository import RepositoryExporter
from bbsexport_core.urls import ModelUrlService, url_templates
from bbsexport_store.archive import ArchiveBuilder
from bbsexport_store.git import Git

console = Console()
logger = logging.getLogger(__name__)


def parse_repository(value: str) -> tuple[str, str]:
    """Split ``PROJECT/slug`` into its two parts."""
    project_key, sep, slug = value.strip().partition("/")
    if not sep or not project_key or not slug or "/" in slug:
        raise ValueError(f"Repository must be given as PROJECT/slug, got {value!r}")
    return project_key, slug


def default_output_path() -> Path:
    return Path(f"bbsexport_{time.strftime('%Y%m%d%H%M%S')}.tar.gz")


class ExportJob:
    """Exports each repository in turn and packs the result.

    The staging directory is removed whether the job succeeds or fails,
    unless ``keep_staging`` is set. The connection is always closed.
    """

    def __init__(
        self,
        connection: Connection,
        repositories: list[str],
        models: list[str] | tuple[str, ...] = (),
        output_path: str | Path | None = None,
        staging_dir: str | Path | None = None,
        keep_staging: bool = False,
        clone: bool = True,
    ):
        self.connection = connection
        self.repositories = [parse_repository(r) for r in repositories]
        self.models = list(models)
        self.output_path = Path(output_path) if output_path else default_output_path()
        self.keep_staging = keep_staging
        self.clone = clone

        self.server = BitbucketServer(connection)
        self.url_service = ModelUrlService()
        self.archiver = ArchiveBuilder(
            staging_dir=staging_dir,
            url_templates=url_templates(),
            git=Git(ssl_verify=connection.ssl_verify),
        )
        self.dispatcher = Dispatcher(self.archiver, url_service=self.url_service)

    def run(self) -> Path | None:
        """Run the export. Returns the archive path, or None if nothing was exported."""
        try:
            for project_key, slug in self.repositories:
                RepositoryExporter(
                    self.dispatcher,
                    self.server,
                    self.server.repository(project_key, slug),
                    models=self.models,
                    clone=self.clone,
                ).export()

            self._report()

            if not self.archiver.used():
                console.print("[yellow]Nothing was exported.[/yellow]")
                self.archiver.discard()
                return None

            path = self.archiver.finalize(self.output_path)
            console.print(f"[green]Archive written to[/green] {path}")
            return path
        except Exception:
            if self.keep_staging:
                logger.error("Export failed; staging directory kept at %s", self.archiver.staging_dir)
            else:
                self.archiver.discard()
            raise
        finally:
            self.connection.close()

    def _report(self) -> None:
        counts = self.dispatcher.counts
        logger.info(
            "%d serialized, %d skipped, %d failed",
            counts[Outcome.SERIALIZED],
            counts[Outcome.SKIPPED],
            counts[Outcome.FAILED],
        )
        for failure in self.dispatcher.failures():
            console.print(f"[yellow]Could not export {failure.model_name} {failure.url}:[/yellow] {failure.reason}")
