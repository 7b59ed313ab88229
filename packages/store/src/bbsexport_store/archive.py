"""Staging directory, shard writers and final packaging for one archive.

Layout of the staging directory before packaging:

  {plural}_{NNNNNN}.json                  serialized records, one type per file
  urls.json                               URL templates for the importer
  schema.json                             {"version": "1.2.0"}
  repositories/{PROJECT}/{slug}.git       bare mirrors
  attachments/...                         binary attachment blobs

finalize() packs the tree into a single gzip-compressed tarball and removes
the staging directory.
"""

from __future__ import annotations

import json
import logging
import shutil
import tarfile
import tempfile
from pathlib import Path

from bbsexport_store.git import Git
from bbsexport_store.seen import SeenCache
from bbsexport_store.writer import SerializedModelWriter

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "1.2.0"


class ArchiveBuilder:
    """Persists all the data for one export job.

    The builder owns the seen-cache and one SerializedModelWriter per model
    type. Nothing here is thread-safe; a builder belongs to a single job.
    """

    def __init__(
        self,
        staging_dir: str | Path | None = None,
        url_templates: dict | None = None,
        git: Git | None = None,
    ):
        if staging_dir is None:
            staging_dir = tempfile.mkdtemp(prefix="bbsexport_")
        self.staging_dir = Path(staging_dir)
        self.staging_dir.mkdir(parents=True, exist_ok=True)

        self._url_templates = url_templates or {}
        self._git = git or Git()
        self._writers: dict[str, SerializedModelWriter] = {}
        self._seen = SeenCache()

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def writer_for(self, model_name: str) -> SerializedModelWriter:
        """Return the writer for ``model_name``, creating it on first use."""
        writer = self._writers.get(model_name)
        if writer is None:
            writer = SerializedModelWriter(self.staging_dir, model_name)
            self._writers[model_name] = writer
        return writer

    def write(self, model_name: str, data: dict) -> None:
        self.writer_for(model_name).add(data)

    def used(self) -> bool:
        """Return True if anything was written to the archive."""
        return any(w.records_written for w in self._writers.values())

    def record_counts(self) -> dict[str, int]:
        return {name: w.records_written for name, w in sorted(self._writers.items())}

    # ------------------------------------------------------------------
    # Seen-cache
    # ------------------------------------------------------------------

    def is_seen(self, model_name: str, url: str) -> bool:
        return (model_name, url) in self._seen

    def mark_seen(self, model_name: str, url: str) -> None:
        self._seen.add(model_name, url)

    # ------------------------------------------------------------------
    # Binary content
    # ------------------------------------------------------------------

    def save_attachment(self, data: bytes, *path: str) -> Path:
        target = self.staging_dir.joinpath("attachments", *path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        return target

    def repo_path(self, repository: dict) -> Path:
        """Where a repository's bare mirror is written inside the staging dir."""
        project_key = repository["project"]["key"]
        return self.staging_dir / "repositories" / project_key / f"{repository['slug']}.git"

    def clone_repo(self, repository: dict, clone_url: str, auth_header: str | None = None) -> Path:
        target = self.repo_path(repository)
        self._git.clone(clone_url, target, auth_header=auth_header)
        return target

    # ------------------------------------------------------------------
    # Packaging
    # ------------------------------------------------------------------

    def write_json_file(self, name: str, contents) -> None:
        with open(self.staging_dir / name, "w") as f:
            json.dump(contents, f, indent=2)

    def finalize(self, output_path: str | Path) -> Path:
        """Flush all writers, add metadata files, pack, and delete the staging dir.

        If packing raises, the staging directory is left on disk and the
        exception propagates.
        """
        for writer in self._writers.values():
            writer.close()

        self.write_json_file("urls.json", self._url_templates)
        self.write_json_file("schema.json", {"version": SCHEMA_VERSION})

        output_path = Path(output_path).expanduser().resolve()
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with tarfile.open(output_path, "w:gz") as tar:
            for child in sorted(self.staging_dir.iterdir()):
                tar.add(child, arcname=child.name)

        logger.info("Packed %s into %s", self.staging_dir, output_path)
        shutil.rmtree(self.staging_dir)
        return output_path

    def discard(self) -> None:
        """Remove the staging directory without packaging."""
        shutil.rmtree(self.staging_dir, ignore_errors=True)
