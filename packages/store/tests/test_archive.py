"""Tests for ArchiveBuilder and the git wrapper."""

from __future__ import annotations

import json
import subprocess
import tarfile
from unittest.mock import MagicMock

import pytest

from bbsexport_store.archive import SCHEMA_VERSION, ArchiveBuilder
from bbsexport_store.git import Git, GitError

REPOSITORY = {"slug": "api", "project": {"key": "PRJ"}}


def _member_names(path):
    with tarfile.open(path, "r:gz") as tar:
        return set(tar.getnames())


def _read_member(path, name):
    with tarfile.open(path, "r:gz") as tar:
        return json.load(tar.extractfile(name))


# ---------------------------------------------------------------------------
# ArchiveBuilder
# ---------------------------------------------------------------------------


class TestArchiveBuilder:
    def test_default_staging_dir_is_created(self):
        archive = ArchiveBuilder()
        try:
            assert archive.staging_dir.is_dir()
            assert archive.staging_dir.name.startswith("bbsexport_")
        finally:
            archive.discard()

    def test_writer_for_reuses_writer(self, tmp_path):
        archive = ArchiveBuilder(staging_dir=tmp_path / "staging")
        assert archive.writer_for("user") is archive.writer_for("user")
        assert archive.writer_for("user") is not archive.writer_for("team")

    def test_used(self, tmp_path):
        archive = ArchiveBuilder(staging_dir=tmp_path / "staging")
        assert not archive.used()

        archive.writer_for("user")
        assert not archive.used()

        archive.write("user", {"login": "alice"})
        assert archive.used()
        assert archive.record_counts() == {"user": 1}

    def test_seen(self, tmp_path):
        archive = ArchiveBuilder(staging_dir=tmp_path / "staging")
        assert not archive.is_seen("user", "u1")
        archive.mark_seen("user", "u1")
        assert archive.is_seen("user", "u1")
        assert not archive.is_seen("team", "u1")

    def test_finalize_packs_and_removes_staging(self, tmp_path):
        staging = tmp_path / "staging"
        templates = {"user": "{scheme}://{host}/users/{user}"}
        archive = ArchiveBuilder(staging_dir=staging, url_templates=templates)
        archive.write("user", {"login": "alice"})
        archive.save_attachment(b"binary", "abc.png")

        output = archive.finalize(tmp_path / "out" / "export.tar.gz")

        assert not staging.exists()
        assert output == (tmp_path / "out" / "export.tar.gz").resolve()
        assert {"schema.json", "urls.json", "users_000001.json", "attachments/abc.png"} <= _member_names(output)
        assert _read_member(output, "schema.json") == {"version": SCHEMA_VERSION}
        assert SCHEMA_VERSION == "1.2.0"
        assert _read_member(output, "urls.json") == templates
        assert _read_member(output, "users_000001.json") == [{"login": "alice"}]

    def test_finalize_failure_leaves_staging(self, tmp_path, mocker):
        staging = tmp_path / "staging"
        archive = ArchiveBuilder(staging_dir=staging)
        archive.write("user", {"login": "alice"})
        mocker.patch("bbsexport_store.archive.tarfile.open", side_effect=OSError("disk full"))

        with pytest.raises(OSError):
            archive.finalize(tmp_path / "export.tar.gz")

        assert staging.exists()
        assert (staging / "users_000001.json").exists()

    def test_discard(self, tmp_path):
        staging = tmp_path / "staging"
        archive = ArchiveBuilder(staging_dir=staging)
        archive.write("user", {"login": "alice"})
        archive.discard()
        assert not staging.exists()

    def test_repo_path(self, tmp_path):
        archive = ArchiveBuilder(staging_dir=tmp_path)
        assert archive.repo_path(REPOSITORY) == tmp_path / "repositories" / "PRJ" / "api.git"

    def test_clone_repo_delegates_to_git(self, tmp_path):
        git = MagicMock(spec=Git)
        archive = ArchiveBuilder(staging_dir=tmp_path, git=git)

        target = archive.clone_repo(REPOSITORY, "https://bbs/scm/prj/api.git", auth_header="Bearer t")

        git.clone.assert_called_once_with(
            "https://bbs/scm/prj/api.git", tmp_path / "repositories" / "PRJ" / "api.git", auth_header="Bearer t"
        )
        assert target == tmp_path / "repositories" / "PRJ" / "api.git"


# ---------------------------------------------------------------------------
# Git
# ---------------------------------------------------------------------------


class TestGit:
    def test_clone_runs_mirror(self, tmp_path, mocker):
        run = mocker.patch("subprocess.run", return_value=MagicMock(returncode=0, stderr=""))

        Git().clone("https://bbs/scm/prj/api.git", tmp_path / "r" / "api.git")

        args = run.call_args.args[0]
        assert args == ["git", "clone", "--mirror", "--quiet", "https://bbs/scm/prj/api.git", str(tmp_path / "r" / "api.git")]
        assert (tmp_path / "r").is_dir()
        env = run.call_args.kwargs["env"]
        assert env["GIT_TERMINAL_PROMPT"] == "0"
        assert env["GIT_CONFIG_COUNT"] == "0"

    def test_auth_header_and_ssl_passed_through_env(self, tmp_path, mocker):
        run = mocker.patch("subprocess.run", return_value=MagicMock(returncode=0, stderr=""))

        Git(ssl_verify=False).clone("https://bbs/scm/prj/api.git", tmp_path / "api.git", auth_header="Bearer t")

        env = run.call_args.kwargs["env"]
        assert env["GIT_CONFIG_COUNT"] == "2"
        assert (env["GIT_CONFIG_KEY_0"], env["GIT_CONFIG_VALUE_0"]) == ("http.sslVerify", "false")
        assert (env["GIT_CONFIG_KEY_1"], env["GIT_CONFIG_VALUE_1"]) == ("http.extraHeader", "Authorization: Bearer t")
        assert "Bearer t" not in " ".join(run.call_args.args[0])

    def test_nonzero_exit_raises(self, tmp_path, mocker):
        mocker.patch("subprocess.run", return_value=MagicMock(returncode=128, stderr="fatal: not found\n"))

        with pytest.raises(GitError, match="fatal: not found"):
            Git().clone("https://bbs/scm/prj/api.git", tmp_path / "api.git")

    def test_missing_git_raises(self, tmp_path, mocker):
        mocker.patch("subprocess.run", side_effect=FileNotFoundError("git"))

        with pytest.raises(GitError, match="not found"):
            Git().clone("https://bbs/scm/prj/api.git", tmp_path / "api.git")

    def test_timeout_raises(self, tmp_path, mocker):
        mocker.patch("subprocess.run", side_effect=subprocess.TimeoutExpired("git", 5))

        with pytest.raises(GitError, match="Timed out"):
            Git(timeout=5).clone("https://bbs/scm/prj/api.git", tmp_path / "api.git")
