"""Thin wrapper around the git CLI for mirroring repositories into the archive."""

from __future__ import annotations

import logging
import os
import subprocess
from pathlib import Path

logger = logging.getLogger(__name__)


class GitError(RuntimeError):
    """Raised when a git command exits with a non-zero status."""


class Git:
    """Runs ``git clone --mirror`` with optional TLS verification disabled.

    Credentials are never put on the command line or in the clone URL. An
    ``Authorization`` header is passed through git's ``GIT_CONFIG_*``
    environment variables as ``http.extraHeader``.
    """

    def __init__(self, ssl_verify: bool = True, timeout: float | None = None):
        self._ssl_verify = ssl_verify
        self._timeout = timeout

    def _env(self, auth_header: str | None = None) -> dict[str, str]:
        env = dict(os.environ)
        env["GIT_TERMINAL_PROMPT"] = "0"
        config = []
        if not self._ssl_verify:
            config.append(("http.sslVerify", "false"))
        if auth_header:
            config.append(("http.extraHeader", f"Authorization: {auth_header}"))
        env["GIT_CONFIG_COUNT"] = str(len(config))
        for index, (key, value) in enumerate(config):
            env[f"GIT_CONFIG_KEY_{index}"] = key
            env[f"GIT_CONFIG_VALUE_{index}"] = value
        return env

    def clone(self, url: str, target: str | Path, auth_header: str | None = None) -> None:
        target = Path(target)
        target.parent.mkdir(parents=True, exist_ok=True)

        logger.info("Cloning %s into %s", url, target)
        try:
            result = subprocess.run(
                ["git", "clone", "--mirror", "--quiet", url, str(target)],
                capture_output=True,
                text=True,
                env=self._env(auth_header),
                timeout=self._timeout,
            )
        except FileNotFoundError as e:
            raise GitError("git executable not found on PATH") from e
        except subprocess.TimeoutExpired as e:
            raise GitError(f"Timed out cloning {url}") from e

        if result.returncode != 0:
            raise GitError(f"git clone of {url} failed: {result.stderr.strip()}")
