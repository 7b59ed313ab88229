"""Bitbucket Server credential resolution.

Resolution order (stops at first success):
  1. BITBUCKET_SERVER_API_TOKEN (personal access token, sent as Bearer)
  2. BITBUCKET_SERVER_API_USERNAME + BITBUCKET_SERVER_API_PASSWORD (HTTP Basic)
"""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


def resolve_credentials(config: dict) -> dict | None:
    """Return the Connection keyword arguments for the configured credentials.

    Never raises; callers should check for None and emit a UsageError.
    """
    if config.get("token"):
        logger.debug("Authenticating with a personal access token.")
        return {"token": config["token"], "user": config.get("user")}

    if config.get("user") and config.get("password"):
        logger.debug("Authenticating as %s with basic auth.", config["user"])
        return {"user": config["user"], "password": config["password"]}

    return None
