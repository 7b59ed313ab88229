import os
from pathlib import Path
from typing import Optional

import yaml

DEFAULT_CONFIG: dict = {
    "models": ["pull_requests", "teams"],
    "read_timeout": 60,
    "open_timeout": 10,
    "retries": 3,
    "ssl_verify": True,
    "http_cache": False,  # cache GET responses on disk for the duration of one run
    "output": None,  # None = bbsexport_{timestamp}.tar.gz in the current directory
}


def load_config(config_path: str = ".bbsexport.yml", cli_overrides: Optional[dict] = None) -> dict:
    """
    Load configuration by merging (in order of precedence):
      1. Built-in defaults
      2. .bbsexport.yml in the current directory
      3. CLI argument overrides
    """
    config = {**DEFAULT_CONFIG, "models": list(DEFAULT_CONFIG["models"])}

    path = Path(config_path)
    if path.exists():
        with open(path) as f:
            file_config = yaml.safe_load(f) or {}
        config.update(file_config)

    if cli_overrides:
        for key, value in cli_overrides.items():
            if value is not None:
                config[key] = value

    # Resolve server and credentials from environment variables
    config["base_url"] = os.environ.get("BITBUCKET_SERVER_URL") or config.get("base_url")
    config["token"] = os.environ.get("BITBUCKET_SERVER_API_TOKEN")
    config["user"] = os.environ.get("BITBUCKET_SERVER_API_USERNAME")
    config["password"] = os.environ.get("BITBUCKET_SERVER_API_PASSWORD")

    return config
