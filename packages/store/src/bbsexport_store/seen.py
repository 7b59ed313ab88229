"""Per-job record of which models have already been archived.

Keys are (model name, canonical URL) pairs. The cache lives exactly as long
as the ArchiveBuilder that owns it and is never written to disk.
"""

from __future__ import annotations


class SeenCache:
    """Mapping of model name to the set of canonical URLs already written."""

    def __init__(self):
        self._seen: dict[str, set[str]] = {}

    def __contains__(self, key: tuple[str, str]) -> bool:
        model_name, url = key
        return url in self._seen.get(model_name, ())

    def add(self, model_name: str, url: str) -> None:
        self._seen.setdefault(model_name, set()).add(url)
