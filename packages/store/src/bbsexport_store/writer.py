"""Sharded JSON writer for one model type.

Records are buffered in memory and flushed to ``{plural}_{NNNNNN}.json``
files of at most SHARD_SIZE records each. Sequence numbers start at 1 and
are contiguous for a given model type.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

logger = logging.getLogger(__name__)

SHARD_SIZE = 100

_IRREGULAR_PLURALS = {
    "mouse": "mice",
    "person": "people",
    "child": "children",
}


def pluralize(word: str) -> str:
    """Pluralize the last word of a snake_case model name.

    >>> pluralize("pull_request_review")
    'pull_request_reviews'
    >>> pluralize("repository")
    'repositories'
    """
    head, _, last = word.rpartition("_")
    prefix = f"{head}_" if head else ""

    if last in _IRREGULAR_PLURALS:
        plural = _IRREGULAR_PLURALS[last]
    elif last.endswith("y") and last[-2:-1] not in ("a", "e", "i", "o", "u"):
        plural = last[:-1] + "ies"
    elif last.endswith(("s", "x", "z", "ch", "sh")):
        plural = last + "es"
    else:
        plural = last + "s"

    return prefix + plural


class SerializedModelWriter:
    """Accumulates records of a single model type and writes them in shards."""

    def __init__(self, directory: str | Path, model_name: str, shard_size: int = SHARD_SIZE):
        self._directory = Path(directory)
        self._model_name = model_name
        self._plural = pluralize(model_name)
        self._shard_size = shard_size
        self._buffer: list[dict] = []
        self._shard_count = 0
        self.records_written = 0

    @property
    def model_name(self) -> str:
        return self._model_name

    @property
    def shard_count(self) -> int:
        return self._shard_count

    def add(self, record: dict) -> None:
        self._buffer.append(record)
        self.records_written += 1
        if len(self._buffer) >= self._shard_size:
            self._flush()

    def close(self) -> None:
        """Write any buffered records as a final, possibly partial, shard."""
        if self._buffer:
            self._flush()

    def _flush(self) -> None:
        self._shard_count += 1
        path = self._directory / f"{self._plural}_{self._shard_count:06d}.json"
        with open(path, "w") as f:
            json.dump(self._buffer, f, indent=2)
        logger.debug("Wrote %d %s to %s", len(self._buffer), self._plural, path.name)
        self._buffer = []
