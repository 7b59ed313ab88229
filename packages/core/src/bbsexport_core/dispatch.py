"""Serialize-and-deduplicate choke point between exporters and the archive.

Every record an exporter wants archived goes through Dispatcher.dispatch().
The model's canonical URL is the dedup key: a (model name, URL) pair already
recorded in the archive's seen-cache is skipped without calling its
serializer or touching the writer.
"""

from __future__ import annotations

import enum
import logging
from collections import Counter
from dataclasses import dataclass
from typing import TYPE_CHECKING

from bbsexport_core.serializers import SERIALIZERS, ValidationError
from bbsexport_core.urls import ModelUrlService

if TYPE_CHECKING:
    from bbsexport_store.archive import ArchiveBuilder

logger = logging.getLogger(__name__)


class Outcome(enum.Enum):
    SERIALIZED = "serialized"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class SerializeResult:
    """What happened to one record handed to the dispatcher."""

    model_name: str
    url: str
    outcome: Outcome
    reason: str | None = None

    @property
    def serialized(self) -> bool:
        return self.outcome is Outcome.SERIALIZED

    @property
    def failed(self) -> bool:
        return self.outcome is Outcome.FAILED


class Dispatcher:
    def __init__(self, archiver: ArchiveBuilder, url_service: ModelUrlService | None = None, serializers=None):
        self.archiver = archiver
        self.url_service = url_service or ModelUrlService()
        self.serializers = serializers if serializers is not None else SERIALIZERS
        self.counts: Counter = Counter()
        self._failures: list[SerializeResult] = []

    def dispatch(self, model_name: str, model: dict) -> SerializeResult:
        try:
            url = self.url_service.url_for_model(model, type=model_name)
        except (KeyError, TypeError, IndexError) as e:
            logger.warning("%s could not be given a URL, missing %s", model_name, e)
            return self._record(SerializeResult(model_name, "", Outcome.FAILED, reason=f"no URL: missing {e}"))

        if self.archiver.is_seen(model_name, url):
            logger.info("%s %s already serialized", model_name, url)
            return self._record(SerializeResult(model_name, url, Outcome.SKIPPED))

        serializer = self.serializers[model_name](url_service=self.url_service)
        try:
            record = serializer.serialize(model)
        except ValidationError as e:
            logger.warning("%s %s could not be serialized: %s", model_name, url, e)
            return self._record(SerializeResult(model_name, url, Outcome.FAILED, reason=str(e)))

        self.archiver.write(model_name, record)
        self.archiver.mark_seen(model_name, url)
        logger.info("%s %s serialized to json", model_name, url)
        return self._record(SerializeResult(model_name, url, Outcome.SERIALIZED))

    def serialize(self, model_name: str, model: dict) -> bool:
        """Return True only when the model was archived for the first time."""
        return self.dispatch(model_name, model).serialized

    def failures(self) -> list[SerializeResult]:
        return list(self._failures)

    def _record(self, result: SerializeResult) -> SerializeResult:
        self.counts[result.outcome] += 1
        if result.failed:
            self._failures.append(result)
        return result
