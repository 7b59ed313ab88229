"""Cache heuristic that makes Bitbucket Server API responses cacheable.

Bitbucket Server sends headers that forbid caching its API. Within one
export job the same resources are read repeatedly, so every response is
given a one hour public max-age before CacheControl decides what to store.
"""

from __future__ import annotations

from cachecontrol.heuristics import BaseHeuristic

CACHE_CONTROL = "max-age=3600, public"


class ForceCacheHeaders(BaseHeuristic):
    def update_headers(self, response):
        return {"cache-control": CACHE_CONTROL}

    def warning(self, response):
        return None
