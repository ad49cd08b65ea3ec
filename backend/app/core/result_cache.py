"""
TTL result cache for the expensive discovery read paths.

One cache, six namespaces, each with its own freshness window:
search, detail, bounds, clusters, autocomplete, facets.

Entries are snapshots: values are deep-copied on the way in and on the way
out, and an entry is only ever replaced wholesale or left to expire.
"""

import asyncio
import copy
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Generic, Optional, Tuple, TypeVar

from app.core.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

SEARCH = "search"
DETAIL = "detail"
BOUNDS = "bounds"
CLUSTERS = "clusters"
AUTOCOMPLETE = "autocomplete"
FACETS = "facets"


@dataclass
class CacheEntry(Generic[T]):
    value: T
    created_at: float
    ttl: float

    def is_valid(self, now: float) -> bool:
        return now - self.created_at < self.ttl


def ttl_config_from_settings(config: Settings) -> Dict[str, float]:
    return {
        SEARCH: config.CACHE_TTL_SEARCH_SECONDS,
        DETAIL: config.CACHE_TTL_DETAIL_SECONDS,
        BOUNDS: config.CACHE_TTL_BOUNDS_SECONDS,
        CLUSTERS: config.CACHE_TTL_CLUSTERS_SECONDS,
        AUTOCOMPLETE: config.CACHE_TTL_AUTOCOMPLETE_SECONDS,
        FACETS: config.CACHE_TTL_FACETS_SECONDS,
    }


class ResultCache:
    """
    In-process key/value cache keyed by (namespace, canonical key).

    Concurrent misses on one key share a single in-flight load. Loads run as
    shielded tasks: if the caller goes away, the load still finishes and
    populates the cache for the next identical request.
    """

    def __init__(
        self,
        ttl_seconds: Dict[str, float],
        max_entries: int = 5000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._ttl = dict(ttl_seconds)
        self._max_entries = max_entries
        self._clock = clock
        self._entries: Dict[Tuple[str, str], CacheEntry] = {}
        self._inflight: Dict[Tuple[str, str], asyncio.Task] = {}
        self._hits: Dict[str, int] = {ns: 0 for ns in self._ttl}
        self._misses: Dict[str, int] = {ns: 0 for ns in self._ttl}

    @classmethod
    def from_settings(cls, config: Settings) -> "ResultCache":
        return cls(ttl_config_from_settings(config), max_entries=config.CACHE_MAX_ENTRIES)

    def ttl_for(self, namespace: str) -> float:
        if namespace not in self._ttl:
            raise KeyError(f"Unknown cache namespace: {namespace}")
        return self._ttl[namespace]

    def get(self, namespace: str, key: str) -> Optional[Any]:
        entry = self._entries.get((namespace, key))
        if entry is None or not entry.is_valid(self._clock()):
            self._misses[namespace] = self._misses.get(namespace, 0) + 1
            return None
        self._hits[namespace] = self._hits.get(namespace, 0) + 1
        return copy.deepcopy(entry.value)

    def set(self, namespace: str, key: str, value: Any) -> None:
        entry = CacheEntry(
            value=copy.deepcopy(value),
            created_at=self._clock(),
            ttl=self.ttl_for(namespace),
        )
        self._entries[(namespace, key)] = entry
        if len(self._entries) > self._max_entries:
            self._evict()

    def invalidate(self, namespace: str, key: str) -> None:
        self._entries.pop((namespace, key), None)

    def clear(self, namespace: Optional[str] = None) -> None:
        if namespace is None:
            self._entries.clear()
            return
        for cache_key in [k for k in self._entries if k[0] == namespace]:
            del self._entries[cache_key]

    async def get_or_load(
        self,
        namespace: str,
        key: str,
        loader: Callable[[], Awaitable[T]],
    ) -> T:
        cached = self.get(namespace, key)
        if cached is not None:
            return cached

        cache_key = (namespace, key)
        task = self._inflight.get(cache_key)
        if task is None:
            task = asyncio.ensure_future(self._load_and_store(namespace, key, loader))
            self._inflight[cache_key] = task
            task.add_done_callback(lambda done: self._load_finished(cache_key, done))

        value = await asyncio.shield(task)
        return copy.deepcopy(value)

    async def _load_and_store(
        self,
        namespace: str,
        key: str,
        loader: Callable[[], Awaitable[T]],
    ) -> T:
        value = await loader()
        self.set(namespace, key, value)
        return value

    def _load_finished(self, cache_key: Tuple[str, str], task: asyncio.Task) -> None:
        self._inflight.pop(cache_key, None)
        # Failed loads are never cached; retrieve the error so an abandoned load does not warn
        if not task.cancelled() and task.exception() is not None:
            logger.warning(f"Cache load failed for {cache_key[0]}: {task.exception()}")

    def _evict(self) -> None:
        now = self._clock()
        for cache_key in [k for k, e in self._entries.items() if not e.is_valid(now)]:
            del self._entries[cache_key]
        overflow = len(self._entries) - self._max_entries
        if overflow > 0:
            oldest = sorted(self._entries.items(), key=lambda item: item[1].created_at)[:overflow]
            for cache_key, _ in oldest:
                del self._entries[cache_key]
            logger.info(f"Result cache evicted {overflow} oldest entries")

    def stats(self) -> Dict[str, Any]:
        now = self._clock()
        sizes: Dict[str, int] = {ns: 0 for ns in self._ttl}
        for (namespace, _), entry in self._entries.items():
            if entry.is_valid(now):
                sizes[namespace] = sizes.get(namespace, 0) + 1
        return {
            namespace: {
                "ttl_seconds": self._ttl[namespace],
                "entries": sizes.get(namespace, 0),
                "hits": self._hits.get(namespace, 0),
                "misses": self._misses.get(namespace, 0),
            }
            for namespace in self._ttl
        }
