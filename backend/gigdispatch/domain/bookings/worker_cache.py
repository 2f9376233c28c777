from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable

from gigdispatch.infra.metrics import metrics

logger = logging.getLogger(__name__)

ALL_STATUSES = "all"


@dataclass
class _CacheEntry:
    value: Any
    stored_at: float


class WorkerQueryCache:
    """Read-through cache for the worker bookings lookup.

    Entries are keyed by ``(worker_id, status_filter)`` and expire after
    ``ttl_seconds``. Process local only.
    """

    def __init__(
        self,
        *,
        ttl_seconds: float = 60.0,
        max_entries: int = 1000,
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self.enabled = enabled
        self._clock = clock
        self._entries: dict[tuple[str, str], _CacheEntry] = {}
        # bumped on every invalidation so a load that started earlier is not stored
        self._generations: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._entries)

    @staticmethod
    def _key(worker_id: str, status_filter: str | None) -> tuple[str, str]:
        return worker_id, status_filter or ALL_STATUSES

    def get(self, worker_id: str, status_filter: str | None = None) -> Any | None:
        if not self.enabled:
            return None
        key = self._key(worker_id, status_filter)
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.stored_at >= self.ttl_seconds:
            self._entries.pop(key, None)
            return None
        return entry.value

    def set(self, worker_id: str, status_filter: str | None, value: Any) -> None:
        if not self.enabled:
            return
        now = self._clock()
        self._entries[self._key(worker_id, status_filter)] = _CacheEntry(value=value, stored_at=now)
        if len(self._entries) > self.max_entries:
            self._evict_stale(now)

    async def get_or_load(
        self,
        worker_id: str,
        status_filter: str | None,
        loader: Callable[[], Awaitable[Any]],
    ) -> Any:
        cached = self.get(worker_id, status_filter)
        if cached is not None:
            metrics.record_worker_cache("hit")
            return cached
        metrics.record_worker_cache("miss")
        generation = self._generations.get(worker_id, 0)
        value = await loader()
        if self._generations.get(worker_id, 0) == generation:
            self.set(worker_id, status_filter, value)
        return value

    def invalidate_worker(self, worker_id: str | None) -> int:
        if not worker_id:
            return 0
        self._generations[worker_id] = self._generations.get(worker_id, 0) + 1
        stale = [key for key in self._entries if key[0] == worker_id]
        for key in stale:
            self._entries.pop(key, None)
        if stale:
            metrics.record_worker_cache("invalidate")
        return len(stale)

    def invalidate_workers(self, worker_ids: Iterable[str]) -> int:
        return sum(self.invalidate_worker(worker_id) for worker_id in set(worker_ids))

    def _evict_stale(self, now: float) -> None:
        cutoff = now - 2 * self.ttl_seconds
        stale = [key for key, entry in self._entries.items() if entry.stored_at < cutoff]
        for key in stale:
            self._entries.pop(key, None)
        if stale:
            logger.debug("worker_cache_evicted", extra={"extra": {"evicted": len(stale)}})
