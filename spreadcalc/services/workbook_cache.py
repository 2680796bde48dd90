"""
Process-local cache of compiled spreadsheet models.

Loading a model dominates the cost of an execution, so the compiled
workbook handle is kept per service id and reused while it is fresh.
Entries expire lazily: expiry is only checked when the same service id is
requested again, so an idle entry stays resident until it is accessed,
cleared, or pushed out by the capacity bound.

The cached handle is shared mutable state. Callers that need at most one
calculation in flight per model hold ``lock_for(service_id)`` while they
write inputs and read outputs.
"""

import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from spreadcalc.adapters.engine import CalculationEngine, WorkbookHandle

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 30 * 60
DEFAULT_MAX_ENTRIES = 1000


@dataclass
class CachedWorkbookEntry:
    """A compiled model and the monotonic time it was inserted."""

    handle: WorkbookHandle
    inserted_at: float


class WorkbookCache:
    """
    TTL cache mapping service ids to compiled workbook handles.

    Attributes:
        engine: Engine used to build handles on a miss.
        ttl_seconds: How long an entry is considered fresh.
        max_entries: Capacity; the oldest entry is evicted when full.

    Example:
        cache = WorkbookCache(OpenpyxlEngine(), ttl_seconds=600)
        handle, hit = cache.get("loan-calculator", model_bytes)
        cache.clear("loan-calculator")  # after the model was edited
    """

    def __init__(
        self,
        engine: CalculationEngine,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the WorkbookCache.

        Args:
            engine: CalculationEngine building handles from model bytes.
            ttl_seconds: Freshness window of an entry.
            max_entries: Maximum number of resident entries.
            clock: Monotonic time source, injectable for tests.
        """
        self.engine = engine
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, CachedWorkbookEntry] = OrderedDict()
        self._service_locks: dict[str, threading.Lock] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def _is_fresh(self, entry: CachedWorkbookEntry) -> bool:
        return self._clock() - entry.inserted_at < self.ttl_seconds

    def get(self, service_id: str, model_data: bytes) -> tuple[WorkbookHandle, bool]:
        """
        Get the compiled model for a service, building it on a miss.

        Args:
            service_id: Cache key.
            model_data: Serialized model, only parsed on a miss or expiry.

        Returns:
            Tuple of (handle, cache_hit).

        Raises:
            Exception: Whatever the engine raises while building; nothing is
                cached in that case.
        """
        with self._lock:
            entry = self._entries.get(service_id)
            if entry is not None and self._is_fresh(entry):
                self._hits += 1
                return entry.handle, True
            if entry is not None:
                logger.info("Cached model for %s expired", service_id)
                del self._entries[service_id]
            self._misses += 1

        start = self._clock()
        handle = self.engine.build(model_data)
        logger.info(
            "Built model for %s in %.1f ms",
            service_id,
            (self._clock() - start) * 1000,
        )

        with self._lock:
            self._entries.pop(service_id, None)
            while len(self._entries) >= self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.info("Evicted cached model for %s (capacity %d)", evicted, self.max_entries)
            self._entries[service_id] = CachedWorkbookEntry(handle, self._clock())

        return handle, False

    def clear(self, service_id: str | None = None) -> int:
        """
        Evict one entry, or every entry when ``service_id`` is None.

        Args:
            service_id: Service to evict, or None for all.

        Returns:
            Number of entries removed.
        """
        with self._lock:
            if service_id is None:
                removed = len(self._entries)
                self._entries.clear()
            else:
                removed = 1 if self._entries.pop(service_id, None) is not None else 0

        if removed:
            logger.info("Cleared %d cached model(s)%s", removed, f" for {service_id}" if service_id else "")
        return removed

    def lock_for(self, service_id: str) -> threading.Lock:
        """
        Get the lock serializing calculations on one service's model.

        Locks live as long as the cache, one per service id ever requested,
        and are not dropped by ``clear``. A caller may have fetched a lock
        without acquiring it yet; replacing it would let two calculations
        run on the same model. Service ids come from the published set, so
        the table stays bounded.
        """
        with self._lock:
            return self._service_locks.setdefault(service_id, threading.Lock())

    def __contains__(self, service_id: str) -> bool:
        with self._lock:
            return service_id in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> dict[str, Any]:
        """Get cache size, policy and hit counters for monitoring."""
        with self._lock:
            now = self._clock()
            return {
                "size": len(self._entries),
                "max_size": self.max_entries,
                "ttl_seconds": self.ttl_seconds,
                "hits": self._hits,
                "misses": self._misses,
                "entries": {
                    service_id: round(now - entry.inserted_at, 3)
                    for service_id, entry in self._entries.items()
                },
            }
