"""Fetch cache shared by the stylesheet and asset passes."""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from typing import Callable, Generic, Optional, Tuple, TypeVar

logger = logging.getLogger("framesnap")

V = TypeVar("V")


class FetchCache(Generic[V]):
    """Write-once cache keyed by absolute URL.

    With no bounds the cache lives as long as the process, like a plain
    dict. ``max_entries`` evicts least-recently-used keys and ``ttl`` expires
    entries older than that many seconds. A second write for a key that is
    still present keeps the first value.
    """

    def __init__(
        self,
        max_entries: Optional[int] = None,
        ttl: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries is not None and max_entries < 1:
            raise ValueError("max_entries must be positive")
        self.max_entries = max_entries
        self.ttl = ttl
        self._clock = clock
        self._entries: "OrderedDict[str, Tuple[float, V]]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def get(self, key: str) -> Optional[V]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        stored_at, value = entry
        if self.ttl is not None and self._clock() - stored_at > self.ttl:
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return value

    def put(self, key: str, value: V) -> V:
        existing = self.get(key)
        if existing is not None:
            return existing
        self._entries[key] = (self._clock(), value)
        if self.max_entries is not None:
            while len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("Evicted %s from fetch cache", evicted)
        return value

    def clear(self) -> None:
        self._entries.clear()


# Process-wide cache used when callers do not inject their own.
DEFAULT_CACHE: FetchCache[str] = FetchCache()
