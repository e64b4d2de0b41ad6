# services/ttl_cache.py
# Generic expiring key -> payload store. TTL is chosen per entry by the caller.

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, Iterator, Optional, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class _Miss:
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "MISS"


MISS = _Miss()


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    payload: T
    fetched_at_ms: int
    ttl_ms: int

    def age_ms(self, now: int) -> int:
        return now - self.fetched_at_ms

    def is_fresh(self, now: int) -> bool:
        return now - self.fetched_at_ms < self.ttl_ms


class TimeBoxedCache:
    """
    get() only ever returns fresh payloads; stale entries stay in the store
    until sweep() or an explicit invalidate removes them.
    """

    def __init__(self, clock: Optional[Callable[[], int]] = None):
        self._clock = clock or now_ms
        self._entries: Dict[str, CacheEntry[Any]] = {}

    def now(self) -> int:
        return self._clock()

    def get(self, key: str) -> Any:
        entry = self._entries.get(key)
        if entry is None or not entry.is_fresh(self._clock()):
            logger.debug("cache miss %s", key)
            return MISS
        logger.debug("cache hit %s", key)
        return entry.payload

    def entry(self, key: str) -> Optional[CacheEntry[Any]]:
        return self._entries.get(key)

    def set(self, key: str, payload: Any, ttl_ms: int, fetched_at_ms: Optional[int] = None) -> CacheEntry[Any]:
        entry = CacheEntry(
            payload=payload,
            fetched_at_ms=self._clock() if fetched_at_ms is None else int(fetched_at_ms),
            ttl_ms=int(ttl_ms),
        )
        self._entries[key] = entry
        return entry

    def invalidate(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def invalidate_prefix(self, prefix: str) -> int:
        doomed = [k for k in self._entries if k.startswith(prefix)]
        for k in doomed:
            del self._entries[k]
        return len(doomed)

    def invalidate_all(self) -> None:
        self._entries.clear()

    def sweep(self) -> int:
        now = self._clock()
        stale = [k for k, e in self._entries.items() if not e.is_fresh(now)]
        for k in stale:
            del self._entries[k]
        if stale:
            logger.info("cache sweep removed %d stale entries (%d left)", len(stale), len(self._entries))
        return len(stale)

    def items(self) -> Iterator[Tuple[str, CacheEntry[Any]]]:
        return iter(list(self._entries.items()))

    def stats(self) -> Dict[str, int]:
        now = self._clock()
        fresh = sum(1 for e in self._entries.values() if e.is_fresh(now))
        return {"entries": len(self._entries), "fresh": fresh, "stale": len(self._entries) - fresh}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    async def run_sweeper(self, interval_s: float) -> None:
        """Periodic housekeeping; run as a background task and cancel on shutdown."""
        while True:
            await asyncio.sleep(interval_s)
            self.sweep()
