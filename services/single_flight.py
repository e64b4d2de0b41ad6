# services/single_flight.py
# Two composable stages for expensive lookups:
#   Debouncer    - delays a key until the caller stops changing it
#   SingleFlight - collapses concurrent identical requests into one call

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Generic, Hashable, TypeVar

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
R = TypeVar("R")


class SingleFlight(Generic[K, R]):
    """
    At most one running call per key. Every caller that arrives while a call
    is in flight awaits the same task and gets the same result or exception.
    The entry is removed as soon as the call settles, success or not.
    """

    def __init__(self, name: str = "single-flight"):
        self.name = name
        self._inflight: Dict[K, "asyncio.Task[R]"] = {}

    def in_flight(self, key: K) -> bool:
        return key in self._inflight

    def __len__(self) -> int:
        return len(self._inflight)

    async def do(self, key: K, fn: Callable[[], Awaitable[R]]) -> R:
        # check-then-register with no await in between
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._run(key, fn))
            self._inflight[key] = task
        else:
            logger.debug("%s: joining in-flight request for %s", self.name, key)
        # shield: one waiter giving up must not cancel the shared call
        return await asyncio.shield(task)

    async def _run(self, key: K, fn: Callable[[], Awaitable[R]]) -> R:
        try:
            return await fn()
        finally:
            self._inflight.pop(key, None)


class Debouncer(Generic[K]):
    """
    Per-channel debounce. wait() sleeps for the window and then reports whether
    this call is still the latest one on its channel; superseded calls get False
    and should drop their key.
    """

    def __init__(self, delay_s: float):
        self.delay_s = max(0.0, float(delay_s))
        self._generation: Dict[Hashable, int] = {}
        self._latest: Dict[Hashable, Any] = {}

    def latest(self, channel: Hashable) -> Any:
        return self._latest.get(channel)

    async def wait(self, channel: Hashable, key: K) -> bool:
        gen = self._generation.get(channel, 0) + 1
        self._generation[channel] = gen
        self._latest[channel] = key
        await asyncio.sleep(self.delay_s)
        if self._generation.get(channel) != gen:
            logger.debug("debounce: %s superseded on channel %s", key, channel)
            return False
        self._generation.pop(channel, None)
        self._latest.pop(channel, None)
        return True
