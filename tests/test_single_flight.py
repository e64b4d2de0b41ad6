import asyncio
import gc

import pytest

from services.errors import RateLimitError
from services.single_flight import Debouncer, SingleFlight


@pytest.mark.anyio
async def test_concurrent_callers_share_one_call():
    flight = SingleFlight("test")
    calls = []

    async def fetch():
        calls.append(1)
        await asyncio.sleep(0.01)
        return object()

    results = await asyncio.gather(*(flight.do("k", fetch) for _ in range(5)))

    assert len(calls) == 1
    assert all(r is results[0] for r in results)
    assert not flight.in_flight("k")


@pytest.mark.anyio
async def test_error_reaches_every_waiter_and_is_not_kept():
    flight = SingleFlight("test")
    calls = []

    async def fetch():
        calls.append(1)
        await asyncio.sleep(0.01)
        raise RateLimitError("slow down")

    results = await asyncio.gather(*(flight.do("k", fetch) for _ in range(3)), return_exceptions=True)
    assert len(calls) == 1
    assert all(isinstance(r, RateLimitError) for r in results)
    assert results[0] is results[1] is results[2]
    assert len(flight) == 0

    # a new call after settlement starts a new request
    with pytest.raises(RateLimitError):
        await flight.do("k", fetch)
    assert len(calls) == 2


@pytest.mark.anyio
async def test_distinct_keys_do_not_share():
    flight = SingleFlight("test")

    async def fetch_a():
        await asyncio.sleep(0.01)
        return "a"

    async def fetch_b():
        return "b"

    assert await asyncio.gather(flight.do("a", fetch_a), flight.do("b", fetch_b)) == ["a", "b"]


@pytest.mark.anyio
async def test_cancelled_waiter_does_not_cancel_shared_call():
    flight = SingleFlight("test")
    done = []

    async def fetch():
        await asyncio.sleep(0.03)
        done.append(1)
        return "ok"

    first = asyncio.create_task(flight.do("k", fetch))
    second = asyncio.create_task(flight.do("k", fetch))
    await asyncio.sleep(0.005)
    first.cancel()

    assert await second == "ok"
    assert done == [1]


@pytest.mark.anyio
async def test_debouncer_lets_only_the_last_key_through():
    deb = Debouncer(0.02)

    async def submit(key, after):
        await asyncio.sleep(after)
        return await deb.wait("picker", key)

    results = await asyncio.gather(submit("a", 0), submit("b", 0.005), submit("c", 0.01))
    assert results == [False, False, True]
    assert deb.latest("picker") is None


@pytest.mark.anyio
async def test_debouncer_channels_are_independent():
    deb = Debouncer(0.01)
    assert await asyncio.gather(deb.wait("one", "x"), deb.wait("two", "y")) == [True, True]


@pytest.mark.anyio
async def test_failure_after_every_waiter_left_is_not_reported_as_unretrieved():
    loop = asyncio.get_running_loop()
    reported = []
    previous = loop.get_exception_handler()
    loop.set_exception_handler(lambda _loop, context: reported.append(context))
    try:
        flight = SingleFlight("test")
        gate = asyncio.Event()

        async def fetch():
            await gate.wait()
            raise RateLimitError()

        waiters = [asyncio.ensure_future(flight.do("k", fetch)) for _ in range(3)]
        await asyncio.sleep(0)
        for w in waiters:
            w.cancel()
        await asyncio.gather(*waiters, return_exceptions=True)
        assert flight.in_flight("k")

        gate.set()
        for _ in range(5):
            await asyncio.sleep(0)
        assert not flight.in_flight("k")
        del waiters
        gc.collect()
    finally:
        loop.set_exception_handler(previous)

    assert not [c for c in reported if "never retrieved" in c.get("message", "")]
