import asyncio
from typing import List, Optional

import pytest

from services.ebay_client import SearchPage
from services.models import Quote, RawItem, ValueSource
from services.settings import Settings


@pytest.fixture
def anyio_backend():
    return "asyncio"


class FakeClock:
    """Millisecond clock the test moves by hand."""

    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class FakeSearchClient:
    def __init__(self, items: Optional[List[RawItem]] = None, error: Optional[Exception] = None):
        self.items = items or []
        self.error = error
        self.calls = []
        self.by_query = {}
        self.distributions = ()

    async def search(self, query, constraints=None, page_size=100):
        self.calls.append((query, constraints))
        if self.error is not None:
            raise self.error
        await asyncio.sleep(0)
        return list(self.by_query.get(query, self.items))

    async def search_page(self, query, constraints=None, page_size=100):
        items = await self.search(query, constraints, page_size)
        return SearchPage(items=items, total=len(items), distributions=tuple(self.distributions))

    @property
    def queries(self):
        return [q for q, _ in self.calls]


class FakeProvider:
    def __init__(self, low=18000.0, avg=21000.0, high=25000.0, delay_s=0.0, error=None):
        self.low, self.avg, self.high = low, avg, high
        self.delay_s = delay_s
        self.error = error
        self.calls = []

    async def quote(self, query, key):
        self.calls.append(str(key))
        await asyncio.sleep(self.delay_s)
        if self.error is not None:
            raise self.error
        return Quote(low=self.low, avg=self.avg, high=self.high, currency="USD",
                     source=ValueSource.SCRAPE, sample_size=12)


def listing(title: str, **aspects) -> RawItem:
    return RawItem(title=title, structured_attributes=tuple((k.replace("_", " "), v) for k, v in aspects.items()))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return Settings(value_store_path=None, analytics_enable=False, value_debounce_ms=30)
