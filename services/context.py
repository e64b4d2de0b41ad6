# services/context.py
# One object per process holding the shared cache, upstream client, resolver
# and market-value service. Routers read it from app.state; tests build their
# own with fakes.

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from services.analytics import PriceHistoryLog
from services.ebay_client import EbayBrowseClient
from services.market_value import MarketValueService
from services.resolver import AspectResolver
from services.settings import Settings
from services.ttl_cache import TimeBoxedCache
from services.valuation import build_provider
from services.value_store import JsonValueStore

logger = logging.getLogger(__name__)


@dataclass
class ServiceContext:
    settings: Settings
    cache: TimeBoxedCache
    resolver: AspectResolver
    market_values: MarketValueService

    def clear_caches(self) -> dict:
        return {
            "aspects": self.resolver.clear_cache(),
            "market_values": self.market_values.clear(),
        }


def build_context(
    settings: Optional[Settings] = None,
    client=None,
    provider=None,
    clock: Optional[Callable[[], int]] = None,
    load_snapshot: bool = True,
) -> ServiceContext:
    settings = settings or Settings.from_env()
    cache = TimeBoxedCache(clock=clock)
    resolver = AspectResolver(client or EbayBrowseClient(settings), cache, settings)
    market_values = MarketValueService(
        provider or build_provider(settings),
        cache,
        settings,
        store=JsonValueStore(settings.value_store_path),
        history=PriceHistoryLog(settings.analytics_path, enabled=settings.analytics_enable),
    )
    if load_snapshot:
        loaded = market_values.load_persisted()
        logger.info("market value cache seeded with %d records", loaded)
    return ServiceContext(settings=settings, cache=cache, resolver=resolver, market_values=market_values)
