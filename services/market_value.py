# services/market_value.py
# Market-value lookups with at most one upstream valuation per vehicle at a time.
#
#   fresh cache hit          -> returned immediately, cached=True
#   same key already running -> join it, share its result or its error
#   otherwise                -> call the provider once; cache + persist on success
#
# Failures are never cached, so the next request for the key tries again.

import asyncio
import logging
from typing import Dict, Iterable, List, Optional, Union

from services.aspects import make_from_text, model_from_text, year_from_text
from services.errors import VehicleDataError, ValidationError
from services.models import MarketValueLookup, MarketValueRecord, ValueQuery
from services.settings import Settings
from services.single_flight import Debouncer, SingleFlight
from services.ttl_cache import MISS, TimeBoxedCache
from services.value_store import JsonValueStore
from services.analytics import PriceHistoryLog
from services.vehicle_key import VehicleKey

logger = logging.getLogger(__name__)

CACHE_PREFIX = "value:"

LookupInput = Union[ValueQuery, VehicleKey, str]


def vehicle_key_from_title(title: str) -> Optional[VehicleKey]:
    make = make_from_text(title)
    year = year_from_text(title)
    model = model_from_text(title, make) if make else None
    if not (make and model and year):
        return None
    try:
        return VehicleKey.normalize(make, model, year)
    except ValidationError:
        return None


def unique_vehicle_keys(titles: Iterable[str]) -> List[VehicleKey]:
    """Distinct vehicles mentioned in listing titles, in first-seen order."""
    seen: Dict[str, VehicleKey] = {}
    for title in titles:
        key = vehicle_key_from_title(title)
        if key is not None:
            seen.setdefault(str(key), key)
    return list(seen.values())


class MarketValueService:
    def __init__(
        self,
        provider,
        cache: TimeBoxedCache,
        settings: Optional[Settings] = None,
        store: Optional[JsonValueStore] = None,
        history: Optional[PriceHistoryLog] = None,
    ):
        self.settings = settings or Settings()
        self.provider = provider
        self.cache = cache
        self.store = store if store is not None else JsonValueStore(None)
        self.history = history if history is not None else PriceHistoryLog(None)
        self.ttl_ms = int(self.settings.market_value_ttl_s * 1000)
        self.flight: SingleFlight[str, MarketValueLookup] = SingleFlight("market-value")
        self.debouncer: Debouncer[str] = Debouncer(self.settings.value_debounce_ms / 1000.0)

    @staticmethod
    def cache_key(key: VehicleKey) -> str:
        return f"{CACHE_PREFIX}{key}"

    @staticmethod
    def normalize(query: LookupInput):
        """-> (ValueQuery, VehicleKey). Raises ValidationError before anything goes upstream."""
        if isinstance(query, VehicleKey):
            return ValueQuery(make=query.make, model=query.model, year=query.year), query
        if isinstance(query, str):
            key = VehicleKey.parse(query)
            return ValueQuery(make=key.make, model=key.model, year=key.year), key
        if isinstance(query, ValueQuery):
            return query, VehicleKey.normalize(query.make, query.model, query.year)
        raise ValidationError(f"Unsupported vehicle lookup {query!r}")

    # ---------------------------
    # Persisted snapshot
    # ---------------------------
    def load_persisted(self) -> int:
        """Seed the cache from the snapshot; stale records are evicted from it."""
        now = self.cache.now()
        loaded, stale = 0, []
        for k, rec in self.store.load_all().items():
            if now - rec.fetched_at_ms < self.ttl_ms:
                self.cache.set(CACHE_PREFIX + k, rec, self.ttl_ms, fetched_at_ms=rec.fetched_at_ms)
                loaded += 1
            else:
                stale.append(k)
        if stale:
            self.store.delete_many(stale)
            logger.info("evicted %d stale market value records from snapshot", len(stale))
        return loaded

    def _persist(self, record: MarketValueRecord) -> None:
        try:
            self.store.put(record)
        except OSError as e:
            logger.warning("could not persist market value %s: %s", record.key, e)

    def _record_history(self, record: MarketValueRecord, sample_size: int) -> None:
        try:
            self.history.record_value(record, sample_size)
        except OSError as e:
            logger.warning("could not append price history for %s: %s", record.key, e)

    # ---------------------------
    # Lookups
    # ---------------------------
    async def get_market_value(self, query: LookupInput, force_refresh: bool = False) -> MarketValueLookup:
        query, key = self.normalize(query)
        if not force_refresh:
            cached = self.cache.get(self.cache_key(key))
            if cached is not MISS:
                return MarketValueLookup(cached, cached=True)
        return await self.flight.do(str(key), lambda: self._fetch(query, key))

    async def lookup_debounced(
        self, channel: str, query: LookupInput, force_refresh: bool = False
    ) -> Optional[MarketValueLookup]:
        """
        For input that changes quickly (a user typing vehicle details): only the
        last key submitted on `channel` within the debounce window is looked up.
        Superseded calls return None.
        """
        query, key = self.normalize(query)
        if not await self.debouncer.wait(channel, str(key)):
            return None
        return await self.get_market_value(query, force_refresh=force_refresh)

    async def get_market_values(self, queries: Iterable[LookupInput]) -> Dict[str, MarketValueLookup]:
        """Look up many vehicles at once; vehicles whose lookup fails are left out."""
        keyed: Dict[str, LookupInput] = {}
        for q in queries:
            _, key = self.normalize(q)
            keyed.setdefault(str(key), q)
        results = await asyncio.gather(*(self.get_market_value(q) for q in keyed.values()), return_exceptions=True)
        out: Dict[str, MarketValueLookup] = {}
        for key, res in zip(keyed, results):
            if isinstance(res, VehicleDataError):
                logger.info("market value for %s unavailable: %s", key, res)
                continue
            if isinstance(res, BaseException):
                raise res
            out[key] = res
        return out

    async def _fetch(self, query: ValueQuery, key: VehicleKey) -> MarketValueLookup:
        logger.info("valuation lookup %s via %s", key, type(self.provider).__name__)
        try:
            quote = await self.provider.quote(query, key)
        except VehicleDataError as e:
            logger.info("valuation for %s failed (%s): %s", key, type(e).__name__, e)
            raise
        record = MarketValueRecord(
            key=str(key),
            low=quote.low,
            avg=quote.avg,
            high=quote.high,
            currency=quote.currency,
            source=quote.source,
            fetched_at_ms=self.cache.now(),
        )
        self.cache.set(self.cache_key(key), record, self.ttl_ms, fetched_at_ms=record.fetched_at_ms)
        self._persist(record)
        self._record_history(record, quote.sample_size)
        return MarketValueLookup(record, cached=False)

    # ---------------------------
    # Explicit eviction
    # ---------------------------
    def invalidate(self, query: LookupInput) -> bool:
        _, key = self.normalize(query)
        removed = self.cache.invalidate(self.cache_key(key))
        self.store.delete(str(key))
        return removed

    def clear(self) -> int:
        removed = self.cache.invalidate_prefix(CACHE_PREFIX)
        self.store.clear()
        return removed
