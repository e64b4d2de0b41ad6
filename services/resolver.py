# services/resolver.py
# Answers "which makes / models / years are valid right now" for the cascade
# make -> model -> year. Live marketplace inventory first, the fallback catalog
# when live data is missing or too thin, and always *some* answer.

import logging
from dataclasses import dataclass
from datetime import date
from typing import Awaitable, Callable, Dict, Hashable, Iterable, List, Optional, Sequence, Tuple, TypeVar

from services import catalog
from services.aspects import AspectSignal, extract_signals
from services.ebay_client import Constraints
from services.errors import AuthError, UpstreamError, body_excerpt
from services.models import (
    Attribute,
    AspectSource,
    AttributeSet,
    AspectDistribution,
    AttributeValue,
    RawItem,
    ResolvedAspects,
    combine_sources,
)
from services.settings import Settings
from services.ttl_cache import MISS, TimeBoxedCache
from services.vehicle_key import norm_text, require_text

logger = logging.getLogger(__name__)

T = TypeVar("T")

Extractor = Callable[
    [Sequence[RawItem], Attribute, Optional[str], Sequence[AspectDistribution]], Dict[str, AspectSignal]
]

CACHE_PREFIX = "aspects:"
# selection state for callers that do not name a session
DEFAULT_SESSION = "default"

MAKES_QUERY = "car truck vehicle automobile"
PAGE_SIZE: Dict[Attribute, int] = {Attribute.MAKE: 200, Attribute.MODEL: 100, Attribute.YEAR: 100}

# Makes and models are unioned with the catalog when live data is good enough.
# Years are not: a synthesized 1990..now range would bury the live distribution.
MERGE_WITH_CATALOG: Dict[Attribute, bool] = {
    Attribute.MAKE: True,
    Attribute.MODEL: True,
    Attribute.YEAR: False,
}


@dataclass(frozen=True)
class SignalPolicy:
    """
    How much live signal we need before trusting it over the catalog.

    A live answer with fewer than min_<attribute> distinct non-zero values is
    treated as "extraction failed" and replaced by the catalog. Defaults only
    demand one value; raise them if thin inventory keeps producing junk lists.
    text_weight scales title-derived hits relative to structured item fields.
    """
    min_makes: int = 1
    min_models: int = 1
    min_years: int = 1
    text_weight: float = 1.0

    @classmethod
    def from_settings(cls, s: Settings) -> "SignalPolicy":
        return cls(
            min_makes=s.min_live_makes,
            min_models=s.min_live_models,
            min_years=s.min_live_years,
            text_weight=s.text_match_weight,
        )

    def minimum(self, attribute: Attribute) -> int:
        return {
            Attribute.MAKE: self.min_makes,
            Attribute.MODEL: self.min_models,
            Attribute.YEAR: self.min_years,
        }[attribute]


def _year_sort_key(v: AttributeValue):
    if v.value.isdigit():
        return (0, -int(v.value), v.value)
    return (1, 0, v.display_name.lower())


def sort_values(values: Iterable[AttributeValue], attribute: Attribute) -> List[AttributeValue]:
    if attribute == Attribute.YEAR:
        return sorted(values, key=_year_sort_key)
    return sorted(values, key=lambda v: (v.display_name.lower(), v.display_name))


def merge_values(
    live: Iterable[AttributeValue],
    fallback: Iterable[AttributeValue],
    attribute: Attribute,
) -> List[AttributeValue]:
    """Union by case-normalized value; live wins over fallback; zero counts dropped; sorted for display."""
    merged: Dict[str, AttributeValue] = {}
    for v in fallback:
        merged[v.value.lower()] = v
    for v in live:
        merged[v.value.lower()] = v
    return sort_values((v for v in merged.values() if v.count > 0), attribute)


class AspectResolver:
    def __init__(
        self,
        client,
        cache: TimeBoxedCache,
        settings: Optional[Settings] = None,
        policy: Optional[SignalPolicy] = None,
        extractor: Extractor = extract_signals,
        max_attempts: int = 1,
    ):
        self.settings = settings or Settings()
        self.client = client
        self.cache = cache
        self.policy = policy or SignalPolicy.from_settings(self.settings)
        self.extractor = extractor
        self.max_attempts = max(1, int(max_attempts))
        self.ttl_ms = int(self.settings.aspect_ttl_s * 1000)
        self.fallback_ttl_ms = int(self.settings.aspect_fallback_ttl_s * 1000)
        # session -> (make, model) last selected there, for cascade invalidation
        self._selections: Dict[Hashable, Tuple[Optional[str], Optional[str]]] = {}

    # ---------------------------
    # Cache keys + cascade
    # ---------------------------
    @staticmethod
    def cache_key(attribute: Attribute, make: Optional[str] = None, model: Optional[str] = None) -> str:
        if attribute == Attribute.MAKE:
            return f"{CACHE_PREFIX}make"
        if attribute == Attribute.MODEL:
            return f"{CACHE_PREFIX}model:{norm_text(make)}"
        return f"{CACHE_PREFIX}year:{norm_text(make)}|{norm_text(model)}"

    def _held_elsewhere(self, session: Hashable, make: str, model: Optional[str] = None) -> bool:
        for other, (mk, md) in self._selections.items():
            if other != session and mk == make and (model is None or md == model):
                return True
        return False

    def _select_make(self, session: Hashable, make: str) -> str:
        mk = norm_text(make)
        old_make, model = self._selections.get(session, (None, None))
        if old_make is not None and old_make != mk:
            model = None
            # another session still browsing the old make keeps its entries
            if not self._held_elsewhere(session, old_make):
                dropped = int(self.cache.invalidate(self.cache_key(Attribute.MODEL, old_make)))
                dropped += self.cache.invalidate_prefix(f"{CACHE_PREFIX}year:{old_make}|")
                logger.debug("make changed %r -> %r; dropped %d cached entries", old_make, mk, dropped)
        self._selections[session] = (mk, model)
        return mk

    def _select_model(self, session: Hashable, make: str, model: str) -> None:
        mk = self._select_make(session, make)
        md = norm_text(model)
        old_model = self._selections[session][1]
        if old_model is not None and old_model != md and not self._held_elsewhere(session, mk, old_model):
            self.cache.invalidate(self.cache_key(Attribute.YEAR, mk, old_model))
            logger.debug("model changed %r -> %r", old_model, md)
        self._selections[session] = (mk, md)

    def is_current(self, make: Optional[str], model: Optional[str] = None, session: Hashable = DEFAULT_SESSION) -> bool:
        """Staleness check for late results: does (make, model) still match the session's latest request?"""
        current_make, current_model = self._selections.get(session, (None, None))
        if norm_text(make) != (current_make or ""):
            return False
        return model is None or norm_text(model) == (current_model or "")

    def clear_cache(self) -> int:
        self._selections.clear()
        return self.cache.invalidate_prefix(CACHE_PREFIX)

    # ---------------------------
    # Public cascade
    # ---------------------------
    async def resolve_makes(self, force_refresh: bool = False) -> ResolvedAspects:
        return await self._resolve(
            Attribute.MAKE,
            self.cache_key(Attribute.MAKE),
            force_refresh,
            live=lambda: self._live_values(Attribute.MAKE, MAKES_QUERY, Constraints.for_vehicle()),
            fallback=catalog.get_fallback_makes,
        )

    async def resolve_models(
        self, make: str, force_refresh: bool = False, session: Hashable = DEFAULT_SESSION
    ) -> ResolvedAspects:
        make = require_text("make", make).strip()
        self._select_make(session, make)
        parent = catalog.canonical_make(make) or make
        return await self._resolve(
            Attribute.MODEL,
            self.cache_key(Attribute.MODEL, make),
            force_refresh,
            live=lambda: self._live_values(
                Attribute.MODEL, f"{make} car truck vehicle", Constraints.for_vehicle(make), make=make, parent=parent
            ),
            fallback=lambda: catalog.get_fallback_models(make),
        )

    async def resolve_years(
        self, make: str, model: str, force_refresh: bool = False, session: Hashable = DEFAULT_SESSION
    ) -> ResolvedAspects:
        make = require_text("make", make).strip()
        model = require_text("model", model).strip()
        self._select_model(session, make, model)
        floor = self.settings.fallback_year_floor
        return await self._resolve(
            Attribute.YEAR,
            self.cache_key(Attribute.YEAR, make, model),
            force_refresh,
            live=lambda: self._live_values(
                Attribute.YEAR, f"{make} {model}", Constraints.for_vehicle(make, model), make=make
            ),
            fallback=lambda: catalog.get_fallback_years(floor, date.today().year),
        )

    async def resolve_attribute_set(
        self, make: Optional[str] = None, model: Optional[str] = None, session: Hashable = DEFAULT_SESSION
    ) -> AttributeSet:
        parts = [await self.resolve_makes()]
        models = years = ()
        if make:
            resolved_models = await self.resolve_models(make, session=session)
            parts.append(resolved_models)
            models = resolved_models.values
            if model:
                resolved_years = await self.resolve_years(make, model, session=session)
                parts.append(resolved_years)
                years = resolved_years.values
        return AttributeSet(
            makes=parts[0].values,
            models=models,
            years=years,
            source=combine_sources(*(p.source for p in parts)),
        )

    # ---------------------------
    # Internals
    # ---------------------------
    async def _live_values(
        self,
        attribute: Attribute,
        query: str,
        constraints: Constraints,
        make: Optional[str] = None,
        parent: Optional[str] = None,
    ) -> List[AttributeValue]:
        page = await self.client.search_page(query, constraints, PAGE_SIZE[attribute])
        signals = self.extractor(page.items, attribute, make, page.distributions)
        return [
            AttributeValue(value=value, display_name=value, count=sig.weighted(self.policy.text_weight), parent=parent)
            for value, sig in signals.items()
        ]

    async def _with_retries(self, fn: Callable[[], Awaitable[T]]) -> T:
        attempt = 1
        while True:
            try:
                return await fn()
            except UpstreamError as e:
                if attempt >= self.max_attempts or not e.retryable:
                    raise
                logger.info("upstream attempt %d/%d failed (%s); retrying", attempt, self.max_attempts, e)
                attempt += 1

    def _decide(self, attribute: Attribute, live: List[AttributeValue], fallback: List[AttributeValue]) -> ResolvedAspects:
        live = [v for v in live if v.count > 0]
        if len(live) < self.policy.minimum(attribute):
            logger.info("only %d live %s values (need %d); using fallback catalog",
                        len(live), attribute.value, self.policy.minimum(attribute))
            return ResolvedAspects(attribute, tuple(merge_values([], fallback, attribute)), AspectSource.FALLBACK)
        if MERGE_WITH_CATALOG[attribute] and fallback:
            return ResolvedAspects(attribute, tuple(merge_values(live, fallback, attribute)), AspectSource.MERGED)
        return ResolvedAspects(attribute, tuple(merge_values(live, [], attribute)), AspectSource.LIVE)

    async def _resolve(
        self,
        attribute: Attribute,
        key: str,
        force_refresh: bool,
        live: Callable[[], Awaitable[List[AttributeValue]]],
        fallback: Callable[[], List[AttributeValue]],
    ) -> ResolvedAspects:
        if not force_refresh:
            cached = self.cache.get(key)
            if cached is not MISS:
                return cached

        fallback_values = fallback()
        try:
            live_values = await self._with_retries(live)
        except (AuthError, UpstreamError) as e:
            logger.warning(
                "%s resolution failed upstream, serving fallback catalog: %s: %s (status=%s body=%r)",
                attribute.value, type(e).__name__, e, getattr(e, "status", None), body_excerpt(getattr(e, "body", "")),
            )
            result = ResolvedAspects(attribute, tuple(merge_values([], fallback_values, attribute)), AspectSource.FALLBACK)
        else:
            result = self._decide(attribute, live_values, fallback_values)

        ttl = self.fallback_ttl_ms if result.source == AspectSource.FALLBACK else self.ttl_ms
        self.cache.set(key, result, ttl)
        return result
