# services/valuation.py
# Valuation providers: turn (make, model, year [, mileage, trim, zip]) into a
# low/avg/high market price. Both are expensive and throttled upstream; the
# market-value service in front of them does caching and de-duplication.

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple
from urllib.parse import quote, quote_plus

import aiohttp
from bs4 import BeautifulSoup

from services.errors import (
    AuthError,
    InvalidUpstreamShapeError,
    NetworkError,
    RateLimitError,
    UpstreamError,
    body_excerpt,
)
from services.models import Quote, ValueQuery, ValueSource
from services.settings import Settings
from services.vehicle_key import VehicleKey

logger = logging.getLogger(__name__)

# Anything outside this band is a deposit, a part, or a typo
MIN_PRICE = 1000.0
MAX_PRICE = 200000.0

THROTTLE_STATUSES = (429, 403)

BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
}

_PRICE_RE = re.compile(r"\$?\s?(\d{1,3}(?:,\d{3})+|\d+)(?:\.\d+)?")


class _HttpProvider:
    def __init__(self, settings: Settings):
        self.settings = settings
        self._timeout = aiohttp.ClientTimeout(total=settings.upstream_timeout_s)

    async def _get(self, url: str, headers: Dict[str, str], params: Optional[Dict[str, str]] = None) -> Tuple[int, str]:
        try:
            async with aiohttp.ClientSession(timeout=self._timeout) as session:
                async with session.get(url, headers=headers, params=params) as resp:
                    return resp.status, await resp.text()
        except asyncio.TimeoutError as e:
            raise NetworkError(f"GET timed out after {self.settings.upstream_timeout_s}s @ {url}") from e
        except aiohttp.ClientError as e:
            raise NetworkError(f"GET failed @ {url}: {e}") from e


# ---------------------------
# Scraped listings
# ---------------------------
@dataclass(frozen=True)
class ScrapeSite:
    name: str
    url_template: str
    selectors: Tuple[str, ...]
    # eBay shows ranges like "$15,000 to $18,000"; take every number there
    all_matches: bool = False

    def url(self, key: VehicleKey, zip_code: str) -> str:
        return self.url_template.format(
            make=quote(key.make.replace(" ", "-")),
            model=quote(key.model.replace(" ", "-")),
            make_q=quote_plus(key.make),
            model_q=quote_plus(key.model),
            year=key.year,
            zip=quote_plus(zip_code),
        )


SCRAPE_SITES: Tuple[ScrapeSite, ...] = (
    ScrapeSite(
        "autotrader",
        "https://www.autotrader.com/cars-for-sale/all-cars/{make}/{model}/{year}?searchRadius=0&zip={zip}",
        (
            '[data-cmp="vehicleCardPricingDetails"] .first-price',
            ".vehicle-card-pricing .first-price",
            ".first-price",
            '[data-testid="vehicle-card-price"]',
            ".inventory-listing-price",
        ),
    ),
    ScrapeSite(
        "cars_com",
        "https://www.cars.com/shopping/results/?stock_type=used&makes[]={make}&models[]={make}-{model}"
        "&maximum_distance=all&zip={zip}&year_max={year}&year_min={year}",
        (".price-section .primary-price", '[data-testid="vehicle-card-price"]', ".vehicle-card-price", ".listing-price"),
    ),
    ScrapeSite(
        "ebay_motors",
        "https://www.ebay.com/sch/Cars-Trucks/6001/i.html?_nkw={year}+{make_q}+{model_q}&_stpos={zip}&_fspt=1&_sop=1",
        (".s-item__price .notranslate", ".s-item__price"),
        all_matches=True,
    ),
    ScrapeSite(
        "cargurus",
        "https://www.cargurus.com/Cars/inventorylisting/viewDetailsFilterViewInventoryListing.action"
        "?entitySelectingHelper.selectedEntity={year}_{make}_{model}&zip={zip}",
        ('[data-testid="listing-price"]', ".listing-row__price", ".price-section__price", '[data-cg-ft="srp-listing-price"]'),
    ),
)


def _prices_in(text: str, all_matches: bool) -> List[float]:
    matches = _PRICE_RE.findall(text or "")
    if not all_matches:
        matches = matches[:1]
    out = []
    for m in matches:
        price = float(m.replace(",", ""))
        if MIN_PRICE < price < MAX_PRICE:
            out.append(price)
    return out


def extract_prices(html: str, selectors: Tuple[str, ...], all_matches: bool = False) -> List[float]:
    """Prices from the first selector that yields any."""
    soup = BeautifulSoup(html or "", "html.parser")
    for sel in selectors:
        prices: List[float] = []
        for el in soup.select(sel):
            prices.extend(_prices_in(el.get_text(" ", strip=True), all_matches))
        if prices:
            return prices
    return []


def summarize(prices: List[float], source: ValueSource, currency: str = "USD") -> Quote:
    ordered = sorted(prices)
    return Quote(
        low=ordered[0],
        avg=float(round(sum(ordered) / len(ordered))),
        high=ordered[-1],
        currency=currency,
        source=source,
        sample_size=len(ordered),
    )


@dataclass
class SiteResult:
    site: str
    prices: List[float]
    throttled: bool = False
    error: Optional[str] = None


class ScrapedValuationProvider(_HttpProvider):
    source = ValueSource.SCRAPE

    def __init__(self, settings: Settings, sites: Tuple[ScrapeSite, ...] = SCRAPE_SITES):
        super().__init__(settings)
        self.sites = sites

    async def _scrape(self, site: ScrapeSite, key: VehicleKey, zip_code: str) -> SiteResult:
        url = site.url(key, zip_code)
        try:
            status, html = await self._get(url, headers=BROWSER_HEADERS)
        except NetworkError as e:
            logger.warning("%s scrape failed for %s: %s", site.name, key, e)
            return SiteResult(site.name, [], error=str(e))
        if status in THROTTLE_STATUSES:
            logger.warning("%s throttled/blocked (%s) for %s", site.name, status, key)
            return SiteResult(site.name, [], throttled=True, error=f"HTTP {status}")
        if status >= 400:
            logger.info("%s returned %s for %s", site.name, status, key)
            return SiteResult(site.name, [], error=f"HTTP {status}")
        prices = extract_prices(html, site.selectors, site.all_matches)
        logger.debug("%s: %d prices for %s", site.name, len(prices), key)
        return SiteResult(site.name, prices)

    async def quote(self, query: ValueQuery, key: VehicleKey) -> Quote:
        zip_code = query.zip_code or self.settings.ebay_zip
        results = await asyncio.gather(*(self._scrape(site, key, zip_code) for site in self.sites))

        prices = [p for r in results for p in r.prices]
        if prices:
            return summarize(prices, self.source)
        if results and all(r.throttled for r in results):
            raise RateLimitError(f"Every listing source throttled the lookup for {key}")
        detail = ", ".join(f"{r.site}: {r.error or 'no prices'}" for r in results)
        raise UpstreamError(
            f"No market data found for {key.year} {key.make} {key.model}", status=404, body=detail
        )


# ---------------------------
# Pricing API (RapidAPI)
# ---------------------------
def _number(v) -> Optional[float]:
    if isinstance(v, bool):
        return None
    if isinstance(v, (int, float)):
        return float(v)
    if isinstance(v, str):
        try:
            return float(v.replace(",", "").replace("$", "").strip())
        except ValueError:
            return None
    return None


class RapidApiValuationProvider(_HttpProvider):
    source = ValueSource.API
    PATH = "/get%2Bvehicle%2Bvalue"

    async def quote(self, query: ValueQuery, key: VehicleKey) -> Quote:
        s = self.settings
        if not s.rapidapi_key:
            raise AuthError("Vehicle pricing API key missing (RAPIDAPI_KEY)")

        url = f"https://{s.rapidapi_host}{self.PATH}"
        params = {"maker": query.make.strip(), "model": query.model.strip(), "year": str(key.year)}
        if query.mileage:
            params["mileage"] = str(query.mileage)
        if query.trim:
            params["trim"] = query.trim
        if query.zip_code:
            params["zip"] = query.zip_code
        headers = {"X-RapidAPI-Key": s.rapidapi_key, "X-RapidAPI-Host": s.rapidapi_host}

        status, text = await self._get(url, headers=headers, params=params)
        if status == 429:
            raise RateLimitError("Vehicle pricing API rate limit exceeded", body=body_excerpt(text))
        if status in (401, 403):
            raise AuthError(f"Vehicle pricing API rejected credentials: {status}", status=status, body=body_excerpt(text))
        if status >= 400:
            raise UpstreamError(f"Vehicle pricing API {status}", status=status, body=body_excerpt(text))

        try:
            payload = json.loads(text)
        except ValueError as e:
            raise InvalidUpstreamShapeError("Vehicle pricing API returned non-JSON", status=status, body=body_excerpt(text)) from e
        if not isinstance(payload, dict):
            raise InvalidUpstreamShapeError("Vehicle pricing API payload is not an object", status=status, body=body_excerpt(text))

        value = _number(payload.get("value"))
        avg = _number(payload.get("avg")) or value
        if avg is None:
            raise InvalidUpstreamShapeError("Vehicle pricing API payload has no value", status=status, body=body_excerpt(text))
        low = _number(payload.get("low")) or avg
        high = _number(payload.get("high")) or avg
        return Quote(
            low=low,
            avg=avg,
            high=high,
            currency=str(payload.get("currency") or "USD"),
            source=self.source,
            sample_size=1,
        )


def build_provider(settings: Settings):
    if settings.valuation_provider == "api":
        return RapidApiValuationProvider(settings)
    return ScrapedValuationProvider(settings)
