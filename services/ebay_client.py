# services/ebay_client.py
# Upstream client for the eBay Browse API: application token + item search.
# No retries here; callers decide whether to retry or fall back.

import asyncio
import base64
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

import aiohttp

from services.errors import (
    AuthError,
    InvalidUpstreamShapeError,
    NetworkError,
    RateLimitError,
    UpstreamError,
    body_excerpt,
)
from services.models import AspectDistribution, RawItem
from services.settings import Settings
from services.single_flight import SingleFlight

logger = logging.getLogger(__name__)

PRODUCTION_BASE = "https://api.ebay.com"
SANDBOX_BASE = "https://api.sandbox.ebay.com"
TOKEN_PATH = "/identity/v1/oauth2/token"
SEARCH_PATH = "/buy/browse/v1/item_summary/search"
BROWSE_SCOPE = "https://api.ebay.com/oauth/api_scope"

CARS_AND_TRUCKS_CATEGORY = "6001"
MAX_PAGE_SIZE = 200
# ask for aspect match counts alongside the listings
FIELD_GROUPS = "ASPECT_REFINEMENTS,MATCHING_ITEMS"
# Refresh the token once 90% of its advertised lifetime has passed
TOKEN_LIFETIME_FRACTION = 0.9

DEFAULT_FILTERS: Tuple[str, ...] = (
    "buyingOptions:{FIXED_PRICE|AUCTION}",
    "conditionIds:{1000|3000|2000}",  # New, Used, Refurbished
    "itemLocationCountry:US",
)


@dataclass(frozen=True)
class Credential:
    access_token: str
    expires_at: Optional[float] = None  # epoch seconds; None for a pre-issued token

    def is_valid(self, now: float) -> bool:
        return self.expires_at is None or now < self.expires_at


@dataclass(frozen=True)
class Constraints:
    category_ids: Tuple[str, ...] = (CARS_AND_TRUCKS_CATEGORY,)
    aspects: Tuple[Tuple[str, str], ...] = ()
    filters: Tuple[str, ...] = DEFAULT_FILTERS

    @classmethod
    def for_vehicle(cls, make: Optional[str] = None, model: Optional[str] = None) -> "Constraints":
        aspects = []
        if make:
            aspects.append(("Make", make))
        if model:
            aspects.append(("Model", model))
        return cls(aspects=tuple(aspects))

    def aspect_filter(self) -> Optional[str]:
        if not self.aspects:
            return None
        parts = [f"categoryId:{self.category_ids[0]}"]
        parts += [f"{name}:{{{value}}}" for name, value in self.aspects]
        return ",".join(parts)


@dataclass(frozen=True)
class SearchPage:
    items: List[RawItem] = field(default_factory=list)
    total: int = 0
    distributions: Tuple[AspectDistribution, ...] = ()


def _parse_json(text: str, url: str, status: int) -> Any:
    try:
        return json.loads(text)
    except ValueError as e:
        raise InvalidUpstreamShapeError(
            f"eBay JSON parse error @ {url}: {e}", status=status, body=body_excerpt(text)
        ) from e


def _list_from_payload(payload: Dict[str, Any], key: str) -> List[Dict[str, Any]]:
    v = payload.get(key)
    if isinstance(v, list):
        return [x for x in v if isinstance(x, dict)]
    return []


def _raw_item(rec: Dict[str, Any]) -> Optional[RawItem]:
    title = rec.get("title")
    if not isinstance(title, str) or not title.strip():
        return None
    attrs: List[Tuple[str, str]] = []
    for a in rec.get("localizedAspects") or []:
        if not isinstance(a, dict):
            continue
        name, value = a.get("name"), a.get("value")
        if isinstance(name, str) and isinstance(value, str):
            attrs.append((name, value))
    return RawItem(title=title.strip(), structured_attributes=tuple(attrs))


def _distributions(payload: Dict[str, Any]) -> Tuple[AspectDistribution, ...]:
    """refinement.aspectDistributions -> AspectDistribution per aspect. Zero counts are kept."""
    refinement = payload.get("refinement")
    if not isinstance(refinement, dict):
        return ()
    out: List[AspectDistribution] = []
    for dist in _list_from_payload(refinement, "aspectDistributions"):
        name = dist.get("localizedAspectName")
        if not isinstance(name, str) or not name.strip():
            continue
        values: List[Tuple[str, int]] = []
        for v in _list_from_payload(dist, "aspectValueDistributions"):
            value = v.get("localizedAspectValue")
            if not isinstance(value, str) or not value.strip():
                continue
            try:
                count = int(v.get("matchCount") or 0)
            except (TypeError, ValueError):
                count = 0
            values.append((value.strip(), max(0, count)))
        out.append(AspectDistribution(name=name.strip(), values=tuple(values)))
    return tuple(out)


class EbayBrowseClient:
    def __init__(self, settings: Settings, clock: Optional[Callable[[], float]] = None):
        self.settings = settings
        self.base_url = SANDBOX_BASE if settings.is_sandbox else PRODUCTION_BASE
        self._clock = clock or time.time
        self._timeout = aiohttp.ClientTimeout(total=settings.upstream_timeout_s)
        self._credential: Optional[Credential] = None
        self._token_flight: SingleFlight[str, Credential] = SingleFlight("ebay-token")

    # ---------------------------
    # HTTP
    # ---------------------------
    async def _send(
        self,
        method: str,
        url: str,
        headers: Dict[str, str],
        params: Optional[Dict[str, str]] = None,
        data: Optional[Dict[str, str]] = None,
    ) -> Tuple[int, str]:
        try:
            async with aiohttp.ClientSession(timeout=self._timeout) as session:
                async with session.request(method, url, headers=headers, params=params, data=data) as resp:
                    return resp.status, await resp.text()
        except asyncio.TimeoutError as e:
            raise NetworkError(f"eBay {method} timed out after {self.settings.upstream_timeout_s}s @ {url}") from e
        except aiohttp.ClientError as e:
            raise NetworkError(f"eBay {method} failed @ {url}: {e}") from e

    # ---------------------------
    # Credential
    # ---------------------------
    def drop_credential(self) -> None:
        self._credential = None

    async def authenticate(self) -> Credential:
        cred = self._credential
        if cred is not None and cred.is_valid(self._clock()):
            return cred
        # concurrent refreshes share one token request
        return await self._token_flight.do("token", self._fetch_credential)

    async def _fetch_credential(self) -> Credential:
        s = self.settings
        if s.ebay_oauth_token:
            logger.info("Using pre-issued eBay application token")
            self._credential = Credential(access_token=s.ebay_oauth_token)
            return self._credential

        if not (s.ebay_client_id and s.ebay_client_secret):
            raise AuthError("Missing eBay API credentials (EBAY_OAUTH_TOKEN or EBAY_CLIENT_ID/EBAY_CLIENT_SECRET)")

        url = self.base_url + TOKEN_PATH
        basic = base64.b64encode(f"{s.ebay_client_id}:{s.ebay_client_secret}".encode("utf-8")).decode("ascii")
        headers = {
            "Content-Type": "application/x-www-form-urlencoded",
            "Authorization": f"Basic {basic}",
        }
        requested_at = self._clock()
        status, text = await self._send(
            "POST", url, headers=headers, data={"grant_type": "client_credentials", "scope": BROWSE_SCOPE}
        )
        if status >= 400:
            raise AuthError(f"eBay OAuth failed: {status}", status=status, body=body_excerpt(text))

        payload = _parse_json(text, url, status)
        token = payload.get("access_token") if isinstance(payload, dict) else None
        if not isinstance(token, str) or not token:
            raise InvalidUpstreamShapeError("eBay OAuth response has no access_token", status=status, body=body_excerpt(text))
        try:
            lifetime_s = float(payload.get("expires_in") or 0)
        except (TypeError, ValueError):
            lifetime_s = 0.0

        self._credential = Credential(
            access_token=token,
            expires_at=requested_at + lifetime_s * TOKEN_LIFETIME_FRACTION,
        )
        logger.info("eBay application token obtained (%s, lifetime %.0fs)",
                    "sandbox" if s.is_sandbox else "production", lifetime_s)
        return self._credential

    # ---------------------------
    # Search
    # ---------------------------
    def _search_headers(self, token: str) -> Dict[str, str]:
        s = self.settings
        return {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
            "X-EBAY-C-MARKETPLACE-ID": s.ebay_marketplace_id,
            "X-EBAY-C-ENDUSERCTX": f"contextualLocation=country%3DUS,zip%3D{s.ebay_zip}",
        }

    async def search_page(self, query: str, constraints: Optional[Constraints] = None, page_size: int = 100) -> SearchPage:
        constraints = constraints or Constraints()
        cred = await self.authenticate()

        url = self.base_url + SEARCH_PATH
        params: Dict[str, str] = {
            "q": query,
            "category_ids": ",".join(constraints.category_ids),
            "limit": str(max(1, min(MAX_PAGE_SIZE, int(page_size)))),
            "fieldgroups": FIELD_GROUPS,
        }
        aspect_filter = constraints.aspect_filter()
        if aspect_filter:
            params["aspect_filter"] = aspect_filter
        if constraints.filters:
            params["filter"] = ",".join(constraints.filters)

        logger.debug("eBay search q=%r aspect_filter=%r", query, aspect_filter)
        status, text = await self._send("GET", url, headers=self._search_headers(cred.access_token), params=params)

        if status == 429:
            raise RateLimitError(f"eBay search throttled @ {url}", body=body_excerpt(text))
        if status in (401, 403):
            # token revoked or expired early; next call re-authenticates
            self.drop_credential()
            raise AuthError(f"eBay search rejected credential: {status}", status=status, body=body_excerpt(text))
        if status >= 400:
            raise UpstreamError(f"eBay search {status} @ {url}", status=status, body=body_excerpt(text))

        payload = _parse_json(text, url, status)
        if not isinstance(payload, dict):
            raise InvalidUpstreamShapeError("eBay search payload is not an object", status=status, body=body_excerpt(text))

        items = [it for it in (_raw_item(r) for r in _list_from_payload(payload, "itemSummaries")) if it]
        try:
            total = int(payload.get("total") or len(items))
        except (TypeError, ValueError):
            total = len(items)
        return SearchPage(items=items, total=total, distributions=_distributions(payload))

    async def search(self, query: str, constraints: Optional[Constraints] = None, page_size: int = 100) -> List[RawItem]:
        page = await self.search_page(query, constraints, page_size)
        return page.items
