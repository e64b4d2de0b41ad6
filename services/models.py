# services/models.py
# Plain data carried between the client, extractor, resolver and value lookup.

from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class Attribute(str, Enum):
    MAKE = "make"
    MODEL = "model"
    YEAR = "year"


class AspectSource(str, Enum):
    LIVE = "LIVE"
    FALLBACK = "FALLBACK"
    MERGED = "MERGED"


class ValueSource(str, Enum):
    SCRAPE = "SCRAPE"
    API = "API"


@dataclass(frozen=True)
class RawItem:
    title: str
    structured_attributes: Tuple[Tuple[str, str], ...] = ()

    def attribute(self, *names: str) -> Optional[str]:
        wanted = {n.lower() for n in names}
        for name, value in self.structured_attributes:
            if name.lower() in wanted and isinstance(value, str) and value.strip():
                return value.strip()
        return None


@dataclass(frozen=True)
class AspectDistribution:
    """Marketplace-wide match counts for one item-specifics field, e.g. Make: (("Ford", 5), ("Yugo", 0))."""
    name: str
    values: Tuple[Tuple[str, int], ...] = ()


@dataclass(frozen=True)
class AttributeValue:
    value: str
    display_name: str
    count: int
    parent: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        d = {"value": self.value, "displayName": self.display_name, "count": self.count}
        if self.parent is not None:
            d["parent"] = self.parent
        return d


@dataclass(frozen=True)
class ResolvedAspects:
    attribute: Attribute
    values: Tuple[AttributeValue, ...]
    source: AspectSource

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attribute": self.attribute.value,
            "values": [v.to_dict() for v in self.values],
            "source": self.source.value,
        }


def combine_sources(*sources: AspectSource) -> AspectSource:
    if sources and all(s == AspectSource.LIVE for s in sources):
        return AspectSource.LIVE
    if sources and all(s == AspectSource.FALLBACK for s in sources):
        return AspectSource.FALLBACK
    return AspectSource.MERGED


@dataclass(frozen=True)
class AttributeSet:
    makes: Tuple[AttributeValue, ...] = ()
    models: Tuple[AttributeValue, ...] = ()
    years: Tuple[AttributeValue, ...] = ()
    source: AspectSource = AspectSource.FALLBACK

    def to_dict(self) -> Dict[str, Any]:
        return {
            "makes": [v.to_dict() for v in self.makes],
            "models": [v.to_dict() for v in self.models],
            "years": [v.to_dict() for v in self.years],
            "source": self.source.value,
        }


@dataclass(frozen=True)
class Quote:
    """What a valuation provider answers, before it is keyed and timestamped."""
    low: float
    avg: float
    high: float
    currency: str
    source: ValueSource
    sample_size: int = 0


@dataclass(frozen=True)
class MarketValueRecord:
    key: str
    low: float
    avg: float
    high: float
    currency: str
    source: ValueSource
    fetched_at_ms: int

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["source"] = self.source.value
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "MarketValueRecord":
        return cls(
            key=str(d["key"]),
            low=float(d["low"]),
            avg=float(d["avg"]),
            high=float(d["high"]),
            currency=str(d.get("currency") or "USD"),
            source=ValueSource(d.get("source") or ValueSource.SCRAPE.value),
            fetched_at_ms=int(d["fetched_at_ms"]),
        )


@dataclass(frozen=True)
class MarketValueLookup:
    record: MarketValueRecord
    cached: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {**self.record.to_dict(), "cached": self.cached}


@dataclass
class ValueQuery:
    make: str
    model: str
    year: Any
    mileage: Optional[int] = None
    trim: Optional[str] = None
    zip_code: Optional[str] = None
