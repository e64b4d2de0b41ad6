# services/aspects.py
# Derive candidate make/model/year values (with hit counts) from raw listings.
#
# Each listing is either Structured (it carries an item-specifics field for the
# attribute) or TitleText (we have to dig the value out of the title). Hits from
# the two are counted separately so the resolver can decide how to weight them.

import re
from dataclasses import dataclass
from datetime import date
from typing import Dict, Iterable, Iterator, List, Optional, Pattern, Sequence, Tuple, Union

from services.catalog import MAKE_ALIASES, canonical_make, known_makes, known_models
from services.models import AspectDistribution, Attribute, RawItem

STRUCTURED_NAMES: Dict[Attribute, Tuple[str, ...]] = {
    Attribute.MAKE: ("Make", "Brand", "Manufacturer"),
    Attribute.MODEL: ("Model",),
    Attribute.YEAR: ("Year", "Model Year"),
}

_YEAR_RE = re.compile(r"(?<!\d)((?:19|20)\d{2})(?!\d)")
_TOKEN_RE = re.compile(r"[A-Za-z0-9][A-Za-z0-9.\-/]*")


@dataclass(frozen=True)
class Structured:
    value: str
    count: int = 1


@dataclass(frozen=True)
class TitleText:
    raw: str


ExtractionSource = Union[Structured, TitleText]


@dataclass
class AspectSignal:
    structured: int = 0
    text: int = 0

    @property
    def total(self) -> int:
        return self.structured + self.text

    def weighted(self, text_weight: float = 1.0) -> int:
        return self.structured + int(round(self.text * text_weight))


def _phrase_re(phrase: str) -> Pattern[str]:
    return re.compile(r"(?<![a-z0-9])" + re.escape(phrase.lower()) + r"(?![a-z0-9])")


# longest phrase first so "Land Rover" beats "Rover" and "Range Rover Sport" beats "Range Rover"
_MAKE_PHRASES: List[Tuple[Pattern[str], str]] = sorted(
    [(_phrase_re(m), m) for m in known_makes()] + [(_phrase_re(a), MAKE_ALIASES[a]) for a in MAKE_ALIASES],
    key=lambda p: -len(p[0].pattern),
)


def _valid_year(y: int) -> bool:
    return 1900 <= y <= date.today().year + 1


def year_from_text(text: str) -> Optional[str]:
    for m in _YEAR_RE.finditer(text or ""):
        if _valid_year(int(m.group(1))):
            return m.group(1)
    return None


def make_from_text(text: str) -> Optional[str]:
    low = (text or "").lower()
    for rx, make in _MAKE_PHRASES:
        if rx.search(low):
            return make
    return None


def _make_spellings(make: str) -> List[str]:
    canon = canonical_make(make)
    spellings = {make.lower()}
    if canon:
        spellings.add(canon.lower())
        spellings.update(a for a, target in MAKE_ALIASES.items() if target == canon)
    return sorted(spellings, key=len, reverse=True)


def model_from_text(text: str, make: Optional[str] = None) -> Optional[str]:
    make = make or make_from_text(text)
    if not make:
        return None
    low = (text or "").lower()

    for name in sorted(known_models(make), key=len, reverse=True):
        if _phrase_re(name).search(low):
            return name

    # Unknown model: take the word right after the make, skipping years
    for spelling in _make_spellings(make):
        m = _phrase_re(spelling).search(low)
        if not m:
            continue
        rest = text[m.end():] if len(low) == len(text) else low[m.end():]
        for tok in _TOKEN_RE.findall(rest):
            tok = tok.strip(".-/")
            if not tok or (tok.isdigit() and len(tok) == 4):
                continue
            return tok
    return None


def _from_title(title: str, attribute: Attribute, make: Optional[str]) -> Optional[str]:
    if attribute == Attribute.YEAR:
        return year_from_text(title)
    if attribute == Attribute.MAKE:
        return make_from_text(title)
    return model_from_text(title, make)


def _from_structured(value: str, attribute: Attribute) -> Optional[str]:
    value = " ".join(value.split())
    if attribute == Attribute.YEAR:
        return value if value.isdigit() and _valid_year(int(value)) else None
    if attribute == Attribute.MAKE:
        return canonical_make(value) or value
    return value


def classify(item: RawItem, attribute: Attribute) -> ExtractionSource:
    value = item.attribute(*STRUCTURED_NAMES[attribute])
    if value:
        return Structured(value)
    return TitleText(item.title)


def distribution_for(
    distributions: Sequence[AspectDistribution], attribute: Attribute
) -> Optional[AspectDistribution]:
    wanted = {n.lower() for n in STRUCTURED_NAMES[attribute]}
    for dist in distributions:
        if dist.name.lower() in wanted:
            return dist
    return None


def _sources(
    items: Iterable[RawItem], attribute: Attribute, distributions: Sequence[AspectDistribution]
) -> Iterator[ExtractionSource]:
    # Marketplace match counts cover every listing, not just this page; when
    # present they replace per-item counting entirely.
    dist = distribution_for(distributions, attribute)
    if dist is not None:
        for value, count in dist.values:
            yield Structured(value, count)
        return
    for item in items:
        yield classify(item, attribute)


def extract_signals(
    items: Iterable[RawItem],
    attribute: Union[Attribute, str],
    make: Optional[str] = None,
    distributions: Sequence[AspectDistribution] = (),
) -> Dict[str, AspectSignal]:
    """value -> AspectSignal. Values are de-duplicated case-insensitively; the first spelling wins."""
    attribute = Attribute(attribute)
    signals: Dict[str, AspectSignal] = {}
    spelling: Dict[str, str] = {}

    for source in _sources(items, attribute, distributions):
        if isinstance(source, Structured):
            value = _from_structured(source.value, attribute)
        elif isinstance(source, TitleText):
            value = _from_title(source.raw, attribute, make)
        else:
            raise TypeError(f"unknown extraction source {source!r}")
        if not value:
            continue

        display = spelling.setdefault(value.lower(), value)
        sig = signals.setdefault(display, AspectSignal())
        if isinstance(source, Structured):
            sig.structured += source.count
        else:
            sig.text += 1
    return signals


def extract(
    items: Iterable[RawItem],
    attribute: Union[Attribute, str],
    make: Optional[str] = None,
    distributions: Sequence[AspectDistribution] = (),
) -> Dict[str, int]:
    """Structured and title hits counted together, unweighted."""
    return {value: sig.total for value, sig in extract_signals(items, attribute, make, distributions).items()}
