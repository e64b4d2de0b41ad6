# services/vehicle_key.py
import re
from dataclasses import dataclass
from datetime import date
from typing import Any, Optional, Tuple

from services.errors import ValidationError

MIN_YEAR = 1900
SEPARATOR = "|"

# separators and runs of whitespace collapse to one space
_SEP_RE = re.compile(r"[\s|_]+")


def max_year() -> int:
    return date.today().year + 1


def norm_text(s: Optional[str]) -> str:
    """Lowercase, trim and collapse whitespace/separators. Pure, locale independent."""
    return _SEP_RE.sub(" ", (s or "")).strip().lower()


def parse_year(year: Any) -> int:
    if isinstance(year, bool):
        raise ValidationError(f"Year must be a number, got {year!r}")
    if isinstance(year, int):
        y = year
    elif isinstance(year, float) and year.is_integer():
        y = int(year)
    elif isinstance(year, str) and year.strip().isdigit():
        y = int(year.strip())
    else:
        raise ValidationError(f"Year must be a number, got {year!r}")
    if not (MIN_YEAR <= y <= max_year()):
        raise ValidationError(f"Year {y} is outside {MIN_YEAR}..{max_year()}")
    return y


def require_text(name: str, value: Optional[str]) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{name} is required")
    return value


@dataclass(frozen=True)
class VehicleKey:
    make: str
    model: str
    year: int

    @classmethod
    def normalize(cls, make: Optional[str], model: Optional[str], year: Any) -> "VehicleKey":
        mk = norm_text(require_text("make", make))
        md = norm_text(require_text("model", model))
        if not mk:
            raise ValidationError("make is required")
        if not md:
            raise ValidationError("model is required")
        return cls(make=mk, model=md, year=parse_year(year))

    @classmethod
    def parse(cls, raw: str) -> "VehicleKey":
        """Inverse of str(key); also accepts un-normalized 'Make|Model|Year' strings."""
        parts = (raw or "").split(SEPARATOR)
        if len(parts) != 3:
            raise ValidationError(f"Invalid vehicle key format: {raw!r}")
        return cls.normalize(*parts)

    @property
    def parts(self) -> Tuple[str, str, int]:
        return (self.make, self.model, self.year)

    def __str__(self) -> str:
        return SEPARATOR.join((self.make, self.model, str(self.year)))


def normalize_key(make: Optional[str], model: Optional[str], year: Any) -> str:
    return str(VehicleKey.normalize(make, model, year))
