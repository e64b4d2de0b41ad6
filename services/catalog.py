# services/catalog.py
# Closed, versioned fallback dataset. Used when live inventory can't tell us
# which makes/models/years exist. Never fetched at runtime, never raises.

from datetime import date
from typing import Dict, List, Optional, Tuple

from services.models import AttributeValue

CATALOG_VERSION = "2025.1"

DEFAULT_YEAR_FLOOR = 1990

# Nominal inventory weights; anything not listed gets 1 so it survives zero-count filtering.
_MAKE_WEIGHTS: Dict[str, int] = {
    "Ford": 25420, "Chevrolet": 22850, "Toyota": 21200, "Honda": 19800,
    "Nissan": 18500, "BMW": 17200, "Mercedes-Benz": 16800, "Audi": 15900,
    "Dodge": 15600, "Jeep": 15200,
}

# make -> [(model, weight)]
_MODELS: Dict[str, List[Tuple[str, int]]] = {
    "Acura": [("Integra", 1), ("ILX", 1), ("TLX", 1), ("RDX", 1), ("MDX", 1)],
    "Alfa Romeo": [("Giulia", 1), ("Stelvio", 1), ("Tonale", 1)],
    "Audi": [("A3", 1), ("A4", 380), ("A6", 1), ("Q3", 1), ("Q5", 320), ("Q7", 1), ("Q8", 1), ("e-tron", 1)],
    "BMW": [("3 Series", 580), ("5 Series", 1), ("7 Series", 1), ("X1", 1), ("X3", 450), ("X5", 1),
            ("X7", 1), ("M3", 1), ("M4", 1), ("i4", 1), ("iX", 1)],
    "Buick": [("Encore", 1), ("Envista", 1), ("Envision", 1), ("Enclave", 1)],
    "Cadillac": [("Escalade", 1), ("XT4", 1), ("XT5", 1), ("XT6", 1), ("CT4", 1), ("CT5", 1), ("Lyriq", 1)],
    "Chevrolet": [("Silverado", 3200), ("Silverado 1500", 1), ("Silverado 2500HD", 1), ("Tahoe", 1),
                  ("Suburban", 1), ("Traverse", 1), ("Equinox", 1550), ("Colorado", 1), ("Malibu", 1480),
                  ("Camaro", 1600), ("Corvette", 1), ("Blazer", 1)],
    "Chrysler": [("Pacifica", 1), ("Voyager", 1), ("300", 1)],
    "Dodge": [("Durango", 1), ("Charger", 480), ("Challenger", 700), ("Hornet", 1), ("Journey", 1)],
    "Fiat": [("500", 1), ("500X", 1)],
    "Ford": [("F-150", 3500), ("F-250", 1), ("F-350", 1), ("Explorer", 1650), ("Escape", 1580), ("Edge", 1),
             ("Expedition", 1), ("Mustang", 1900), ("Focus", 1520), ("Ranger", 1), ("Bronco", 1), ("Maverick", 1)],
    "Genesis": [("G70", 1), ("G80", 1), ("G90", 1), ("GV70", 1), ("GV80", 1)],
    "GMC": [("Sierra 1500", 1), ("Sierra 2500HD", 1), ("Yukon", 1), ("Acadia", 1), ("Terrain", 1), ("Canyon", 1)],
    "Honda": [("Civic", 2400), ("Accord", 2600), ("CR-V", 1580), ("Pilot", 1520), ("Odyssey", 1420),
              ("HR-V", 1), ("Ridgeline", 1), ("Passport", 1)],
    "Hyundai": [("Elantra", 1), ("Sonata", 1), ("Tucson", 1), ("Santa Fe", 1), ("Palisade", 1), ("Kona", 1),
                ("Ioniq 5", 1)],
    "Infiniti": [("Q50", 1), ("Q60", 1), ("QX50", 1), ("QX60", 1), ("QX80", 1)],
    "Jaguar": [("F-Pace", 1), ("E-Pace", 1), ("I-Pace", 1), ("XE", 1), ("XF", 1)],
    "Jeep": [("Wrangler", 550), ("Grand Cherokee", 480), ("Cherokee", 1), ("Compass", 1), ("Renegade", 1),
             ("Gladiator", 1), ("Wagoneer", 1)],
    "Kia": [("Forte", 1), ("K5", 1), ("Soul", 1), ("Sportage", 1), ("Sorento", 1), ("Telluride", 1), ("Niro", 1)],
    "Land Rover": [("Range Rover", 1), ("Range Rover Sport", 1), ("Discovery", 1), ("Defender", 1)],
    "Lexus": [("RX", 1), ("NX", 1), ("ES", 1), ("IS", 1), ("GX", 1), ("LX", 1)],
    "Lincoln": [("Navigator", 1), ("Aviator", 1), ("Nautilus", 1), ("Corsair", 1)],
    "Mazda": [("Mazda3", 1), ("Mazda6", 1), ("CX-30", 1), ("CX-5", 1), ("CX-50", 1), ("CX-9", 1), ("MX-5 Miata", 1)],
    "Mercedes-Benz": [("C-Class", 520), ("E-Class", 420), ("S-Class", 1), ("GLA", 1), ("GLC", 1), ("GLE", 1),
                      ("G-Class", 1)],
    "Mini": [("Cooper", 1), ("Clubman", 1), ("Countryman", 1)],
    "Mitsubishi": [("Outlander", 1), ("Outlander Sport", 1), ("Eclipse Cross", 1), ("Mirage", 1)],
    "Nissan": [("Altima", 1650), ("Sentra", 1420), ("Rogue", 1580), ("Murano", 1), ("Pathfinder", 1380),
               ("Frontier", 1), ("Versa", 1), ("Maxima", 1)],
    "Polestar": [("2", 1), ("3", 1)],
    "Porsche": [("Macan", 1), ("Cayenne", 1), ("Panamera", 1), ("911", 1), ("Taycan", 1)],
    "Ram": [("1500", 1), ("2500", 1), ("3500", 1), ("ProMaster", 1)],
    "Rivian": [("R1T", 1), ("R1S", 1)],
    "Subaru": [("Outback", 1), ("Forester", 1), ("Crosstrek", 1), ("Impreza", 1), ("Ascent", 1), ("WRX", 1)],
    "Tesla": [("Model 3", 1), ("Model Y", 1), ("Model S", 1), ("Model X", 1), ("Cybertruck", 1)],
    "Toyota": [("Camry", 2800), ("Corolla", 1800), ("RAV4", 1950), ("Highlander", 1580), ("Tacoma", 1),
               ("Tundra", 1), ("Prius", 1680), ("Sienna", 1), ("4Runner", 1)],
    "Volkswagen": [("Jetta", 1), ("Golf", 1), ("Tiguan", 1), ("Atlas", 1), ("Taos", 1), ("ID.4", 1), ("Passat", 1)],
    "Volvo": [("S60", 1), ("S90", 1), ("XC40", 1), ("XC60", 1), ("XC90", 1), ("EX30", 1)],
}

# Title spellings that mean a catalog make
MAKE_ALIASES: Dict[str, str] = {
    "chevy": "Chevrolet",
    "vw": "Volkswagen",
    "mercedes": "Mercedes-Benz",
    "mercedes benz": "Mercedes-Benz",
    "benz": "Mercedes-Benz",
    "range rover": "Land Rover",
    "landrover": "Land Rover",
    "alfa": "Alfa Romeo",
}


def _canon(s: str) -> str:
    return (s or "").lower().replace(" ", "").replace("-", "").strip()


_MAKES_BY_CANON: Dict[str, str] = {_canon(m): m for m in _MODELS}


def known_makes() -> List[str]:
    return sorted(_MODELS, key=str.lower)


def canonical_make(make: Optional[str]) -> Optional[str]:
    """Catalog spelling of a make, or None when the catalog doesn't know it."""
    if not make:
        return None
    alias = MAKE_ALIASES.get(" ".join(make.lower().split()))
    if alias:
        return alias
    return _MAKES_BY_CANON.get(_canon(make))


def known_models(make: Optional[str]) -> List[str]:
    mk = canonical_make(make)
    if not mk:
        return []
    return [name for name, _ in _MODELS[mk]]


def _as_year(v, default: int) -> int:
    try:
        return int(v)
    except (TypeError, ValueError):
        return default


def get_fallback_makes() -> List[AttributeValue]:
    return [
        AttributeValue(value=m, display_name=m, count=_MAKE_WEIGHTS.get(m, 1))
        for m in known_makes()
    ]


def get_fallback_models(make: Optional[str]) -> List[AttributeValue]:
    mk = canonical_make(make)
    if not mk:
        return []
    out = [AttributeValue(value=name, display_name=name, count=max(1, w), parent=mk) for name, w in _MODELS[mk]]
    return sorted(out, key=lambda v: v.display_name.lower())


def get_fallback_years(from_year: Optional[int] = None, to_year: Optional[int] = None) -> List[AttributeValue]:
    """Synthesized range, newest first. Bounds are swapped/defaulted rather than rejected."""
    lo = _as_year(from_year, DEFAULT_YEAR_FLOOR)
    hi = _as_year(to_year, date.today().year)
    if lo > hi:
        lo, hi = hi, lo
    return [AttributeValue(value=str(y), display_name=str(y), count=1) for y in range(hi, lo - 1, -1)]
