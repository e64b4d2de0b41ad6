# services/settings.py
import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv, find_dotenv

# Load .env (override OS vars so you don't get stale values)
ENV_PATH = find_dotenv(usecwd=True)
load_dotenv(ENV_PATH, override=True)

APP_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


def _env_str(name: str, default: str = "") -> str:
    return (os.getenv(name) or default).strip()


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    return int(_env_float(name, default))


def _sanitize_key(k: Optional[str]) -> str:
    if k is None:
        return ""
    return " ".join(k.strip().split())


@dataclass
class Settings:
    # eBay Browse
    ebay_client_id: str = ""
    ebay_client_secret: str = ""
    ebay_oauth_token: str = ""
    ebay_env: str = "production"
    ebay_marketplace_id: str = "EBAY_US"
    ebay_zip: str = "90210"
    upstream_timeout_s: float = 15.0

    # Cache TTL classes
    aspect_ttl_s: float = 5 * 60
    aspect_fallback_ttl_s: float = 60
    market_value_ttl_s: float = 4 * 60 * 60
    cache_sweep_interval_s: float = 30 * 60
    value_debounce_ms: int = 400

    # Live-signal policy
    min_live_makes: int = 1
    min_live_models: int = 1
    min_live_years: int = 1
    text_match_weight: float = 1.0
    fallback_year_floor: int = 1990

    # Valuation
    valuation_provider: str = "scrape"
    rapidapi_key: str = ""
    rapidapi_host: str = "vehicle-pricing-api.p.rapidapi.com"
    value_store_path: Optional[str] = field(default_factory=lambda: os.path.join(APP_DIR, "data", "market_values.json"))

    # Price history log
    analytics_enable: bool = False
    analytics_path: str = field(default_factory=lambda: os.path.join(APP_DIR, "data", "events.jsonl"))

    log_level: str = "INFO"

    @property
    def is_sandbox(self) -> bool:
        return self.ebay_env.lower() == "sandbox" or "SBX" in self.ebay_client_id

    @classmethod
    def from_env(cls) -> "Settings":
        defaults = cls()
        store_path = os.getenv("VALUE_STORE_PATH")
        return cls(
            ebay_client_id=_sanitize_key(os.getenv("EBAY_CLIENT_ID")),
            ebay_client_secret=_sanitize_key(os.getenv("EBAY_CLIENT_SECRET")),
            ebay_oauth_token=_sanitize_key(os.getenv("EBAY_OAUTH_TOKEN")),
            ebay_env=_env_str("EBAY_ENV", defaults.ebay_env),
            ebay_marketplace_id=_env_str("EBAY_MARKETPLACE_ID", defaults.ebay_marketplace_id),
            ebay_zip=_env_str("EBAY_ZIP", defaults.ebay_zip),
            upstream_timeout_s=_env_float("UPSTREAM_TIMEOUT_S", defaults.upstream_timeout_s),
            aspect_ttl_s=_env_float("ASPECT_TTL_S", defaults.aspect_ttl_s),
            aspect_fallback_ttl_s=_env_float("ASPECT_FALLBACK_TTL_S", defaults.aspect_fallback_ttl_s),
            market_value_ttl_s=_env_float("MARKET_VALUE_TTL_S", defaults.market_value_ttl_s),
            cache_sweep_interval_s=_env_float("CACHE_SWEEP_INTERVAL_S", defaults.cache_sweep_interval_s),
            value_debounce_ms=_env_int("VALUE_DEBOUNCE_MS", defaults.value_debounce_ms),
            min_live_makes=_env_int("MIN_LIVE_MAKES", defaults.min_live_makes),
            min_live_models=_env_int("MIN_LIVE_MODELS", defaults.min_live_models),
            min_live_years=_env_int("MIN_LIVE_YEARS", defaults.min_live_years),
            text_match_weight=_env_float("TEXT_MATCH_WEIGHT", defaults.text_match_weight),
            fallback_year_floor=_env_int("FALLBACK_YEAR_FLOOR", defaults.fallback_year_floor),
            valuation_provider=_env_str("VALUATION_PROVIDER", defaults.valuation_provider).lower(),
            rapidapi_key=_sanitize_key(os.getenv("RAPIDAPI_KEY")),
            rapidapi_host=_env_str("RAPIDAPI_HOST", defaults.rapidapi_host),
            # VALUE_STORE_PATH="" turns persistence off
            value_store_path=(store_path.strip() or None) if store_path is not None else defaults.value_store_path,
            analytics_enable=os.getenv("ANALYTICS_ENABLE", "0") == "1",
            analytics_path=_env_str("ANALYTICS_PATH", defaults.analytics_path),
            log_level=_env_str("LOG_LEVEL", defaults.log_level).upper(),
        )
