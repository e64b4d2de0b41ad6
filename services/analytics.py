# services/analytics.py
# Append-only price history: one JSON line per freshly fetched market value.
import os, json, threading
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from services.models import MarketValueRecord


def _ensure_dir(path: str):
    d = os.path.dirname(path)
    if d and not os.path.exists(d):
        os.makedirs(d, exist_ok=True)


class PriceHistoryLog:
    def __init__(self, path: Optional[str], enabled: bool = False):
        self.path = path
        self.enabled = bool(enabled and path)
        self._lock = threading.Lock()

    def log_event(self, event: Dict[str, Any]) -> None:
        """
        Append a single JSON event if enabled.
        """
        if not self.enabled:
            return
        _ensure_dir(self.path)
        event = dict(event)
        event["ts_iso"] = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
        line = json.dumps(event, separators=(",", ":"), ensure_ascii=False)
        with self._lock:
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line + "\n")

    def record_value(self, record: MarketValueRecord, sample_size: int = 0) -> None:
        make, model, year = record.key.split("|")
        self.log_event({
            "type": "market_value",
            "key": record.key,
            "query": f"{year} {make} {model}",
            "min_price": record.low,
            "avg_price": record.avg,
            "max_price": record.high,
            "currency": record.currency,
            "data_source": record.source.value,
            "item_count": sample_size,
        })
