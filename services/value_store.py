# services/value_store.py
# Flat JSON snapshot of market-value records: load everything once, write
# through on every change. Not a database.

import json
import logging
import os
import threading
from typing import Dict, Optional

from services.models import MarketValueRecord

logger = logging.getLogger(__name__)


def _ensure_dir(path: str):
    d = os.path.dirname(path)
    if d and not os.path.exists(d):
        os.makedirs(d, exist_ok=True)


class JsonValueStore:
    def __init__(self, path: Optional[str]):
        self.path = path
        self._lock = threading.Lock()
        self._records: Dict[str, MarketValueRecord] = {}

    @property
    def enabled(self) -> bool:
        return bool(self.path)

    def load_all(self) -> Dict[str, MarketValueRecord]:
        if not self.enabled or not os.path.exists(self.path):
            self._records = {}
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning("market value snapshot %s unreadable, starting empty: %s", self.path, e)
            self._records = {}
            return {}

        records: Dict[str, MarketValueRecord] = {}
        for key, d in (raw.items() if isinstance(raw, dict) else []):
            try:
                records[key] = MarketValueRecord.from_dict(d)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("dropping malformed snapshot record %r: %s", key, e)
        self._records = records
        logger.info("loaded %d market value records from %s", len(records), self.path)
        return dict(records)

    def put(self, record: MarketValueRecord) -> None:
        self._records[record.key] = record
        self._flush()

    def delete(self, key: str) -> None:
        if self._records.pop(key, None) is not None:
            self._flush()

    def delete_many(self, keys) -> None:
        removed = [k for k in keys if self._records.pop(k, None) is not None]
        if removed:
            self._flush()

    def clear(self) -> None:
        self._records = {}
        self._flush()

    def get(self, key: str) -> Optional[MarketValueRecord]:
        return self._records.get(key)

    def __len__(self) -> int:
        return len(self._records)

    def _flush(self) -> None:
        if not self.enabled:
            return
        _ensure_dir(self.path)
        tmp = self.path + ".tmp"
        snapshot = {k: r.to_dict() for k, r in self._records.items()}
        with self._lock:
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(snapshot, f, separators=(",", ":"), ensure_ascii=False)
            os.replace(tmp, self.path)
