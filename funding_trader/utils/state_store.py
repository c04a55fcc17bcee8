"""
State Store

Durable JSONL storage for trade records, cycle logs and asset snapshots.
"""

import json
import threading
from abc import ABC, abstractmethod
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from pathlib import Path


def _json_default(value):
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    raise TypeError(f"{type(value).__name__} is not JSON serializable")


class TradeRecorder(ABC):
    """Sink for everything the trading cycle persists."""

    @abstractmethod
    def record_trade(self, record: dict):
        ...

    @abstractmethod
    def record_log(self, level: str, category: str, message: str, **details):
        ...

    @abstractmethod
    def record_asset_snapshot(self, record: dict):
        ...


class StateStore(TradeRecorder):
    """
    Persistent state management.

    Stores:
    - Trade log (one line per placed or closing order)
    - Cycle log (info/warning/error lines per user and currency)
    - Asset snapshots (hourly balances per user)
    - Metrics snapshots
    """

    TRADES = "trades"
    LOGS = "logs"
    ASSETS = "assets"

    def __init__(self, data_dir: str = "data/state"):
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()

    def save_snapshot(self, name: str, data: dict):
        """Save a state snapshot."""
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
        path = self.data_dir / f"{name}_{stamp}.json"
        with open(path, "w") as f:
            json.dump(data, f, indent=2, default=_json_default)

    def load_latest_snapshot(self, name: str) -> dict:
        """Load most recent snapshot."""
        files = sorted(self.data_dir.glob(f"{name}_*.json"), reverse=True)
        if not files:
            return {}
        with open(files[0], "r") as f:
            return json.load(f)

    def append_jsonl(self, name: str, record: dict):
        """Append a record to a JSONL log file."""
        path = self.data_dir / f"{name}.jsonl"
        line = json.dumps(record, default=_json_default)
        # Per-user units may run on worker threads
        with self._lock:
            with open(path, "a") as f:
                f.write(line + "\n")

    def read_jsonl(self, name: str, limit: int = 1000) -> list:
        """Read up to 'limit' records from end of a JSONL log file."""
        path = self.data_dir / f"{name}.jsonl"
        if not path.exists():
            return []
        with open(path, "r") as f:
            lines = f.readlines()
        return [json.loads(x) for x in lines[-limit:]]

    def record_trade(self, record: dict):
        self.append_jsonl(self.TRADES, {"recorded_at": self._now(), **record})

    def record_log(self, level: str, category: str, message: str, **details):
        self.append_jsonl(
            self.LOGS,
            {
                "recorded_at": self._now(),
                "level": level,
                "category": category,
                "message": message,
                "details": details,
            },
        )

    def record_asset_snapshot(self, record: dict):
        self.append_jsonl(self.ASSETS, {"recorded_at": self._now(), **record})
