from __future__ import annotations

import json
import os
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from .errors import DuplicatePositionError, StoreUnavailableError
from .models import Position, Trade

__all__ = ["JsonDocument", "PositionStore", "TradeStore"]


@dataclass
class JsonDocument:
    """One JSON file, written atomically (tmp file + os.replace)."""

    path: Path
    empty: Any = None

    def load(self) -> Any:
        if not self.path.exists():
            return self._empty()
        try:
            return json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise StoreUnavailableError(f"Cannot read {self.path}: {exc}") from exc

    def save(self, data: Any) -> None:
        tmp_path = self.path.with_name(f"{self.path.name}.tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
            # Windows can hold a transient lock on the target
            for attempt in range(5):
                try:
                    os.replace(tmp_path, self.path)
                    return
                except PermissionError:
                    if attempt == 4:
                        raise
                    time.sleep(0.1 * (attempt + 1))
        except OSError as exc:
            raise StoreUnavailableError(f"Cannot write {self.path}: {exc}") from exc

    def _empty(self) -> Any:
        return json.loads(json.dumps(self.empty)) if self.empty is not None else None


@dataclass
class PositionStore:
    """Open positions keyed by symbol; at most one per symbol."""

    path: Path
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def __post_init__(self) -> None:
        self._doc = JsonDocument(Path(self.path), empty={})

    def _rows(self) -> Dict[str, Dict[str, Any]]:
        data = self._doc.load()
        if not isinstance(data, dict):
            raise StoreUnavailableError(f"{self.path} is not a JSON object")
        return data

    def get(self, symbol: str) -> Optional[Position]:
        with self._lock:
            row = self._rows().get(symbol)
        return Position.from_dict(row) if row else None

    def list(self) -> List[Position]:
        with self._lock:
            rows = self._rows()
        return [Position.from_dict(row) for row in rows.values()]

    def create(self, position: Position) -> Position:
        with self._lock:
            rows = self._rows()
            if position.symbol in rows:
                raise DuplicatePositionError(f"Position already open for {position.symbol}")
            rows[position.symbol] = position.to_dict()
            self._doc.save(rows)
        return position

    def upsert(self, position: Position) -> Position:
        with self._lock:
            rows = self._rows()
            rows[position.symbol] = position.to_dict()
            self._doc.save(rows)
        return position

    def delete(self, symbol: str) -> bool:
        with self._lock:
            rows = self._rows()
            if symbol not in rows:
                return False
            del rows[symbol]
            self._doc.save(rows)
        return True


@dataclass
class TradeStore:
    """Append-only closed-trade history in insertion order."""

    path: Path
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def __post_init__(self) -> None:
        self._doc = JsonDocument(Path(self.path), empty=[])

    def _rows(self) -> List[Dict[str, Any]]:
        data = self._doc.load()
        if not isinstance(data, list):
            raise StoreUnavailableError(f"{self.path} is not a JSON list")
        return data

    def append(self, trade: Trade) -> Trade:
        with self._lock:
            rows = self._rows()
            rows.append(trade.to_dict())
            self._doc.save(rows)
        return trade

    def all(self) -> List[Trade]:
        with self._lock:
            rows = self._rows()
        return [Trade.from_dict(row) for row in rows]

    def list_recent(self, limit: Optional[int] = None) -> List[Trade]:
        trades = list(reversed(self.all()))
        return trades if limit is None else trades[: max(0, int(limit))]
