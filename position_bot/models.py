from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class Direction(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"

    @property
    def entry_side(self) -> str:
        return "buy" if self is Direction.LONG else "sell"

    @property
    def exit_side(self) -> str:
        return "sell" if self is Direction.LONG else "buy"

    @property
    def sign(self) -> int:
        return 1 if self is Direction.LONG else -1


class CloseReason(str, Enum):
    STOP_LOSS = "stop-loss"
    TAKE_PROFIT = "take-profit"
    TRAILING_LOCK = "trailing-lock"
    TRAILING_STOP = "trailing-stop"
    MANUAL_CLOSE = "manual-close-detected"


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class MarketSnapshot:
    symbol: str
    price: float
    ema: float
    ema_long: float
    rsi: float
    atr: float

    ok = True


@dataclass(frozen=True)
class SnapshotFailure:
    symbol: str
    error: str

    ok = False


@dataclass(frozen=True)
class Position:
    symbol: str
    direction: Direction
    entry_price: float
    quantity: float  # signed: positive LONG, negative SHORT
    highest_pnl: float = 0.0
    trailing_level: int = 0
    opened_at: str = field(default_factory=_utc_now_iso)
    # set just before the exit order; the reconciler books this reason if the close is interrupted
    pending_close: Optional[CloseReason] = None

    @property
    def size(self) -> float:
        return abs(self.quantity)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["direction"] = self.direction.value
        data["pending_close"] = self.pending_close.value if self.pending_close else None
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Position":
        pending = data.get("pending_close")
        return cls(
            symbol=str(data["symbol"]),
            direction=Direction(data["direction"]),
            entry_price=float(data["entry_price"]),
            quantity=float(data["quantity"]),
            highest_pnl=float(data.get("highest_pnl") or 0.0),
            trailing_level=int(data.get("trailing_level") or 0),
            opened_at=str(data.get("opened_at") or _utc_now_iso()),
            pending_close=CloseReason(pending) if pending else None,
        )


@dataclass(frozen=True)
class Trade:
    date: str
    symbol: str
    direction: Direction
    entry_price: float
    close_price: float
    quantity: float
    profit: float
    roe: float
    reason: CloseReason

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["direction"] = self.direction.value
        data["reason"] = self.reason.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Trade":
        return cls(
            date=str(data["date"]),
            symbol=str(data["symbol"]),
            direction=Direction(data["direction"]),
            entry_price=float(data["entry_price"]),
            close_price=float(data["close_price"]),
            quantity=float(data.get("quantity") or 0.0),
            profit=float(data["profit"]),
            roe=float(data["roe"]),
            reason=CloseReason(data["reason"]),
        )


@dataclass(frozen=True)
class TradeStats:
    count: int
    wins: int
    win_rate: float  # percent, 0-100
    total_pnl: float


@dataclass(frozen=True)
class OrderAck:
    order_id: str
    symbol: str
    side: str
    quantity: float
    average_price: Optional[float] = None
    status: Optional[str] = None
