from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import List, Optional

from .models import CloseReason, Position, Trade, TradeStats
from .state_store import TradeStore

logger = logging.getLogger(__name__)


def compute_roe(direction, entry_price: float, price: float, leverage: float) -> float:
    """Leveraged return on equity in percent; positive when the move favours the position."""
    if entry_price <= 0:
        raise ValueError(f"entry_price must be positive, got {entry_price}")
    diff = (price - entry_price) * direction.sign
    return diff / entry_price * 100.0 * leverage


class TradeLedger:
    """Append-only closed-trade record; statistics always span the full history."""

    def __init__(self, store: TradeStore, leverage: float) -> None:
        self.store = store
        self.leverage = leverage

    def record_close(
        self,
        position: Position,
        close_price: float,
        reason: CloseReason,
        *,
        now: Optional[datetime] = None,
    ) -> Trade:
        now = now or datetime.now(timezone.utc)
        diff = (close_price - position.entry_price) * position.direction.sign
        trade = Trade(
            date=now.isoformat().replace("+00:00", "Z"),
            symbol=position.symbol,
            direction=position.direction,
            entry_price=position.entry_price,
            close_price=float(close_price),
            quantity=position.size,
            profit=diff * position.size,
            roe=compute_roe(position.direction, position.entry_price, close_price, self.leverage),
            reason=CloseReason(reason),
        )
        return self.store.append(trade)

    def settle(
        self,
        positions,
        position: Position,
        close_price: float,
        reason: CloseReason,
        *,
        now: Optional[datetime] = None,
    ) -> Trade:
        """Remove the Position and append its closing Trade as one unit.

        The Position is deleted first; if the Trade cannot be appended the
        Position is written back, so a Trade is never stored alongside the
        Position it closed.
        """
        positions.delete(position.symbol)
        try:
            return self.record_close(position, close_price, reason, now=now)
        except Exception:
            try:
                positions.upsert(position)
            except Exception as restore_exc:
                logger.error(
                    json.dumps(
                        {
                            "type": "CLOSE_ROLLBACK_FAIL",
                            "symbol": position.symbol,
                            "reason": CloseReason(reason).value,
                            "error": str(restore_exc),
                        },
                        sort_keys=True,
                    )
                )
            raise

    def recent(self, limit: Optional[int] = None) -> List[Trade]:
        return self.store.list_recent(limit)

    def stats(self) -> TradeStats:
        trades = self.store.all()
        wins = sum(1 for t in trades if t.profit > 0)
        count = len(trades)
        return TradeStats(
            count=count,
            wins=wins,
            win_rate=(wins / count * 100.0) if count else 0.0,
            total_pnl=sum(t.profit for t in trades),
        )
