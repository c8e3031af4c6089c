from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from threading import Lock
from typing import Any, Dict, List, Mapping, Optional

from config import BotConfig
from . import metrics
from .errors import CycleAbortedError, CycleInProgressError, StoreUnavailableError, VenueAuthError, VenueError
from .events import EventOutbox, NotificationDispatcher
from .exchange_api import ExchangeAPI
from .ledger import TradeLedger
from .lifecycle import PositionLifecycleManager
from .market_data import MarketSnapshotProvider
from .models import MarketSnapshot, Trade, TradeStats
from .notify_fmt import fmt_optional
from .reconciler import PositionReconciler
from .state_store import PositionStore, TradeStore
from .strategy import signal_from_snapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SymbolStatus:
    symbol: str
    price: float
    action: str
    ema: Optional[float] = None
    rsi: Optional[float] = None
    atr: Optional[float] = None
    ema_long: Optional[float] = None

    @classmethod
    def from_snapshot(cls, snapshot: MarketSnapshot, action: str) -> "SymbolStatus":
        return cls(
            symbol=snapshot.symbol,
            price=snapshot.price,
            action=action,
            ema=snapshot.ema,
            rsi=snapshot.rsi,
            atr=snapshot.atr,
            ema_long=snapshot.ema_long,
        )

    def to_payload(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "price": self.price,
            "action": self.action,
            "ema": fmt_optional(self.ema, lambda v: f"{v:.2f}"),
            "rsi": fmt_optional(self.rsi, lambda v: f"{v:.2f}"),
            "atr": fmt_optional(self.atr, lambda v: f"{v:.4f}"),
            "ema4h": fmt_optional(self.ema_long, lambda v: f"{v:.2f}"),
        }


@dataclass(frozen=True)
class CycleReport:
    rows: List[SymbolStatus]
    trades: List[Trade]
    stats: TradeStats
    balance: Optional[float]
    skipped: List[str] = field(default_factory=list)

    def to_payload(self) -> Dict[str, Any]:
        """The payload the dashboard consumes."""
        return {
            "success": True,
            "data": [row.to_payload() for row in self.rows],
            "tradeHistory": [trade.to_dict() for trade in self.trades],
            "totalProfitLoss": self.stats.total_pnl,
            "winRate": self.stats.win_rate,
            "balance": self.balance if self.balance is not None else 0.0,
        }


def error_payload(exc: BaseException) -> Dict[str, Any]:
    return {"success": False, "error": str(exc)}


class CycleOrchestrator:
    """Runs one decision/reconciliation pass over every configured symbol.

    Callers must not run cycles concurrently; an overlapping call raises
    CycleInProgressError instead of racing on the position store.
    """

    def __init__(
        self,
        config: BotConfig,
        exchange,
        positions,
        trades,
        notifier,
        *,
        snapshots: Optional[MarketSnapshotProvider] = None,
    ) -> None:
        self.config = config
        self.exchange = exchange
        self.positions = positions
        self.outbox = EventOutbox()
        self.ledger = TradeLedger(trades, config.leverage)
        self.snapshots = snapshots or MarketSnapshotProvider(exchange, config)
        self.reconciler = PositionReconciler(positions, self.ledger, self.outbox)
        self.lifecycle = PositionLifecycleManager(config, exchange, positions, self.ledger, self.outbox)
        self.dispatcher = NotificationDispatcher(notifier)
        self._running = Lock()

    @classmethod
    def from_config(cls, config: BotConfig, notifier=None) -> "CycleOrchestrator":
        from .notifier import TelegramNotifier

        data_dir = Path(config.data_dir)
        return cls(
            config,
            ExchangeAPI.from_config(config),
            PositionStore(data_dir / "positions.json"),
            TradeStore(data_dir / "trades.json"),
            notifier or TelegramNotifier(),
        )

    def run_cycle(self) -> CycleReport:
        if not self._running.acquire(blocking=False):
            raise CycleInProgressError("A cycle is already running")
        started = time.perf_counter()
        status = "aborted"
        try:
            report = self._run()
            status = "ok"
            return report
        except (VenueError, StoreUnavailableError) as exc:
            logger.error("Cycle aborted: %s: %s", type(exc).__name__, exc)
            raise CycleAbortedError(str(exc)) from exc
        finally:
            self.dispatcher.dispatch(self.outbox)
            metrics.record_cycle(status, (time.perf_counter() - started) * 1000.0)
            self._running.release()

    def _run(self) -> CycleReport:
        results = self.snapshots.fetch_all(self.config.symbols)
        exposure = self.exchange.read_net_exposure()

        rows: List[SymbolStatus] = []
        skipped: List[str] = []
        for result in results:
            if not result.ok:
                skipped.append(result.symbol)
                metrics.record_snapshot_failure(result.symbol)
                continue
            try:
                action = self._process(result, exposure)
            except (VenueAuthError, StoreUnavailableError):
                raise
            except Exception as exc:
                logger.exception("Cycle error for %s: %s", result.symbol, exc)
                action = "Error"
            rows.append(SymbolStatus.from_snapshot(result, action))

        metrics.set_open_positions(len(self.positions.list()))
        trades = self.ledger.recent(self.config.trade_page_size)
        stats = self.ledger.stats()
        balance = self._read_balance()

        logger.info(
            json.dumps(
                {
                    "type": "CYCLE_DONE",
                    "actions": {row.symbol: row.action for row in rows},
                    "skipped": skipped,
                    "trades": stats.count,
                    "win_rate": round(stats.win_rate, 2),
                    "total_pnl": round(stats.total_pnl, 8),
                },
                sort_keys=True,
            )
        )
        return CycleReport(rows=rows, trades=trades, stats=stats, balance=balance, skipped=skipped)

    def _process(self, snapshot: MarketSnapshot, exposure: Mapping[str, float]) -> str:
        symbol = snapshot.symbol
        position = self.positions.get(symbol)

        reconciled = self.reconciler.reconcile(symbol, position, exposure.get(symbol, 0.0), snapshot.price)
        if reconciled.closed:
            position = None

        if position is not None:
            return self.lifecycle.manage(position, snapshot)

        if reconciled.untracked and self.config.block_untracked_entries:
            return "Untracked exposure"

        instrument = self.config.instrument(symbol)
        signal = signal_from_snapshot(snapshot, self.config.signal, instrument.atr_threshold)
        if signal.is_entry:
            return self.lifecycle.open_position(snapshot, signal.direction)
        if reconciled.closed:
            return f"Closed: {reconciled.trade.reason.value}"
        return "Wait"

    def _read_balance(self) -> Optional[float]:
        try:
            balance = self.exchange.read_available_balance(self.config.quote)
        except VenueAuthError:
            raise
        except VenueError as exc:
            logger.warning("Balance read failed: %s", exc)
            return None
        metrics.set_available_balance(balance)
        return balance
