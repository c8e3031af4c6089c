"""Venue gateway over Binance USDⓈ-M.

Reads (exposure, balance) retry with a linear backoff; market orders are
submitted exactly once because the venue treats them as non-idempotent.
"""

from __future__ import annotations

import json
import logging
import time
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Iterable, Optional, Sequence

from broker_binance import BinanceUSDM
from config import BotConfig, venue_id
from .errors import OrderError, VenueAuthError, VenueError
from .models import Direction, OrderAck

__all__ = [
    "ExchangeAPI",
    "POSITION_EPS",
]

logger = logging.getLogger(__name__)


POSITION_EPS = 1e-8


def _decimal(value: Any) -> Decimal:
    if value in (None, "", b"", False):
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, TypeError) as exc:
        raise VenueError(f"Invalid numeric value: {value!r}") from exc


class ExchangeAPI:
    """Adapter around Binance USDⓈ-M futures used by the cycle orchestrator."""

    def __init__(
        self,
        client: Optional[BinanceUSDM] = None,
        *,
        symbols: Iterable[str] = (),
        retries: int = 3,
        backoff_seconds: float = 0.5,
    ) -> None:
        if retries < 1:
            raise ValueError("retries must be >= 1")
        self.client = client or BinanceUSDM()
        self.retries = retries
        self.backoff_seconds = backoff_seconds
        # venue id (BTCUSDT) -> configured symbol (BTC/USDT)
        self._symbol_by_id: Dict[str, str] = {venue_id(s): s for s in symbols}

    @classmethod
    def from_config(cls, cfg: BotConfig, client: Optional[BinanceUSDM] = None) -> "ExchangeAPI":
        client = client or BinanceUSDM(
            api_key=cfg.api_key or None,
            api_secret=cfg.api_secret or None,
            testnet=cfg.testnet,
            recv_window_ms=cfg.recv_window_ms,
        )
        return cls(
            client,
            symbols=cfg.symbols,
            retries=cfg.request_retries,
            backoff_seconds=cfg.request_backoff_sec,
        )

    # ------------------------------------------------------------------
    # Market data
    # ------------------------------------------------------------------

    def fetch_ohlcv(self, symbol: str, timeframe: str, limit: int) -> Iterable[Iterable[Any]]:
        return self.client.fetch_ohlcv(symbol, timeframe, limit=limit)

    # ------------------------------------------------------------------
    # Account state
    # ------------------------------------------------------------------

    def _ensure_credentials(self) -> None:
        has_credentials = getattr(self.client, "has_credentials", True)
        if not has_credentials:
            raise VenueAuthError("BINANCE_KEY/BINANCE_SECRET are not set")

    def _read_with_retry(self, label: str, func: Callable[[], Any]) -> Any:
        self._ensure_credentials()
        attempt = 0
        while True:
            attempt += 1
            try:
                return func()
            except VenueAuthError:
                raise
            except Exception as exc:
                if attempt >= self.retries:
                    raise VenueError(f"Unable to read {label} after {attempt} attempts: {exc}") from exc
                logger.warning("Read %s failed (attempt %s/%s): %s", label, attempt, self.retries, exc)
                time.sleep(self.backoff_seconds * attempt)

    def read_net_exposure(self) -> Dict[str, float]:
        """Signed position amount per configured symbol; flat symbols map to 0.0."""
        payload = self._read_with_retry("positionRisk", self.client.fapiPrivateGetPositionRisk)
        if not isinstance(payload, Sequence) or isinstance(payload, (str, bytes)):
            raise VenueError("positionRisk payload malformed")

        exposure: Dict[str, float] = {symbol: 0.0 for symbol in self._symbol_by_id.values()}
        for entry_any in payload:
            entry = entry_any or {}
            symbol = self._symbol_by_id.get(str(entry.get("symbol", "")))
            if symbol is None:
                continue
            # hedge mode reports one row per side; net them
            exposure[symbol] += float(_decimal(entry.get("positionAmt")))
        return {sym: (0.0 if abs(amt) <= POSITION_EPS else amt) for sym, amt in exposure.items()}

    def read_available_balance(self, asset: str = "USDT") -> float:
        payload = self._read_with_retry("balance", self.client.fapiPrivateGetBalance)
        if not isinstance(payload, Sequence) or isinstance(payload, (str, bytes)):
            raise VenueError("Balance payload malformed")
        available = Decimal("0")
        for entry_any in payload:
            entry = entry_any or {}
            if entry.get("asset") != asset:
                continue
            available += _decimal(entry.get("availableBalance"))
        return float(available)

    # ------------------------------------------------------------------
    # Order helpers
    # ------------------------------------------------------------------

    def place_market_order(
        self,
        symbol: str,
        side: str,
        quantity: float,
        *,
        reduce_only: bool = False,
    ) -> OrderAck:
        """Submit one market order; raises OrderError unless the venue acknowledges it."""
        if quantity <= 0:
            raise OrderError(f"Refusing to submit non-positive quantity {quantity} for {symbol}")
        self._ensure_credentials()
        try:
            raw = self.client.create_market_order(symbol, side, quantity, reduce_only=reduce_only)
        except VenueAuthError:
            raise
        except Exception as exc:
            raise OrderError(f"{side} {quantity} {symbol} failed: {exc}") from exc

        order = raw or {}
        order_id = order.get("id") or (order.get("info") or {}).get("orderId")
        if not order_id:
            raise OrderError(f"{side} {quantity} {symbol} not acknowledged: {json.dumps(order, default=str)}")
        average = order.get("average") or order.get("price")
        ack = OrderAck(
            order_id=str(order_id),
            symbol=symbol,
            side=side,
            quantity=float(order.get("filled") or order.get("amount") or quantity),
            average_price=float(average) if average else None,
            status=order.get("status"),
        )
        logger.info(
            json.dumps(
                {
                    "type": "ORDER_ACK",
                    "symbol": symbol,
                    "side": side,
                    "qty": ack.quantity,
                    "order_id": ack.order_id,
                    "reduce_only": reduce_only,
                },
                sort_keys=True,
            )
        )
        return ack

    def place_entry(self, symbol: str, direction: Direction, quantity: float) -> OrderAck:
        return self.place_market_order(symbol, direction.entry_side, quantity)

    def place_exit(self, symbol: str, direction: Direction, quantity: float) -> OrderAck:
        return self.place_market_order(symbol, direction.exit_side, quantity, reduce_only=True)

    @property
    def raw(self) -> BinanceUSDM:
        return self.client
