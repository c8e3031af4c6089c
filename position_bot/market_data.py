from __future__ import annotations

import json
import logging
import math
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable, List, Union

import pandas as pd

from config import BotConfig
from indicators import atr, ema, ohlcv_frame, rsi
from .models import MarketSnapshot, SnapshotFailure

logger = logging.getLogger(__name__)

SnapshotResult = Union[MarketSnapshot, SnapshotFailure]


class MarketSnapshotProvider:
    """Builds one indicator snapshot per symbol from 15m and 4h candles."""

    def __init__(self, exchange, config: BotConfig) -> None:
        self.exchange = exchange
        self.config = config

    def fetch_df(self, symbol: str, timeframe: str) -> pd.DataFrame:
        ohlcv = self.exchange.fetch_ohlcv(symbol, timeframe, limit=self.config.candle_limit)
        df = ohlcv_frame(ohlcv)
        if df["close"].isna().any():
            raise ValueError(f"{symbol} {timeframe}: non-numeric close in candles")
        return df

    def build(self, symbol: str, short_df: pd.DataFrame, long_df: pd.DataFrame) -> MarketSnapshot:
        cfg = self.config
        need = max(cfg.ema_period, cfg.rsi_period, cfg.atr_period) + 1
        for label, df in (("short", short_df), ("long", long_df)):
            if len(df) < need:
                raise ValueError(f"{symbol}: {label} series has {len(df)} bars, need {need}")

        closes = short_df["close"]
        snapshot = MarketSnapshot(
            symbol=symbol,
            price=float(closes.iloc[-1]),
            ema=float(ema(closes, cfg.ema_period).iloc[-1]),
            ema_long=float(ema(long_df["close"], cfg.ema_period).iloc[-1]),
            rsi=rsi(closes, cfg.rsi_period),
            atr=atr(short_df, cfg.atr_period),
        )
        bad = [name for name in ("price", "ema", "ema_long", "rsi", "atr") if not math.isfinite(getattr(snapshot, name))]
        if bad:
            raise ValueError(f"{symbol}: non-finite indicators {bad}")
        return snapshot

    def fetch(self, symbol: str) -> SnapshotResult:
        try:
            short_df = self.fetch_df(symbol, self.config.short_timeframe)
            long_df = self.fetch_df(symbol, self.config.long_timeframe)
            return self.build(symbol, short_df, long_df)
        except Exception as exc:
            logger.warning(
                json.dumps({"type": "SNAPSHOT_FAIL", "symbol": symbol, "error": str(exc)}, sort_keys=True)
            )
            return SnapshotFailure(symbol=symbol, error=str(exc))

    def fetch_all(self, symbols: Iterable[str]) -> List[SnapshotResult]:
        """Fetch concurrently; results come back in the order of `symbols`."""
        symbols = list(symbols)
        if not symbols:
            return []
        workers = max(1, min(self.config.max_workers, len(symbols)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="snapshot") as pool:
            return list(pool.map(self.fetch, symbols))
