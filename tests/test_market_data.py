import json
import logging

import numpy as np
import pandas as pd
import pytest

from config import build_config
from indicators import atr, ema, ohlcv_frame, rsi
from position_bot.market_data import MarketSnapshotProvider

pytestmark = pytest.mark.unit


def candles(closes, spread=1.0, start=1_700_000_000_000, step=900_000):
    return [
        [start + i * step, c, c + spread / 2, c - spread / 2, c, 10.0]
        for i, c in enumerate(closes)
    ]


class CandleFeed:
    def __init__(self, series=None, broken=()):
        self.series = series or {}
        self.broken = set(broken)
        self.requests = []

    def fetch_ohlcv(self, symbol, timeframe, limit):
        self.requests.append((symbol, timeframe, limit))
        if symbol in self.broken:
            raise TimeoutError("klines timeout")
        return self.series[(symbol, timeframe)][-limit:]


@pytest.fixture
def small_cfg():
    return build_config(
        {
            "symbols": ["BTC/USDT", "ETH/USDT"],
            "precision": {"BTC/USDT": 3, "ETH/USDT": 3},
            "ema_period": 20,
            "rsi_period": 14,
            "atr_period": 14,
            "candle_limit": 30,
        }
    )


def test_ema_is_sma_seeded():
    series = pd.Series([1.0, 2.0, 3.0, 4.0])

    out = ema(series, 3)

    assert out.iloc[:2].isna().all()
    assert out.iloc[2] == pytest.approx(2.0)
    # alpha = 2 / (3 + 1)
    assert out.iloc[3] == pytest.approx(3.0)


def test_ema_short_series_is_nan():
    assert ema(pd.Series([1.0, 2.0]), 3).isna().all()


def test_rsi_edges():
    assert rsi(pd.Series(np.arange(1.0, 31.0)), 14) == 100.0
    assert rsi(pd.Series([5.0] * 30), 14) == 50.0
    assert np.isnan(rsi(pd.Series([1.0] * 14), 14))
    value = rsi(pd.Series(np.arange(30.0, 0.0, -1.0)), 14)
    assert value == pytest.approx(0.0)


def test_atr_of_constant_range():
    df = ohlcv_frame(candles([100.0] * 20, spread=2.0))

    assert atr(df, 14) == pytest.approx(2.0)
    assert np.isnan(atr(df.head(5), 14))


def test_ohlcv_frame_coerces_numbers():
    df = ohlcv_frame([[1_700_000_000_000, "1", "2", "0.5", "1.5", "10"]])

    assert df["close"].iloc[0] == 1.5
    assert str(df["ts"].dt.tz) == "UTC"


def test_snapshot_uses_both_timeframes(small_cfg):
    closes = list(np.linspace(100.0, 130.0, 30))
    feed = CandleFeed(
        {
            ("BTC/USDT", "15m"): candles(closes),
            ("BTC/USDT", "4h"): candles([90.0] * 30),
        }
    )

    snapshot = MarketSnapshotProvider(feed, small_cfg).fetch("BTC/USDT")

    assert snapshot.ok
    assert snapshot.price == pytest.approx(130.0)
    assert snapshot.ema_long == pytest.approx(90.0)
    assert snapshot.ema < snapshot.price
    assert snapshot.rsi == 100.0
    assert snapshot.atr > 0
    assert ("BTC/USDT", "15m", 30) in feed.requests
    assert ("BTC/USDT", "4h", 30) in feed.requests


def test_short_history_becomes_failure(small_cfg):
    feed = CandleFeed(
        {
            ("BTC/USDT", "15m"): candles([100.0] * 10),
            ("BTC/USDT", "4h"): candles([100.0] * 30),
        }
    )

    result = MarketSnapshotProvider(feed, small_cfg).fetch("BTC/USDT")

    assert not result.ok
    assert "need 21" in result.error


def test_fetch_all_isolates_failures_and_keeps_order(small_cfg, caplog):
    caplog.set_level(logging.WARNING, logger="position_bot.market_data")
    feed = CandleFeed(
        {
            ("ETH/USDT", "15m"): candles([2000.0] * 30),
            ("ETH/USDT", "4h"): candles([2000.0] * 30),
        },
        broken={"BTC/USDT"},
    )

    results = MarketSnapshotProvider(feed, small_cfg).fetch_all(["BTC/USDT", "ETH/USDT"])

    assert [r.symbol for r in results] == ["BTC/USDT", "ETH/USDT"]
    assert [r.ok for r in results] == [False, True]
    payload = json.loads(caplog.records[-1].message)
    assert payload["type"] == "SNAPSHOT_FAIL"
    assert payload["symbol"] == "BTC/USDT"
