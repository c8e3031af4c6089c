"""EMA trend + RSI pullback entries with optional higher-timeframe and ATR filters."""

from __future__ import annotations

from config import SignalThresholds
from position_bot.models import Direction, MarketSnapshot
from position_bot.strategy.base import NONE, Signal


def generate_signal(
    price: float,
    ema: float,
    rsi: float,
    ema_long: float,
    atr: float,
    thresholds: SignalThresholds,
    atr_threshold: float = 0.0,
) -> Signal:
    """Pure entry decision.

    LONG when price is above the short EMA and RSI is oversold, SHORT when price
    is below it and RSI is overbought. The trend filter requires the long EMA to
    agree; the volatility filter rejects entries while ATR is under the
    instrument's minimum.
    """
    meta = {"price": price, "ema": ema, "rsi": rsi, "ema_long": ema_long, "atr": atr}

    if price > ema and rsi < thresholds.rsi_oversold:
        side = Direction.LONG.value
    elif price < ema and rsi > thresholds.rsi_overbought:
        side = Direction.SHORT.value
    else:
        return Signal(side=NONE, reason="no_signal", meta=meta)

    if thresholds.use_trend_filter:
        if (side == Direction.LONG.value and price < ema_long) or (
            side == Direction.SHORT.value and price > ema_long
        ):
            return Signal(side=NONE, reason="trend_filter", meta={**meta, "rejected": side})

    if thresholds.use_volatility_filter and atr < (atr_threshold or 0.0):
        return Signal(side=NONE, reason="volatility_filter", meta={**meta, "rejected": side})

    return Signal(side=side, reason="entry", meta=meta)


def signal_from_snapshot(snapshot: MarketSnapshot, thresholds: SignalThresholds, atr_threshold: float = 0.0) -> Signal:
    return generate_signal(
        snapshot.price,
        snapshot.ema,
        snapshot.rsi,
        snapshot.ema_long,
        snapshot.atr,
        thresholds,
        atr_threshold=atr_threshold,
    )
