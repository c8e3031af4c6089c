import pandas as pd


OHLCV_COLUMNS = ["ts", "open", "high", "low", "close", "volume"]


def ohlcv_frame(rows) -> pd.DataFrame:
    df = pd.DataFrame(list(rows), columns=OHLCV_COLUMNS)
    df["ts"] = pd.to_datetime(df["ts"], unit="ms", utc=True)
    for col in OHLCV_COLUMNS[1:]:
        df[col] = pd.to_numeric(df[col], errors="coerce")
    return df


def ema(series: pd.Series, span: int) -> pd.Series:
    """EMA seeded with the SMA of the first `span` values; NaN before that."""
    values = series.astype(float)
    if len(values) < span:
        return pd.Series(float("nan"), index=values.index)
    seeded = values.copy()
    seeded.iloc[: span - 1] = float("nan")
    seeded.iloc[span - 1] = values.iloc[:span].mean()
    out = seeded.iloc[span - 1:].ewm(span=span, adjust=False).mean()
    return out.reindex(values.index)


def rsi(series: pd.Series, n: int = 14) -> float:
    """Wilder RSI of the last bar, 0..100."""
    close = series.astype(float)
    if len(close) <= n:
        return float("nan")
    delta = close.diff()
    gain = delta.clip(lower=0.0)
    loss = -delta.clip(upper=0.0)
    avg_gain = gain.ewm(alpha=1.0 / n, adjust=False, min_periods=n).mean().iloc[-1]
    avg_loss = loss.ewm(alpha=1.0 / n, adjust=False, min_periods=n).mean().iloc[-1]
    if avg_loss == 0:
        return 100.0 if avg_gain > 0 else 50.0
    rs = avg_gain / avg_loss
    return float(100.0 - 100.0 / (1.0 + rs))


def atr(df: pd.DataFrame, n=14) -> float:
    h, l, c = df['high'], df['low'], df['close']
    tr1 = (h - l).abs()
    tr2 = (h - c.shift(1)).abs()
    tr3 = (l - c.shift(1)).abs()
    tr = pd.concat([tr1, tr2, tr3], axis=1).max(axis=1)
    if len(tr) < n:
        return float("nan")
    # Wilder smoothing
    return float(tr.ewm(alpha=1.0 / n, adjust=False, min_periods=n).mean().iloc[-1])
