import os
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

from dotenv import load_dotenv

from position_bot.errors import ConfigError

load_dotenv()


def _coerce_bool(value):
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)

def _coerce_list(value):
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    if isinstance(value, (list, tuple, set)):
        return [str(item).strip() for item in value if str(item).strip()]
    raise TypeError("symbols must be a list or comma-separated string")

def _coerce_float_map(value) -> Dict[str, float]:
    if isinstance(value, str):
        pairs = [item.split("=", 1) for item in value.split(",") if "=" in item]
        return {k.strip(): float(v) for k, v in pairs}
    if isinstance(value, Mapping):
        return {str(k): float(v) for k, v in value.items()}
    raise TypeError("expected a mapping or 'SYMBOL=value,...' string")


# Defaults (USDⓈ-M futures, 15m trend + 4h filter + trailing stop)
DEFAULT_SYMBOLS = ["BTC/USDT", "ETH/USDT", "BNB/USDT", "LTC/USDT"]
DEFAULT_PRECISION = {"BTC/USDT": 3, "ETH/USDT": 3, "BNB/USDT": 2, "LTC/USDT": 3}
DEFAULT_ATR_THRESHOLD = {"BTC/USDT": 15.0, "ETH/USDT": 1.5, "BNB/USDT": 0.3, "LTC/USDT": 0.08}

@dataclass(frozen=True)
class InstrumentConfig:
    symbol: str
    precision: int
    atr_threshold: float = 0.0

    @property
    def venue_id(self) -> str:
        return venue_id(self.symbol)


def venue_id(symbol: str) -> str:
    """BTC/USDT -> BTCUSDT (the id Binance reports in positionRisk)."""
    return symbol.split(":", 1)[0].replace("/", "")


@dataclass(frozen=True)
class SignalThresholds:
    rsi_overbought: float = 50.0
    rsi_oversold: float = 35.0
    use_trend_filter: bool = True
    use_volatility_filter: bool = True


@dataclass(frozen=True)
class ExitRulesConfig:
    take_profit_pct: float = 100.0
    stop_loss_pct: float = -20.0
    use_trailing_stop: bool = True
    trailing_triggers: Tuple[float, float, float] = (5.0, 12.0, 20.0)
    callback_atr_multiplier: float = 2.5
    lock_floor_pct: float = 2.0


@dataclass(frozen=True)
class BotConfig:
    instruments: Dict[str, InstrumentConfig]
    api_key: str = ""
    api_secret: str = ""
    testnet: bool = True
    quote: str = "USDT"
    leverage: float = 5.0
    order_notional: float = 5.0
    ema_period: int = 200
    rsi_period: int = 14
    atr_period: int = 14
    short_timeframe: str = "15m"
    long_timeframe: str = "4h"
    candle_limit: int = 210
    signal: SignalThresholds = field(default_factory=SignalThresholds)
    exits: ExitRulesConfig = field(default_factory=ExitRulesConfig)
    block_untracked_entries: bool = True
    recv_window_ms: int = 60000
    request_retries: int = 3
    request_backoff_sec: float = 0.5
    max_workers: int = 8
    data_dir: str = "data"
    trade_page_size: int = 15
    poll_sec: int = 10
    metrics_port: int = 0

    @property
    def symbols(self):
        return list(self.instruments)

    def instrument(self, symbol: str) -> InstrumentConfig:
        try:
            return self.instruments[symbol]
        except KeyError:
            raise ConfigError(f"No instrument config for {symbol}") from None

    def validate(self) -> "BotConfig":
        if not self.instruments:
            raise ConfigError("At least one symbol must be configured")
        lookback = max(self.ema_period, self.rsi_period, self.atr_period)
        if self.candle_limit < lookback + 1:
            raise ConfigError(
                f"candle_limit={self.candle_limit} cannot seed lookback {lookback} (need >= {lookback + 1})"
            )
        if self.leverage <= 0:
            raise ConfigError("leverage must be positive")
        if self.order_notional <= 0:
            raise ConfigError("order_notional must be positive")
        triggers = self.exits.trailing_triggers
        if len(triggers) != 3 or list(triggers) != sorted(triggers):
            raise ConfigError("trailing_triggers must be three ascending tiers")
        if self.exits.stop_loss_pct >= self.exits.take_profit_pct:
            raise ConfigError("stop_loss_pct must be below take_profit_pct")
        return self


# JSON key -> (section, attribute, coercer); section None means top level
_JSON_KEYS = {
    "binance_key": (None, "api_key", str),
    "binance_secret": (None, "api_secret", str),
    "testnet": (None, "testnet", _coerce_bool),
    "quote": (None, "quote", str),
    "leverage": (None, "leverage", float),
    "order_notional": (None, "order_notional", float),
    "ema_period": (None, "ema_period", int),
    "rsi_period": (None, "rsi_period", int),
    "atr_period": (None, "atr_period", int),
    "short_timeframe": (None, "short_timeframe", str),
    "long_timeframe": (None, "long_timeframe", str),
    "candle_limit": (None, "candle_limit", int),
    "block_untracked_entries": (None, "block_untracked_entries", _coerce_bool),
    "recv_window_ms": (None, "recv_window_ms", int),
    "request_retries": (None, "request_retries", int),
    "request_backoff_sec": (None, "request_backoff_sec", float),
    "max_workers": (None, "max_workers", int),
    "data_dir": (None, "data_dir", str),
    "trade_page_size": (None, "trade_page_size", int),
    "poll_sec": (None, "poll_sec", int),
    "metrics_port": (None, "metrics_port", int),
    "rsi_overbought": ("signal", "rsi_overbought", float),
    "rsi_oversold": ("signal", "rsi_oversold", float),
    "use_trend_filter": ("signal", "use_trend_filter", _coerce_bool),
    "use_volatility_filter": ("signal", "use_volatility_filter", _coerce_bool),
    "take_profit_pct": ("exits", "take_profit_pct", float),
    "stop_loss_pct": ("exits", "stop_loss_pct", float),
    "use_trailing_stop": ("exits", "use_trailing_stop", _coerce_bool),
    "trailing_triggers": ("exits", "trailing_triggers", lambda v: tuple(float(x) for x in v)),
    "callback_atr_multiplier": ("exits", "callback_atr_multiplier", float),
    "lock_floor_pct": ("exits", "lock_floor_pct", float),
}
_INSTRUMENT_KEYS = {"symbols", "precision", "atr_threshold"}


def _env_settings(env: Mapping[str, str]) -> Dict[str, Any]:
    raw: Dict[str, Any] = {}
    key = env.get("BINANCE_KEY") or env.get("BINANCE_API_KEY")
    secret = env.get("BINANCE_SECRET") or env.get("BINANCE_API_SECRET")
    if key:
        raw["binance_key"] = key
    if secret:
        raw["binance_secret"] = secret
    if "TESTNET" in env or "DEMO" in env:
        raw["testnet"] = _coerce_bool(env.get("TESTNET", "false")) or _coerce_bool(env.get("DEMO", "false"))
    for name in ("symbols", "precision", "atr_threshold", "leverage", "order_notional", "data_dir", "poll_sec"):
        value = env.get(name.upper())
        if value not in (None, ""):
            raw[name] = value
    return raw


def _json_settings(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except Exception as exc:
        raise ConfigError(f"Failed to parse {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Failed to parse {path}: top level must be an object")
    unknown = sorted(set(data) - set(_JSON_KEYS) - _INSTRUMENT_KEYS)
    if unknown:
        raise ConfigError(f"Config validation failed; unknown keys: {', '.join(unknown)}")
    return data


def _build_instruments(raw: Mapping[str, Any]) -> Dict[str, InstrumentConfig]:
    precision = dict(DEFAULT_PRECISION)
    thresholds = dict(DEFAULT_ATR_THRESHOLD)
    try:
        symbols = _coerce_list(raw.get("symbols", DEFAULT_SYMBOLS))
        if "precision" in raw:
            precision.update({k: int(v) for k, v in _coerce_float_map(raw["precision"]).items()})
        if "atr_threshold" in raw:
            thresholds.update(_coerce_float_map(raw["atr_threshold"]))
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid instrument settings: {exc}") from exc

    instruments: Dict[str, InstrumentConfig] = {}
    for symbol in symbols:
        if symbol not in precision:
            raise ConfigError(f"Missing quantity precision for {symbol}")
        instruments[symbol] = InstrumentConfig(
            symbol=symbol,
            precision=int(precision[symbol]),
            atr_threshold=float(thresholds.get(symbol, 0.0)),
        )
    return instruments


def build_config(raw: Mapping[str, Any]) -> BotConfig:
    """Build a validated BotConfig from a flat settings mapping."""
    top: Dict[str, Any] = {}
    sections: Dict[str, Dict[str, Any]] = {"signal": {}, "exits": {}}
    for key, value in raw.items():
        if key in _INSTRUMENT_KEYS:
            continue
        if key not in _JSON_KEYS:
            raise ConfigError(f"Config validation failed; unknown key: {key}")
        section, attr, coerce = _JSON_KEYS[key]
        try:
            coerced = coerce(value)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid value for {key}: {value!r}") from exc
        if section is None:
            top[attr] = coerced
        else:
            sections[section][attr] = coerced

    instruments = _build_instruments(raw)

    cfg = BotConfig(
        instruments=instruments,
        signal=SignalThresholds(**sections["signal"]),
        exits=ExitRulesConfig(**sections["exits"]),
        **top,
    )
    return cfg.validate()


def load_config(path: Optional[Path] = None, env: Optional[Mapping[str, str]] = None) -> BotConfig:
    """Environment first, then the JSON file (JSON keys win)."""
    env = os.environ if env is None else env
    raw = _env_settings(env)
    if path is None:
        path = Path(env.get("BOT_CONFIG_JSON", "config.json"))
    raw.update(_json_settings(Path(path)))
    return build_config(raw)
