from __future__ import annotations

import json
import logging
import math
import os
import time
from typing import Any, Dict, Optional

from prometheus_client import Counter, Gauge, Histogram, start_http_server

__all__ = [
    "start_metrics_server",
    "record_cycle",
    "record_trade_closed",
    "record_order_error",
    "record_snapshot_failure",
    "set_open_positions",
    "set_available_balance",
]


_logger = logging.getLogger(__name__)
_DEBUG_VALUES = {"1", "true", "yes", "on"}


def _debug_enabled() -> bool:
    return os.getenv("OBS_DEBUG_METRICS", "").strip().lower() in _DEBUG_VALUES


def _safe_value(value: Any) -> Any:
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return value


def _log_metrics_update(name: str, labels: Dict[str, Any], value: Any) -> None:
    if not _debug_enabled():
        return
    payload = {
        "name": name,
        "labels": labels,
        "value": _safe_value(value),
        "ts": time.time(),
    }
    _logger.info("METRICS_UPDATE %s", json.dumps(payload, sort_keys=True))


_bot_cycles_total = Counter("bot_cycles_total", "Completed or aborted cycles", ["status"])
_bot_cycle_latency_ms = Histogram(
    "bot_cycle_latency_ms",
    "Cycle latency in milliseconds",
    buckets=(100, 250, 500, 1000, 2500, 5000, 10000, 30000),
)
_bot_trades_closed_total = Counter("bot_trades_closed_total", "Closed trades by reason", ["reason"])
_bot_order_errors_total = Counter(
    "bot_order_errors_total",
    "Rejected or unacknowledged market orders",
    ["symbol", "action"],
)
_bot_snapshot_failures_total = Counter(
    "bot_snapshot_failures_total",
    "Market snapshot fetch/compute failures",
    ["symbol"],
)
_bot_open_positions = Gauge("bot_open_positions", "Tracked open positions")
_bot_available_balance = Gauge("bot_available_balance", "Available balance (quote)")


def start_metrics_server(port: int) -> None:
    start_http_server(int(port))
    _logger.info("Prometheus exporter listening on :%s", port)


def record_cycle(status: str, latency_ms: Optional[float] = None) -> None:
    _bot_cycles_total.labels(status=status).inc()
    if latency_ms is not None:
        _bot_cycle_latency_ms.observe(float(latency_ms))
    _log_metrics_update("bot_cycles_total", {"status": status}, latency_ms)


def record_trade_closed(reason: str) -> None:
    _bot_trades_closed_total.labels(reason=reason).inc()
    _log_metrics_update("bot_trades_closed_total", {"reason": reason}, 1)


def record_order_error(symbol: str, action: str) -> None:
    _bot_order_errors_total.labels(symbol=symbol, action=action).inc()
    _log_metrics_update("bot_order_errors_total", {"symbol": symbol, "action": action}, 1)


def record_snapshot_failure(symbol: str) -> None:
    _bot_snapshot_failures_total.labels(symbol=symbol).inc()
    _log_metrics_update("bot_snapshot_failures_total", {"symbol": symbol}, 1)


def set_open_positions(count: int) -> None:
    _bot_open_positions.set(int(count))
    _log_metrics_update("bot_open_positions", {}, count)


def set_available_balance(balance: Optional[float]) -> None:
    if balance is None:
        return
    _bot_available_balance.set(float(balance))
    _log_metrics_update("bot_available_balance", {}, balance)
