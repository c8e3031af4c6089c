"""Binance USDⓈ-M client adapter backed by ccxt.

This module provides the thin wrapper used by ``position_bot.exchange_api.ExchangeAPI``
so the rest of the codebase does not depend directly on ccxt. ccxt signs every
private request (HMAC-SHA256 over the query string with ``timestamp`` and
``recvWindow``); auth and clock failures are translated to ``VenueAuthError``.
"""

from __future__ import annotations

import functools
import logging
from typing import Any, Dict, Iterable, List, Optional

import ccxt  # type: ignore

from position_bot.errors import VenueAuthError

logger = logging.getLogger(__name__)


_AUTH_ERRORS = (ccxt.AuthenticationError, ccxt.PermissionDenied, ccxt.InvalidNonce)


def _translate_auth(func):
    @functools.wraps(func)
    def wrapper(self, *args, **kwargs):
        try:
            return func(self, *args, **kwargs)
        except _AUTH_ERRORS as exc:
            raise VenueAuthError(f"Binance rejected credentials: {exc}") from exc

    return wrapper


class BinanceUSDM:
    """ccxt-backed adapter exposing methods required by ExchangeAPI."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_secret: Optional[str] = None,
        testnet: bool = True,
        recv_window_ms: int = 60000,
    ) -> None:
        self.api_key = api_key
        self.api_secret = api_secret
        self.testnet = bool(testnet)
        self.exchange = ccxt.binanceusdm(
            {
                "apiKey": api_key,
                "secret": api_secret,
                "enableRateLimit": True,
                "options": {
                    "defaultType": "future",
                    "recvWindow": int(recv_window_ms),
                    "adjustForTimeDifference": True,
                },
            }
        )
        if self.testnet:
            try:
                self.exchange.set_sandbox_mode(True)
            except Exception as exc:  # pragma: no cover - best effort only
                logger.warning("Failed to enable sandbox mode: %s", exc)

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key) and bool(self.api_secret)

    # ------------------------------------------------------------------
    # Market data helpers (public, unsigned)
    # ------------------------------------------------------------------
    def fetch_ohlcv(self, symbol: str, timeframe: str, limit: int = 100) -> Iterable[Iterable[Any]]:
        return self.exchange.fetch_ohlcv(symbol, timeframe=timeframe, limit=limit)

    # ------------------------------------------------------------------
    # Account state API (signed)
    # ------------------------------------------------------------------
    @_translate_auth
    def fapiPrivateGetPositionRisk(self) -> List[Dict[str, Any]]:  # pragma: no cover - passthrough
        return self.exchange.fapiPrivateV2GetPositionRisk()

    @_translate_auth
    def fapiPrivateGetBalance(self) -> List[Dict[str, Any]]:  # pragma: no cover - passthrough
        return self.exchange.fapiPrivateV2GetBalance()

    # ------------------------------------------------------------------
    # Order helpers
    # ------------------------------------------------------------------
    @_translate_auth
    def create_market_order(
        self,
        symbol: str,
        side: str,
        qty: float,
        reduce_only: bool = False,
    ) -> Dict[str, Any]:
        params = {"reduceOnly": True} if reduce_only else {}
        return self.exchange.create_order(symbol, "market", side.lower(), qty, params=params)
