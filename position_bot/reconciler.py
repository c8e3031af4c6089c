from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Optional

from . import metrics
from .events import EventOutbox, PositionClosed
from .exchange_api import POSITION_EPS
from .ledger import TradeLedger
from .models import CloseReason, Position, Trade

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconcileResult:
    trade: Optional[Trade] = None
    untracked_exposure: float = 0.0

    @property
    def closed(self) -> bool:
        return self.trade is not None

    @property
    def untracked(self) -> bool:
        return abs(self.untracked_exposure) > POSITION_EPS


class PositionReconciler:
    """Aligns tracked positions with venue-reported net exposure."""

    def __init__(self, positions, ledger: TradeLedger, outbox: EventOutbox) -> None:
        self.positions = positions
        self.ledger = ledger
        self.outbox = outbox

    def reconcile(self, symbol: str, position: Optional[Position], exposure: float, price: float) -> ReconcileResult:
        flat_on_venue = abs(exposure) <= POSITION_EPS

        if position is not None and flat_on_venue:
            # no fill price is available, use the last market price; an exit the bot
            # started but could not finish keeps its own reason
            reason = position.pending_close or CloseReason.MANUAL_CLOSE
            trade = self.ledger.settle(self.positions, position, price, reason)
            metrics.record_trade_closed(reason.value)
            self.outbox.emit(PositionClosed(trade))
            logger.info(
                json.dumps(
                    {
                        "type": "RECONCILE_CLOSE",
                        "symbol": symbol,
                        "direction": position.direction.value,
                        "entry": position.entry_price,
                        "price": price,
                        "profit": trade.profit,
                        "reason": reason.value,
                    },
                    sort_keys=True,
                )
            )
            return ReconcileResult(trade=trade)

        if position is None and not flat_on_venue:
            logger.warning(
                json.dumps({"type": "UNTRACKED_EXPOSURE", "symbol": symbol, "exposure": exposure}, sort_keys=True)
            )
            return ReconcileResult(untracked_exposure=exposure)

        return ReconcileResult()
