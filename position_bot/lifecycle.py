"""Open-position state machine.

FLAT -> OPEN (trailing level 0) -> ARMED 1..3 -> FLAT. Exit rules are an
ordered tuple evaluated first-match-wins; `evaluate_exit` is pure and the
manager applies its decision (persist ratchets, place the closing order,
write the trade, drop the position).
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, replace
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Optional, Tuple

from config import BotConfig, ExitRulesConfig
from . import metrics
from .errors import OrderError
from .events import EventOutbox, PositionClosed, PositionOpened
from .ledger import TradeLedger, compute_roe
from .models import CloseReason, Direction, MarketSnapshot, Position, Trade

logger = logging.getLogger(__name__)

MAX_TRAILING_LEVEL = 3


def callback_distance(atr: float, price: float, multiplier: float) -> float:
    """Volatility-scaled retracement allowance in ROE percentage points."""
    if price <= 0:
        return 0.0
    return atr / price * 100.0 * multiplier


def armed_level(current: int, roe: float, triggers: Tuple[float, ...]) -> int:
    reached = sum(1 for trigger in triggers[:MAX_TRAILING_LEVEL] if roe >= trigger)
    return max(int(current), reached)


def round_quantity(quantity: float, precision: int) -> float:
    step = Decimal(1).scaleb(-int(precision))
    return float(Decimal(str(quantity)).quantize(step, rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class RuleContext:
    roe: float
    highest_pnl: float
    trailing_level: int
    callback: float
    rules: ExitRulesConfig


@dataclass(frozen=True)
class ExitRule:
    name: str
    reason: CloseReason
    applies: Callable[[RuleContext], bool]
    # trailing rules see the level after this cycle's arming
    trailing: bool = False


EXIT_RULES: Tuple[ExitRule, ...] = (
    ExitRule("stop_loss", CloseReason.STOP_LOSS, lambda c: c.roe <= c.rules.stop_loss_pct),
    ExitRule("take_profit", CloseReason.TAKE_PROFIT, lambda c: c.roe >= c.rules.take_profit_pct),
    # lock floor applies at level 1 only
    ExitRule(
        "trailing_lock",
        CloseReason.TRAILING_LOCK,
        lambda c: c.rules.use_trailing_stop and c.trailing_level == 1 and c.roe <= c.rules.lock_floor_pct,
        trailing=True,
    ),
    ExitRule(
        "trailing_stop",
        CloseReason.TRAILING_STOP,
        lambda c: c.rules.use_trailing_stop
        and c.trailing_level >= 1
        and c.roe <= c.highest_pnl - c.callback,
        trailing=True,
    ),
)


@dataclass(frozen=True)
class ExitDecision:
    roe: float
    reason: Optional[CloseReason]
    trailing_level: int
    highest_pnl: float

    @property
    def should_close(self) -> bool:
        return self.reason is not None


def decide(
    position: Position,
    roe: float,
    callback: float,
    rules: ExitRulesConfig,
    exit_rules: Tuple[ExitRule, ...] = EXIT_RULES,
) -> ExitDecision:
    ctx = RuleContext(
        roe=roe,
        highest_pnl=position.highest_pnl,
        trailing_level=position.trailing_level,
        callback=callback,
        rules=rules,
    )
    armed = False
    for rule in exit_rules:
        if rule.trailing and not armed:
            ctx = _arm(ctx)
            armed = True
        if rule.applies(ctx):
            return ExitDecision(
                roe=roe, reason=rule.reason, trailing_level=ctx.trailing_level, highest_pnl=position.highest_pnl
            )
    if not armed:
        ctx = _arm(ctx)
    return ExitDecision(
        roe=roe, reason=None, trailing_level=ctx.trailing_level, highest_pnl=max(position.highest_pnl, roe)
    )


def _arm(ctx: RuleContext) -> RuleContext:
    if not ctx.rules.use_trailing_stop:
        return ctx
    return replace(ctx, trailing_level=armed_level(ctx.trailing_level, ctx.roe, ctx.rules.trailing_triggers))


class PositionLifecycleManager:
    def __init__(
        self,
        config: BotConfig,
        exchange,
        positions,
        ledger: TradeLedger,
        outbox: EventOutbox,
    ) -> None:
        self.config = config
        self.exchange = exchange
        self.positions = positions
        self.ledger = ledger
        self.outbox = outbox

    # ------------------------------------------------------------------
    # Pure evaluation
    # ------------------------------------------------------------------

    def evaluate_exit(self, position: Position, price: float, atr: float) -> ExitDecision:
        rules = self.config.exits
        roe = compute_roe(position.direction, position.entry_price, price, self.config.leverage)
        callback = callback_distance(atr, price, rules.callback_atr_multiplier)
        return decide(position, roe, callback, rules)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def manage(self, position: Position, snapshot: MarketSnapshot) -> str:
        decision = self.evaluate_exit(position, snapshot.price, snapshot.atr)

        if decision.trailing_level > position.trailing_level:
            position = self.positions.upsert(replace(position, trailing_level=decision.trailing_level))
            logger.info(
                json.dumps(
                    {
                        "type": "TRAIL_ARM",
                        "symbol": position.symbol,
                        "level": decision.trailing_level,
                        "roe": round(decision.roe, 4),
                    },
                    sort_keys=True,
                )
            )

        if decision.should_close:
            trade = self.close(position, snapshot.price, decision.reason)
            if trade is None:
                return f"Close failed ({decision.reason.value})"
            return f"Closed: {decision.reason.value}"

        if decision.highest_pnl > position.highest_pnl:
            self.positions.upsert(replace(position, highest_pnl=decision.highest_pnl))
        return f"Holding ({decision.roe:.2f}%)"

    def close(self, position: Position, price: float, reason: CloseReason) -> Optional[Trade]:
        """Market-close the full size.

        The exit reason is stored on the Position before the order goes out, so
        a close interrupted after the fill is booked under its real rule by the
        reconciler. On order failure the Position is restored and no Trade is
        written.
        """
        marked = self.positions.upsert(replace(position, pending_close=reason))
        try:
            self.exchange.place_exit(position.symbol, position.direction, position.size)
        except OrderError as exc:
            self.positions.upsert(position)
            metrics.record_order_error(position.symbol, "close")
            logger.warning(
                json.dumps(
                    {
                        "type": "ORDER_FAIL",
                        "action": "close",
                        "symbol": position.symbol,
                        "reason": reason.value,
                        "error": str(exc),
                    },
                    sort_keys=True,
                )
            )
            return None

        trade = self.ledger.settle(self.positions, marked, price, reason)
        metrics.record_trade_closed(reason.value)
        self.outbox.emit(PositionClosed(trade))
        logger.info(
            json.dumps(
                {
                    "type": "POSITION_CLOSE",
                    "symbol": trade.symbol,
                    "direction": trade.direction.value,
                    "entry": trade.entry_price,
                    "exit": trade.close_price,
                    "profit": trade.profit,
                    "roe": round(trade.roe, 4),
                    "reason": trade.reason.value,
                },
                sort_keys=True,
            )
        )
        return trade

    def open_position(self, snapshot: MarketSnapshot, direction: Direction) -> str:
        instrument = self.config.instrument(snapshot.symbol)
        qty = round_quantity(self.config.order_notional / snapshot.price, instrument.precision)
        if qty <= 0:
            logger.info(
                "Skip %s %s: notional %.2f rounds to zero quantity at %.8f",
                direction.value,
                snapshot.symbol,
                self.config.order_notional,
                snapshot.price,
            )
            return "Wait"

        try:
            self.exchange.place_entry(snapshot.symbol, direction, qty)
        except OrderError as exc:
            metrics.record_order_error(snapshot.symbol, "open")
            logger.warning(
                json.dumps(
                    {
                        "type": "ORDER_FAIL",
                        "action": "open",
                        "symbol": snapshot.symbol,
                        "direction": direction.value,
                        "qty": qty,
                        "error": str(exc),
                    },
                    sort_keys=True,
                )
            )
            return "Open failed"

        position = self.positions.create(
            Position(
                symbol=snapshot.symbol,
                direction=direction,
                entry_price=snapshot.price,
                quantity=qty * direction.sign,
            )
        )
        self.outbox.emit(PositionOpened(position, precision=instrument.precision))
        logger.info(
            json.dumps(
                {
                    "type": "POSITION_OPEN",
                    "symbol": position.symbol,
                    "direction": direction.value,
                    "qty": qty,
                    "price": position.entry_price,
                },
                sort_keys=True,
            )
        )
        return f"Opened {direction.value}"
