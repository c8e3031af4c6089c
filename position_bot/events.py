"""Domain events and their delivery.

Core components only append events to an outbox; the dispatcher delivers them
after the cycle's state changes are persisted, so a notification failure can
never roll back or block trading state.
"""

import json
import logging
from dataclasses import dataclass
from threading import Lock
from typing import List, Protocol, Union

from .models import Position, Trade
from .notify_fmt import fmt_pct, fmt_qty, fmt_usd

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PositionOpened:
    position: Position
    precision: int = 3

    def message(self) -> str:
        pos = self.position
        return (
            f"🚀 Opened {pos.direction.value} {pos.symbol} | Qty: {fmt_qty(pos.size, self.precision)} "
            f"| Price: {fmt_usd(pos.entry_price)}"
        )


@dataclass(frozen=True)
class PositionClosed:
    trade: Trade

    def message(self) -> str:
        t = self.trade
        return (
            f"🚀 Closed {t.symbol} {t.direction.value} | Profit: {fmt_usd(t.profit)} ({fmt_pct(t.roe)}) "
            f"| Reason: {t.reason.value}"
        )


Event = Union[PositionOpened, PositionClosed]


class Notifier(Protocol):
    def send(self, text: str) -> bool:
        ...


class EventOutbox:
    def __init__(self) -> None:
        self._events: List[Event] = []
        self._lock = Lock()

    def emit(self, event: Event) -> None:
        with self._lock:
            self._events.append(event)

    def drain(self) -> List[Event]:
        with self._lock:
            events, self._events = self._events, []
        return events

    def __len__(self) -> int:
        return len(self._events)


class NotificationDispatcher:
    """Fire-and-forget delivery; failures are logged and dropped."""

    def __init__(self, notifier: Notifier) -> None:
        self.notifier = notifier

    def dispatch(self, outbox: EventOutbox) -> int:
        delivered = 0
        for event in outbox.drain():
            try:
                ok = self.notifier.send(event.message())
            except Exception as exc:
                ok = False
                logger.warning("Notification raised %s: %s", type(exc).__name__, exc)
            if ok:
                delivered += 1
            else:
                logger.warning(
                    json.dumps({"type": "NOTIFY_FAIL", "event": type(event).__name__}, sort_keys=True)
                )
        return delivered
