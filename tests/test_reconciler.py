import json
import logging

import pytest

from position_bot.errors import StoreUnavailableError
from position_bot.events import EventOutbox, PositionClosed
from position_bot.ledger import TradeLedger
from position_bot.models import CloseReason, Direction, Position
from position_bot.reconciler import PositionReconciler

pytestmark = pytest.mark.unit


@pytest.fixture
def outbox():
    return EventOutbox()


@pytest.fixture
def reconciler(positions, trades, outbox):
    return PositionReconciler(positions, TradeLedger(trades, leverage=5), outbox)


def _position(symbol="XUSDT", direction=Direction.LONG, qty=2.0, **kw):
    return Position(symbol=symbol, direction=direction, entry_price=10.0, quantity=qty, **kw)


def test_flat_venue_closes_tracked_position(reconciler, positions, trades, outbox):
    position = positions.create(_position())

    result = reconciler.reconcile("XUSDT", position, exposure=0.0, price=11.0)

    assert result.closed
    assert positions.list() == []
    assert len(trades.rows) == 1
    trade = trades.rows[0]
    assert trade.reason is CloseReason.MANUAL_CLOSE
    assert trade.close_price == 11.0
    assert trade.profit == pytest.approx(2.0)
    assert trade.roe == pytest.approx(50.0)
    events = outbox.drain()
    assert len(events) == 1 and isinstance(events[0], PositionClosed)
    assert "manual-close-detected" in events[0].message()


def test_short_manual_close_uses_last_price(reconciler, positions, trades):
    position = positions.create(_position(direction=Direction.SHORT, qty=-2.0))

    reconciler.reconcile("XUSDT", position, exposure=0.0, price=11.0)

    assert trades.rows[0].profit == pytest.approx(-2.0)


def test_live_exposure_leaves_position_alone(reconciler, positions, trades):
    position = positions.create(_position())

    result = reconciler.reconcile("XUSDT", position, exposure=2.0, price=11.0)

    assert not result.closed
    assert positions.get("XUSDT") == position
    assert trades.rows == []


def test_untracked_exposure_is_reported_not_adopted(reconciler, positions, trades, caplog):
    caplog.set_level(logging.WARNING, logger="position_bot.reconciler")

    result = reconciler.reconcile("XUSDT", None, exposure=-3.0, price=11.0)

    assert result.untracked
    assert result.untracked_exposure == -3.0
    assert positions.list() == []
    assert trades.rows == []
    payload = json.loads(caplog.records[-1].message)
    assert payload == {"type": "UNTRACKED_EXPOSURE", "symbol": "XUSDT", "exposure": -3.0}


def test_nothing_to_do_when_both_flat(reconciler):
    result = reconciler.reconcile("XUSDT", None, exposure=0.0, price=11.0)

    assert not result.closed
    assert not result.untracked


def test_interrupted_exit_keeps_its_reason(reconciler, positions, trades):
    position = positions.create(_position(pending_close=CloseReason.TRAILING_STOP))

    result = reconciler.reconcile("XUSDT", position, exposure=0.0, price=11.0)

    assert result.trade.reason is CloseReason.TRAILING_STOP
    assert positions.list() == []
    assert len(trades.rows) == 1


def test_failed_append_keeps_tracked_position(reconciler, positions, trades, outbox):
    position = positions.create(_position())
    trades.fail_appends = 1

    with pytest.raises(StoreUnavailableError):
        reconciler.reconcile("XUSDT", position, exposure=0.0, price=11.0)

    assert positions.get("XUSDT") == position
    assert trades.rows == []
    assert outbox.drain() == []
