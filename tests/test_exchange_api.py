import json
import logging

import pytest

from position_bot import exchange_api as exchange_module
from position_bot.errors import OrderError, VenueAuthError, VenueError
from position_bot.exchange_api import ExchangeAPI
from position_bot.models import Direction

pytestmark = pytest.mark.unit


class FakeClient:
    def __init__(self, positions=None, balances=None, order=None, has_credentials=True):
        self.positions = positions if positions is not None else []
        self.balances = balances if balances is not None else []
        self.order = order if order is not None else {"id": "42", "filled": 0.003, "average": 30010.0, "status": "closed"}
        self.has_credentials = has_credentials
        self.position_failures = []
        self.order_error = None
        self.calls = []

    def fapiPrivateGetPositionRisk(self):
        self.calls.append("positionRisk")
        if self.position_failures:
            raise self.position_failures.pop(0)
        return self.positions

    def fapiPrivateGetBalance(self):
        self.calls.append("balance")
        return self.balances

    def create_market_order(self, symbol, side, qty, reduce_only=False):
        self.calls.append(("order", symbol, side, qty, reduce_only))
        if self.order_error is not None:
            raise self.order_error
        return self.order


@pytest.fixture(autouse=True)
def _no_sleep(monkeypatch):
    sleeps = []
    monkeypatch.setattr(exchange_module.time, "sleep", lambda s: sleeps.append(s))
    return sleeps


def make_api(client, **kw):
    return ExchangeAPI(client, symbols=["BTC/USDT", "ETH/USDT"], **kw)


def test_exposure_maps_venue_ids_and_defaults_to_flat():
    client = FakeClient(
        positions=[
            {"symbol": "BTCUSDT", "positionAmt": "0.003"},
            {"symbol": "DOGEUSDT", "positionAmt": "100"},
        ]
    )

    exposure = make_api(client).read_net_exposure()

    assert exposure == {"BTC/USDT": 0.003, "ETH/USDT": 0.0}


def test_exposure_nets_hedge_rows_and_applies_epsilon():
    client = FakeClient(
        positions=[
            {"symbol": "BTCUSDT", "positionAmt": "0.010", "positionSide": "LONG"},
            {"symbol": "BTCUSDT", "positionAmt": "-0.004", "positionSide": "SHORT"},
            {"symbol": "ETHUSDT", "positionAmt": "0.000000001"},
        ]
    )

    exposure = make_api(client).read_net_exposure()

    assert exposure["BTC/USDT"] == pytest.approx(0.006)
    assert exposure["ETH/USDT"] == 0.0


def test_reads_retry_with_linear_backoff(_no_sleep):
    client = FakeClient(positions=[{"symbol": "ETHUSDT", "positionAmt": "-1.5"}])
    client.position_failures = [TimeoutError("read timeout"), ConnectionError("reset")]

    exposure = make_api(client, retries=3, backoff_seconds=0.5).read_net_exposure()

    assert exposure["ETH/USDT"] == -1.5
    assert client.calls.count("positionRisk") == 3
    assert _no_sleep == [0.5, 1.0]


def test_reads_give_up_after_retries():
    client = FakeClient()
    client.position_failures = [TimeoutError("t1"), TimeoutError("t2")]

    with pytest.raises(VenueError, match="after 2 attempts"):
        make_api(client, retries=2).read_net_exposure()


def test_auth_errors_are_not_retried():
    client = FakeClient()
    client.position_failures = [VenueAuthError("Signature for this request is not valid")]

    with pytest.raises(VenueAuthError):
        make_api(client).read_net_exposure()
    assert client.calls == ["positionRisk"]


def test_missing_credentials_fail_before_any_request():
    client = FakeClient(has_credentials=False)

    with pytest.raises(VenueAuthError):
        make_api(client).read_available_balance()
    with pytest.raises(VenueAuthError):
        make_api(client).place_entry("BTC/USDT", Direction.LONG, 0.003)
    assert client.calls == []


def test_malformed_payload_is_venue_error():
    client = FakeClient(positions={"unexpected": "object"})

    with pytest.raises(VenueError):
        make_api(client).read_net_exposure()


def test_available_balance_sums_matching_asset():
    client = FakeClient(
        balances=[
            {"asset": "USDT", "availableBalance": "90.5"},
            {"asset": "BNB", "availableBalance": "3"},
            {"asset": "USDT", "availableBalance": "9.5"},
        ]
    )

    assert make_api(client).read_available_balance("USDT") == pytest.approx(100.0)


def test_entry_and_exit_sides(caplog):
    caplog.set_level(logging.INFO, logger="position_bot.exchange_api")
    client = FakeClient()
    api = make_api(client)

    ack = api.place_entry("BTC/USDT", Direction.SHORT, 0.003)
    api.place_exit("BTC/USDT", Direction.SHORT, 0.003)

    assert client.calls == [
        ("order", "BTC/USDT", "sell", 0.003, False),
        ("order", "BTC/USDT", "buy", 0.003, True),
    ]
    assert ack.order_id == "42"
    assert ack.average_price == 30010.0
    payload = json.loads(caplog.records[0].message)
    assert payload["type"] == "ORDER_ACK"
    assert payload["order_id"] == "42"


def test_order_without_id_is_rejected():
    client = FakeClient(order={"status": "rejected"})

    with pytest.raises(OrderError, match="not acknowledged"):
        make_api(client).place_entry("BTC/USDT", Direction.LONG, 0.003)


def test_order_id_from_raw_info():
    client = FakeClient(order={"info": {"orderId": 777}})

    assert make_api(client).place_entry("BTC/USDT", Direction.LONG, 0.003).order_id == "777"


def test_venue_rejection_becomes_order_error_without_retry():
    client = FakeClient()
    client.order_error = RuntimeError("Margin is insufficient.")

    with pytest.raises(OrderError, match="Margin is insufficient"):
        make_api(client).place_exit("BTC/USDT", Direction.LONG, 0.003)
    assert len([c for c in client.calls if c[0] == "order"]) == 1


def test_non_positive_quantity_is_refused():
    client = FakeClient()

    with pytest.raises(OrderError):
        make_api(client).place_entry("BTC/USDT", Direction.LONG, 0.0)
    assert client.calls == []
