from pathlib import Path

import pytest

from config import build_config
from position_bot.cycle import CycleOrchestrator
from tests.helpers import FakePositionStore, FakeTradeStore, StubNotifier, StubSnapshots, StubVenue


@pytest.fixture(scope="session")
def repo_root() -> Path:
    return Path(__file__).resolve().parents[1]


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch):
    for key in ("BOT_CONFIG_JSON", "TELEGRAM_BOT_TOKEN", "TELEGRAM_CHAT_ID", "TESTNET", "DEMO", "SYMBOLS"):
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def cfg():
    return build_config(
        {
            "symbols": ["BTC/USDT", "XRP/USDT"],
            "precision": {"BTC/USDT": 3, "XRP/USDT": 1},
            "atr_threshold": {"BTC/USDT": 15.0, "XRP/USDT": 0.0},
            "leverage": 5,
            "order_notional": 100,
        }
    )


@pytest.fixture
def positions():
    return FakePositionStore()


@pytest.fixture
def trades():
    return FakeTradeStore()


@pytest.fixture
def venue():
    return StubVenue()


@pytest.fixture
def notifier():
    return StubNotifier()


@pytest.fixture
def snapshots():
    return StubSnapshots()


@pytest.fixture
def orchestrator(cfg, venue, positions, trades, notifier, snapshots):
    return CycleOrchestrator(cfg, venue, positions, trades, notifier, snapshots=snapshots)
