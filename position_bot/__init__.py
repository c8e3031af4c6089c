"""position_bot package.

Convenience exports for commonly used classes/functions.
"""

__all__: list[str] = []


def __getattr__(name: str):
    if name in ("CycleOrchestrator", "CycleReport"):
        from .cycle import CycleOrchestrator, CycleReport

        return {"CycleOrchestrator": CycleOrchestrator, "CycleReport": CycleReport}[name]
    if name == "ExchangeAPI":
        from .exchange_api import ExchangeAPI

        return ExchangeAPI
    if name in ("PositionStore", "TradeStore"):
        from .state_store import PositionStore, TradeStore

        return {"PositionStore": PositionStore, "TradeStore": TradeStore}[name]
    raise AttributeError(f"module 'position_bot' has no attribute {name!r}")
