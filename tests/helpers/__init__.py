from .fakes import FakePositionStore, FakeTradeStore, StubNotifier, StubSnapshots, StubVenue

__all__ = [
    "FakePositionStore",
    "FakeTradeStore",
    "StubNotifier",
    "StubSnapshots",
    "StubVenue",
]
