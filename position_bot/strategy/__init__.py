from .base import NONE, Signal
from .ema_rsi import generate_signal, signal_from_snapshot

__all__ = [
    "NONE",
    "Signal",
    "generate_signal",
    "signal_from_snapshot",
]
