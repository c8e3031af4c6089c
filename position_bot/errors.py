from __future__ import annotations

__all__ = [
    "PositionBotError",
    "ConfigError",
    "VenueError",
    "VenueAuthError",
    "OrderError",
    "StoreError",
    "StoreUnavailableError",
    "DuplicatePositionError",
    "CycleAbortedError",
    "CycleInProgressError",
]


class PositionBotError(Exception):
    """Base class for errors raised by the bot."""


class ConfigError(PositionBotError, ValueError):
    """Raised when the bot configuration is missing or inconsistent."""


class VenueError(PositionBotError):
    """Raised when a venue read cannot be completed after retries."""


class VenueAuthError(VenueError):
    """Raised when credentials are missing or rejected by the venue."""


class OrderError(PositionBotError):
    """Raised when a market order is rejected or not acknowledged."""


class StoreError(PositionBotError):
    """Base class for persistence errors."""


class StoreUnavailableError(StoreError):
    """Raised when the position/trade store cannot be read or written."""


class DuplicatePositionError(StoreError):
    """Raised when a Position already exists for the symbol."""


class CycleAbortedError(PositionBotError):
    """Raised when a cycle cannot safely continue."""


class CycleInProgressError(PositionBotError):
    """Raised when a cycle is started while another is still running."""
