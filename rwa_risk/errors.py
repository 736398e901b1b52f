"""Exception hierarchy shared by the risk monitor."""

from __future__ import annotations

from typing import Optional


class RiskMonitorError(Exception):
    """Base class for all risk monitor failures."""


class ConfigurationError(RiskMonitorError, ValueError):
    """Raised when thresholds or monitor settings are missing or invalid."""


class EmptyObservationSetError(RiskMonitorError):
    """Raised when a tracked symbol has no price observations for a cycle."""

    def __init__(self, symbol: str, message: Optional[str] = None) -> None:
        self.symbol = symbol
        super().__init__(message or f"No price observations available for {symbol}")


class PriceFeedError(RiskMonitorError):
    """Raised by a price feed when a quote cannot be produced."""

    def __init__(self, feed: str, instrument: str, reason: str) -> None:
        self.feed = feed
        self.instrument = instrument
        self.reason = reason
        super().__init__(f"{feed} failed to quote {instrument}: {reason}")


class ActuationFailure(RiskMonitorError):
    """Raised by a report emitter when the actuation request was not delivered."""

    def __init__(self, emitter: str, reason: str, *, retryable: bool = False) -> None:
        self.emitter = emitter
        self.reason = reason
        self.retryable = retryable
        super().__init__(f"{emitter} actuation failed: {reason}")


__all__ = [
    "ActuationFailure",
    "ConfigurationError",
    "EmptyObservationSetError",
    "PriceFeedError",
    "RiskMonitorError",
]
