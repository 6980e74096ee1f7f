"""Shared exception types for core trading logic."""

from typing import List, Optional


class ConfigurationError(RuntimeError):
    """Raised when required configuration or credentials are missing."""

    def __init__(self, message: str, missing: Optional[List[str]] = None):
        super().__init__(message)
        self.missing = list(missing or [])


class UnknownStrategyError(KeyError):
    """Raised when activating a strategy id that is not registered."""

    def __init__(self, strategy_id: str):
        super().__init__(strategy_id)
        self.strategy_id = strategy_id

    def __str__(self) -> str:
        return f"Unknown strategy: {self.strategy_id}"


class TransientFetchFailure(RuntimeError):
    """A single symbol or feed could not be fetched.

    Collectors catch this at their boundary; it never reaches the cycle.
    """

    def __init__(self, source: str, original: Optional[Exception] = None):
        super().__init__(source)
        self.source = source
        self.original = original


class DeliveryFailure(RuntimeError):
    """Raised when the run digest could not be delivered."""
