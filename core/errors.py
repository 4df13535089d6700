"""
core/errors.py
Error taxonomy for the trading core.

Admission failures (guards, risk limits) are NOT exceptions — they come
back as result values with a list of reasons. Exceptions are reserved for
invalid state, insufficient funds and live-order pre-flight failures; the
caller aborts only the single operation that raised. Exchange failures
during a live order surface as ExchangeError.
"""


class TradingError(Exception):
    """Base class for all trading-core errors."""


class ConfigurationError(TradingError):
    """The config document or station reference data is malformed."""


class RecordNotFoundError(TradingError):
    """A trade or pending recommendation id does not exist."""


class InvalidStateError(TradingError):
    """A state transition was requested from the wrong state."""


class InsufficientFundsError(TradingError):
    """A trade costs more than the available balance."""

    def __init__(self, needed: float, available: float) -> None:
        super().__init__(
            f"Insufficient balance: need ${needed:.2f}, have ${available:.2f}"
        )
        self.needed = needed
        self.available = available


class PreflightError(TradingError):
    """A live order failed its pre-flight checks and was not placed."""

    INSUFFICIENT_FUNDS = "insufficient_funds"
    MARKET_CLOSED = "market_closed"
    RISK_LIMITS = "risk_limits"

    def __init__(self, reason: str, message: str) -> None:
        super().__init__(message)
        self.reason = reason


class ExchangeError(TradingError):
    """The exchange could not be reached, or rejected a live order."""
