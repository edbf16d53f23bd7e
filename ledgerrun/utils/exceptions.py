"""Custom exceptions for LedgerRun.

This module defines the exception hierarchy for the application.

Only genuine invariant violations travel through exceptions. Expected
outcomes such as a duplicate run for the same period or a guardrail
finding are reported as values (see ``ledgerrun.orchestration.workflows``).
"""


class LedgerRunError(Exception):
    """Base exception for all LedgerRun errors.

    All custom exceptions in the application should inherit from this class.
    """

    pass


class ConfigurationError(LedgerRunError):
    """Raised when configuration is invalid or missing.

    Examples:
        - Missing required configuration keys
        - Unknown idempotency granularity
        - Missing broker credentials
    """

    pass


class ValidationError(LedgerRunError):
    """Raised when a Policy or Snapshot document is malformed.

    Carries the offending field and a human-readable reason so callers can
    surface the problem verbatim.

    Attributes:
        field: Dotted path of the offending field (e.g. "targets[1].targetWeight")
        reason: What is wrong with it
    """

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"{field}: {reason}")


class PortfolioError(LedgerRunError):
    """Base exception for portfolio layer errors.

    Parent class for all allocation-related exceptions.
    """

    pass


class MissingPriceError(PortfolioError):
    """Raised when a target symbol has no usable price in strict mode.

    Attributes:
        symbol: Target symbol lacking a positive finite price
    """

    def __init__(self, symbol: str):
        self.symbol = symbol
        super().__init__(f"Missing/invalid price for target symbol: {symbol}")


class StorageError(LedgerRunError):
    """Base exception for run history storage errors."""

    pass


class PersistenceFault(StorageError):
    """Raised when the run store cannot be read or written.

    Examples:
        - Runs directory not readable
        - Corrupt run record file
        - Disk full while saving a run record
    """

    pass


class BrokerError(LedgerRunError):
    """Base exception for broker layer errors."""

    pass


class BrokerConnectionError(BrokerError):
    """Raised when the broker API cannot be reached.

    Examples:
        - Network connection failed
        - Invalid API credentials
        - All retry attempts exhausted
    """

    pass


class OrderExecutionError(BrokerError):
    """Raised when an order cannot be built or submitted."""

    pass


class PaperTradingRequiredError(BrokerError):
    """Raised when a broker is not in paper (simulated) mode.

    LedgerRun never places live-money orders.
    """

    pass
