"""LedgerRun - cash-flow rebalancing for paper trading accounts."""

__version__ = "0.1.0"
