"""Execution Layer - broker adapters for paper trading.

This module provides the Broker interface and its Alpaca and simulated
implementations.
"""

from ledgerrun.execution.alpaca_broker import AlpacaBroker, map_alpaca_to_snapshot
from ledgerrun.execution.base import Broker, ExecutionResult
from ledgerrun.execution.simulated_broker import SimulatedBroker

__all__ = [
    # Abstract interface
    "Broker",
    # Concrete implementations
    "AlpacaBroker",
    "SimulatedBroker",
    # Data classes
    "ExecutionResult",
    # Mappers
    "map_alpaca_to_snapshot",
]
