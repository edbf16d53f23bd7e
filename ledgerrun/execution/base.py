"""Abstract broker interface.

The Execution Layer is the only place that talks to a brokerage. A Broker
supplies a Snapshot and places buy orders for plan legs. LedgerRun only
ever drives paper (simulated) accounts; callers must check ``is_paper``
before using a broker.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Sequence

from ledgerrun.portfolio.base import Leg, Snapshot


@dataclass
class ExecutionResult:
    """Orders placed for a plan.

    Attributes:
        orders_placed: Number of orders accepted by the broker
        order_ids: Broker order ids, in leg order
    """

    orders_placed: int
    order_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"ordersPlaced": self.orders_placed, "orderIds": list(self.order_ids)}


class Broker(ABC):
    """Broker collaborator.

    Example:
        >>> broker = SimulatedBroker()
        >>> if broker.is_paper():
        ...     snapshot = broker.get_snapshot(["VTI", "VXUS"])
        ...     result = broker.execute_orders(plan.legs)
    """

    @abstractmethod
    def is_paper(self) -> bool:
        """True when orders are simulated and no real money moves."""
        pass

    @abstractmethod
    def get_snapshot(self, symbols: Iterable[str] = ()) -> Snapshot:
        """Fetch cash, positions and prices.

        Args:
            symbols: Symbols that need prices in addition to held positions

        Returns:
            Snapshot of the account

        Raises:
            BrokerConnectionError: If the broker cannot be reached
        """
        pass

    @abstractmethod
    def execute_orders(self, legs: Sequence[Leg]) -> ExecutionResult:
        """Place one notional market buy per leg.

        Raises:
            OrderExecutionError: If an order cannot be placed
        """
        pass
