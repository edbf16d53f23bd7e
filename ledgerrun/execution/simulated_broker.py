"""In-memory broker for dry runs and tests."""

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from ledgerrun.execution.base import Broker, ExecutionResult
from ledgerrun.portfolio.base import Leg, Snapshot
from ledgerrun.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_SNAPSHOT: Dict[str, Any] = {
    "cashUsd": 1000.0,
    "positions": [
        {"symbol": "VTI", "quantity": 2, "marketValueUsd": 500.0},
        {"symbol": "VXUS", "quantity": 3, "marketValueUsd": 180.0},
    ],
    "pricesUsd": {"VTI": 250.0, "VXUS": 60.0},
}


class SimulatedBroker(Broker):
    """Broker that serves a fixed snapshot and records orders.

    Order ids are deterministic: ``sim-<n>`` counting across the broker's
    lifetime. Every executed leg is kept in ``executed_legs`` and each
    call counts toward ``snapshot_calls`` / ``execute_calls``.

    Example:
        >>> broker = SimulatedBroker(snapshot={"cashUsd": 100, "positions": [],
        ...                                    "pricesUsd": {"VTI": 250}})
        >>> broker.execute_orders(plan.legs).order_ids
        ['sim-1']
    """

    def __init__(
        self,
        snapshot: Optional[Mapping[str, Any]] = None,
        paper: bool = True,
        order_id_prefix: str = "sim",
    ):
        self._snapshot_doc = dict(snapshot if snapshot is not None else DEFAULT_SNAPSHOT)
        self._paper = paper
        self.order_id_prefix = order_id_prefix

        self.executed_legs: List[Leg] = []
        self.snapshot_calls = 0
        self.execute_calls = 0
        self._next_order = 1

    def is_paper(self) -> bool:
        return self._paper

    def get_snapshot(self, symbols: Iterable[str] = ()) -> Snapshot:
        self.snapshot_calls += 1
        doc = dict(self._snapshot_doc)
        doc.setdefault("asOfIso", datetime.now(timezone.utc).isoformat())
        return Snapshot.from_dict(doc)

    def execute_orders(self, legs: Sequence[Leg]) -> ExecutionResult:
        self.execute_calls += 1
        order_ids = []
        for leg in legs:
            order_id = f"{self.order_id_prefix}-{self._next_order}"
            self._next_order += 1
            order_ids.append(order_id)
            self.executed_legs.append(leg)
            logger.info(
                "Simulated market buy %s for $%.2f (order_id: %s)",
                leg.symbol,
                leg.notional_usd,
                order_id,
            )

        return ExecutionResult(orders_placed=len(order_ids), order_ids=order_ids)
