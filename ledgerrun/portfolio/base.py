"""Domain types for cash-flow rebalancing.

This module defines the value objects exchanged between the Portfolio,
Risk, Storage and Execution layers:

- Policy: user-declared target allocation and capital controls
- Snapshot: point-in-time broker state (cash, positions, prices)
- Plan / Leg: allocation engine output
- AllocationOptions: the single configuration object for ``allocate``

All types are frozen dataclasses. Documents on the wire (policy JSON files,
run records) use camelCase keys; ``from_dict`` / ``to_dict`` translate.
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

DEFAULT_ROUND_TO_USD = 0.01


class DriftKind(Enum):
    """How drift from target weights is handled."""

    NONE = "none"
    BAND = "band"


class PlanStatus(Enum):
    """Outcome of an allocation."""

    PLANNED = "PLANNED"
    NOOP = "NOOP"


class AllocationMode(Enum):
    """How investable cash is split across targets."""

    PRO_RATA = "pro_rata"
    UNDERWEIGHTS = "underweights"


class ReasonCode(Enum):
    """Why a leg was proposed."""

    UNDERWEIGHT = "UNDERWEIGHT"
    DCA = "DCA"
    CASHFLOW_REBALANCE = "CASHFLOW_REBALANCE"


@dataclass(frozen=True)
class Target:
    """One symbol and its target portfolio weight."""

    symbol: str
    target_weight: float


@dataclass(frozen=True)
class DriftConfig:
    """Drift handling configuration.

    Attributes:
        kind: NONE (always pro-rata) or BAND (switch to underweights outside band)
        max_abs_pct: Band half-width as a fraction; only set for BAND
    """

    kind: DriftKind = DriftKind.NONE
    max_abs_pct: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"kind": self.kind.value}
        if self.kind is DriftKind.BAND:
            data["maxAbsPct"] = self.max_abs_pct
        return data


@dataclass(frozen=True)
class Policy:
    """Versioned rebalancing configuration.

    Attributes:
        name: Human-readable policy name
        targets: Ordered target symbols and weights (weights sum to 1)
        version: Document schema version (always 1)
        cash_buffer_pct: Fraction of total value kept as cash
        min_invest_amount_usd: Below this investable cash the run is a NOOP
        max_invest_amount_usd: Cap on cash deployed per run
        min_order_usd: Legs smaller than this are dropped
        max_orders: Maximum legs per plan (defaults to number of targets)
        drift: Drift handling configuration
        allow_missing_prices: Continue (with a note) when a target has no price
    """

    name: str
    targets: Tuple[Target, ...]
    version: int = 1
    cash_buffer_pct: float = 0.0
    min_invest_amount_usd: float = 1.0
    max_invest_amount_usd: float = math.inf
    min_order_usd: float = 1.0
    max_orders: Optional[int] = None
    drift: DriftConfig = field(default_factory=DriftConfig)
    allow_missing_prices: bool = False

    @property
    def effective_max_orders(self) -> int:
        return self.max_orders if self.max_orders is not None else len(self.targets)

    @property
    def symbols(self) -> List[str]:
        return [t.symbol for t in self.targets]

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Policy":
        """Build a Policy from a validated policy document.

        Optional fields absent from the document take their defaults.
        """
        drift_data = data.get("drift") or {"kind": "none"}
        drift = DriftConfig(
            kind=DriftKind(drift_data["kind"]),
            max_abs_pct=drift_data.get("maxAbsPct")
            if drift_data["kind"] == DriftKind.BAND.value
            else None,
        )

        def _opt(key: str, default: float) -> float:
            value = data.get(key)
            return default if value is None else float(value)

        return cls(
            name=data.get("name") or "Unnamed",
            version=data.get("version", 1),
            targets=tuple(
                Target(symbol=t["symbol"], target_weight=float(t["targetWeight"]))
                for t in data["targets"]
            ),
            cash_buffer_pct=_opt("cashBufferPct", 0.0),
            min_invest_amount_usd=_opt("minInvestAmountUsd", 1.0),
            max_invest_amount_usd=_opt("maxInvestAmountUsd", math.inf),
            min_order_usd=_opt("minOrderUsd", 1.0),
            max_orders=data.get("maxOrders"),
            drift=drift,
            allow_missing_prices=bool(data.get("allowMissingPrices", False)),
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "version": self.version,
            "name": self.name,
            "targets": [
                {"symbol": t.symbol, "targetWeight": t.target_weight}
                for t in self.targets
            ],
            "cashBufferPct": self.cash_buffer_pct,
            "minInvestAmountUsd": self.min_invest_amount_usd,
            "minOrderUsd": self.min_order_usd,
            "drift": self.drift.to_dict(),
            "allowMissingPrices": self.allow_missing_prices,
        }
        if math.isfinite(self.max_invest_amount_usd):
            data["maxInvestAmountUsd"] = self.max_invest_amount_usd
        if self.max_orders is not None:
            data["maxOrders"] = self.max_orders
        return data


@dataclass(frozen=True)
class Position:
    """One broker position entry (not necessarily unique per symbol)."""

    symbol: str
    quantity: float
    market_value_usd: float


@dataclass(frozen=True)
class Snapshot:
    """Point-in-time broker state.

    Attributes:
        as_of_iso: ISO-8601 timestamp of the snapshot
        cash_usd: Settled cash available
        positions: Position entries as reported (may repeat a symbol)
        prices_usd: Latest price per symbol
    """

    as_of_iso: str
    cash_usd: float
    positions: Tuple[Position, ...] = ()
    prices_usd: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Snapshot":
        """Build a Snapshot from a validated snapshot document."""
        return cls(
            as_of_iso=data["asOfIso"],
            cash_usd=float(data["cashUsd"]),
            positions=tuple(
                Position(
                    symbol=p["symbol"],
                    quantity=float(p["quantity"]),
                    market_value_usd=float(p["marketValueUsd"]),
                )
                for p in data["positions"]
            ),
            prices_usd=dict(data["pricesUsd"]),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "asOfIso": self.as_of_iso,
            "cashUsd": self.cash_usd,
            "positions": [
                {
                    "symbol": p.symbol,
                    "quantity": p.quantity,
                    "marketValueUsd": p.market_value_usd,
                }
                for p in self.positions
            ],
            "pricesUsd": dict(self.prices_usd),
        }

    @property
    def value_by_symbol(self) -> Dict[str, float]:
        return aggregate_positions(self.positions)

    @property
    def equity_usd(self) -> float:
        return sum(p.market_value_usd for p in self.positions)

    @property
    def total_value_usd(self) -> float:
        return self.equity_usd + self.cash_usd


def aggregate_positions(positions: Iterable[Position]) -> Dict[str, float]:
    """Fold position entries into total market value per symbol.

    Brokers may report several entries for one symbol (lots, accounts);
    these are summed, never overwritten.

    Example:
        >>> aggregate_positions([
        ...     Position("VTI", 1, 250.0),
        ...     Position("VTI", 2, 500.0),
        ... ])
        {'VTI': 750.0}
    """
    value_by_symbol: Dict[str, float] = {}
    for position in positions:
        value_by_symbol[position.symbol] = (
            value_by_symbol.get(position.symbol, 0.0) + position.market_value_usd
        )
    return value_by_symbol


@dataclass(frozen=True)
class Leg:
    """One proposed buy order for a single symbol."""

    symbol: str
    notional_usd: float
    target_weight: float
    current_weight: float
    post_buy_estimated_weight: float
    reason_codes: Tuple[ReasonCode, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "notionalUsd": self.notional_usd,
            "targetWeight": self.target_weight,
            "currentWeight": self.current_weight,
            "postBuyEstimatedWeight": self.post_buy_estimated_weight,
            "reasonCodes": [code.value for code in self.reason_codes],
        }


@dataclass(frozen=True)
class Plan:
    """Allocation engine output.

    Attributes:
        status: PLANNED when legs should be executed, NOOP otherwise
        policy_name: Name of the policy the plan was computed for
        as_of_iso: Snapshot timestamp
        total_equity_usd: Sum of position market values
        total_value_usd: Equity plus cash
        cash_usd: Snapshot cash
        investable_cash_usd: Cash available after buffer and cap
        planned_spend_usd: Sum of leg notionals
        legs: Proposed buys, largest first
        notes: Rationale, in the order it was produced
        mode: Allocation mode used, if the run got that far
    """

    status: PlanStatus
    policy_name: str
    as_of_iso: str
    total_equity_usd: float
    total_value_usd: float
    cash_usd: float
    investable_cash_usd: float
    planned_spend_usd: float
    legs: Tuple[Leg, ...] = ()
    notes: Tuple[str, ...] = ()
    mode: Optional[AllocationMode] = None

    @property
    def is_actionable(self) -> bool:
        return self.status is PlanStatus.PLANNED and len(self.legs) > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "policyName": self.policy_name,
            "asOfIso": self.as_of_iso,
            "totalEquityUsd": self.total_equity_usd,
            "totalValueUsd": self.total_value_usd,
            "cashUsd": self.cash_usd,
            "investableCashUsd": self.investable_cash_usd,
            "plannedSpendUsd": self.planned_spend_usd,
            "mode": self.mode.value if self.mode else None,
            "legs": [leg.to_dict() for leg in self.legs],
            "notes": list(self.notes),
        }


@dataclass(frozen=True)
class AllocationOptions:
    """Options for ``allocate``.

    Attributes:
        round_to_usd: Leg notionals are floored to a multiple of this
            increment. Non-positive or non-finite values fall back to 0.01.
        noop_if_within_band: With a BAND drift policy, return NOOP instead
            of a pro-rata plan when every target is inside the band.
    """

    round_to_usd: float = DEFAULT_ROUND_TO_USD
    noop_if_within_band: bool = False

    @property
    def increment(self) -> float:
        step = self.round_to_usd
        if not isinstance(step, (int, float)) or not math.isfinite(step) or step <= 0:
            return DEFAULT_ROUND_TO_USD
        return float(step)
