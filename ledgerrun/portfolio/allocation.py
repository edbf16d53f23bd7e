"""Cash-flow allocation engine.

Turns a Policy and a broker Snapshot into a buy-only Plan. The engine is a
pure function: identical inputs always give the identical Plan.

Algorithm:
1. Validate policy and snapshot documents
2. Resolve a positive price for every target (strict, or noted skip)
3. Aggregate positions by symbol, compute total value
4. Compute investable cash (buffer, cap, minimum) or NOOP
5. Compute current weights per target
6. Select mode: pro-rata, or underweights when outside the drift band
7. Split investable cash into raw buys
8. Floor-round each buy, drop legs under the minimum order size
9. Sort legs by notional (desc) then symbol, truncate to max orders
10. Assign reason codes, re-check the minimum invest amount
"""

import math
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from ledgerrun.portfolio.base import (
    AllocationMode,
    AllocationOptions,
    DriftKind,
    Leg,
    Plan,
    PlanStatus,
    Policy,
    ReasonCode,
    Snapshot,
    Target,
    aggregate_positions,
)
from ledgerrun.portfolio.validation import validate_policy, validate_snapshot
from ledgerrun.utils.exceptions import MissingPriceError
from ledgerrun.utils.logging import get_logger

logger = get_logger(__name__)

PolicyInput = Union[Policy, Mapping[str, Any]]
SnapshotInput = Union[Snapshot, Mapping[str, Any]]


def round_down(value: float, step: float) -> float:
    """Floor ``value`` to a multiple of ``step`` (0.01 when step is not positive)."""
    s = step if step > 0 else 0.01
    return math.floor(value / s + 1e-9) * s


def money(value: float) -> float:
    """Round a dollar amount to cents for display."""
    return round(value, 2)


def has_valid_price(prices: Mapping[str, Any], symbol: str) -> bool:
    price = prices.get(symbol)
    if isinstance(price, bool) or not isinstance(price, (int, float)):
        return False
    return math.isfinite(price) and price > 0


def compute_investable_cash(
    cash_usd: float, total_value_usd: float, policy: Policy, notes: List[str]
) -> Tuple[float, Optional[str]]:
    """Apply cash buffer and max cap.

    Returns:
        Tuple of (investable cash, NOOP reason or None)
    """
    desired_buffer = policy.cash_buffer_pct * total_value_usd
    after_buffer = max(0.0, cash_usd - desired_buffer)

    if policy.cash_buffer_pct > 0:
        notes.append(f"Applied cash buffer: reserving ~${desired_buffer:.2f}.")

    capped = min(after_buffer, policy.max_invest_amount_usd)
    if math.isfinite(policy.max_invest_amount_usd):
        notes.append(f"Applied max invest cap: ${policy.max_invest_amount_usd:.2f}.")

    if capped < policy.min_invest_amount_usd:
        return 0.0, f"Investable cash (${capped:.2f}) < minInvestAmountUsd."

    return capped, None


def compute_weights(
    targets: Tuple[Target, ...],
    value_by_symbol: Mapping[str, float],
    total_value_usd: float,
) -> Dict[str, Dict[str, float]]:
    """Current value and weight for each target symbol."""
    weights = {}
    for target in targets:
        current_value = value_by_symbol.get(target.symbol, 0.0)
        current_weight = current_value / total_value_usd if total_value_usd > 0 else 0.0
        weights[target.symbol] = {
            "current_value": current_value,
            "current_weight": current_weight,
            "target_weight": target.target_weight,
        }
    return weights


def max_abs_deviation(weights: Mapping[str, Mapping[str, float]]) -> float:
    return max(
        (abs(w["current_weight"] - w["target_weight"]) for w in weights.values()),
        default=0.0,
    )


def allocate_pro_rata(
    targets: Tuple[Target, ...], investable_cash_usd: float
) -> Dict[str, float]:
    return {t.symbol: investable_cash_usd * t.target_weight for t in targets}


def allocate_to_underweights(
    weights: Mapping[str, Mapping[str, float]], investable_cash_usd: float
) -> Optional[Dict[str, float]]:
    """Split cash in proportion to each target's shortfall.

    Returns:
        Raw buys per symbol, or None when no target is underweight
    """
    scores = {
        symbol: max(0.0, w["target_weight"] - w["current_weight"])
        for symbol, w in weights.items()
    }
    total_score = sum(scores.values())
    if total_score <= 0:
        return None

    return {
        symbol: investable_cash_usd * (score / total_score)
        for symbol, score in scores.items()
        if score > 0
    }


def finalize_legs(
    policy: Policy,
    weights: Mapping[str, Mapping[str, float]],
    raw_buys: Mapping[str, float],
    total_value_usd: float,
    investable_cash_usd: float,
    increment: float,
) -> Tuple[List[Leg], float, List[str]]:
    """Round, filter, sort, truncate and annotate legs.

    Returns:
        Tuple of (legs, planned spend, notes)
    """
    notes: List[str] = []
    candidates = []

    for target in policy.targets:
        w = weights.get(target.symbol)
        if w is None:
            continue

        notional = round_down(raw_buys.get(target.symbol, 0.0), increment)
        if notional < policy.min_order_usd:
            continue

        post_value = w["current_value"] + notional
        candidates.append(
            {
                "symbol": target.symbol,
                "notional_usd": money(notional),
                "target_weight": w["target_weight"],
                "current_weight": w["current_weight"],
                "post_buy_estimated_weight": (
                    post_value / total_value_usd if total_value_usd > 0 else 0.0
                ),
            }
        )

    candidates.sort(key=lambda c: (-c["notional_usd"], c["symbol"]))

    if not candidates:
        notes.append(
            f"All computed legs fell below minOrderUsd (${policy.min_order_usd:.2f})."
        )
        return [], 0.0, notes

    max_orders = policy.effective_max_orders
    if len(candidates) > max_orders:
        dropped = len(candidates) - max_orders
        candidates = candidates[:max_orders]
        notes.append(f"Applied maxOrders ({max_orders}); dropped {dropped} leg(s).")

    planned_spend_usd = sum(c["notional_usd"] for c in candidates)

    legs = []
    for c in candidates:
        codes = []
        if c["current_weight"] < c["target_weight"]:
            codes.append(ReasonCode.UNDERWEIGHT)
        codes.extend([ReasonCode.DCA, ReasonCode.CASHFLOW_REBALANCE])
        legs.append(Leg(reason_codes=tuple(codes), **c))

    if planned_spend_usd + 0.01 < investable_cash_usd:
        notes.append(
            f"Planned spend (${planned_spend_usd:.2f}) < investable cash "
            f"(${investable_cash_usd:.2f}) due to rounding/minOrder/maxOrders."
        )

    return legs, planned_spend_usd, notes


def allocate(
    policy: PolicyInput,
    snapshot: SnapshotInput,
    options: Optional[AllocationOptions] = None,
) -> Plan:
    """Compute a buy-only cash allocation plan.

    Args:
        policy: Policy document (camelCase mapping) or Policy
        snapshot: Snapshot document (camelCase mapping) or Snapshot
        options: Rounding increment and drift-band NOOP switch

    Returns:
        PLANNED plan with legs, or NOOP plan with an explanatory note

    Raises:
        ValidationError: If the policy or snapshot is malformed
        MissingPriceError: If a target has no valid price and
            allowMissingPrices is false

    Example:
        >>> plan = allocate(
        ...     {"version": 1, "name": "Core",
        ...      "targets": [{"symbol": "VTI", "targetWeight": 0.7},
        ...                  {"symbol": "VXUS", "targetWeight": 0.3}],
        ...      "drift": {"kind": "none"}},
        ...     {"asOfIso": "2026-01-10T15:00:00Z", "cashUsd": 100,
        ...      "positions": [], "pricesUsd": {"VTI": 250, "VXUS": 60}},
        ... )
        >>> [(leg.symbol, leg.notional_usd) for leg in plan.legs]
        [('VTI', 70.0), ('VXUS', 30.0)]
    """
    options = options or AllocationOptions()
    policy_doc = policy.to_dict() if isinstance(policy, Policy) else policy
    snapshot_doc = snapshot.to_dict() if isinstance(snapshot, Snapshot) else snapshot

    validate_policy(policy_doc)
    validate_snapshot(snapshot_doc)

    pol = Policy.from_dict(policy_doc)
    snap = Snapshot.from_dict(snapshot_doc)
    notes: List[str] = []

    for target in pol.targets:
        if not has_valid_price(snap.prices_usd, target.symbol):
            if pol.allow_missing_prices:
                notes.append(f"Missing/invalid price for {target.symbol}; skipping symbol.")
            else:
                raise MissingPriceError(target.symbol)

    value_by_symbol = aggregate_positions(snap.positions)
    equity_usd = sum(value_by_symbol.values())
    total_value_usd = equity_usd + snap.cash_usd
    weights = compute_weights(pol.targets, value_by_symbol, total_value_usd)

    def build(status, investable, spend=0.0, legs=(), extra_notes=(), mode=None) -> Plan:
        return Plan(
            status=status,
            policy_name=pol.name,
            as_of_iso=snap.as_of_iso,
            total_equity_usd=money(equity_usd),
            total_value_usd=money(total_value_usd),
            cash_usd=money(snap.cash_usd),
            investable_cash_usd=money(investable),
            planned_spend_usd=money(spend),
            legs=tuple(legs),
            notes=tuple(notes) + tuple(extra_notes),
            mode=mode,
        )

    investable_cash_usd, noop_reason = compute_investable_cash(
        snap.cash_usd, total_value_usd, pol, notes
    )
    if noop_reason:
        logger.info("Plan NOOP for %s: %s", pol.name, noop_reason)
        return build(PlanStatus.NOOP, 0.0, extra_notes=[noop_reason])

    mode = AllocationMode.PRO_RATA
    if pol.drift.kind is DriftKind.BAND:
        band = pol.drift.max_abs_pct
        deviation = max_abs_deviation(weights)
        if deviation > band:
            mode = AllocationMode.UNDERWEIGHTS
            notes.append(
                f"Outside drift band ({band * 100:.2f}%); prioritizing underweights."
            )
        else:
            notes.append(f"Within drift band ({band * 100:.2f}%); allocating pro-rata.")
            if options.noop_if_within_band:
                return build(
                    PlanStatus.NOOP,
                    investable_cash_usd,
                    extra_notes=["NOOP because within drift band and noopIfWithinBand=true."],
                    mode=mode,
                )

    if mode is AllocationMode.UNDERWEIGHTS:
        raw_buys = allocate_to_underweights(weights, investable_cash_usd)
        if raw_buys is None:
            notes.append("No underweights detected; falling back to pro-rata allocation.")
            raw_buys = allocate_pro_rata(pol.targets, investable_cash_usd)
    else:
        raw_buys = allocate_pro_rata(pol.targets, investable_cash_usd)

    legs, planned_spend_usd, leg_notes = finalize_legs(
        pol,
        weights,
        raw_buys,
        total_value_usd,
        investable_cash_usd,
        options.increment,
    )

    if not legs:
        logger.info("Plan NOOP for %s: no legs survived constraints", pol.name)
        return build(PlanStatus.NOOP, investable_cash_usd, extra_notes=leg_notes, mode=mode)

    if planned_spend_usd < pol.min_invest_amount_usd:
        logger.info("Plan NOOP for %s: spend below minimum after constraints", pol.name)
        return build(
            PlanStatus.NOOP,
            investable_cash_usd,
            extra_notes=leg_notes
            + ["Planned spend fell below minInvestAmountUsd after constraints."],
            mode=mode,
        )

    logger.info(
        "Plan PLANNED for %s: %d leg(s), $%.2f of $%.2f investable (%s)",
        pol.name,
        len(legs),
        planned_spend_usd,
        investable_cash_usd,
        mode.value,
    )
    return build(
        PlanStatus.PLANNED,
        investable_cash_usd,
        spend=planned_spend_usd,
        legs=legs,
        extra_notes=leg_notes,
        mode=mode,
    )
