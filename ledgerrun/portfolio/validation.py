"""Input validation for policy and snapshot documents.

Both validators accept the parsed JSON mapping (camelCase keys), return
``None`` when the document is well-formed and raise ``ValidationError``
naming the offending field otherwise. They are the entry gate of
``allocate``; nothing numeric runs on an unvalidated document.
"""

import math
from typing import Any, Mapping

from ledgerrun.utils.exceptions import ValidationError

WEIGHT_SUM_EPSILON = 0.0005

_NUMERIC_POLICY_FIELDS = (
    ("cashBufferPct", 0.0, 1.0),
    ("minInvestAmountUsd", 0.0, math.inf),
    ("maxInvestAmountUsd", 0.0, math.inf),
    ("minOrderUsd", 0.0, math.inf),
)


def is_finite_number(value: Any) -> bool:
    """True for int/float values that are finite (bools excluded)."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def validate_policy(policy: Any) -> None:
    """Validate a policy document.

    Args:
        policy: Parsed policy JSON

    Raises:
        ValidationError: On the first malformed field

    Example:
        >>> validate_policy({
        ...     "version": 1,
        ...     "name": "Core",
        ...     "targets": [{"symbol": "VTI", "targetWeight": 1.0}],
        ...     "drift": {"kind": "none"},
        ... })
    """
    if not isinstance(policy, Mapping):
        raise ValidationError("policy", "must be an object")

    if policy.get("version") != 1:
        raise ValidationError("version", f"must be 1, got {policy.get('version')!r}")

    name = policy.get("name")
    if name is not None and not isinstance(name, str):
        raise ValidationError("name", "must be a string")

    targets = policy.get("targets")
    if not isinstance(targets, list) or len(targets) == 0:
        raise ValidationError("targets", "must be a non-empty list")

    seen = set()
    for i, target in enumerate(targets):
        if not isinstance(target, Mapping):
            raise ValidationError(f"targets[{i}]", "must be an object")
        symbol = target.get("symbol")
        if isinstance(symbol, str) and symbol in seen:
            raise ValidationError(
                f"targets[{i}].symbol", f"duplicate target symbol: {symbol}"
            )
        if isinstance(symbol, str):
            seen.add(symbol)

    for i, target in enumerate(targets):
        symbol = target.get("symbol")
        if not isinstance(symbol, str) or not symbol:
            raise ValidationError(f"targets[{i}].symbol", "must be a non-empty string")
        weight = target.get("targetWeight")
        if not is_finite_number(weight) or weight <= 0 or weight > 1:
            raise ValidationError(
                f"targets[{i}].targetWeight",
                f"invalid weight for {symbol}: {weight!r} (must be in (0, 1])",
            )

    total = sum(t["targetWeight"] for t in targets)
    if abs(total - 1) > WEIGHT_SUM_EPSILON:
        raise ValidationError("targets", f"target weights must sum to 1, got {total}")

    for field_name, low, high in _NUMERIC_POLICY_FIELDS:
        value = policy.get(field_name)
        if value is None:
            continue
        if not is_finite_number(value) or value < low or value > high:
            raise ValidationError(field_name, f"invalid value {value!r}")

    max_orders = policy.get("maxOrders")
    if max_orders is not None:
        if isinstance(max_orders, bool) or not isinstance(max_orders, int) or max_orders < 1:
            raise ValidationError("maxOrders", f"must be a positive integer, got {max_orders!r}")

    drift = policy.get("drift")
    if not isinstance(drift, Mapping):
        raise ValidationError("drift", "is required and must be an object")

    kind = drift.get("kind")
    if kind not in ("none", "band"):
        raise ValidationError("drift.kind", f"must be 'none' or 'band', got {kind!r}")

    if kind == "band":
        max_abs_pct = drift.get("maxAbsPct")
        if not is_finite_number(max_abs_pct) or max_abs_pct < 0 or max_abs_pct > 1:
            raise ValidationError(
                "drift.maxAbsPct", f"required for band drift, must be in [0, 1], got {max_abs_pct!r}"
            )

    allow_missing = policy.get("allowMissingPrices")
    if allow_missing is not None and not isinstance(allow_missing, bool):
        raise ValidationError("allowMissingPrices", "must be a boolean")


def validate_snapshot(snapshot: Any) -> None:
    """Validate a snapshot document.

    Prices are not checked here; the allocation engine resolves them per
    target and decides between strict failure and a noted skip.

    Raises:
        ValidationError: On the first malformed field
    """
    if not isinstance(snapshot, Mapping):
        raise ValidationError("snapshot", "must be an object")

    if not isinstance(snapshot.get("asOfIso"), str):
        raise ValidationError("asOfIso", "must be an ISO-8601 string")

    cash = snapshot.get("cashUsd")
    if not is_finite_number(cash) or cash < 0:
        raise ValidationError("cashUsd", f"must be a finite number >= 0, got {cash!r}")

    positions = snapshot.get("positions")
    if not isinstance(positions, list):
        raise ValidationError("positions", "must be a list")

    if not isinstance(snapshot.get("pricesUsd"), Mapping):
        raise ValidationError("pricesUsd", "must be an object map of symbol->price")

    for i, position in enumerate(positions):
        if not isinstance(position, Mapping):
            raise ValidationError(f"positions[{i}]", "must be an object")
        symbol = position.get("symbol")
        if not isinstance(symbol, str) or not symbol:
            raise ValidationError(f"positions[{i}].symbol", "must be a non-empty string")
        quantity = position.get("quantity")
        if not is_finite_number(quantity) or quantity < 0:
            raise ValidationError(
                f"positions[{i}].quantity", f"invalid quantity for {symbol}: {quantity!r}"
            )
        market_value = position.get("marketValueUsd")
        if not is_finite_number(market_value) or market_value < 0:
            raise ValidationError(
                f"positions[{i}].marketValueUsd",
                f"invalid marketValueUsd for {symbol}: {market_value!r}",
            )
