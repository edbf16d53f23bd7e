"""Idempotency keys for rebalance runs.

A key identifies "this policy, this period": the period's date key joined
to a short hash of the policy fields that affect allocation. Two runs with
the same key must not both place orders.
"""

import hashlib
import json
from datetime import datetime
from typing import Any, Dict, Mapping, Optional, Union

from ledgerrun.portfolio.base import Plan, Policy
from ledgerrun.utils.exceptions import ConfigurationError

GRANULARITIES = ("daily", "hourly")

HASHED_POLICY_FIELDS = (
    "version",
    "name",
    "targets",
    "cashBufferPct",
    "minInvestAmountUsd",
    "maxInvestAmountUsd",
    "minOrderUsd",
    "maxOrders",
    "drift",
)

HASH_LENGTH = 16


def normalize_numbers(obj: Any) -> Any:
    """Turn every int and float leaf into a float so 1 and 1.0 compare equal."""
    if isinstance(obj, bool):
        return obj
    if isinstance(obj, (int, float)):
        return float(obj)
    if isinstance(obj, Mapping):
        return {key: normalize_numbers(value) for key, value in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [normalize_numbers(item) for item in obj]
    return obj


def hash_object(obj: Any) -> str:
    """SHA-256 of canonical JSON, truncated to 16 hex chars.

    Keys are sorted at every level and numbers are written as floats.
    """
    canonical = json.dumps(normalize_numbers(obj), sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:HASH_LENGTH]


def date_key(instant: Optional[datetime] = None, granularity: str = "daily") -> str:
    """Period key in local time.

    Args:
        instant: Moment to key (default: now, local time)
        granularity: "daily" -> YYYY-MM-DD, "hourly" -> YYYY-MM-DD-HH

    Raises:
        ConfigurationError: If granularity is unknown

    Example:
        >>> date_key(datetime(2026, 1, 10, 14, 5), "hourly")
        '2026-01-10-14'
    """
    if granularity not in GRANULARITIES:
        raise ConfigurationError(
            f"Unknown idempotency granularity '{granularity}' "
            f"(expected one of {', '.join(GRANULARITIES)})"
        )

    instant = instant or datetime.now()
    if instant.tzinfo is not None:
        instant = instant.astimezone()

    if granularity == "hourly":
        return instant.strftime("%Y-%m-%d-%H")
    return instant.strftime("%Y-%m-%d")


def policy_hash(policy: Union[Policy, Mapping[str, Any]]) -> str:
    """Hash of the allocation-relevant policy fields.

    Absent optional fields are hashed as null, so a document and its
    dataclass form hash the same only when they carry the same fields.
    """
    doc = policy.to_dict() if isinstance(policy, Policy) else policy
    subset: Dict[str, Any] = {name: doc.get(name) for name in HASHED_POLICY_FIELDS}
    return hash_object(subset)


def idempotency_key(policy: Union[Policy, Mapping[str, Any]], date_key: str) -> str:
    """Key for one policy in one period.

    Example:
        >>> idempotency_key(policy_doc, "2026-01-10")
        '2026-01-10-3f2a9c0d1b7e4a55'
    """
    return f"{date_key}-{policy_hash(policy)}"


def hash_plan(plan: Union[Plan, Mapping[str, Any]]) -> str:
    """Hash of plan status, legs and planned spend."""
    doc = plan.to_dict() if isinstance(plan, Plan) else plan
    return hash_object(
        {
            "status": doc["status"],
            "legs": [
                {
                    "symbol": leg["symbol"],
                    "notionalUsd": leg["notionalUsd"],
                    "targetWeight": leg["targetWeight"],
                }
                for leg in doc["legs"]
            ],
            "plannedSpendUsd": doc["plannedSpendUsd"],
        }
    )
