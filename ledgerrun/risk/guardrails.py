"""Pre-execution guardrails.

Guardrails run after a plan is computed and before any order is placed.
Findings are split into two lists:

- blocking: daily spend limit, post-buy position size
- warnings: policy safety advisories, unusually large orders, and an
  unreadable run history (the spend check fails open)

Core Philosophy: "Detect and report." Every check runs; none short-circuits.
Whether blocking findings stop execution is the caller's decision.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from ledgerrun.portfolio.base import Leg, Plan, PlanStatus, Policy, Snapshot
from ledgerrun.storage.run_store import RunStore
from ledgerrun.utils.exceptions import PersistenceFault
from ledgerrun.utils.logging import get_logger

logger = get_logger(__name__)

POLICY_MAX_INVEST_WARN_USD = 100000
POLICY_MIN_ORDER_WARN_USD = 1000
POLICY_CONCENTRATION_WARN = 0.8
POLICY_WEIGHT_SUM_TOLERANCE = 0.001


@dataclass(frozen=True)
class GuardrailLimits:
    """Thresholds for the guardrail checks.

    Attributes:
        max_position_pct: Max post-buy position value as a fraction of
            total portfolio value (blocking)
        daily_spend_limit: Max executed spend per UTC day in USD (blocking)
        large_order_threshold: Leg notional as a fraction of total value
            above which a warning is raised
    """

    max_position_pct: float = 0.5
    daily_spend_limit: float = 10000.0
    large_order_threshold: float = 0.1

    def __post_init__(self) -> None:
        if not 0 < self.max_position_pct <= 1:
            raise ValueError(
                f"max_position_pct must be in (0, 1], got {self.max_position_pct}"
            )
        if self.daily_spend_limit < 0:
            raise ValueError(
                f"daily_spend_limit must be >= 0, got {self.daily_spend_limit}"
            )
        if not 0 < self.large_order_threshold <= 1:
            raise ValueError(
                f"large_order_threshold must be in (0, 1], got {self.large_order_threshold}"
            )

    @classmethod
    def from_config(cls, config: Optional[Mapping[str, Any]] = None) -> "GuardrailLimits":
        """Build limits from a ``guardrails`` config section."""
        config = config or {}
        return cls(
            max_position_pct=float(config.get("max_position_pct", 0.5)),
            daily_spend_limit=float(config.get("daily_spend_limit", 10000.0)),
            large_order_threshold=float(config.get("large_order_threshold", 0.1)),
        )


@dataclass
class CheckResult:
    """Outcome of a single guardrail check.

    Attributes:
        safe: False only for a blocking finding
        reason: Blocking message when not safe
        warning: Advisory message, if any
        details: Numbers behind the decision
    """

    safe: bool
    reason: Optional[str] = None
    warning: Optional[str] = None
    details: Dict[str, float] = field(default_factory=dict)


@dataclass
class GuardrailReport:
    """Combined result of all guardrail checks."""

    safe: bool
    blocking: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "safe": self.safe,
            "blocking": list(self.blocking),
            "warnings": list(self.warnings),
        }


def check_policy_safety(policy: Policy) -> List[str]:
    """Advisory checks on policy settings. Never blocking."""
    warnings = []

    if (
        math.isfinite(policy.max_invest_amount_usd)
        and policy.max_invest_amount_usd > POLICY_MAX_INVEST_WARN_USD
    ):
        warnings.append(
            f"maxInvestAmountUsd is very high: ${policy.max_invest_amount_usd:.0f}"
        )

    total_weight = sum(t.target_weight for t in policy.targets)
    if abs(total_weight - 1.0) > POLICY_WEIGHT_SUM_TOLERANCE:
        warnings.append(f"Target weights sum to {total_weight:.3f}, should be 1.0")

    max_weight = max(t.target_weight for t in policy.targets)
    if max_weight > POLICY_CONCENTRATION_WARN:
        warnings.append(
            f"Concentrated position detected: {max_weight * 100:.1f}% in single symbol"
        )

    if policy.min_order_usd > POLICY_MIN_ORDER_WARN_USD:
        warnings.append(
            f"minOrderUsd is very high: ${policy.min_order_usd:.0f} "
            "(may skip small rebalances)"
        )

    return warnings


def check_daily_spend_limit(
    planned_spend_usd: float,
    run_store: RunStore,
    daily_spend_limit: float = 10000.0,
    now: Optional[datetime] = None,
) -> CheckResult:
    """Compare today's executed spend plus this plan against the limit.

    "Today" is the UTC date of ``now``. An unreadable run history does not
    block: the result is safe with a warning.
    """
    now = now or datetime.now(timezone.utc)
    today = now.astimezone(timezone.utc).date().isoformat()

    try:
        runs = run_store.list()
    except PersistenceFault as e:
        logger.warning("Could not read run history for daily spend check: %s", e)
        return CheckResult(safe=True, warning="Could not check daily spending history")

    todays_spending = sum(
        run.planned_spend_usd
        for run in runs
        if run.executed and run.plan and run.timestamp.split("T")[0] == today
    )
    total_spending = todays_spending + planned_spend_usd
    details = {
        "todays_spending": todays_spending,
        "planned_spend": planned_spend_usd,
        "total_spending": total_spending,
        "daily_spend_limit": daily_spend_limit,
    }

    if total_spending > daily_spend_limit:
        return CheckResult(
            safe=False,
            reason=(
                f"Daily spend limit exceeded: ${total_spending:.2f} "
                f"(limit: ${daily_spend_limit:.2f})"
            ),
            details=details,
        )

    details["remaining_limit"] = daily_spend_limit - total_spending
    return CheckResult(safe=True, details=details)


def check_position_size_limit(
    leg: Leg, snapshot: Snapshot, max_position_pct: float = 0.5
) -> CheckResult:
    """Block a leg whose post-buy position would exceed the size limit.

    The current position is the sum of every entry for the leg's symbol.
    """
    total_value = snapshot.total_value_usd
    if total_value <= 0:
        return CheckResult(safe=True)

    current_value = snapshot.value_by_symbol.get(leg.symbol, 0.0)
    post_buy_pct = (current_value + leg.notional_usd) / total_value
    details = {
        "current_pct": current_value / total_value,
        "post_buy_pct": post_buy_pct,
        "max_pct": max_position_pct,
    }

    if post_buy_pct > max_position_pct:
        return CheckResult(
            safe=False,
            reason=(
                f"Position {leg.symbol} would be {post_buy_pct * 100:.1f}% of portfolio "
                f"(max: {max_position_pct * 100:.1f}%)"
            ),
            details=details,
        )

    return CheckResult(safe=True, details=details)


def check_large_order(
    leg: Leg, snapshot: Snapshot, large_order_threshold: float = 0.1
) -> CheckResult:
    """Warn when a leg is large relative to the portfolio. Never blocking."""
    total_value = snapshot.total_value_usd
    if total_value <= 0:
        return CheckResult(safe=True)

    order_pct = leg.notional_usd / total_value
    if order_pct > large_order_threshold:
        return CheckResult(
            safe=True,
            warning=(
                f"Large order detected: {leg.symbol} ${leg.notional_usd:.2f} "
                f"({order_pct * 100:.1f}% of portfolio)"
            ),
            details={"order_pct": order_pct, "threshold": large_order_threshold},
        )

    return CheckResult(safe=True)


class GuardrailChecker:
    """Run all guardrail checks against a plan.

    Example:
        >>> checker = GuardrailChecker(RunStore("./runs"), GuardrailLimits())
        >>> report = checker.check(plan, snapshot, policy)
        >>> if not report.safe:
        ...     print(report.blocking)
    """

    def __init__(self, run_store: RunStore, limits: Optional[GuardrailLimits] = None):
        self.run_store = run_store
        self.limits = limits or GuardrailLimits()

    def check(
        self,
        plan: Plan,
        snapshot: Snapshot,
        policy: Policy,
        now: Optional[datetime] = None,
    ) -> GuardrailReport:
        """Evaluate every check and collect findings.

        Policy safety warnings are always reported. Spend, position and
        order checks only run for a PLANNED plan with at least one leg.

        Args:
            plan: Computed plan
            snapshot: Snapshot the plan was computed from
            policy: Policy the plan was computed for
            now: Clock for the daily spend window (default: current UTC time)

        Returns:
            GuardrailReport; ``safe`` is True iff ``blocking`` is empty
        """
        blocking: List[str] = []
        warnings: List[str] = check_policy_safety(policy)

        if plan.status is not PlanStatus.PLANNED or not plan.legs:
            return GuardrailReport(safe=True, blocking=blocking, warnings=warnings)

        spend = check_daily_spend_limit(
            plan.planned_spend_usd,
            self.run_store,
            self.limits.daily_spend_limit,
            now=now,
        )
        if not spend.safe:
            blocking.append(spend.reason)
        elif spend.warning:
            warnings.append(spend.warning)

        for leg in plan.legs:
            position = check_position_size_limit(
                leg, snapshot, self.limits.max_position_pct
            )
            if not position.safe:
                blocking.append(position.reason)

            large = check_large_order(leg, snapshot, self.limits.large_order_threshold)
            if large.warning:
                warnings.append(large.warning)

        report = GuardrailReport(safe=not blocking, blocking=blocking, warnings=warnings)
        if report.safe:
            logger.info("Guardrails passed (%d warning(s))", len(warnings))
        else:
            logger.warning("Guardrails blocked: %s", "; ".join(blocking))
        return report
