"""Risk Management Layer.

Pre-execution guardrails that decide whether a computed plan may be
executed.

Components:
- GuardrailChecker: Runs every check and collects findings
- GuardrailLimits: Position size, daily spend and large order thresholds
- GuardrailReport: safe / blocking / warnings
"""

from ledgerrun.risk.guardrails import (
    CheckResult,
    GuardrailChecker,
    GuardrailLimits,
    GuardrailReport,
    check_daily_spend_limit,
    check_large_order,
    check_policy_safety,
    check_position_size_limit,
)

__all__ = [
    "GuardrailChecker",
    "GuardrailLimits",
    "GuardrailReport",
    "CheckResult",
    "check_policy_safety",
    "check_daily_spend_limit",
    "check_position_size_limit",
    "check_large_order",
]
