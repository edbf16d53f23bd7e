"""Run record data model.

A RunRecord is the persisted outcome of one non-dry-run invocation, keyed
by its idempotency key. Records are written as camelCase JSON documents.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

PENDING_STATUS = "PENDING"


@dataclass(frozen=True)
class RunRecord:
    """Persisted outcome of one invocation.

    Attributes:
        idempotency_key: "{date_key}-{policy_hash}"
        timestamp: ISO-8601 UTC time the run started
        date_key: Period key the run belongs to
        granularity: "daily" or "hourly"
        policy_name: Name of the policy that was run
        status: Plan status, or PENDING while the key is reserved
        plan_hash: Hash of the plan content (None while pending)
        dry_run: Whether the run was a dry run
        executed: Whether orders were placed
        plan: Summarized plan (status, spend, legs)
        policy_path: Policy file the run was loaded from, if any
        execution: {"ordersPlaced", "orderIds"} when orders were placed
        guardrails: {"safe", "blocking", "warnings"} when checks ran
    """

    idempotency_key: str
    timestamp: str
    date_key: str
    granularity: str
    policy_name: str
    status: str
    plan_hash: Optional[str] = None
    dry_run: bool = False
    executed: bool = False
    plan: Optional[Dict[str, Any]] = None
    policy_path: Optional[str] = None
    execution: Optional[Dict[str, Any]] = None
    guardrails: Optional[Dict[str, Any]] = None

    @property
    def is_pending(self) -> bool:
        return self.status == PENDING_STATUS

    @property
    def planned_spend_usd(self) -> float:
        if not self.plan:
            return 0.0
        return float(self.plan.get("plannedSpendUsd") or 0.0)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "idempotencyKey": self.idempotency_key,
            "timestamp": self.timestamp,
            "dateKey": self.date_key,
            "granularity": self.granularity,
            "policyPath": self.policy_path,
            "policyName": self.policy_name,
            "status": self.status,
            "planHash": self.plan_hash,
            "dryRun": self.dry_run,
            "executed": self.executed,
            "plan": self.plan,
        }
        if self.execution is not None:
            data["execution"] = self.execution
        if self.guardrails is not None:
            data["guardrails"] = self.guardrails
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RunRecord":
        return cls(
            idempotency_key=data["idempotencyKey"],
            timestamp=data["timestamp"],
            date_key=data.get("dateKey", ""),
            granularity=data.get("granularity", "daily"),
            policy_name=data.get("policyName", ""),
            status=data.get("status", ""),
            plan_hash=data.get("planHash"),
            dry_run=bool(data.get("dryRun", False)),
            executed=bool(data.get("executed", False)),
            plan=data.get("plan"),
            policy_path=data.get("policyPath"),
            execution=data.get("execution"),
            guardrails=data.get("guardrails"),
        )


def summarize_plan(plan_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Reduce a full plan document to what a run record keeps."""
    legs: List[Dict[str, Any]] = plan_dict.get("legs", [])
    return {
        "status": plan_dict.get("status"),
        "plannedSpendUsd": plan_dict.get("plannedSpendUsd", 0.0),
        "investableCashUsd": plan_dict.get("investableCashUsd", 0.0),
        "totalValueUsd": plan_dict.get("totalValueUsd", 0.0),
        "cashUsd": plan_dict.get("cashUsd", 0.0),
        "legs": [
            {
                "symbol": leg["symbol"],
                "notionalUsd": leg["notionalUsd"],
                "targetWeight": leg["targetWeight"],
                "currentWeight": leg.get("currentWeight"),
                "postBuyEstimatedWeight": leg.get("postBuyEstimatedWeight"),
                "reasonCodes": list(leg.get("reasonCodes", [])),
            }
            for leg in legs
        ],
        "notes": list(plan_dict.get("notes", [])),
    }

