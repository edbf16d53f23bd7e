"""Orchestration Layer - Coordinates all layers for rebalance runs.

This module provides the rebalance workflow, its idempotency keys and the
scheduler that re-invokes it once per period.
"""

from ledgerrun.orchestration.idempotency import (
    date_key,
    hash_plan,
    idempotency_key,
    policy_hash,
)
from ledgerrun.orchestration.scheduler import RebalanceScheduler
from ledgerrun.orchestration.workflows import (
    RebalanceWorkflow,
    RunOptions,
    RunOutcome,
    RunOutcomeKind,
    build_run_options,
)

__all__ = [
    # Workflow
    "RebalanceWorkflow",
    "RunOptions",
    "RunOutcome",
    "RunOutcomeKind",
    "build_run_options",
    # Idempotency
    "date_key",
    "idempotency_key",
    "policy_hash",
    "hash_plan",
    # Scheduling
    "RebalanceScheduler",
]
