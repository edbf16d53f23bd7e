"""Storage Layer - run history keyed by idempotency key."""

from ledgerrun.storage.base import PENDING_STATUS, RunRecord, summarize_plan
from ledgerrun.storage.run_store import RunStore

__all__ = [
    "RunStore",
    "RunRecord",
    "PENDING_STATUS",
    "summarize_plan",
]
