"""Monitoring for rebalance runs.

Components:
- RunMetrics: Timed event list for one run
"""

from ledgerrun.monitoring.run_metrics import RunEvent, RunMetrics, start_timer

__all__ = [
    "RunMetrics",
    "RunEvent",
    "start_timer",
]
