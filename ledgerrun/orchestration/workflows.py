"""Rebalance Workflow - orchestrates one cash-flow rebalance run.

Workflow Chain:
Paper Check → Snapshot → Allocation → Guardrails → Order Execution → Run Record

``run_once`` computes and (optionally) executes a plan. ``run_with_idempotency``
wraps it with the exactly-once-per-period gate: in execute mode the
idempotency key is reserved atomically in the run store before the broker is
touched, and a second run for the same key is reported as SKIPPED.

Duplicate runs and guardrail blocks are outcomes, not exceptions.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

from ledgerrun.execution.base import Broker, ExecutionResult
from ledgerrun.monitoring.run_metrics import RunMetrics
from ledgerrun.orchestration.idempotency import date_key, hash_plan, idempotency_key
from ledgerrun.portfolio.allocation import allocate
from ledgerrun.portfolio.base import AllocationOptions, Plan, Policy, Snapshot
from ledgerrun.portfolio.validation import validate_policy
from ledgerrun.risk.guardrails import GuardrailChecker, GuardrailLimits, GuardrailReport
from ledgerrun.storage.base import PENDING_STATUS, RunRecord, summarize_plan
from ledgerrun.storage.run_store import RunStore
from ledgerrun.utils.config import Config
from ledgerrun.utils.exceptions import (
    OrderExecutionError,
    PaperTradingRequiredError,
    PersistenceFault,
)
from ledgerrun.utils.logging import get_logger, log_with_context
from ledgerrun.utils.logging_enhanced import RunEventLogger, RunEventType

logger = get_logger(__name__)


@dataclass(frozen=True)
class RunOptions:
    """Configuration for one rebalance run.

    Attributes:
        dry_run: Compute and report only; never place orders or save records
        execute: Place orders (only honored when dry_run is False)
        granularity: Idempotency period, "daily" or "hourly"
        skip_idempotency: Bypass the once-per-period gate
        enforce_guardrails: Blocking guardrail findings prevent execution
        allocation: Options passed to the allocation engine
        limits: Guardrail thresholds
    """

    dry_run: bool = True
    execute: bool = False
    granularity: str = "daily"
    skip_idempotency: bool = False
    enforce_guardrails: bool = True
    allocation: AllocationOptions = field(default_factory=AllocationOptions)
    limits: GuardrailLimits = field(default_factory=GuardrailLimits)

    @property
    def wants_execution(self) -> bool:
        return self.execute and not self.dry_run


class RunOutcomeKind(Enum):
    """What a run ended up doing."""

    PLANNED = "planned"  # Plan computed, no orders placed
    EXECUTED = "executed"  # Orders placed
    SKIPPED = "skipped"  # Idempotency key already used for this period
    BLOCKED = "blocked"  # Guardrails blocked execution


@dataclass
class RunOutcome:
    """Result of a rebalance run.

    Attributes:
        kind: Outcome kind
        plan: Computed plan (None when skipped)
        snapshot: Snapshot the plan was computed from
        guardrails: Guardrail report (None when skipped)
        execution: Orders placed, when executed
        idempotency_key: Key for this policy and period, when computed
        record: Saved run record, or the existing one when skipped
        reason: Why the run was skipped or blocked
        metrics: Timing summary for the run
    """

    kind: RunOutcomeKind
    plan: Optional[Plan] = None
    snapshot: Optional[Snapshot] = None
    guardrails: Optional[GuardrailReport] = None
    execution: Optional[ExecutionResult] = None
    idempotency_key: Optional[str] = None
    record: Optional[RunRecord] = None
    reason: Optional[str] = None
    metrics: Dict[str, Any] = field(default_factory=dict)

    @property
    def skipped(self) -> bool:
        return self.kind is RunOutcomeKind.SKIPPED

    @property
    def executed(self) -> bool:
        return self.kind is RunOutcomeKind.EXECUTED


def build_run_options(
    config: Optional[Config] = None,
    dry_run: bool = True,
    execute: bool = False,
    **overrides: Any,
) -> RunOptions:
    """Build RunOptions from the ``runs``, ``allocation`` and ``guardrails``
    config sections.

    Args:
        config: Loaded configuration (None for defaults)
        dry_run: Dry run flag
        execute: Execute flag
        **overrides: RunOptions fields that take precedence over config

    Example:
        >>> options = build_run_options(load_config(), dry_run=False, execute=True)
    """
    config = config or Config({})
    allocation = config.section("allocation")
    guardrails = config.section("guardrails")

    values: Dict[str, Any] = {
        "dry_run": dry_run,
        "execute": execute,
        "granularity": config.get("runs.granularity", "daily"),
        "skip_idempotency": False,
        "enforce_guardrails": bool(guardrails.get("enforce", True)),
        "allocation": AllocationOptions(
            round_to_usd=float(allocation.get("round_to_usd", 0.01)),
            noop_if_within_band=bool(allocation.get("noop_if_within_band", False)),
        ),
        "limits": GuardrailLimits.from_config(guardrails),
    }
    values.update({k: v for k, v in overrides.items() if v is not None})
    return RunOptions(**values)


class RebalanceWorkflow:
    """Orchestrates cash-flow rebalancing against a paper broker.

    Coordinates all layers for one run:
    - Execution Layer: fetch snapshot, place orders
    - Portfolio Layer: validate policy, compute plan
    - Risk Layer: guardrail checks
    - Storage Layer: idempotency reservation and run records

    Example:
        >>> workflow = RebalanceWorkflow(SimulatedBroker(), RunStore("./runs"),
        ...                              RunOptions(dry_run=False, execute=True))
        >>> outcome = workflow.run_with_idempotency(load_policy("policies/core.json"))
        >>> outcome.kind
        <RunOutcomeKind.EXECUTED: 'executed'>
    """

    def __init__(
        self,
        broker: Broker,
        run_store: RunStore,
        options: Optional[RunOptions] = None,
        event_logger: Optional[RunEventLogger] = None,
    ):
        """Initialize the workflow.

        Args:
            broker: Paper broker
            run_store: Run history store
            options: Run options (default: dry run)
            event_logger: Structured event sink (optional)
        """
        self.broker = broker
        self.run_store = run_store
        self.options = options or RunOptions()
        self.event_logger = event_logger
        self.guardrails = GuardrailChecker(run_store, self.options.limits)

    def _emit(self, event_type: RunEventType, **data: Any) -> None:
        if self.event_logger is not None:
            self.event_logger.log_event(event_type, **data)

    def run_once(
        self,
        policy_doc: Mapping[str, Any],
        policy_path: Optional[str] = None,
        now: Optional[datetime] = None,
        metrics: Optional[RunMetrics] = None,
    ) -> RunOutcome:
        """Compute a plan and, when requested and allowed, execute it.

        Args:
            policy_doc: Policy document (camelCase mapping)
            policy_path: Where the policy was loaded from, for logging
            now: Clock for guardrail checks (default: current UTC time)
            metrics: Metrics collector to record steps into

        Returns:
            RunOutcome of kind PLANNED, EXECUTED or BLOCKED

        Raises:
            PaperTradingRequiredError: If the broker is not in paper mode
            ValidationError: If the policy or snapshot is malformed
            MissingPriceError: If a target has no price in strict mode
            BrokerError: If the broker fails
        """
        if not self.broker.is_paper():
            raise PaperTradingRequiredError(
                "SAFETY: Only paper trading is supported. Broker must be in paper mode."
            )

        metrics = metrics or RunMetrics()
        validate_policy(policy_doc)
        policy = Policy.from_dict(policy_doc)
        logger.info(
            "Loaded policy: %s (%s)",
            policy.name,
            ", ".join(f"{t.symbol} {t.target_weight:.1%}" for t in policy.targets),
        )

        snapshot = self.broker.get_snapshot(policy.symbols)
        metrics.event(
            "snapshot_fetched",
            cashUsd=snapshot.cash_usd,
            positions=len(snapshot.positions),
        )

        plan = allocate(policy_doc, snapshot, self.options.allocation)
        metrics.event("plan_computed", status=plan.status.value, legs=len(plan.legs))
        log_with_context(
            logger,
            "info",
            "Plan computed",
            status=plan.status.value,
            legs=len(plan.legs),
            spend=plan.planned_spend_usd,
            investable=plan.investable_cash_usd,
        )
        self._emit(
            RunEventType.PLAN_COMPUTED,
            policy_name=policy.name,
            policy_path=policy_path,
            status=plan.status.value,
            planned_spend_usd=plan.planned_spend_usd,
            legs=len(plan.legs),
        )

        report = self.guardrails.check(plan, snapshot, policy, now=now)
        metrics.event("guardrails_checked", safe=report.safe)
        for warning in report.warnings:
            self._emit(RunEventType.GUARDRAIL_WARNING, warning=warning)
        if report.safe:
            self._emit(RunEventType.GUARDRAIL_PASSED, warnings=len(report.warnings))
        else:
            self._emit(RunEventType.GUARDRAIL_BLOCKED, blocking=report.blocking)

        outcome = RunOutcome(
            kind=RunOutcomeKind.PLANNED,
            plan=plan,
            snapshot=snapshot,
            guardrails=report,
        )

        if not (self.options.wants_execution and plan.is_actionable):
            if self.options.dry_run:
                logger.info("DRY RUN MODE - No orders executed")
            elif not self.options.execute:
                logger.info("Execute flag not set - No orders executed")
            else:
                logger.info("Status is %s - No orders to execute", plan.status.value)
            outcome.metrics = metrics.summary()
            return outcome

        if not report.safe:
            if self.options.enforce_guardrails:
                logger.warning("Execution blocked by guardrails")
                outcome.kind = RunOutcomeKind.BLOCKED
                outcome.reason = "; ".join(report.blocking)
                outcome.metrics = metrics.summary()
                return outcome
            logger.warning("Guardrails reported blocking findings; executing anyway")

        execution = self.broker.execute_orders(plan.legs)
        metrics.event("orders_executed", ordersPlaced=execution.orders_placed)
        logger.info("Execution complete: %d orders placed", execution.orders_placed)
        self._emit(RunEventType.ORDERS_EXECUTED, **execution.to_dict())

        outcome.kind = RunOutcomeKind.EXECUTED
        outcome.execution = execution
        outcome.metrics = metrics.summary()
        return outcome

    def run_with_idempotency(
        self,
        policy_doc: Mapping[str, Any],
        policy_path: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> RunOutcome:
        """Run at most once per policy and period.

        In execute mode (and unless ``skip_idempotency``) the key is reserved
        with an atomic create before the broker is called. If the key is
        already taken the outcome is SKIPPED with the existing record and the
        broker is never called. Non-dry runs end by saving the final record.

        Args:
            policy_doc: Policy document (camelCase mapping)
            policy_path: Where the policy was loaded from
            now: Clock for the period key and guardrails (default: now)

        Returns:
            RunOutcome

        Raises:
            PersistenceFault: If the run record cannot be saved
        """
        metrics = RunMetrics()
        opts = self.options
        now = now or datetime.now(timezone.utc)
        timestamp = now.astimezone(timezone.utc).isoformat()

        validate_policy(policy_doc)
        policy_name = policy_doc.get("name") or "Unnamed"
        period_key = date_key(now, opts.granularity)
        key = idempotency_key(policy_doc, period_key)

        logger.info("Idempotency key: %s (granularity: %s)", key, opts.granularity)
        self._emit(
            RunEventType.RUN_STARTED,
            idempotency_key=key,
            policy_name=policy_name,
            dry_run=opts.dry_run,
            execute=opts.execute,
        )

        reserved = False
        if not opts.skip_idempotency and opts.wants_execution:
            reservation = RunRecord(
                idempotency_key=key,
                timestamp=timestamp,
                date_key=period_key,
                granularity=opts.granularity,
                policy_name=policy_name,
                policy_path=policy_path,
                status=PENDING_STATUS,
            )
            if not self.run_store.create(reservation):
                existing = self.run_store.load(key)
                logger.warning(
                    "Idempotency check failed: run %s already exists (status: %s)",
                    key,
                    existing.status if existing else "unknown",
                )
                self._emit(RunEventType.RUN_SKIPPED, idempotency_key=key, reason="idempotency")
                metrics.event("run_skipped")
                return RunOutcome(
                    kind=RunOutcomeKind.SKIPPED,
                    idempotency_key=key,
                    record=existing,
                    reason="idempotency",
                    metrics=metrics.summary(),
                )
            reserved = True
            logger.info("No existing run found - proceeding")

        try:
            outcome = self.run_once(policy_doc, policy_path, now=now, metrics=metrics)
        except OrderExecutionError as e:
            self._emit(RunEventType.RUN_FAILED, idempotency_key=key, error=str(e))
            raise
        except Exception as e:
            if reserved:
                self.run_store.delete(key)
            self._emit(RunEventType.RUN_FAILED, idempotency_key=key, error=str(e))
            raise

        outcome.idempotency_key = key
        plan_doc = outcome.plan.to_dict()
        record = RunRecord(
            idempotency_key=key,
            timestamp=timestamp,
            date_key=period_key,
            granularity=opts.granularity,
            policy_name=policy_name,
            policy_path=policy_path,
            status=plan_doc["status"],
            plan_hash=hash_plan(plan_doc),
            dry_run=opts.dry_run,
            executed=outcome.executed,
            plan=summarize_plan(plan_doc),
            execution=outcome.execution.to_dict() if outcome.execution else None,
            guardrails=outcome.guardrails.to_dict() if outcome.guardrails else None,
        )
        outcome.record = record

        if not opts.dry_run:
            try:
                outcome.record, path = self._persist(record, reserved)
            except PersistenceFault as e:
                self._emit(RunEventType.PERSISTENCE_ERROR, idempotency_key=key, error=str(e))
                raise
            if path is not None:
                logger.info("Run record saved: %s", path)

        outcome.metrics = metrics.summary()
        self._emit(
            RunEventType.RUN_COMPLETED,
            idempotency_key=key,
            outcome=outcome.kind.value,
            duration_ms=outcome.metrics.get("durationMs"),
        )
        return outcome

    def _persist(
        self, record: RunRecord, reserved: bool
    ) -> Tuple[RunRecord, Optional[Path]]:
        """Write the final record without touching another run's record.

        A reserved key holds this run's PENDING record and is overwritten.
        Otherwise records are only created: when the key is taken, a plan-only
        record is dropped and an executed one goes to the next free
        ``<key>-r<N>`` so its spend still counts.

        Returns:
            Tuple of (record as stored, path or None when not written)
        """
        if reserved:
            return record, self.run_store.save(record)

        if self.run_store.create(record):
            return record, self.run_store.path_for(record.idempotency_key)

        if not record.executed:
            logger.info(
                "Run record %s already exists; plan-only run not recorded",
                record.idempotency_key,
            )
            return record, None

        attempt = 1
        while True:
            rerun = replace(record, idempotency_key=f"{record.idempotency_key}-r{attempt}")
            if self.run_store.create(rerun):
                return rerun, self.run_store.path_for(rerun.idempotency_key)
            attempt += 1
