#!/usr/bin/env python3
"""LedgerRun CLI - cash-flow rebalancing for paper trading accounts.

Usage:
    python scripts/ledgerrun.py plan --policy policies/core.json
    python scripts/ledgerrun.py execute --policy policies/core.json --execute
    python scripts/ledgerrun.py execute --broker alpaca --execute --granularity hourly
    python scripts/ledgerrun.py snapshot VTI VXUS
    python scripts/ledgerrun.py runs --limit 10
    python scripts/ledgerrun.py schedule --policy policies/core.json --execute
"""

import json
import sys
import time
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from ledgerrun.execution.alpaca_broker import AlpacaBroker
from ledgerrun.execution.base import Broker
from ledgerrun.execution.simulated_broker import SimulatedBroker
from ledgerrun.orchestration.scheduler import RebalanceScheduler
from ledgerrun.orchestration.workflows import (
    RebalanceWorkflow,
    RunOutcome,
    RunOutcomeKind,
    build_run_options,
)
from ledgerrun.portfolio.base import Plan
from ledgerrun.portfolio.policy_loader import load_policy
from ledgerrun.risk.guardrails import GuardrailReport
from ledgerrun.storage.run_store import RunStore
from ledgerrun.utils.alpaca_client import AlpacaClient
from ledgerrun.utils.config import Config, load_config
from ledgerrun.utils.exceptions import LedgerRunError
from ledgerrun.utils.logging import setup_logging
from ledgerrun.utils.logging_enhanced import get_event_logger

console = Console()

EXIT_ERROR = 1
EXIT_BLOCKED = 2


def create_plan_table(plan: Plan) -> Table:
    """Create planned orders table."""
    table = Table(
        title=f"💰 Planned Orders ({len(plan.legs)})",
        show_header=True,
        header_style="bold magenta",
    )
    table.add_column("Symbol", style="cyan", no_wrap=True)
    table.add_column("Notional", justify="right", style="green")
    table.add_column("Current", justify="right")
    table.add_column("Target", justify="right")
    table.add_column("Post-buy", justify="right")
    table.add_column("Reasons")

    if not plan.legs:
        table.add_row("No orders", "", "", "", "", "")
        return table

    for leg in plan.legs:
        table.add_row(
            leg.symbol,
            f"${leg.notional_usd:,.2f}",
            f"{leg.current_weight:.2%}",
            f"{leg.target_weight:.2%}",
            f"{leg.post_buy_estimated_weight:.2%}",
            ", ".join(code.value for code in leg.reason_codes),
        )

    table.add_row("", "", "", "", "", "", end_section=True)
    table.add_row("TOTAL", f"${plan.planned_spend_usd:,.2f}", "", "", "", "", style="bold")
    return table


def create_summary_table(plan: Plan) -> Table:
    """Create plan summary table."""
    table = Table(title="📈 Plan Summary", show_header=True, header_style="bold magenta")
    table.add_column("Metric", style="cyan", no_wrap=True)
    table.add_column("Value", style="green")

    table.add_row("Plan Status", plan.status.value)
    table.add_row("Mode", plan.mode.value if plan.mode else "-")
    table.add_row("Total Value", f"${plan.total_value_usd:,.2f}")
    table.add_row("Cash", f"${plan.cash_usd:,.2f}")
    table.add_row("Investable Cash", f"${plan.investable_cash_usd:,.2f}")
    table.add_row("Planned Spend", f"${plan.planned_spend_usd:,.2f}")
    return table


def create_guardrail_table(report: GuardrailReport) -> Table:
    """Create guardrail findings table."""
    table = Table(title="🛡️ Guardrails", show_header=True, header_style="bold magenta")
    table.add_column("Severity", no_wrap=True)
    table.add_column("Finding")

    if not report.blocking and not report.warnings:
        table.add_row("[green]OK[/green]", "All checks passed")
    for finding in report.blocking:
        table.add_row("[red]BLOCKING[/red]", finding)
    for finding in report.warnings:
        table.add_row("[yellow]WARNING[/yellow]", finding)
    return table


def print_outcome(outcome: RunOutcome) -> None:
    """Render a run outcome to the console."""
    if outcome.idempotency_key:
        console.print(f"🔑 Idempotency Key: [bold]{outcome.idempotency_key}[/bold]")

    if outcome.kind is RunOutcomeKind.SKIPPED:
        record = outcome.record
        console.print("\n[bold yellow]⚠️  IDEMPOTENCY CHECK FAILED[/bold yellow]")
        console.print("   A run with this idempotency key already exists.")
        if record is not None:
            console.print(f"   Timestamp: {record.timestamp}")
            console.print(f"   Status: {record.status}")
            console.print(f"   Plan Hash: {record.plan_hash}")
            if record.execution:
                console.print(f"   Orders Placed: {record.execution.get('ordersPlaced')}")
        return

    plan = outcome.plan
    console.print(create_summary_table(plan))
    console.print(create_plan_table(plan))

    if plan.notes:
        console.print(
            Panel("\n".join(f"- {note}" for note in plan.notes), title="📝 Notes")
        )

    if outcome.guardrails is not None:
        console.print(create_guardrail_table(outcome.guardrails))

    if outcome.kind is RunOutcomeKind.EXECUTED:
        console.print(
            f"\n[bold green]✅ Execution complete: "
            f"{outcome.execution.orders_placed} orders placed[/bold green]"
        )
        for order_id in outcome.execution.order_ids:
            console.print(f"   - {order_id}")
    elif outcome.kind is RunOutcomeKind.BLOCKED:
        console.print("\n[bold red]⛔ Execution blocked by guardrails[/bold red]")
    elif outcome.record is not None and outcome.record.dry_run:
        console.print("\n[bold cyan]🔍 DRY RUN MODE - No orders executed[/bold cyan]")
    else:
        console.print(f"\n⏭️  Status is {plan.status.value} - No orders executed")


def build_broker(name: str, config: Optional[Config] = None) -> Broker:
    """Create the broker selected on the command line.

    Raises:
        PaperTradingRequiredError: If Alpaca credentials point at a live account
    """
    if name == "simulated":
        return SimulatedBroker()
    return AlpacaBroker(AlpacaClient.from_env(config))


def build_workflow(
    config: Config,
    broker_name: str,
    dry_run: bool,
    execute: bool,
    granularity: Optional[str],
    skip_idempotency: bool,
    allow_blocked: bool,
) -> RebalanceWorkflow:
    options = build_run_options(
        config,
        dry_run=dry_run,
        execute=execute,
        granularity=granularity,
        skip_idempotency=skip_idempotency or None,
        enforce_guardrails=False if allow_blocked else None,
    )
    event_logger = get_event_logger(config.get("logging.event_log_dir", "./logs"))
    return RebalanceWorkflow(
        broker=build_broker(broker_name, config),
        run_store=RunStore(config.get("runs.dir", "./runs")),
        options=options,
        event_logger=event_logger,
    )


def run_command(
    config: Config,
    policy: str,
    broker: str,
    dry_run: bool,
    execute: bool,
    granularity: Optional[str],
    skip_idempotency: bool,
    allow_blocked: bool,
) -> None:
    """Shared body of ``plan`` and ``execute``."""
    console.print("[bold]LedgerRun CLI[/bold]\n")
    try:
        policy_doc = load_policy(policy)
        console.print(f"📋 Loaded policy: {policy_doc.get('name') or 'Unnamed'}")
        console.print(
            "   Targets: "
            + ", ".join(
                f"{t['symbol']} ({t['targetWeight'] * 100:.1f}%)" for t in policy_doc["targets"]
            )
        )

        workflow = build_workflow(
            config, broker, dry_run, execute, granularity, skip_idempotency, allow_blocked
        )
        outcome = workflow.run_with_idempotency(policy_doc, policy_path=policy)
    except (LedgerRunError, FileNotFoundError, ValueError) as e:
        console.print(f"\n[bold red]❌ Error:[/bold red] {e}")
        sys.exit(EXIT_ERROR)

    print_outcome(outcome)
    if outcome.kind is RunOutcomeKind.BLOCKED:
        sys.exit(EXIT_BLOCKED)
    console.print("\n[bold green]✅ Run complete[/bold green]")


def run_options(func):
    """Options shared by ``plan`` and ``execute``."""
    decorators = [
        click.option(
            "--policy",
            "-p",
            default="policies/core.json",
            show_default=True,
            help="Path to policy JSON file",
        ),
        click.option(
            "--broker",
            type=click.Choice(["simulated", "alpaca"]),
            default="simulated",
            show_default=True,
            help="Broker to run against",
        ),
        click.option(
            "--granularity",
            type=click.Choice(["daily", "hourly"]),
            default=None,
            help="Idempotency period (default: from config)",
        ),
        click.option(
            "--skip-idempotency", is_flag=True, help="Allow more than one run per period"
        ),
        click.option(
            "--allow-blocked",
            is_flag=True,
            help="Execute even when guardrails report blocking findings",
        ),
    ]
    for decorator in reversed(decorators):
        func = decorator(func)
    return func


@click.group()
@click.option("--config", "config_path", default=None, help="Path to YAML config file")
@click.option("--log-level", default=None, help="Override logging level")
@click.pass_context
def cli(ctx, config_path: Optional[str], log_level: Optional[str]):
    """LedgerRun - cash-flow rebalancing for paper trading accounts.

    Computes a buy-only allocation plan from a policy and the current
    account, checks guardrails, and executes at most once per period.
    """
    try:
        config = load_config(config_path)
    except (LedgerRunError, FileNotFoundError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        sys.exit(EXIT_ERROR)

    setup_logging(
        level=log_level or config.get("logging.level", "INFO"),
        log_format=config.get("logging.format"),
        log_file=config.get("logging.file"),
    )
    ctx.obj = config


@cli.command()
@run_options
@click.pass_obj
def plan(config, policy, broker, granularity, skip_idempotency, allow_blocked):
    """Compute and show a plan without placing orders (dry run)."""
    run_command(
        config,
        policy,
        broker,
        dry_run=True,
        execute=False,
        granularity=granularity,
        skip_idempotency=skip_idempotency,
        allow_blocked=allow_blocked,
    )


@cli.command()
@run_options
@click.option("--execute", "do_execute", is_flag=True, help="Actually place paper orders")
@click.pass_obj
def execute(config, policy, broker, granularity, skip_idempotency, allow_blocked, do_execute):
    """Compute a plan and place paper orders (requires --execute)."""
    if not do_execute:
        console.print("[yellow]--execute not set; running as a dry run.[/yellow]")
    run_command(
        config,
        policy,
        broker,
        dry_run=not do_execute,
        execute=do_execute,
        granularity=granularity,
        skip_idempotency=skip_idempotency,
        allow_blocked=allow_blocked,
    )


@cli.command()
@click.argument("symbols", nargs=-1)
@click.option(
    "--broker",
    type=click.Choice(["simulated", "alpaca"]),
    default="alpaca",
    show_default=True,
    help="Broker to fetch from",
)
@click.pass_obj
def snapshot(config, symbols, broker):
    """Print the account snapshot as JSON."""
    try:
        snap = build_broker(broker, config).get_snapshot([s.upper() for s in symbols])
    except LedgerRunError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        sys.exit(EXIT_ERROR)

    console.print_json(json.dumps(snap.to_dict()))


@cli.command()
@click.option("--limit", "-l", default=20, show_default=True, help="Number of runs to show")
@click.pass_obj
def runs(config, limit: int):
    """Show run history, newest first."""
    store = RunStore(config.get("runs.dir", "./runs"))
    try:
        records = store.list()[:limit]
    except LedgerRunError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        sys.exit(EXIT_ERROR)

    table = Table(title="🗂️ Run History", show_header=True, header_style="bold magenta")
    table.add_column("Timestamp", style="dim", no_wrap=True)
    table.add_column("Idempotency Key", style="cyan")
    table.add_column("Policy")
    table.add_column("Status")
    table.add_column("Executed", justify="center")
    table.add_column("Spend", justify="right", style="green")
    table.add_column("Orders", justify="right")

    if not records:
        table.add_row("No runs", "", "", "", "", "", "")

    for record in records:
        orders = record.execution.get("ordersPlaced", 0) if record.execution else 0
        table.add_row(
            record.timestamp,
            record.idempotency_key,
            record.policy_name,
            record.status,
            "✅" if record.executed else "-",
            f"${record.planned_spend_usd:,.2f}",
            str(orders),
        )

    console.print(table)


@cli.command()
@run_options
@click.option("--execute", "do_execute", is_flag=True, help="Actually place paper orders")
@click.pass_obj
def schedule(config, policy, broker, granularity, skip_idempotency, allow_blocked, do_execute):
    """Run the rebalance on a schedule until interrupted."""
    try:
        policy_doc = load_policy(policy)
        workflow = build_workflow(
            config,
            broker,
            dry_run=not do_execute,
            execute=do_execute,
            granularity=granularity,
            skip_idempotency=skip_idempotency,
            allow_blocked=allow_blocked,
        )
    except (LedgerRunError, FileNotFoundError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        sys.exit(EXIT_ERROR)

    scheduler_config = config.section("scheduler")
    scheduler = RebalanceScheduler(scheduler_config)
    scheduler.register_rebalance(
        name=policy_doc.get("name") or "rebalance",
        func=lambda: workflow.run_with_idempotency(policy_doc, policy_path=policy),
        granularity=workflow.options.granularity,
        hour=scheduler_config.get("hour", 15),
        minute=scheduler_config.get("minute", 45),
    )
    scheduler.start()
    console.print("[bold green]Scheduler running. Press Ctrl+C to exit.[/bold green]")

    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopping scheduler...[/yellow]")
        scheduler.shutdown()


if __name__ == "__main__":
    cli()
