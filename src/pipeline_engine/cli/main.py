"""Main CLI entry point for the pipeline command."""

import json
import logging
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from ..config import settings
from ..exceptions import PipelineError
from ..reporting import commission_report, pipeline_stats
from ..storage import TransactionStore
from ..transactions import MilestoneStatus, Stage, from_record
from ..transactions.milestones import upcoming_milestones

console = Console()

STAGE_COLORS = {
    Stage.PROSPECTING: "dim",
    Stage.QUALIFICATION: "blue",
    Stage.PROPOSAL: "yellow",
    Stage.NEGOTIATION: "magenta",
    Stage.CLOSED_WON: "green",
    Stage.CLOSED_LOST: "red",
}

MILESTONE_COLORS = {
    MilestoneStatus.COMPLETED: "green",
    MilestoneStatus.OVERDUE: "red",
    MilestoneStatus.DUE_SOON: "yellow",
    MilestoneStatus.ON_TRACK: "blue",
}


def get_store(data_path: Optional[str] = None) -> TransactionStore:
    """Get transaction store instance."""
    return TransactionStore(Path(data_path) if data_path else settings.data_path)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _today() -> date:
    return _now().date()


def _fail(message: str):
    console.print(f"[red]Error:[/red] {escape(message)}")
    raise SystemExit(1)


def _money(value) -> str:
    return f"${value:,.2f}"


def _stage(stage: Stage) -> str:
    color = STAGE_COLORS[stage]
    return f"[{color}]{stage.value}[/{color}]"


@click.group()
@click.version_option(version="1.0.0", prog_name="pipeline")
def cli():
    """Transaction pipeline engine for real estate deals.

    \b
    Quick Start:
      pipeline import deals.json           # Load transaction records
      pipeline list                        # View the pipeline
      pipeline advance <id>                # Move a deal one stage forward
      pipeline complete <id> <milestone>   # Check off a milestone
      pipeline stats                       # Pipeline dashboard
    """
    logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO))


@cli.command("import")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--data", "data_path", help="Custom transaction file")
def import_records(path: str, data_path: Optional[str]):
    """Import raw transaction records from a JSON file."""
    try:
        with open(path, 'r') as f:
            payload = json.load(f)
    except json.JSONDecodeError as e:
        _fail(f"{path} is not valid JSON: {e}")

    records = payload.get("transactions", []) if isinstance(payload, dict) else payload
    if not isinstance(records, list):
        _fail(f"{path} must hold a list of transaction records")

    store = get_store(data_path)

    imported = 0
    errors = []
    for index, record in enumerate(records):
        if not isinstance(record, dict):
            errors.append(f"record {index}: expected an object, got {type(record).__name__}")
            continue
        try:
            store.add(from_record(record))
            imported += 1
        except PipelineError as e:
            errors.append(f"{record.get('id', '?')}: {e}")

    console.print(f"[green]✓ Imported {imported} transaction(s)[/green]")
    for error in errors:
        console.print(f"[red]Skipped[/red] {escape(error)}")
    if errors:
        raise SystemExit(1)


@cli.command("list")
@click.option("--stage", "-s", type=click.Choice([s.value for s in Stage]), help="Filter by stage")
@click.option("--user", "-u", help="Filter by assigned user id")
@click.option("--active", is_flag=True, help="Only open deals")
@click.option("--data", "data_path", help="Custom transaction file")
def list_transactions(stage: Optional[str], user: Optional[str], active: bool, data_path: Optional[str]):
    """Display transactions in the pipeline."""
    store = get_store(data_path)
    today = _today()

    transactions = store.list(lambda t: (
        (not stage or t.stage.value == stage)
        and (not user or t.assigned_user_id == user)
        and (not active or t.is_active())
    ))

    if not transactions:
        console.print("[yellow]No transactions found matching criteria.[/yellow]")
        return

    table = Table(title=f"Transactions ({len(transactions)})")
    table.add_column("ID", style="dim")
    table.add_column("Name", style="cyan", max_width=30)
    table.add_column("Stage")
    table.add_column("Amount", justify="right")
    table.add_column("Prob.", justify="right")
    table.add_column("Commission", justify="right")
    table.add_column("Milestones", justify="center")
    table.add_column("Close", justify="right")

    for t in transactions:
        progress = t.milestone_progress()
        days = t.days_until_close(today)
        if t.is_overdue(today):
            close = f"[red]{abs(days)}d overdue[/red]"
        elif t.is_active():
            close = f"{days}d"
        else:
            close = "[dim]closed[/dim]"

        table.add_row(
            t.id,
            t.name,
            _stage(t.stage),
            _money(t.amount),
            f"{t.probability}%",
            _money(t.commission.amount),
            f"{progress.completed}/{progress.total}",
            close,
        )

    console.print(table)


@cli.command()
@click.argument("transaction_id")
@click.option("--data", "data_path", help="Custom transaction file")
def show(transaction_id: str, data_path: Optional[str]):
    """Show a transaction with its milestones."""
    store = get_store(data_path)
    try:
        t = store.get(transaction_id)
    except PipelineError as e:
        _fail(str(e))

    today = _today()
    progress = t.milestone_progress()
    next_milestone = t.next_milestone()

    console.print(Panel.fit(
        f"[bold]{t.name}[/bold] ({t.transaction_type.value})\n\n"
        f"Stage:       {_stage(t.stage)}  {t.probability}% probability\n"
        f"Amount:      {_money(t.amount)}\n"
        f"Commission:  {_money(t.commission.amount)} ({t.commission.rate}%, "
        f"{'paid' if t.commission.paid else t.commission_status().value})\n"
        f"Close date:  {t.expected_close_date.isoformat()}\n"
        f"Agent:       {t.assigned_user_name or '-'}\n"
        f"Progress:    {progress.completed}/{progress.total} ({progress.percent}%)\n"
        f"Next:        {next_milestone.name if next_milestone else '-'}",
        title=f"Transaction {t.id}"
    ))

    if not t.milestones:
        return

    table = Table(title="Milestones")
    table.add_column("ID", style="dim")
    table.add_column("Milestone", style="cyan")
    table.add_column("Due", justify="right")
    table.add_column("Status")
    table.add_column("Assigned To")

    for m in t.milestones:
        status = m.status(today, settings.due_soon_days)
        color = MILESTONE_COLORS[status]
        table.add_row(
            m.id,
            m.name,
            m.due_date.isoformat(),
            f"[{color}]{status.value}[/{color}]",
            m.assigned_to,
        )

    console.print(table)


@cli.command()
@click.argument("transaction_id")
@click.option("--data", "data_path", help="Custom transaction file")
def advance(transaction_id: str, data_path: Optional[str]):
    """Move a transaction to the next stage."""
    store = get_store(data_path)
    try:
        t = store.advance(transaction_id, _now())
    except PipelineError as e:
        _fail(str(e))

    console.print(f"[green]✓ {t.name} moved to {t.stage.value}[/green] ({t.probability}% probability)")


@cli.command()
@click.argument("transaction_id")
@click.argument("stage")
@click.option("--probability", "-p", type=click.IntRange(0, 100), help="Override the stage probability")
@click.option("--data", "data_path", help="Custom transaction file")
def move(transaction_id: str, stage: str, probability: Optional[int], data_path: Optional[str]):
    """Move a transaction to any stage, e.g. "Closed Lost"."""
    store = get_store(data_path)
    try:
        t = store.transition(transaction_id, stage, _now(), probability=probability)
    except PipelineError as e:
        _fail(str(e))

    console.print(f"[green]✓ {t.name} moved to {t.stage.value}[/green] ({t.probability}% probability)")


@cli.command()
@click.argument("transaction_id")
@click.argument("milestone_id")
@click.option("--data", "data_path", help="Custom transaction file")
def complete(transaction_id: str, milestone_id: str, data_path: Optional[str]):
    """Mark a milestone complete."""
    store = get_store(data_path)
    try:
        t = store.complete_milestone(transaction_id, milestone_id, _now())
    except PipelineError as e:
        _fail(str(e))

    progress = t.milestone_progress()
    console.print(
        f"[green]✓ Milestone {milestone_id} completed[/green] "
        f"({progress.completed}/{progress.total} done)"
    )


@cli.command("set-rate")
@click.argument("transaction_id")
@click.argument("rate", type=float)
@click.option("--data", "data_path", help="Custom transaction file")
def set_rate(transaction_id: str, rate: float, data_path: Optional[str]):
    """Change a transaction's commission rate (percent)."""
    store = get_store(data_path)
    try:
        t = store.update_commission_rate(transaction_id, rate, _now())
    except PipelineError as e:
        _fail(str(e))

    console.print(f"[green]✓ Commission now {_money(t.commission.amount)} ({t.commission.rate}%)[/green]")


@cli.command("commission-status")
@click.argument("transaction_id")
@click.argument("status", type=click.Choice(["paid", "pending"]))
@click.option("--data", "data_path", help="Custom transaction file")
def set_commission_status(transaction_id: str, status: str, data_path: Optional[str]):
    """Mark a closed deal's commission paid, or back to pending."""
    store = get_store(data_path)
    try:
        t = store.set_commission_paid(transaction_id, status == "paid", _now())
    except PipelineError as e:
        _fail(str(e))

    console.print(f"[green]✓ Commission of {_money(t.commission.amount)} marked {status}[/green]")


@cli.command()
@click.argument("transaction_ids", nargs=-1, required=True)
@click.option("--user", "-u", "user_id", required=True, help="Assigned user id")
@click.option("--name", "-n", "user_name", default="", help="Assigned user display name")
@click.option("--data", "data_path", help="Custom transaction file")
def assign(transaction_ids, user_id: str, user_name: str, data_path: Optional[str]):
    """Assign one or more transactions to an agent."""
    store = get_store(data_path)
    result = store.bulk_reassign(transaction_ids, user_id, user_name, _now())

    console.print(f"[green]✓ Assigned {len(result.updated)} transaction(s) to {escape(user_name or user_id)}[/green]")
    for transaction_id, error in result.failed.items():
        console.print(f"[red]Skipped[/red] {escape(transaction_id)}: {escape(str(error))}")
    if result.failed:
        raise SystemExit(1)


@cli.command()
@click.option("--user", "-u", help="Only deals assigned to this user id")
@click.option("--json", "as_json", is_flag=True, help="Print raw JSON")
@click.option("--data", "data_path", help="Custom transaction file")
def stats(user: Optional[str], as_json: bool, data_path: Optional[str]):
    """Show pipeline statistics."""
    store = get_store(data_path)
    transactions = store.list(lambda t: not user or t.assigned_user_id == user)
    summary = pipeline_stats(transactions, _today())

    if as_json:
        click.echo(json.dumps(summary.to_dict(), indent=2, default=str))
        return

    stage_lines = "\n".join(f"  {name:<14} {count}" for name, count in summary.by_stage.items())
    console.print(Panel.fit(
        f"[bold]Transactions:[/bold]      {summary.total_transactions} "
        f"({summary.active_transactions} active)\n"
        f"[bold]Active volume:[/bold]     {_money(summary.total_volume)}\n"
        f"[bold]Weighted volume:[/bold]   {_money(summary.weighted_volume)}\n"
        f"[bold]Closed this month:[/bold] {summary.closed_this_month}\n"
        f"[bold]Conversion rate:[/bold]   {summary.conversion_rate}%\n"
        f"[bold]Avg close time:[/bold]    {summary.average_close_time} days\n"
        f"[bold]Commission earned:[/bold] [green]{_money(summary.commission_earned)}[/green]\n"
        f"[bold]Commission paid:[/bold]   [green]{_money(summary.commission_paid)}[/green]\n"
        f"[bold]Commission pending:[/bold] [yellow]{_money(summary.pending_commission)}[/yellow]\n\n"
        f"[bold]By stage:[/bold]\n{stage_lines}",
        title="Pipeline"
    ))


@cli.command()
@click.option("--data", "data_path", help="Custom transaction file")
def commissions(data_path: Optional[str]):
    """Show earned and pending commission by agent."""
    store = get_store(data_path)
    reports = commission_report(store.list())

    if not reports:
        console.print("[yellow]No transactions found.[/yellow]")
        return

    table = Table(title="Commission by Agent")
    table.add_column("Agent", style="cyan")
    table.add_column("Deals", justify="right")
    table.add_column("Paid", justify="right", style="green")
    table.add_column("Unpaid", justify="right", style="cyan")
    table.add_column("Pending", justify="right", style="yellow")
    table.add_column("Total", justify="right", style="bold")

    for r in reports:
        table.add_row(
            r.agent_name or r.agent_id or "Unassigned",
            str(r.transaction_count),
            _money(r.paid_commission),
            _money(r.unpaid_commission),
            _money(r.pending_commission),
            _money(r.total_commission),
        )

    console.print(table)


@cli.command()
@click.option("--days", "-d", type=int, help="Look-ahead window in days")
@click.option("--data", "data_path", help="Custom transaction file")
def upcoming(days: Optional[int], data_path: Optional[str]):
    """List milestones due soon across active deals."""
    store = get_store(data_path)
    window = days if days is not None else settings.upcoming_days
    items = upcoming_milestones(store.list(), _today(), days=window)

    if not items:
        console.print(f"[green]Nothing due in the next {window} days.[/green]")
        return

    table = Table(title=f"Milestones due in the next {window} days")
    table.add_column("Due", justify="right")
    table.add_column("In", justify="right")
    table.add_column("Transaction", style="cyan")
    table.add_column("Milestone")
    table.add_column("Assigned To")

    for item in items:
        table.add_row(
            item["due_date"].isoformat(),
            f"{item['days_until']}d",
            item["transaction_name"],
            item["name"],
            item["assigned_to"],
        )

    console.print(table)


if __name__ == "__main__":
    cli()
