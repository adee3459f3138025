"""Main CLI entry point for the commissions command."""

import json
import sys
from datetime import datetime
from functools import wraps
from pathlib import Path
from typing import Optional, Tuple

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..audit.trail import Actor
from ..commissions.models import CommissionStatus
from ..core.errors import CommissionEngineError
from ..core.logs import configure_logging
from ..reporting.summary import ReportFilters
from ..rules.models import RuleType
from ..service import CommissionEngine
from ..storage.store import JsonFileStore

console = Console()

STATUS_COLORS = {
    "pending": "yellow",
    "approved": "blue",
    "paid": "green",
    "cancelled": "dim",
}


def get_engine(ctx: click.Context) -> CommissionEngine:
    """Build the engine on first use so --help works without touching storage."""
    if ctx.obj.get("engine") is None:
        data_dir = ctx.obj.get("data_dir")
        ctx.obj["engine"] = CommissionEngine(JsonFileStore(Path(data_dir)) if data_dir else None)
    return ctx.obj["engine"]


def get_actor(ctx: click.Context) -> Actor:
    return ctx.obj["actor"]


def handle_errors(func):
    """Print engine errors instead of a traceback and exit non-zero."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except CommissionEngineError as e:
            console.print(f"[red]{e.message}[/red]")
            for line in e.details.get("errors", []):
                console.print(f"  [red]- {line}[/red]")
            sys.exit(1)
    return wrapper


def _money(value: float) -> str:
    return f"${value:,.2f}"


def _status(status: CommissionStatus) -> str:
    color = STATUS_COLORS.get(status.value, "")
    return f"[{color}]{status.value}[/{color}]"


def _parse_tier(value: str) -> dict:
    """MIN:MAX:RATE[:flat]; leave MAX empty for an unbounded tier."""
    parts = value.split(":")
    if len(parts) not in (3, 4):
        raise click.BadParameter(f"Expected MIN:MAX:RATE[:flat], got '{value}'")
    try:
        return {
            "min_amount": float(parts[0]),
            "max_amount": float(parts[1]) if parts[1] else None,
            "rate": float(parts[2]),
            "is_percentage": not (len(parts) == 4 and parts[3].lower() == "flat"),
        }
    except ValueError:
        raise click.BadParameter(f"Tier values must be numbers: '{value}'")


def _describe_rule(rule) -> str:
    if rule.type == RuleType.FLAT:
        return _money(rule.amount)
    if rule.type == RuleType.PERCENTAGE:
        return f"{rule.rate:g}%"
    return ", ".join(
        f"{t.describe_range()} @ {f'{t.rate:g}%' if t.is_percentage else _money(t.rate)}"
        for t in rule.sorted_tiers()
    ) or "No tiers"


@click.group()
@click.version_option(version="1.0.0", prog_name="commissions")
@click.option("--data-dir", envvar="COMMISSION_DATA_PATH", help="Directory holding the JSON collections")
@click.option("--user", "user_id", default="cli-user", envvar="COMMISSION_USER_ID", help="Acting user id")
@click.option("--user-name", default="", envvar="COMMISSION_USER_NAME", help="Acting user display name")
@click.option("--log-level", default=None, help="Override COMMISSION_LOG_LEVEL")
@click.pass_context
def cli(ctx, data_dir: Optional[str], user_id: str, user_name: str, log_level: Optional[str]):
    """Commission Engine - rules, approvals and audit history for sales commissions.

    \b
    Quick Start:
      commissions rules list                            # Configured rules
      commissions calc RULE_ID 80000                    # Preview a commission
      commissions commission create -d deal-42 -r rep-1 -a 80000 --rule RULE_ID
      commissions commission approve COMMISSION_ID
      commissions audit show deal-42                    # History for a deal
    """
    configure_logging(log_level)
    ctx.ensure_object(dict)
    ctx.obj["data_dir"] = data_dir
    ctx.obj["actor"] = Actor(user_id, user_name or user_id)


# ============================================================================
# RULES
# ============================================================================

@cli.group()
def rules():
    """Manage commission rules."""
    pass


@rules.command("list")
@click.option("--active", is_flag=True, help="Only active rules")
@click.option("--category", help="Only rules that apply to this deal category")
@click.pass_context
@handle_errors
def rules_list(ctx, active: bool, category: Optional[str]):
    """List commission rules."""
    engine = get_engine(ctx)
    items = engine.rules.list(active_only=active, category=category)

    if not items:
        console.print("[yellow]No commission rules found.[/yellow]")
        return

    table = Table(title=f"Commission Rules ({len(items)})")
    table.add_column("ID", style="dim")
    table.add_column("Name", style="cyan")
    table.add_column("Type")
    table.add_column("Payout", max_width=60)
    table.add_column("Applies To")
    table.add_column("Active", justify="center")

    for rule in items:
        table.add_row(
            rule.id,
            rule.name,
            rule.type.value,
            _describe_rule(rule),
            ", ".join(rule.applies_to),
            "[green]yes[/green]" if rule.is_active else "[dim]no[/dim]"
        )

    console.print(table)


@rules.command("show")
@click.argument("rule_id")
@click.pass_context
@handle_errors
def rules_show(ctx, rule_id: str):
    """Show one rule."""
    rule = get_engine(ctx).rules.require(rule_id)
    console.print(Panel(
        f"[bold]Type:[/bold] {rule.type.value}\n"
        f"[bold]Payout:[/bold] {_describe_rule(rule)}\n"
        f"[bold]Applies to:[/bold] {', '.join(rule.applies_to)}\n"
        f"[bold]Active:[/bold] {'yes' if rule.is_active else 'no'}\n"
        f"[bold]Created:[/bold] {rule.created_at.strftime('%Y-%m-%d %H:%M')}\n"
        f"[bold]Updated:[/bold] {rule.updated_at.strftime('%Y-%m-%d %H:%M')}",
        title=f"{rule.name} ({rule.id})"
    ))


@rules.command("add")
@click.option("--name", "-n", required=True, help="Rule name")
@click.option("--type", "rule_type", type=click.Choice([t.value for t in RuleType]), required=True)
@click.option("--amount", type=float, default=0, help="Flat payout")
@click.option("--rate", type=float, default=0, help="Percent of the deal amount")
@click.option("--tier", "tiers", multiple=True, help="MIN:MAX:RATE[:flat], repeatable")
@click.option("--applies-to", multiple=True, help="Deal category, repeatable (default: all)")
@click.option("--inactive", is_flag=True, help="Create the rule switched off")
@click.pass_context
@handle_errors
def rules_add(ctx, name: str, rule_type: str, amount: float, rate: float,
              tiers: Tuple[str, ...], applies_to: Tuple[str, ...], inactive: bool):
    """Create a commission rule."""
    engine = get_engine(ctx)
    rule = engine.rules.create(
        name=name,
        rule_type=rule_type,
        amount=amount,
        rate=rate,
        tiers=[_parse_tier(t) for t in tiers],
        is_active=not inactive,
        applies_to=list(applies_to) or None,
        actor=get_actor(ctx)
    )
    console.print(f"[green]✓ Created rule {rule.id}: {rule.name}[/green]")


@rules.command("import")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
@handle_errors
def rules_import(ctx, path: str):
    """Import rules from a JSON file (a list, or {"rules": [...]})."""
    with open(path) as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as e:
            console.print(f"[red]Invalid JSON in {path}: {e}[/red]")
            sys.exit(1)

    created = get_engine(ctx).import_rules(data, get_actor(ctx))
    console.print(f"[green]✓ Imported {len(created)} rule(s)[/green]")


@rules.command("duplicate")
@click.argument("rule_id")
@click.pass_context
@handle_errors
def rules_duplicate(ctx, rule_id: str):
    """Copy a rule."""
    rule = get_engine(ctx).rules.duplicate(rule_id, get_actor(ctx))
    console.print(f"[green]✓ Created {rule.id}: {rule.name}[/green]")


@rules.command("delete")
@click.argument("rule_id")
@click.option("--yes", is_flag=True, help="Skip confirmation")
@click.pass_context
@handle_errors
def rules_delete(ctx, rule_id: str, yes: bool):
    """Delete a rule. Existing commissions are unaffected."""
    engine = get_engine(ctx)
    rule = engine.rules.require(rule_id)
    if not yes and not click.confirm(f"Delete rule '{rule.name}'?"):
        return
    engine.rules.delete(rule_id, get_actor(ctx))
    console.print(f"[green]✓ Deleted rule {rule_id}[/green]")


@rules.command("activate")
@click.argument("rule_id")
@click.pass_context
@handle_errors
def rules_activate(ctx, rule_id: str):
    """Switch a rule on."""
    get_engine(ctx).rules.activate(rule_id, get_actor(ctx))
    console.print(f"[green]✓ Rule {rule_id} active[/green]")


@rules.command("deactivate")
@click.argument("rule_id")
@click.pass_context
@handle_errors
def rules_deactivate(ctx, rule_id: str):
    """Switch a rule off."""
    get_engine(ctx).rules.deactivate(rule_id, get_actor(ctx))
    console.print(f"[green]✓ Rule {rule_id} inactive[/green]")


# ============================================================================
# CALCULATION
# ============================================================================

@cli.command()
@click.argument("rule_id")
@click.argument("deal_amount", type=float)
@click.pass_context
@handle_errors
def calc(ctx, rule_id: str, deal_amount: float):
    """Preview the commission RULE_ID pays on DEAL_AMOUNT."""
    result = get_engine(ctx).calculate(deal_amount, rule_id)
    console.print(Panel.fit(
        "\n".join(result.breakdown) + f"\n\n[bold]Commission:[/bold] [green]{_money(result.commission)}[/green]",
        title="Commission Calculation"
    ))


# ============================================================================
# COMMISSIONS
# ============================================================================

@cli.group()
def commission():
    """Record commissions and move them through approval."""
    pass


@commission.command("create")
@click.option("--deal", "-d", "deal_id", required=True, help="Deal id")
@click.option("--rep", "-r", "sales_person_id", required=True, help="Sales person id")
@click.option("--amount", "-a", "deal_amount", type=float, required=True, help="Deal amount")
@click.option("--rule", "rule_id", required=True, help="Rule to evaluate")
@click.option("--notes", default="", help="Notes")
@click.pass_context
@handle_errors
def commission_create(ctx, deal_id: str, sales_person_id: str, deal_amount: float, rule_id: str, notes: str):
    """Evaluate a rule for a deal and record a PENDING commission."""
    c = get_engine(ctx).create_commission(
        deal_id, sales_person_id, deal_amount, rule_id, get_actor(ctx), notes=notes
    )
    console.print(f"[green]✓ Commission {c.id}: {_money(c.amount)} ({c.status.value})[/green]")


@commission.command("list")
@click.option("--status", type=click.Choice([s.value for s in CommissionStatus]), help="Filter by status")
@click.option("--rep", "sales_person_id", help="Filter by sales person")
@click.option("--deal", "deal_id", help="Filter by deal")
@click.option("--limit", "-n", default=20, help="Number of commissions to show")
@click.pass_context
@handle_errors
def commission_list(ctx, status: Optional[str], sales_person_id: Optional[str],
                    deal_id: Optional[str], limit: int):
    """List commissions, newest first."""
    items = get_engine(ctx).commissions.list()
    if status:
        items = [c for c in items if c.status.value == status]
    if sales_person_id:
        items = [c for c in items if c.sales_person_id == sales_person_id]
    if deal_id:
        items = [c for c in items if c.deal_id == deal_id]

    if not items:
        console.print("[yellow]No commissions found matching criteria.[/yellow]")
        return

    table = Table(title=f"Commissions ({len(items)})")
    table.add_column("ID", style="dim")
    table.add_column("Deal", style="cyan")
    table.add_column("Sales Person")
    table.add_column("Type")
    table.add_column("Amount", justify="right", style="bold")
    table.add_column("Status", justify="center")
    table.add_column("Created")

    for c in items[:limit]:
        table.add_row(
            c.id,
            c.deal_id,
            c.sales_person_id,
            c.type.value,
            _money(c.amount),
            _status(c.status),
            c.created_at.strftime("%Y-%m-%d")
        )

    console.print(table)


@commission.command("show")
@click.argument("commission_id")
@click.pass_context
@handle_errors
def commission_show(ctx, commission_id: str):
    """Show a commission and its history."""
    engine = get_engine(ctx)
    c = engine.commissions.require(commission_id)

    info_lines = [
        f"[bold]Deal:[/bold] {c.deal_id}",
        f"[bold]Sales person:[/bold] {c.sales_person_id}",
        f"[bold]Rule:[/bold] {c.rule_id or 'manual'} ({c.type.value}, rate {c.rate:g})",
        f"[bold]Deal amount:[/bold] {_money(c.deal_amount)}" if c.deal_amount is not None else "",
        f"[bold]Amount:[/bold] {_money(c.amount)}",
        f"[bold]Status:[/bold] {_status(c.status)}",
        f"[bold]Paid:[/bold] {c.paid_date.strftime('%Y-%m-%d %H:%M')}" if c.paid_date else "",
        f"[bold]Created:[/bold] {c.created_at.strftime('%Y-%m-%d %H:%M')}",
    ]
    if c.breakdown:
        info_lines.extend(["", "[bold]Breakdown:[/bold]"] + [f"  {line}" for line in c.breakdown])
    if c.notes:
        info_lines.extend(["", "[bold]Notes:[/bold]", c.notes[:500]])

    console.print(Panel("\n".join(filter(None, info_lines)), title=f"Commission {c.id}"))
    _print_audit(engine.audit_for(c.id))


def _transition_command(name: str, help_text: str, method: str):
    @commission.command(name, help=help_text)
    @click.argument("commission_id")
    @click.option("--notes", default=None, help="Notes recorded on the audit entry")
    @click.pass_context
    @handle_errors
    def command(ctx, commission_id: str, notes: Optional[str]):
        c = getattr(get_engine(ctx), method)(commission_id, get_actor(ctx), notes)
        console.print(f"[green]✓ Commission {c.id} is now {c.status.value}[/green]")
    return command


commission_approve = _transition_command("approve", "Approve a pending commission.", "approve")
commission_reject = _transition_command("reject", "Reject (cancel) a pending commission.", "reject")
commission_pay = _transition_command("pay", "Mark an approved commission as paid.", "mark_paid")


# ============================================================================
# AUDIT
# ============================================================================

def _print_audit(entries):
    if not entries:
        console.print("[dim]No audit entries.[/dim]")
        return

    table = Table(title=f"Audit Trail ({len(entries)})")
    table.add_column("When")
    table.add_column("Entry", style="dim")
    table.add_column("Action", style="bold")
    table.add_column("User", style="cyan")
    table.add_column("Change")
    table.add_column("Notes", max_width=40)

    for entry in entries:
        change = ""
        if entry.status_change:
            change = f"{entry.status_change[0]} → {entry.status_change[1]}"
        table.add_row(
            entry.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            entry.id,
            entry.action.value,
            entry.user_name or entry.user_id,
            change,
            entry.notes
        )

    console.print(table)


@cli.group()
def audit():
    """Read and annotate the audit trail."""
    pass


@audit.command("show")
@click.argument("subject_id", required=False)
@click.option("--system", is_flag=True, help="Show rule configuration history")
@click.pass_context
@handle_errors
def audit_show(ctx, subject_id: Optional[str], system: bool):
    """History for a commission id or deal id, newest first."""
    engine = get_engine(ctx)
    if system or not subject_id:
        _print_audit(engine.system_audit())
    else:
        _print_audit(engine.audit_for(subject_id))


@audit.command("note")
@click.argument("subject_id")
@click.argument("note_text")
@click.pass_context
@handle_errors
def audit_note(ctx, subject_id: str, note_text: str):
    """Attach a note to a commission or deal."""
    entry = get_engine(ctx).add_note(subject_id, get_actor(ctx), note_text)
    console.print(f"[green]✓ Note {entry.id} added to {subject_id}[/green]")


@audit.command("edit")
@click.argument("entry_id")
@click.argument("note_text")
@click.pass_context
@handle_errors
def audit_edit(ctx, entry_id: str, note_text: str):
    """Replace the notes on an audit entry."""
    get_engine(ctx).edit_note(entry_id, get_actor(ctx), note_text)
    console.print(f"[green]✓ Notes updated on {entry_id}[/green]")


# ============================================================================
# REPORTS
# ============================================================================

@cli.command()
@click.option("--rep", "sales_person_id", help="Only this sales person")
@click.option("--status", type=click.Choice([s.value for s in CommissionStatus]))
@click.option("--type", "rule_type", type=click.Choice([t.value for t in RuleType]))
@click.option("--start", type=click.DateTime(formats=["%Y-%m-%d"]), help="Created on/after (YYYY-MM-DD)")
@click.option("--end", type=click.DateTime(formats=["%Y-%m-%d"]), help="Created on/before (YYYY-MM-DD)")
@click.option("--json", "as_json", is_flag=True, help="Print the summary as JSON")
@click.pass_context
@handle_errors
def report(ctx, sales_person_id: Optional[str], status: Optional[str], rule_type: Optional[str],
           start: Optional[datetime], end: Optional[datetime], as_json: bool):
    """Summarize commissions by status and type."""
    if end:
        end = end.replace(hour=23, minute=59, second=59)

    result = get_engine(ctx).report(ReportFilters(
        start_date=start,
        end_date=end,
        sales_person_id=sales_person_id,
        status=CommissionStatus(status) if status else None,
        type=RuleType(rule_type) if rule_type else None
    ))
    summary = result.summary

    if as_json:
        click.echo(json.dumps(summary.to_dict(), indent=2))
        return

    type_lines = "\n".join(
        f"  {name}: {_money(amount)}" for name, amount in summary.amount_by_type.items()
    )
    count_lines = "\n".join(
        f"  {name}: {count}" for name, count in summary.count_by_status.items()
    )

    console.print(Panel.fit(
        f"[bold]Commissions:[/bold] {summary.total_commissions}\n"
        f"[bold]Total:[/bold] {_money(summary.total_amount)}\n\n"
        f"[bold]By Status:[/bold]\n"
        f"  [yellow]Pending:[/yellow]   {_money(summary.pending_amount)}\n"
        f"  [blue]Approved:[/blue]  {_money(summary.approved_amount)}\n"
        f"  [green]Paid:[/green]      {_money(summary.paid_amount)}\n"
        f"  [dim]Cancelled: {_money(summary.cancelled_amount)}[/dim]\n\n"
        f"[bold]Counts:[/bold]\n{count_lines}\n\n"
        f"[bold]By Type:[/bold]\n{type_lines}",
        title="📊 Commission Report"
    ))


if __name__ == "__main__":
    cli()
