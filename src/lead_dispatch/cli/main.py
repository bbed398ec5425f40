"""Main CLI entry point for the lead-dispatch command."""

import json
import logging
from datetime import datetime
from typing import Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm
from rich.table import Table

from .. import __version__
from ..availability.prober import ProbeError
from ..core.config import DispatchConfigManager, settings
from ..orchestrator.lead_to_call import LeadOrchestrator, build_orchestrator
from ..routing.ledger import DistributionLedger
from ..tracking.event_log import EventLog

console = Console()

STATUS_COLORS = {
    "CALL_PLACED": "green",
    "DATA_ERROR": "red",
    "CONTACT_CREATION_FAILED": "red",
    "NO_AGENTS_AVAILABLE": "yellow",
    "ALL_AGENTS_EXHAUSTED": "yellow",
    "REMOTE_TRANSPORT_ERROR": "red",
    "LEDGER_CONTENTION": "yellow",
}


def get_orchestrator() -> LeadOrchestrator:
    """Build the CloudTalk-backed pipeline."""
    return build_orchestrator()


def get_ledger() -> DistributionLedger:
    config = DispatchConfigManager().config
    return DistributionLedger(
        history_cap=config.history_cap,
        max_retries=config.ledger_max_retries,
        retry_backoff=config.ledger_retry_backoff,
    )


def get_event_log() -> EventLog:
    return EventLog()


def _parse_day(value: Optional[str], name: str):
    if not value:
        return None
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        raise click.BadParameter(f"expected YYYY-MM-DD, got {value!r}", param_hint=name)


def _fail(message: str):
    console.print(f"[red]Error:[/red] {message}")
    raise SystemExit(1)


def _orchestrator_or_exit() -> LeadOrchestrator:
    try:
        return get_orchestrator()
    except RuntimeError as e:
        _fail(str(e))


def _colored(status: Optional[str]) -> str:
    if not status:
        return "[dim]-[/dim]"
    color = STATUS_COLORS.get(status, "white")
    return f"[{color}]{status}[/{color}]"


@click.group()
@click.version_option(version=__version__, prog_name="lead-dispatch")
def cli():
    """Lead Dispatch - connect inbound leads to available CloudTalk agents.

    \b
    Quick Start:
      lead-dispatch agents                              # Who can take a call
      lead-dispatch dispatch --phone +15551234567       # Call a lead now
      lead-dispatch recent                              # Latest dispatches
      lead-dispatch stats                               # Cursor + today's numbers
    """
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# ============================================================================
# DISPATCH COMMANDS
# ============================================================================

@cli.command()
@click.option("--fresh", is_flag=True, help="Bypass the availability cache")
def agents(fresh: bool):
    """Show every agent and whether they can take a call right now."""
    orchestrator = _orchestrator_or_exit()
    try:
        report = orchestrator.prober.status_report(fresh=fresh)
    except ProbeError as e:
        _fail(f"Availability check failed: {e}")

    table = Table(title=f"Agents ({report['available_agents']}/{report['total_agents']} available)")
    table.add_column("ID", style="dim")
    table.add_column("Name", style="cyan")
    table.add_column("Status")
    table.add_column("Dispatch", justify="center")
    table.add_column("Active Call")

    for agent in report["agents"]:
        call = ""
        if agent.active_call:
            call = f"{agent.active_call.external_number} ({agent.active_call.duration_seconds()}s)"
        table.add_row(
            agent.id,
            agent.name,
            agent.status_tag,
            "[green]yes[/green]" if agent.available_for_dispatch else "[dim]no[/dim]",
            call,
        )

    console.print(table)

    next_agent = orchestrator.dispatcher.preview(report["agents"])
    if next_agent:
        console.print(f"Next lead goes to: [bold cyan]{next_agent.name}[/bold cyan]")
    else:
        console.print("[yellow]No agents available for dispatch[/yellow]")


@cli.command()
@click.option("--phone", "-p", required=True, help="Lead phone number")
@click.option("--name", "-n", default="", help="Lead name")
@click.option("--email", "-e", default="", help="Lead email")
@click.option("--json", "as_json", is_flag=True, help="Print the process record as JSON")
def dispatch(phone: str, name: str, email: str, as_json: bool):
    """Run one lead through the pipeline and place the call.

    \b
    Examples:
      lead-dispatch dispatch --phone "+1 (555) 123-4567" --name "Jane Doe"
    """
    orchestrator = _orchestrator_or_exit()
    process = orchestrator.process({"phone": phone, "name": name, "email": email})

    if as_json:
        click.echo(json.dumps(process.to_dict(), indent=2))
    else:
        lines = [
            f"Process: [dim]{process.process_id}[/dim]",
            f"Lead: [cyan]{process.lead.display_name}[/cyan] {process.lead.phone}",
            f"Status: {_colored(process.final_status.value if process.final_status else None)}",
            f"Stage: {process.stage.value}",
        ]
        if process.contact_id:
            lines.append(f"Contact: {process.contact_id}")
        if process.outcome and process.outcome.agent:
            lines.append(f"Agent: [bold]{process.outcome.agent.name}[/bold]")
        for attempt in process.attempted_agents:
            lines.append(f"  #{attempt.attempt_number} {attempt.agent_name}: {attempt.result.value}")
        if process.error:
            lines.append(f"[red]{process.error}[/red]")
        lines.append(f"[dim]{process.processing_time_ms}ms[/dim]")

        console.print(Panel.fit("\n".join(lines), title="Dispatch"))

    if not process.success:
        raise SystemExit(1)


# ============================================================================
# REPORTING COMMANDS
# ============================================================================

@cli.command()
def stats():
    """Show the rotation cursor, recent decisions and today's metrics."""
    ledger_stats = get_ledger().stats()
    metrics = get_event_log().current_metrics()

    console.print(Panel.fit(
        f"Last agent: [cyan]{ledger_stats['last_agent_id'] or 'none'}[/cyan]\n"
        f"Last dispatch: {ledger_stats['last_dispatch_time'] or 'never'}\n"
        f"Decisions kept: {ledger_stats['total_distributions']}\n\n"
        f"[bold]Today ({metrics.date.isoformat()}):[/bold]\n"
        f"  Processed: {metrics.total_processes}\n"
        f"  Connected: [green]{metrics.successful}[/green]\n"
        f"  Failed: [red]{metrics.failed}[/red]\n"
        f"  Success rate: {metrics.success_rate}%",
        title="Distribution Stats"
    ))

    if metrics.errors_by_status:
        table = Table(title="Errors Today")
        table.add_column("Status")
        table.add_column("Count", justify="right")
        for status, count in sorted(metrics.errors_by_status.items(), key=lambda x: -x[1]):
            table.add_row(_colored(status), str(count))
        console.print(table)

    if metrics.agent_stats:
        table = Table(title="Agents Today")
        table.add_column("Agent", style="cyan")
        table.add_column("Assigned", justify="right")
        table.add_column("Connected", justify="right")
        table.add_column("Failed", justify="right")
        table.add_column("Rate", justify="right")
        for agent_stats in metrics.agent_stats.values():
            table.add_row(
                agent_stats.name,
                str(agent_stats.assigned),
                str(agent_stats.succeeded),
                str(agent_stats.failed),
                f"{agent_stats.success_rate}%",
            )
        console.print(table)

    if ledger_stats["recent_history"]:
        table = Table(title="Recent Decisions")
        table.add_column("When", style="dim")
        table.add_column("Agent", style="cyan")
        table.add_column("Fallback", justify="center")
        for decision in ledger_stats["recent_history"]:
            table.add_row(
                decision["timestamp"][:19],
                decision["agent_name"],
                "yes" if decision["used_fallback"] else "",
            )
        console.print(table)


@cli.command()
@click.option("--limit", "-n", default=20, help="Number of processes to show")
def recent(limit: int):
    """Show the most recent lead processes, newest first."""
    processes = get_event_log().query_recent(limit)

    if not processes:
        console.print("[yellow]No lead processes logged yet.[/yellow]")
        return

    table = Table(title=f"Recent Processes ({len(processes)})")
    table.add_column("Started", style="dim")
    table.add_column("Lead", style="cyan", max_width=25)
    table.add_column("Phone")
    table.add_column("Status")
    table.add_column("Agent")
    table.add_column("Attempts", justify="right")
    table.add_column("ms", justify="right", style="dim")

    for process in processes:
        agent = process.outcome.agent.name if process.outcome and process.outcome.agent else ""
        table.add_row(
            process.started_at.strftime("%Y-%m-%d %H:%M:%S"),
            process.lead.display_name[:25],
            process.lead.phone,
            _colored(process.final_status.value if process.final_status else None),
            agent,
            str(len(process.attempted_agents)),
            str(process.processing_time_ms or ""),
        )

    console.print(table)


@cli.command()
@click.option("--start", help="First day (YYYY-MM-DD), default today")
@click.option("--end", help="Last day (YYYY-MM-DD), default today")
def analytics(start: Optional[str], end: Optional[str]):
    """Summarize dispatches over a date range."""
    today = datetime.now().date()
    start_day = _parse_day(start, "--start") or today
    end_day = _parse_day(end, "--end") or today
    if end_day < start_day:
        raise click.BadParameter("end date is before start date", param_hint="--end")

    summary = get_event_log().aggregate(start_day, end_day)

    avg = f"{summary.avg_processing_time_ms}ms" if summary.avg_processing_time_ms is not None else "n/a"
    console.print(Panel.fit(
        f"Processed: {summary.total_processes}\n"
        f"Connected: [green]{summary.successful}[/green]\n"
        f"Failed: [red]{summary.failed}[/red]\n"
        f"Success rate: {summary.success_rate}%\n"
        f"Fallback dispatches: {summary.fallback_dispatches}\n"
        f"Avg processing time: {avg}",
        title=f"Analytics {start_day.isoformat()} to {end_day.isoformat()}"
    ))

    if summary.error_distribution:
        table = Table(title="Errors")
        table.add_column("Status")
        table.add_column("Count", justify="right")
        for status, count in sorted(summary.error_distribution.items(), key=lambda x: -x[1]):
            table.add_row(_colored(status), str(count))
        console.print(table)

    busy_hours = [(hour, count) for hour, count in enumerate(summary.hourly_distribution) if count]
    if busy_hours:
        table = Table(title="By Hour")
        table.add_column("Hour", justify="right")
        table.add_column("Leads", justify="right")
        for hour, count in busy_hours:
            table.add_row(f"{hour:02d}:00", str(count))
        console.print(table)


# ============================================================================
# MAINTENANCE COMMANDS
# ============================================================================

def _coerce_setting(current, key: str, raw: str):
    if isinstance(current, (list, datetime)):
        raise click.BadParameter(f"{key} cannot be set with --set", param_hint="--set")
    try:
        return type(current)(raw)
    except ValueError:
        raise click.BadParameter(f"{key} expects {type(current).__name__}, got {raw!r}", param_hint="--set")


@cli.command()
@click.option("--statuses", default=None, help="Comma-separated status tags that can take calls")
@click.option("--set", "assignments", multiple=True, metavar="KEY=VALUE", help="Change a dispatch setting")
def config(statuses: Optional[str], assignments):
    """Show or change the dispatch configuration.

    \b
    Examples:
      lead-dispatch config --statuses online,available
      lead-dispatch config --set probe_cache_ttl=10 --set history_cap=100
    """
    manager = DispatchConfigManager()

    values = {}
    for assignment in assignments:
        key, sep, raw = assignment.partition("=")
        key = key.strip()
        if not sep or not key:
            raise click.BadParameter(f"expected KEY=VALUE, got {assignment!r}", param_hint="--set")
        if key == "updated_at" or not hasattr(manager.config, key):
            raise click.BadParameter(f"unknown setting {key!r}", param_hint="--set")
        values[key] = _coerce_setting(getattr(manager.config, key), key, raw.strip())

    if values:
        manager.update(**values)
    if statuses is not None:
        manager.set_available_statuses(statuses.split(","))
    if values or statuses is not None:
        console.print("[green]✓ Configuration saved[/green]")

    table = Table(title="Dispatch Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    for key, value in manager.config.to_dict().items():
        if isinstance(value, list):
            value = ", ".join(value)
        table.add_row(key, str(value))
    console.print(table)


@cli.command("reset-ledger")
@click.option("--yes", "-y", is_flag=True, help="Skip the confirmation prompt")
def reset_ledger(yes: bool):
    """Forget the rotation cursor and decision history."""
    if not yes and not Confirm.ask("Reset the distribution state? The next lead goes to the first agent"):
        console.print("[dim]Cancelled[/dim]")
        return

    get_ledger().reset()
    console.print("[green]✓ Distribution state reset[/green]")


@cli.command("cleanup-logs")
@click.option("--days", "-d", type=int, default=None, help="Retention in days (default from config)")
def cleanup_logs(days: Optional[int]):
    """Delete process logs older than the retention window."""
    retention = days if days is not None else DispatchConfigManager().config.log_retention_days
    removed = get_event_log().cleanup_old_logs(retention)

    if removed:
        console.print(f"[green]Removed {removed} log file(s) older than {retention} days[/green]")
    else:
        console.print("[dim]Nothing to clean up[/dim]")


if __name__ == "__main__":
    cli()
