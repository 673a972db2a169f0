"""Rich rendering of plans and run reports."""

from typing import Optional

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from reconciler.orchestrator.executor import NodeStatus, RunReport, RunStatus
from reconciler.orchestrator.planner import Action, Plan

ACTION_STYLES = {
    Action.CREATE: "green",
    Action.UPDATE: "yellow",
    Action.REPLACE: "magenta",
    Action.DELETE: "red",
    Action.NO_OP: "dim",
}

STATUS_STYLES = {
    NodeStatus.SUCCEEDED: "green",
    NodeStatus.NO_OP: "dim",
    NodeStatus.FAILED: "bold red",
    NodeStatus.SKIPPED: "yellow",
    NodeStatus.CANCELLED: "magenta",
}

RUN_STYLES = {
    RunStatus.SUCCESS: "bold green",
    RunStatus.PARTIAL_FAILURE: "bold yellow",
    RunStatus.CANCELLED: "bold magenta",
    RunStatus.FATAL: "bold red",
}


def render_plan(plan: Plan, console: Optional[Console] = None, show_unchanged: bool = False) -> None:
    """Print a plan as a table, one row per entry in wave order.

    Args:
        plan: Plan to render
        console: Target console, stdout by default
        show_unchanged: Include no-op entries
    """
    console = console or Console()

    if not plan.has_changes():
        console.print(Panel("No changes. Infrastructure matches the declared resources.", style="bold green"))
        if not show_unchanged:
            return

    waves = plan.waves if show_unchanged else plan.pending_waves()

    table = Table(show_header=True, header_style="bold")
    table.add_column("Wave", justify="right", style="cyan")
    table.add_column("Resource", style="white")
    table.add_column("Action")
    table.add_column("Reason", style="dim")

    for wave in waves:
        for entry in wave.entries:
            style = ACTION_STYLES[entry.action]
            table.add_row(
                str(wave.wave_number),
                entry.resource_id,
                f"[{style}]{entry.action.value}[/{style}]",
                escape(entry.reason)
            )

    console.print(table)

    summary = plan.get_summary()
    console.print(
        f"Plan: [green]{summary['create']} to create[/green], "
        f"[yellow]{summary['update']} to update[/yellow], "
        f"[magenta]{summary['replace']} to replace[/magenta], "
        f"[red]{summary['delete']} to delete[/red]"
    )


def render_report(report: RunReport, console: Optional[Console] = None) -> None:
    """Print a run report with per-entry status and error details."""
    console = console or Console()

    run_style = RUN_STYLES[report.status]
    console.print(Panel(
        f"Run {report.run_id}: {report.status.value} (exit code {report.exit_code})",
        style=run_style
    ))

    table = Table(show_header=True, header_style="bold")
    table.add_column("Wave", justify="right", style="cyan")
    table.add_column("Resource", style="white")
    table.add_column("Action")
    table.add_column("Status")
    table.add_column("Attempts", justify="right")
    table.add_column("Duration", justify="right")
    table.add_column("Message", style="dim")

    for result in report.results():
        style = STATUS_STYLES[result.status]
        table.add_row(
            str(result.wave_number),
            result.resource_id,
            result.action.value,
            f"[{style}]{result.status.value}[/{style}]",
            str(result.attempts) if result.attempts else "-",
            f"{result.duration:.2f}s" if result.duration else "-",
            escape(result.message or "")
        )

    console.print(table)

    summary = report.get_summary()
    console.print(
        f"{summary['succeeded']} succeeded, {summary['no_op']} unchanged, "
        f"{summary['failed']} failed, {summary['skipped']} skipped, "
        f"{summary['cancelled']} cancelled in {report.duration:.1f}s"
    )

    if report.error:
        console.print(f"[bold red]{escape(report.error.to_user_message())}[/bold red]")
