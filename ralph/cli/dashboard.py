"""Live terminal view of a running :class:`IterationScheduler`."""

from __future__ import annotations

from rich.console import Group
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from ralph.metrics.cost import format_cost
from ralph.providers.claude.stream import format_tool_use
from ralph.providers.claude.usage import format_usage
from ralph.session.grouping import ToolGroup, group_tools, tool_stats
from ralph.session.models import Phase, now_ms
from ralph.session.scheduler import IterationScheduler
from ralph.utils.formatting import format_duration, format_duration_ms, format_tokens, truncate

PHASE_STYLES = {
    Phase.RUNNING: ("bold yellow", "running"),
    Phase.PAUSE: ("cyan", "paused"),
    Phase.DONE: ("bold green", "done"),
    Phase.ERROR: ("bold red", "error"),
}

STATUS_ICONS = {
    "pending": "[dim]○[/dim]",
    "running": "[yellow]●[/yellow]",
    "success": "[green]✓[/green]",
    "error": "[red]✗[/red]",
}


def render_header(scheduler: IterationScheduler) -> Panel:
    style, label = PHASE_STYLES[scheduler.phase]
    progress = scheduler.progress

    tbl = Table.grid(expand=True)
    tbl.add_column(justify="left", ratio=2)
    tbl.add_column(justify="right", ratio=1)

    if scheduler.phase == Phase.PAUSE and scheduler.pause_countdown:
        right = f"[cyan]next in {scheduler.pause_countdown}s[/cyan]"
    else:
        right = f"[dim]{format_duration(progress.elapsed_sec)}[/dim]"
    if scheduler.session.cancel_requested and not scheduler.phase.is_terminal:
        right = "[yellow]stopping after this iteration[/yellow]"

    tbl.add_row(
        f"[{style}]{label}[/]  iteration [bold]{progress.index}[/bold]"
        f"[dim]/{scheduler.max_iterations}[/dim]"
        + (f"  [magenta]{progress.model}[/magenta]" if progress.model else ""),
        right,
    )
    phase = f" [dim]· {escape(truncate(progress.phase, 30))}[/dim]" if progress.phase else ""
    tbl.add_row(f"[bold]{escape(truncate(progress.task, 70))}[/bold]{phase}", "")
    tbl.add_row(f"[dim]{escape(truncate(progress.status, 80))}[/dim]", "")
    return Panel(tbl, border_style=style.split()[-1])


def _group_line(group: ToolGroup) -> str:
    last = group.events[-1]
    icon = STATUS_ICONS["running" if group.has_running else "error" if group.has_error else last.status]
    label = escape(format_tool_use(last.name, last.input))
    count = f" [dim]×{len(group)}[/dim]" if len(group) > 1 else ""
    model = f" [magenta]({last.subagent_model})[/magenta]" if last.subagent_model else ""
    return f"{icon} {label}{count}{model} [dim]{format_duration_ms(group.total_duration_ms)}[/dim]"


def render_tools(scheduler: IterationScheduler) -> Panel:
    events = scheduler.tool_events()
    now = now_ms()
    lines = [_group_line(group) for group in group_tools(events, now=now)]
    if not lines:
        lines = ["[dim italic]waiting for tool activity ...[/dim italic]"]

    stats = tool_stats(events, now=now)
    ops = scheduler.window.operation_count
    footer = f"[dim]{ops} ops this iteration"
    if stats.cache_read_tokens or stats.cache_write_tokens:
        footer += f" · cache {stats.avg_cache_efficiency_pct}%"
    breakdown = scheduler.progress.model_breakdown
    if breakdown:
        footer += " · " + ", ".join(f"{m}:{n}" for m, n in sorted(breakdown.items()))
    footer += "[/dim]"

    body = Text.from_markup("\n".join([*lines, "", footer]))
    return Panel(body, title="[bold]TOOLS[/]", border_style="bright_blue")


def render_totals(scheduler: IterationScheduler, *, show_cost: bool = True) -> Panel:
    stats = scheduler.stats
    tbl = Table(show_header=False, box=None, padding=(0, 1), expand=True)
    tbl.add_column("k", style="dim", no_wrap=True, width=12)
    tbl.add_column("v", justify="right")

    tbl.add_row("Iterations", f"[green]{stats.successful_iterations}[/green][dim]/{stats.total_iterations}[/dim]")
    tbl.add_row("Operations", str(stats.total_operations))
    tbl.add_row("Time", format_duration(stats.total_duration_sec))
    tbl.add_row("Tokens", f"[cyan]{format_tokens(stats.total_tokens)}[/cyan]")
    if show_cost:
        tbl.add_row("Cost", f"[green]{format_cost(stats.total_cost.total)}[/green]")
    if scheduler.usage is not None:
        tbl.add_row("Usage", format_usage(scheduler.usage))
    return Panel(tbl, title="[bold]SESSION[/]", border_style="bright_magenta")


def render_dashboard(scheduler: IterationScheduler, *, show_cost: bool = True) -> Group:
    return Group(
        render_header(scheduler),
        render_tools(scheduler),
        render_totals(scheduler, show_cost=show_cost),
    )
