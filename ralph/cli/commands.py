"""CLI commands for ralph."""

import asyncio
import logging
import shutil
import signal
from enum import Enum
from pathlib import Path

import typer
from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.table import Table

from ralph import __logo__, __version__

app = typer.Typer(
    name="ralph",
    help=f"{__logo__} ralph - autonomous build loop for Claude Code",
    no_args_is_help=True,
)

console = Console()


class ModelChoice(str, Enum):
    opus = "opus"
    sonnet = "sonnet"
    adaptive = "adaptive"


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} ralph v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(None, "--version", "-v", callback=version_callback, is_eager=True),
):
    """ralph - run Claude Code in a loop until the plan is done."""


# ============================================================================
# Shared helpers
# ============================================================================


def _configure_logging(enabled: bool) -> None:
    from loguru import logger

    if enabled:
        logger.enable("ralph")
        logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    else:
        logger.disable("ralph")
        logging.getLogger("ralph").setLevel(logging.CRITICAL)


def _load_config_or_exit():
    from pydantic import ValidationError

    from ralph.config.loader import config_error_lines, get_config_path, load_config

    try:
        return load_config()
    except ValidationError as e:
        console.print(f"[red]Invalid configuration ({get_config_path()}):[/red]")
        for line in config_error_lines(e):
            console.print(f"  [red]•[/red] {line}")
        raise typer.Exit(1)


def _require_claude(binary: str) -> None:
    if shutil.which(binary) is None:
        console.print(f"[red]Error: '{binary}' not found on PATH.[/red]")
        console.print("Install Claude Code: [cyan]npm install -g @anthropic-ai/claude-code[/cyan]")
        raise typer.Exit(1)


def _resolve_model(choice: ModelChoice | None, config, *, adaptive: bool = True) -> str:
    """Flag over config; flows that run once fall back to opus for adaptive."""
    model = choice.value if choice else config.work.model
    if model == "adaptive" and not adaptive:
        return "opus"
    return model


def _next_task(plan_path: Path):
    from loguru import logger

    from ralph.plan import read_next_task

    try:
        return read_next_task(plan_path)
    except OSError as e:
        logger.warning(f"Could not read {plan_path}: {e}")
        return None


def _make_runner(prompt: str, model: str, config):
    from ralph.complexity import select_model
    from ralph.providers.claude.runner import ClaudeCodeRunner

    if model == "adaptive":
        plan_path = Path(config.paths.plan)
        return ClaudeCodeRunner(
            prompt,
            binary=config.work.claude_binary,
            model_selector=lambda: select_model(_next_task(plan_path)),
        )
    return ClaudeCodeRunner(prompt, model=model, binary=config.work.claude_binary)


def _make_usage_provider():
    from ralph.providers.claude.usage import SubscriptionUsageProvider

    return SubscriptionUsageProvider()


async def _drive(scheduler):
    """Run the scheduler; first Ctrl-C stops after the current iteration, second aborts."""
    loop = asyncio.get_running_loop()
    task = asyncio.current_task()

    def on_sigint() -> None:
        if scheduler.session.cancel_requested:
            task.cancel()
        else:
            scheduler.request_cancel()

    try:
        loop.add_signal_handler(signal.SIGINT, on_sigint)
        installed = True
    except (NotImplementedError, RuntimeError):
        # No loop signal support (Windows): Ctrl-C surfaces as KeyboardInterrupt
        installed = False
    try:
        return await scheduler.run()
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)


def _run_loop(
    config,
    *,
    prompt: str,
    model: str,
    max_iterations: int,
    pause_ms: int,
    next_steps: list[str],
    task_source=None,
):
    from ralph.cli.dashboard import render_dashboard
    from ralph.metrics.collector import MetricsCollector
    from ralph.session.scheduler import IterationScheduler
    from ralph.session.summary import SessionSummaryBuilder
    from ralph.session.window import ToolEventWindow

    usage_provider = _make_usage_provider()
    scheduler = IterationScheduler(
        _make_runner(prompt, model, config),
        max_iterations=max_iterations,
        usage_provider=usage_provider,
        pause_ms=pause_ms,
        window=ToolEventWindow(config.display.tool_window),
        summary_builder=SessionSummaryBuilder(completion_messages=config.display.completion_messages),
        recorder=MetricsCollector(config.metrics.path, enabled=config.metrics.enabled),
        # adaptive runs report their model per iteration
        model="" if model == "adaptive" else model,
        next_steps=next_steps,
        task_source=task_source,
    )

    async def run():
        try:
            with Live(
                get_renderable=lambda: render_dashboard(scheduler, show_cost=config.display.show_cost),
                console=console,
                refresh_per_second=4,
                transient=True,
            ) as live:
                scheduler.on_change = lambda _: live.refresh()
                return await _drive(scheduler)
        finally:
            if usage_provider is not None:
                await usage_provider.close()

    try:
        result = asyncio.run(run())
    except (asyncio.CancelledError, KeyboardInterrupt):
        console.print("\n[yellow]Aborted.[/yellow]")
        raise typer.Exit(130)

    console.print()
    console.print(result.summary)
    if result.error:
        console.print(f"[red]{result.error}[/red]")
    return result


def _print_dry_run(config, *, model: str, max_iterations: int, plan_path: Path) -> None:
    from ralph.complexity import select_model
    from ralph.plan import read_next_task
    from ralph.providers.claude.usage import format_usage

    next_task = read_next_task(plan_path)
    if next_task:
        task_line = f"[orange1]{next_task.task}[/orange1]\n              [dim]Phase: {next_task.phase}[/dim]"
    else:
        task_line = "[dim]No pending tasks found[/dim]"

    model_line = f"[orange1]{model}[/orange1]"
    if model == "adaptive":
        model_line += f" [dim]({select_model(next_task)} for next task)[/dim]"

    lines = [
        f"[bold]Model:[/bold]       {model_line}",
        f"[bold]Max iters:[/bold]   {max_iterations}",
        f"[bold]Pause:[/bold]       {config.work.pause_ms}ms",
        "",
        f"[bold]Next task:[/bold]   {task_line}",
        "",
        f"[bold]Plan:[/bold]        [dim]{plan_path}[/dim]",
    ]

    provider = _make_usage_provider()
    if provider is not None:

        async def fetch():
            try:
                return await provider.refresh()
            finally:
                await provider.close()

        usage = asyncio.run(fetch())
        if usage is not None:
            lines += ["", f"[bold]Usage:[/bold]       {format_usage(usage)}"]

    console.print()
    console.print(Panel("\n".join(lines), title="◆ Dry Run", border_style="orange1"))
    console.print("[dim]  Run without --dry-run to start the build loop.[/dim]\n")


# ============================================================================
# work / plan / research / spec
# ============================================================================


@app.command()
def work(
    max_iterations: int = typer.Option(
        None, "--max-iterations", "-n", min=1, help="Maximum iterations before stopping"
    ),
    model: ModelChoice = typer.Option(None, "--model", help="Model to use (opus, sonnet or adaptive)"),
    pause: int = typer.Option(None, "--pause", min=0, help="Pause between iterations (ms)"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show what would happen without running"),
    logs: bool = typer.Option(False, "--logs/--no-logs", help="Show runtime logs"),
):
    """Run the build loop: one plan task per iteration until done."""
    from ralph.templates import BUILD_NEXT_STEPS, BUILD_PROMPT, load_prompt

    _configure_logging(logs)
    config = _load_config_or_exit()
    model_name = _resolve_model(model, config)
    iterations = max_iterations or config.work.max_iterations

    plan_path = Path(config.paths.plan)
    if not plan_path.exists():
        console.print(f"[red]No {plan_path} found.[/red]")
        console.print("  Run [cyan]ralph plan[/cyan] first to generate a plan.")
        raise typer.Exit(1)

    if dry_run:
        _print_dry_run(config, model=model_name, max_iterations=iterations, plan_path=plan_path)
        return

    _require_claude(config.work.claude_binary)
    result = _run_loop(
        config,
        prompt=load_prompt(Path(config.paths.build_prompt), BUILD_PROMPT),
        model=model_name,
        max_iterations=iterations,
        pause_ms=config.work.pause_ms if pause is None else pause,
        next_steps=BUILD_NEXT_STEPS,
        task_source=lambda: _next_task(plan_path),
    )
    if not result.success:
        raise typer.Exit(1)


def _run_once(config, *, prompt: str, model: ModelChoice | None, next_steps: list[str]) -> None:
    _require_claude(config.work.claude_binary)
    result = _run_loop(
        config,
        prompt=prompt,
        model=_resolve_model(model, config, adaptive=False),
        max_iterations=1,
        pause_ms=0,
        next_steps=next_steps,
    )
    if not result.success:
        raise typer.Exit(1)


@app.command()
def plan(
    model: ModelChoice = typer.Option(None, "--model", help="Model to use (opus or sonnet)"),
    logs: bool = typer.Option(False, "--logs/--no-logs", help="Show runtime logs"),
):
    """Generate or refresh IMPLEMENTATION_PLAN.md (a single iteration)."""
    from ralph.templates import PLAN_NEXT_STEPS, PLAN_PROMPT, load_prompt

    _configure_logging(logs)
    config = _load_config_or_exit()
    _run_once(
        config,
        prompt=load_prompt(Path(config.paths.plan_prompt), PLAN_PROMPT),
        model=model,
        next_steps=PLAN_NEXT_STEPS,
    )


@app.command()
def research(
    model: ModelChoice = typer.Option(None, "--model", help="Model to use (opus or sonnet)"),
    logs: bool = typer.Option(False, "--logs/--no-logs", help="Show runtime logs"),
):
    """Research the libraries and techniques the specs depend on."""
    from ralph.templates import RESEARCH_NEXT_STEPS, RESEARCH_PROMPT, load_prompt

    _configure_logging(logs)
    config = _load_config_or_exit()

    specs_dir = Path(config.paths.specs)
    if not specs_dir.is_dir() or not any(specs_dir.glob("*.md")):
        console.print(f"[red]No specs found in {specs_dir}/.[/red]")
        console.print("  Run [cyan]ralph spec[/cyan] first to write one.")
        raise typer.Exit(1)

    _run_once(
        config,
        prompt=load_prompt(Path(config.paths.research_prompt), RESEARCH_PROMPT),
        model=model,
        next_steps=RESEARCH_NEXT_STEPS,
    )


@app.command()
def spec(
    feature: str = typer.Option(None, "--feature", "-f", help="Feature to write a spec for"),
    model: ModelChoice = typer.Option(None, "--model", help="Model to use (opus or sonnet)"),
    logs: bool = typer.Option(False, "--logs/--no-logs", help="Show runtime logs"),
):
    """Write or extend a specification under specs/ (a single iteration)."""
    from ralph.templates import SPEC_NEXT_STEPS, SPEC_PROMPT, load_prompt, with_feature

    _configure_logging(logs)
    config = _load_config_or_exit()
    _run_once(
        config,
        prompt=with_feature(load_prompt(Path(config.paths.spec_prompt), SPEC_PROMPT), feature),
        model=model,
        next_steps=SPEC_NEXT_STEPS,
    )


# ============================================================================
# Config Commands
# ============================================================================


@app.command("init")
def init_config(
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing config"),
):
    """Write the default configuration file."""
    from ralph.config.loader import get_config_path, save_config
    from ralph.config.schema import Config

    config_path = get_config_path()
    if config_path.exists() and not force:
        console.print(f"[yellow]Config already exists at {config_path}[/yellow]")
        if not typer.confirm("Overwrite?"):
            raise typer.Exit()

    save_config(Config(), config_path)
    console.print(f"[green]✓[/green] Created config at {config_path}")


# ============================================================================
# Metrics Commands
# ============================================================================


metrics_app = typer.Typer(help="View recorded session and iteration metrics")
app.add_typer(metrics_app, name="metrics")


def _collector():
    from ralph.metrics.collector import MetricsCollector

    config = _load_config_or_exit()
    return MetricsCollector(config.metrics.path)


@metrics_app.command("summary")
def metrics_summary(
    hours: float = typer.Option(24, "--hours", "-h", help="Look-back window in hours"),
):
    """Show high-level metrics summary."""
    from ralph.metrics.cost import format_cost
    from ralph.metrics.report import summary_report

    report = summary_report(_collector(), hours=hours)

    console.print(f"\n{__logo__} Metrics Summary (last {report['period_hours']}h)\n")

    ov = report["overview"]
    table = Table(title="Overview")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Sessions", str(ov["total_sessions"]))
    table.add_row("Success rate", f"{ov['success_rate']}%")
    table.add_row("Completed plans", str(ov["completed_sessions"]))
    table.add_row("Avg iterations/session", str(ov["avg_iterations_per_session"]))
    console.print(table)

    tok = report["tokens"]
    table2 = Table(title="Tokens")
    table2.add_column("Metric", style="cyan")
    table2.add_column("Value", justify="right")
    table2.add_row("Total input", f"{tok['total_input']:,}")
    table2.add_row("Total output", f"{tok['total_output']:,}")
    table2.add_row("Total", f"{tok['total']:,}")
    table2.add_row("Cache read", f"{tok['cache_read']:,}")
    table2.add_row("Avg per session", f"{tok['avg_per_session']:,}")
    table2.add_row("Cache efficiency", f"{tok['cache_efficiency']}%")
    console.print(table2)

    cost = report["cost"]
    its = report["iterations"]
    table3 = Table(title="Cost & iterations")
    table3.add_column("Metric", style="cyan")
    table3.add_column("Value", justify="right")
    table3.add_row("Total cost", format_cost(cost["total_usd"]))
    table3.add_row("Saved by cache", format_cost(cost["cache_savings_usd"]))
    table3.add_row("Avg per session", format_cost(cost["avg_per_session_usd"]))
    table3.add_row("Iterations", str(its["total"]))
    table3.add_row("Pass rate", f"{its['pass_rate']}%")
    console.print(table3)
    console.print()


@metrics_app.command("sessions")
def metrics_sessions(
    last: int = typer.Option(20, "--last", "-n", help="Number of recent sessions"),
):
    """Show recent session summaries."""
    from ralph.metrics.cost import format_cost
    from ralph.metrics.report import session_report
    from ralph.utils.formatting import format_duration_ms

    rows = session_report(_collector(), last_n=last)

    if not rows:
        console.print("[yellow]No sessions recorded yet.[/yellow]")
        return

    console.print(f"\n{__logo__} Recent Sessions (last {last})\n")

    table = Table()
    table.add_column("Session", style="cyan", max_width=12)
    table.add_column("Time", max_width=16)
    table.add_column("OK", justify="center")
    table.add_column("Reason", style="dim")
    table.add_column("Iter", justify="right")
    table.add_column("Ops", justify="right")
    table.add_column("Tokens", justify="right")
    table.add_column("Cost", justify="right")
    table.add_column("Duration", justify="right")

    for r in rows:
        started = r["started_at"][:16] if r["started_at"] != "?" else "?"
        ok = "[green]✓[/green]" if r["success"] else "[red]✗[/red]"
        dur = format_duration_ms(r["duration_ms"]) if r["duration_ms"] else "?"
        table.add_row(
            r["session_id"],
            started,
            ok,
            r["reason"],
            str(r["iterations"]),
            str(r["operations"]),
            f"{r['total_tokens']:,}",
            format_cost(r["cost_usd"]),
            dur,
        )

    console.print(table)
    console.print()


@metrics_app.command("models")
def metrics_models(
    hours: float = typer.Option(
        168, "--hours", "-h", help="Look-back window in hours (default: 7 days)"
    ),
):
    """Compare models by pass rate, tokens and cost."""
    from ralph.metrics.cost import format_cost
    from ralph.metrics.report import model_report

    rows = model_report(_collector(), hours=hours)

    if not rows:
        console.print("[yellow]No iterations recorded yet.[/yellow]")
        return

    console.print(f"\n{__logo__} Model Comparison (last {hours}h)\n")

    table = Table()
    table.add_column("Model", style="cyan")
    table.add_column("Iterations", justify="right")
    table.add_column("Pass %", justify="right")
    table.add_column("Total Tokens", justify="right")
    table.add_column("Tokens/Iter", justify="right")
    table.add_column("Cost", justify="right")
    table.add_column("Cost/Iter", justify="right")

    for r in rows:
        table.add_row(
            r["model"],
            str(r["iterations"]),
            f"{r['pass_rate']}%",
            f"{r['total_tokens']:,}",
            f"{r['tokens_per_iteration']:,}",
            format_cost(r["cost_usd"]),
            format_cost(r["cost_per_iteration_usd"]),
        )

    console.print(table)
    console.print()


@metrics_app.command("tools")
def metrics_tools(
    hours: float = typer.Option(24, "--hours", "-h", help="Look-back window in hours"),
):
    """Show which tools iterations used and how they fared."""
    from ralph.metrics.report import tool_report

    rows = tool_report(_collector(), hours=hours)

    if not rows:
        console.print("[yellow]No tool usage recorded yet.[/yellow]")
        return

    console.print(f"\n{__logo__} Tool Usage (last {hours}h)\n")

    table = Table()
    table.add_column("Tool", style="cyan")
    table.add_column("Iterations", justify="right")
    table.add_column("Pass %", justify="right")
    table.add_column("Top Errors", style="red")

    for r in rows:
        errors = (
            ", ".join(f"{k}({v})" for k, v in r["top_errors"].items()) if r["top_errors"] else ""
        )
        table.add_row(
            r["tool"],
            str(r["iterations"]),
            f"{r['pass_rate']}%",
            errors[:60] if errors else "[dim]-[/dim]",
        )

    console.print(table)
    console.print()


@metrics_app.command("reset")
def metrics_reset(
    confirm: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """Clear all collected metrics data."""
    collector = _collector()

    if not confirm:
        if not typer.confirm(f"Delete all metrics in {collector.metrics_dir}?"):
            raise typer.Exit()

    if collector.reset():
        console.print("[green]✓[/green] Metrics data cleared")
    else:
        console.print("[dim]No metrics data found[/dim]")


if __name__ == "__main__":
    app()
