"""Final report printed when a session reaches a terminal phase."""

from __future__ import annotations

import random
from dataclasses import dataclass

from rich.markup import escape

from ralph.metrics.cost import format_cost
from ralph.session.models import RECOGNIZED_MODELS, Phase, Session
from ralph.utils.formatting import format_duration, format_tokens, truncate

MAX_LISTED_TASKS = 3


@dataclass(frozen=True)
class CompletionMessage:
    icon: str
    title: str
    subtitle: str


COMPLETION_MESSAGES = (
    CompletionMessage("☕", "Time for that coffee!", "Your code is freshly brewed."),
    CompletionMessage("🍺", "Beer o'clock!", "You earned it. The build is done."),
    CompletionMessage("🎉", "Ship it!", "Another successful build in the books."),
    CompletionMessage("🚀", "Ready for launch!", "Your code is built and tested."),
    CompletionMessage("✨", "Magic complete!", "The robots have done their thing."),
    CompletionMessage("🏆", "Victory!", "All tasks conquered. Well done."),
)


class SessionSummaryBuilder:
    """Turns a finished :class:`Session` into rich-markup text.

    Never touches the session.  The only randomness is the decorative
    completion message, drawn from the injected ``rng``.
    """

    def __init__(
        self,
        rng: random.Random | None = None,
        *,
        completion_messages: bool = True,
        max_tasks: int = MAX_LISTED_TASKS,
    ):
        self._rng = rng or random.Random()
        self.completion_messages = completion_messages
        self.max_tasks = max_tasks

    def build(
        self,
        session: Session,
        title: str,
        next_steps: list[str] | None = None,
        *,
        success: bool | None = None,
    ) -> str:
        if success is None:
            success = session.phase != Phase.ERROR
        stats = session.stats
        lines: list[str] = []

        if success:
            lines.append(f"[bold green]✓ {escape(title)}[/bold green]")
        else:
            lines.append(f"[bold red]✗ {escape(title)}[/bold red]")

        lines.append(
            "[dim]"
            + " · ".join(
                [
                    format_duration(stats.total_duration_sec),
                    f"{stats.total_iterations} iterations",
                    f"{stats.total_operations} ops",
                ]
            )
            + "[/dim]"
        )

        if stats.total_tokens > 0:
            lines.append(
                f"[cyan]{format_tokens(stats.total_tokens)} tokens "
                f"({format_tokens(stats.total_input_tokens)} in / "
                f"{format_tokens(stats.total_output_tokens)} out)[/cyan]"
            )

        if stats.total_cost.total > 0:
            cost = format_cost(stats.total_cost.total)
            if stats.cache_savings_usd > 0:
                cost += f" (saved {format_cost(stats.cache_savings_usd)} from cache)"
            lines.append(f"[green]💰 {cost}[/green]")

        if stats.cache_read_tokens > 0:
            lines.append(f"[dim]{format_tokens(stats.cache_read_tokens)} tokens saved by cache[/dim]")

        model_parts = [
            f"{model}: {stats.model_breakdown[model]}"
            for model in RECOGNIZED_MODELS
            if stats.model_breakdown.get(model)
        ]
        if model_parts:
            lines.append(f"[dim]Models: {', '.join(model_parts)}[/dim]")

        if stats.failed_iterations > 0 and stats.total_iterations > 0:
            rate = stats.successful_iterations / stats.total_iterations * 100
            lines.append(
                f"[dim]Success: {stats.successful_iterations}/{stats.total_iterations} ({rate:.1f}%)[/dim]"
            )

        tasks = session.completed_tasks[: self.max_tasks] if success else []
        if tasks:
            lines.append("")
            for task in tasks:
                lines.append(f"[dim]→[/dim] [green]✓[/green] {escape(truncate(task, 50))}")

        if next_steps:
            lines.append("")
            lines.append("[bold]Next:[/bold]")
            for step in next_steps:
                lines.append(f"  [orange1]{escape(step)}[/orange1]")

        if success and self.completion_messages and session.phase == Phase.DONE:
            message = self._rng.choice(COMPLETION_MESSAGES)
            lines.append("")
            lines.append(f"{message.icon} [bold]{message.title}[/bold] [dim]{message.subtitle}[/dim]")

        lines.append("")
        return "\n".join(lines)
