"""Rich-powered console output for contextfeeder."""

from __future__ import annotations

import logging

from rich.console import Console as RichConsole
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from contextfeeder import __version__
from contextfeeder.budget.profiles import ModelProfile
from contextfeeder.budget.tracker import TokenBudget, WarningLevel
from contextfeeder.context.models import ContextItem, Message

_LEVEL_COLORS = {
    WarningLevel.OK: "green",
    WarningLevel.WARNING: "yellow",
    WarningLevel.CRITICAL: "red",
    WarningLevel.EXCEEDED: "bold red",
}


class Console:
    """Terminal output for contextfeeder using Rich."""

    def __init__(self) -> None:
        self.console = RichConsole()

    def banner(self) -> None:
        self.console.print(
            Panel(
                f"[bold cyan]contextfeeder[/bold cyan] [dim]v{__version__}[/dim]\n"
                "[dim]Token budgets and context assembly for LLM agents[/dim]",
                border_style="cyan",
                padding=(1, 2),
            )
        )

    def success(self, message: str) -> None:
        self.console.print(f"[green]✓[/green] {escape(message)}")

    def error(self, message: str) -> None:
        self.console.print(f"[red]✗[/red] {escape(message)}")

    def warning(self, message: str) -> None:
        self.console.print(f"[yellow]![/yellow] {escape(message)}")

    def info(self, message: str) -> None:
        self.console.print(f"[blue]i[/blue] {escape(message)}")

    def log_handler(self) -> logging.Handler:
        """A logging handler that writes to stderr."""
        return RichHandler(console=RichConsole(stderr=True), show_path=False, markup=False)

    def show_profiles(self, profiles: list[ModelProfile], default_id: str) -> None:
        table = Table(title="Model Profiles", border_style="cyan")
        table.add_column("Model", style="bold")
        table.add_column("Window", justify="right", style="cyan")
        table.add_column("Max Output", justify="right")
        table.add_column("Overhead/msg", justify="right")
        table.add_column("Chars/token")

        for p in profiles:
            ratios = "/".join(f"{r:g}" for r in p.chars_per_token.values())
            name = f"{p.id} [green](default)[/green]" if p.id == default_id else p.id
            table.add_row(
                name,
                f"{p.context_window_tokens:,}",
                f"{p.max_output_tokens:,}",
                str(p.overhead_tokens_per_message),
                ratios,
            )

        self.console.print(table)

    def show_budget(self, budget: TokenBudget) -> None:
        color = _LEVEL_COLORS[budget.warning_level]
        self.console.print(
            Panel(
                f"[bold]Model:[/bold] {budget.model_profile.display_name}\n"
                f"[bold]Context Window:[/bold] {budget.total_context_window:,}\n"
                f"[bold]Reserved for Output:[/bold] {budget.reserved_for_output:,}\n"
                f"[bold]Available for Input:[/bold] {budget.available_for_input:,}\n"
                f"[bold]Consumed:[/bold] {budget.consumed:,} "
                f"([{color}]{budget.used_percent:.0f}%, {budget.warning_level.value}[/{color}])\n"
                f"[bold]Remaining:[/bold] {budget.remaining:,}",
                title="[bold]Token Budget[/bold]",
                border_style=color,
            )
        )

    def show_items(self, title: str, items: list[ContextItem]) -> None:
        table = Table(title=title, border_style="cyan")
        table.add_column("Label", style="bold")
        table.add_column("Category")
        table.add_column("Tier", justify="right")
        table.add_column("Score", justify="right", style="cyan")
        table.add_column("Tokens", justify="right")
        table.add_column("Compression", style="dim")

        for item in items:
            table.add_row(
                escape(item.label),
                item.category.value,
                str(int(item.tier)),
                str(item.relevance_score),
                str(item.estimated_tokens),
                item.compression.value if item.compression else "",
            )

        self.console.print(table)

    def show_messages(self, messages: list[Message]) -> None:
        for i, msg in enumerate(messages):
            content = msg.content
            if len(content) > 1000:
                content = content[:1000] + "\n... (truncated)"
            style = "green" if msg.role == "user" else "blue"
            self.console.print(
                Panel(
                    Text(content),
                    title=f"[bold]{i + 1}. {msg.role}[/bold]",
                    border_style=style,
                )
            )
