"""Shared CLI utilities - colors, console, helpers."""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import timedelta
from functools import wraps
from typing import ParamSpec, TypeVar

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

# Terminal palette
ELECTRIC_PURPLE = "#e135ff"
NEON_CYAN = "#80ffea"
CORAL = "#ff6ac1"
ELECTRIC_YELLOW = "#f1fa8c"
SUCCESS_GREEN = "#50fa7b"
ERROR_RED = "#ff6363"

# Shared console instance
console = Console()

P = ParamSpec("P")
R = TypeVar("R")


def success(message: str) -> None:
    console.print(f"[{SUCCESS_GREEN}]✓[/{SUCCESS_GREEN}] {message}")


def error(message: str) -> None:
    console.print(f"[{ERROR_RED}]✗[/{ERROR_RED}] {message}")


def warn(message: str) -> None:
    console.print(f"[{ELECTRIC_YELLOW}]![/{ELECTRIC_YELLOW}] {message}")


def info(message: str) -> None:
    console.print(f"[{NEON_CYAN}]→[/{NEON_CYAN}] {message}")


def create_table(title: str | None = None, *columns: str) -> Table:
    """Create a styled table; numeric-looking columns are right aligned."""
    table = Table(title=title, border_style=NEON_CYAN)
    numeric = {"es", "ef", "ls", "lf", "slack", "duration", "value", "count"}
    for i, col in enumerate(columns):
        style = ELECTRIC_PURPLE if i == 0 else NEON_CYAN
        justify = "right" if i and col.lower() in numeric else "left"
        table.add_column(col, style=style, justify=justify)
    return table


def create_panel(content: str, title: str | None = None, subtitle: str | None = None) -> Panel:
    return Panel(
        content,
        title=f"[{ELECTRIC_PURPLE}]{title}[/{ELECTRIC_PURPLE}]" if title else None,
        subtitle=subtitle,
        border_style=NEON_CYAN,
    )


def run_async(func: Callable[P, Awaitable[R]]) -> Callable[P, R]:
    """Decorator to run async functions in sync context (for Typer commands)."""

    @wraps(func)
    def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
        return asyncio.run(func(*args, **kwargs))

    return wrapper


def format_status(status: str, category: str | None = None) -> str:
    """Color a status by its workflow category."""
    category_colors = {
        "todo": NEON_CYAN,
        "in_progress": ELECTRIC_PURPLE,
        "done": SUCCESS_GREEN,
    }
    color = ERROR_RED if status == "blocked" else category_colors.get(category or "", NEON_CYAN)
    return f"[{color}]{status}[/{color}]"


def format_hours(hours: float) -> str:
    return f"{hours:g}h"


def format_duration(value: timedelta | None) -> str:
    """Render a timedelta as days/hours, or '-' when missing."""
    if value is None:
        return "-"
    total_hours = value.total_seconds() / 3600
    if total_hours >= 24:
        return f"{total_hours / 24:.1f}d"
    return f"{total_hours:.1f}h"


def truncate(text: str, max_length: int = 50) -> str:
    """Truncate text with ellipsis if too long."""
    if len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."
