"""
Rich formatting utilities for consistent terminal output.

"Beauty is in the eye of the beholder. But colors help." — schema.cx
"""

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

# Centralized console instance, shared by the client and the CLI
console = Console()


class Colors:
    """Consistent color scheme for the application."""

    SUCCESS = "green"
    ERROR = "red"
    WARNING = "yellow"
    INFO = "cyan"
    MUTED = "dim"
    PATH = "bold blue"


def print_success(message: str, prefix: str = "✅") -> None:
    """Print a success message in green."""
    console.print(f"[{Colors.SUCCESS}]{prefix} {message}[/{Colors.SUCCESS}]")


def print_error(message: str, prefix: str = "❌") -> None:
    """Print an error message in red."""
    console.print(f"[{Colors.ERROR}]{prefix} {message}[/{Colors.ERROR}]")


def print_warning(message: str, prefix: str = "⚠️") -> None:
    """Print a warning message in yellow."""
    console.print(f"[{Colors.WARNING}]{prefix} {message}[/{Colors.WARNING}]")


def print_info(message: str, prefix: str = "ℹ️") -> None:
    """Print an info message in cyan."""
    console.print(f"[{Colors.INFO}]{prefix} {message}[/{Colors.INFO}]")


def print_panel(content: str, title: str | None = None, style: str = "cyan") -> None:
    """Print content in a styled panel."""
    panel = Panel(content, title=title, border_style=style, padding=(0, 1))
    console.print(panel)


def create_data_table(title: str | None = None, show_lines: bool = False) -> Table:
    """Create a styled table for listing projects, groups or users."""
    return Table(
        title=title,
        show_header=True,
        header_style="bold blue",
        border_style="blue",
        show_lines=show_lines,
    )


def format_path(full_path: str) -> str:
    """Format a project or group path with consistent styling."""
    return f"[{Colors.PATH}]{full_path}[/{Colors.PATH}]"


def format_count(count: int, label: str, color: str = Colors.INFO) -> str:
    """Format a count with label."""
    return f"[{color}]{count}[/{color}] {label}"
