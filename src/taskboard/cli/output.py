"""Rich console output helpers."""

from __future__ import annotations

from rich.columns import Columns
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from ..board.models import Board, Hierarchy, Priority

# Shared console instance
console = Console()
error_console = Console(stderr=True)

PRIORITY_STYLES = {
    Priority.LOW: "green",
    Priority.MEDIUM: "yellow",
    Priority.HIGH: "red",
}


def print_error(message: str) -> None:
    """Print an error message."""
    error_console.print(f"[red]Error:[/red] {message}")


def print_warning(message: str) -> None:
    """Print a warning message."""
    console.print(f"[yellow]Warning:[/yellow] {message}")


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[green]{message}[/green]")


def print_info(message: str) -> None:
    """Print an info message."""
    console.print(f"[dim]{message}[/dim]")


def create_table(title: str, columns: list[tuple[str, str]]) -> Table:
    """Create a styled table.

    Args:
        title: Table title
        columns: List of (name, style) tuples
    """
    table = Table(title=title, show_header=True, header_style="bold")
    for name, style in columns:
        table.add_column(name, style=style)
    return table


def print_boards_table(boards: list[Board]) -> None:
    table = create_table(
        "Boards",
        [("ID", "cyan"), ("Title", ""), ("Color", "magenta"), ("Created", "dim")],
    )
    for board in boards:
        table.add_row(board.id, board.title, board.color, board.created_at[:10])
    console.print(table)


def render_board(board: Board | None, hierarchy: Hierarchy) -> None:
    """Print columns side by side, one panel per column."""
    panels = []
    for column in hierarchy.columns:
        body = Text()
        if not column.tasks:
            body.append("(empty)", style="dim")
        for task in column.tasks:
            if body.plain:
                body.append("\n")
            body.append("● ", style=PRIORITY_STYLES.get(task.priority, ""))
            body.append(task.title)
            body.append(f"  {task.id}", style="dim")
            if task.assignee:
                body.append(f"\n  @{task.assignee}", style="cyan")
            if task.due_date:
                body.append(f"  due {task.due_date}", style="dim")
        panels.append(
            Panel(
                body,
                title=f"{column.title} [dim]({len(column.tasks)})[/dim]",
                subtitle=column.id,
                width=32,
            )
        )

    if board is not None:
        console.print(f"[bold]{board.title}[/bold] [dim]{board.id}[/dim]")
        if board.description:
            print_info(board.description)
    if panels:
        console.print(Columns(panels))
    else:
        print_info("No columns yet")
