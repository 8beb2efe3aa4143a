"""Main CLI application using Typer."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Annotated, Optional, TypeVar

import typer

from ..board.models import Priority, TaskCreate
from ..board.reorder import DragDescriptor, InvalidReference, ItemType
from ..config import StoreConfig
from ..events import Event, EventType, event_manager, pending
from ..store.client import BoardStore, PersistenceFailure
from ..sync.session import BoardSession, ReconcileReport
from .commands import config
from .output import (
    console,
    print_boards_table,
    print_error,
    print_info,
    print_success,
    print_warning,
    render_board,
)

T = TypeVar("T")

app = typer.Typer(
    name="taskboard",
    help="Kanban boards with drag-and-drop ordering",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

app.add_typer(config.app, name="config")


def _make_store(cfg: StoreConfig) -> BoardStore:
    return BoardStore.from_config(cfg)


def _run(action: Callable[[BoardStore, StoreConfig], Awaitable[T]]) -> T:
    """Run an async action against the configured store, mapping failures to exit codes."""
    cfg = StoreConfig.load()

    async def _main() -> T:
        store = _make_store(cfg)
        try:
            return await action(store, cfg)
        finally:
            await store.close()

    try:
        return asyncio.run(_main())
    except PersistenceFailure as e:
        print_error(e.message)
        raise typer.Exit(1) from None
    except InvalidReference as e:
        print_error(str(e))
        raise typer.Exit(1) from None


def _require_user(cfg: StoreConfig, user_id: str | None) -> str:
    user = user_id or cfg.user_id
    if not user:
        print_error("No user id: pass --user or set TASKBOARD_USER_ID")
        raise typer.Exit(1)
    return user


@app.callback()
def main(
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Verbose output"),
    ] = False,
):
    """Kanban boards backed by a hosted database.

    Examples:
        taskboard boards                          # List your boards
        taskboard show BOARD                      # Print a board
        taskboard move-task BOARD TASK --over T2  # Drop TASK onto T2
        taskboard move-column BOARD COL --over C3 # Drop COL onto C3
    """
    log_format = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
    logging.basicConfig(level=logging.INFO if verbose else logging.WARNING, format=log_format)


@app.command("boards")
def list_boards(
    user: Annotated[Optional[str], typer.Option("--user", "-u", help="Owner user id")] = None,
):
    """List boards owned by a user."""

    async def _action(store: BoardStore, cfg: StoreConfig):
        return await store.list_boards(_require_user(cfg, user))

    boards = _run(_action)
    if not boards:
        print_info("No boards yet")
        return
    print_boards_table(boards)


@app.command("show")
def show(board_id: Annotated[str, typer.Argument(help="Board id")]):
    """Print a board with its columns and tasks."""

    async def _action(store: BoardStore, cfg: StoreConfig):
        return await store.get_board_with_columns(board_id)

    data = _run(_action)
    render_board(data.board, data.hierarchy)


@app.command("create-board")
def create_board(
    title: Annotated[str, typer.Argument(help="Board title")],
    description: Annotated[
        Optional[str], typer.Option("--description", "-d", help="Board description")
    ] = None,
    color: Annotated[str, typer.Option("--color", help="Color tag")] = "blue",
    user: Annotated[Optional[str], typer.Option("--user", "-u", help="Owner user id")] = None,
):
    """Create a board with the default columns."""

    async def _action(store: BoardStore, cfg: StoreConfig):
        return await store.create_board_with_default_columns(
            title, _require_user(cfg, user), description=description, color=color
        )

    board = _run(_action)
    print_success(f"Created board {board.title} ({board.id})")


@app.command("delete-board")
def delete_board(
    board_ids: Annotated[list[str], typer.Argument(help="Board id(s)")],
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation")] = False,
):
    """Delete one or more boards and everything on them."""
    if not yes and not typer.confirm(f"Delete {len(board_ids)} board(s)?"):
        raise typer.Exit(0)

    async def _action(store: BoardStore, cfg: StoreConfig):
        await store.bulk_delete_boards(board_ids)

    _run(_action)
    print_success(f"Deleted {len(board_ids)} board(s)")


async def _with_session(
    store: BoardStore,
    board_id: str,
    step: Callable[[BoardSession], Awaitable[ReconcileReport | None]],
) -> tuple[BoardSession, ReconcileReport | None, list[Event]]:
    session = BoardSession(store, board_id, events=event_manager)
    async with event_manager.watch_board(board_id) as queue:
        await session.load()
        report = await step(session)
        await session.drain()
        notices = pending(queue)
    return session, report, notices


def _finish(
    session: BoardSession, report: ReconcileReport | None, notices: list[Event], done: str
) -> None:
    for event in notices:
        if event.event_type == EventType.REORDER_FAILED:
            ids = ", ".join(event.data["entity_ids"])
            print_warning(f"Could not save new positions for {ids}; restored previous order")
        elif event.event_type == EventType.REORDER_REPAIRED and event.data["failed_ids"]:
            ids = ", ".join(event.data["failed_ids"])
            print_warning(f"Stored order may be off for {ids}; reload with 'show'")

    if report is None:
        print_info("Nothing changed")
    elif report.ok:
        print_success(done)
    render_board(session.board, session.hierarchy)
    if report is not None and not report.ok:
        raise typer.Exit(1)


@app.command("add-column")
def add_column(
    board_id: Annotated[str, typer.Argument(help="Board id")],
    title: Annotated[str, typer.Argument(help="Column title")],
):
    """Append a column to a board."""

    async def _action(store: BoardStore, cfg: StoreConfig):
        return await _with_session(store, board_id, lambda s: s.add_column(title))

    _finish(*_run(_action), f"Added column {title}")


@app.command("add-task")
def add_task(
    board_id: Annotated[str, typer.Argument(help="Board id")],
    column_id: Annotated[str, typer.Argument(help="Column id")],
    title: Annotated[str, typer.Argument(help="Task title")],
    description: Annotated[
        Optional[str], typer.Option("--description", "-d", help="Task description")
    ] = None,
    assignee: Annotated[Optional[str], typer.Option("--assignee", "-a", help="Assignee")] = None,
    due: Annotated[Optional[str], typer.Option("--due", help="Due date (YYYY-MM-DD)")] = None,
    priority: Annotated[
        Priority, typer.Option("--priority", "-p", help="Priority")
    ] = Priority.MEDIUM,
):
    """Add a task at the bottom of a column."""
    if not title.strip():
        print_error("Task title cannot be empty")
        raise typer.Exit(1)

    data = TaskCreate(
        column_id=column_id,
        title=title.strip(),
        description=description or None,
        assignee=assignee or None,
        due_date=due or None,
        priority=priority,
    )

    async def _action(store: BoardStore, cfg: StoreConfig):
        return await _with_session(store, board_id, lambda s: s.add_task(data))

    _finish(*_run(_action), f"Added task {data.title}")


@app.command("delete-task")
def delete_task(
    board_id: Annotated[str, typer.Argument(help="Board id")],
    task_id: Annotated[str, typer.Argument(help="Task id")],
):
    """Delete a task and close the gap in its column."""

    async def _action(store: BoardStore, cfg: StoreConfig):
        return await _with_session(store, board_id, lambda s: s.delete_task(task_id))

    _finish(*_run(_action), f"Deleted task {task_id}")


@app.command("move-task")
def move_task(
    board_id: Annotated[str, typer.Argument(help="Board id")],
    task_id: Annotated[str, typer.Argument(help="Task being dragged")],
    over: Annotated[str, typer.Option("--over", "-o", help="Task or column dropped on")],
    over_type: Annotated[
        Optional[ItemType],
        typer.Option("--over-type", help="Kind of drop target (detected when omitted)"),
    ] = None,
):
    """Drag a task onto another task (takes its slot) or onto a column (appends)."""
    drag = DragDescriptor(
        active_id=task_id, active_type=ItemType.TASK, over_id=over, over_type=over_type
    )

    async def _action(store: BoardStore, cfg: StoreConfig):
        return await _with_session(store, board_id, lambda s: s.apply_drag(drag))

    _finish(*_run(_action), f"Moved task {task_id}")


@app.command("move-column")
def move_column(
    board_id: Annotated[str, typer.Argument(help="Board id")],
    column_id: Annotated[str, typer.Argument(help="Column being dragged")],
    over: Annotated[str, typer.Option("--over", "-o", help="Column (or task in it) dropped on")],
):
    """Drag a column onto another column's slot."""
    drag = DragDescriptor(active_id=column_id, active_type=ItemType.COLUMN, over_id=over)

    async def _action(store: BoardStore, cfg: StoreConfig):
        return await _with_session(store, board_id, lambda s: s.apply_drag(drag))

    _finish(*_run(_action), f"Moved column {column_id}")


@app.command("version")
def version():
    """Show version information."""
    from .. import __version__

    console.print(f"taskboard version: {__version__}")
