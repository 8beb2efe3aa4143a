"""Board, column and task models."""

from __future__ import annotations

from collections.abc import Iterable
from enum import StrEnum

from pydantic import BaseModel, ConfigDict


class Priority(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Board(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    description: str | None = None
    color: str = "blue"
    user_id: str
    created_at: str = ""
    updated_at: str = ""


class Column(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    board_id: str
    title: str
    sort_order: int = 0
    user_id: str = ""
    created_at: str = ""


class Task(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    column_id: str
    title: str
    description: str | None = None
    assignee: str | None = None
    due_date: str | None = None
    priority: Priority = Priority.MEDIUM
    sort_order: int = 0
    created_at: str = ""
    updated_at: str = ""


class ColumnWithTasks(Column):
    tasks: tuple[Task, ...] = ()


class Hierarchy(BaseModel):
    """Immutable snapshot of a board's columns and their tasks, in display order."""

    model_config = ConfigDict(frozen=True)

    board_id: str
    columns: tuple[ColumnWithTasks, ...] = ()

    def column(self, column_id: str) -> ColumnWithTasks | None:
        for column in self.columns:
            if column.id == column_id:
                return column
        return None

    def column_index(self, column_id: str) -> int | None:
        for index, column in enumerate(self.columns):
            if column.id == column_id:
                return index
        return None

    def has_column(self, column_id: str) -> bool:
        return self.column_index(column_id) is not None

    def locate_task(self, task_id: str) -> tuple[int, int] | None:
        """Return (column index, task index) for a task, or None."""
        for col_index, column in enumerate(self.columns):
            for task_index, task in enumerate(column.tasks):
                if task.id == task_id:
                    return col_index, task_index
        return None

    def has_task(self, task_id: str) -> bool:
        return self.locate_task(task_id) is not None

    def task(self, task_id: str) -> Task | None:
        location = self.locate_task(task_id)
        if location is None:
            return None
        col_index, task_index = location
        return self.columns[col_index].tasks[task_index]


class BoardWithColumns(BaseModel):
    model_config = ConfigDict(frozen=True)

    board: Board
    hierarchy: Hierarchy


def _sibling_key(item: Column | Task) -> tuple[int, str, str]:
    return (item.sort_order, item.created_at, item.id)


def build_hierarchy(
    board_id: str, columns: Iterable[Column], tasks: Iterable[Task]
) -> Hierarchy:
    """Assemble a hierarchy from flat backend rows.

    Siblings are ordered by sort_order, falling back to creation time and id
    when concurrent edits left duplicate positions. Stored sort orders are
    kept as-is; the reorder engine renumbers a list the first time it
    touches it. Tasks pointing at a column outside this board are dropped.
    """
    tasks_by_column: dict[str, list[Task]] = {}
    for task in tasks:
        tasks_by_column.setdefault(task.column_id, []).append(task)

    ordered = []
    for column in sorted(columns, key=_sibling_key):
        if column.board_id != board_id:
            continue
        column_tasks = sorted(tasks_by_column.get(column.id, []), key=_sibling_key)
        ordered.append(
            ColumnWithTasks(**column.model_dump(exclude={"tasks"}), tasks=tuple(column_tasks))
        )
    return Hierarchy(board_id=board_id, columns=tuple(ordered))


# --- Form payloads ---


class BoardCreate(BaseModel):
    title: str
    user_id: str
    description: str | None = None
    color: str = "blue"


class BoardUpdate(BaseModel):
    title: str | None = None
    description: str | None = None
    color: str | None = None


class ColumnCreate(BaseModel):
    board_id: str
    title: str
    user_id: str
    sort_order: int = 0


class ColumnUpdate(BaseModel):
    title: str | None = None


class TaskCreate(BaseModel):
    column_id: str
    title: str
    description: str | None = None
    assignee: str | None = None
    due_date: str | None = None
    priority: Priority = Priority.MEDIUM
    sort_order: int = 0


class TaskUpdate(BaseModel):
    title: str | None = None
    description: str | None = None
    assignee: str | None = None
    due_date: str | None = None
    priority: Priority | None = None
