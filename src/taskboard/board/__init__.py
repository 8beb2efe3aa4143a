"""Board data model and reorder engine."""

from .models import (
    Board,
    BoardWithColumns,
    Column,
    ColumnWithTasks,
    Hierarchy,
    Priority,
    Task,
    build_hierarchy,
)
from .reorder import (
    ColumnPositionUpdate,
    DragDescriptor,
    InvalidReference,
    ItemType,
    PositionUpdate,
    ReorderResult,
    TaskPositionUpdate,
    move_task_across_columns,
    move_task_within_column,
    reorder_columns,
    resolve_drag_event,
)

__all__ = [
    "Board",
    "BoardWithColumns",
    "Column",
    "ColumnWithTasks",
    "Hierarchy",
    "Priority",
    "Task",
    "build_hierarchy",
    "ColumnPositionUpdate",
    "DragDescriptor",
    "InvalidReference",
    "ItemType",
    "PositionUpdate",
    "ReorderResult",
    "TaskPositionUpdate",
    "move_task_across_columns",
    "move_task_within_column",
    "reorder_columns",
    "resolve_drag_event",
]
