"""Reorder engine - pure drag-and-drop ordering logic.

Every operation takes a Hierarchy snapshot and returns a new one together
with the position updates needed to bring the backend in line with it.
Nothing here performs I/O or mutates its input, so callers can keep the old
snapshot around for rollback.

Sibling lists touched by an operation are renumbered densely (0..n-1); an
update is emitted only for entities whose stored (column_id, sort_order)
actually changed.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from enum import StrEnum

from pydantic import BaseModel, ConfigDict

from .models import Column, ColumnWithTasks, Hierarchy, Task


class ItemType(StrEnum):
    TASK = "task"
    COLUMN = "column"


class InvalidReference(ValueError):
    """Raised when a drag or edit names an entity missing from the hierarchy."""

    def __init__(self, entity_id: str, item_type: ItemType | None = None):
        self.entity_id = entity_id
        self.item_type = item_type
        kind = item_type.value if item_type else "item"
        super().__init__(f"Unknown {kind} {entity_id!r}")


class DragDescriptor(BaseModel):
    """Normalized drag-end gesture. over_id is None when the drop was cancelled."""

    model_config = ConfigDict(frozen=True)

    active_id: str
    active_type: ItemType
    over_id: str | None = None
    over_type: ItemType | None = None


@dataclass(frozen=True)
class ColumnPositionUpdate:
    column_id: str
    sort_order: int
    previous_sort_order: int

    @property
    def entity_id(self) -> str:
        return self.column_id


@dataclass(frozen=True)
class TaskPositionUpdate:
    task_id: str
    column_id: str
    sort_order: int
    previous_column_id: str
    previous_sort_order: int

    @property
    def entity_id(self) -> str:
        return self.task_id

    @property
    def moves_parent(self) -> bool:
        return self.column_id != self.previous_column_id


PositionUpdate = ColumnPositionUpdate | TaskPositionUpdate


@dataclass(frozen=True)
class ReorderResult:
    hierarchy: Hierarchy
    ops: tuple[PositionUpdate, ...] = ()


# --- Helpers ---


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(value, high))


def _renumber_tasks(
    column_id: str, tasks: Sequence[Task]
) -> tuple[tuple[Task, ...], list[TaskPositionUpdate]]:
    renumbered: list[Task] = []
    ops: list[TaskPositionUpdate] = []
    for index, task in enumerate(tasks):
        if task.column_id == column_id and task.sort_order == index:
            renumbered.append(task)
            continue
        renumbered.append(task.model_copy(update={"column_id": column_id, "sort_order": index}))
        ops.append(
            TaskPositionUpdate(
                task_id=task.id,
                column_id=column_id,
                sort_order=index,
                previous_column_id=task.column_id,
                previous_sort_order=task.sort_order,
            )
        )
    return tuple(renumbered), ops


def _renumber_columns(
    columns: Sequence[ColumnWithTasks],
) -> tuple[tuple[ColumnWithTasks, ...], list[ColumnPositionUpdate]]:
    renumbered: list[ColumnWithTasks] = []
    ops: list[ColumnPositionUpdate] = []
    for index, column in enumerate(columns):
        if column.sort_order == index:
            renumbered.append(column)
            continue
        renumbered.append(column.model_copy(update={"sort_order": index}))
        ops.append(
            ColumnPositionUpdate(
                column_id=column.id,
                sort_order=index,
                previous_sort_order=column.sort_order,
            )
        )
    return tuple(renumbered), ops


def _moved_first(ops: Iterable[PositionUpdate], entity_id: str) -> tuple[PositionUpdate, ...]:
    return tuple(sorted(ops, key=lambda op: op.entity_id != entity_id))


def _with_column(hierarchy: Hierarchy, index: int, column: ColumnWithTasks) -> Hierarchy:
    columns = list(hierarchy.columns)
    columns[index] = column
    return hierarchy.model_copy(update={"columns": tuple(columns)})


def _require_column(hierarchy: Hierarchy, column_id: str) -> int:
    index = hierarchy.column_index(column_id)
    if index is None:
        raise InvalidReference(column_id, ItemType.COLUMN)
    return index


def _require_task(hierarchy: Hierarchy, task_id: str) -> tuple[int, int]:
    location = hierarchy.locate_task(task_id)
    if location is None:
        raise InvalidReference(task_id, ItemType.TASK)
    return location


def _task_index(column: ColumnWithTasks, task_id: str) -> int:
    for index, task in enumerate(column.tasks):
        if task.id == task_id:
            return index
    raise InvalidReference(task_id, ItemType.TASK)


# --- Moves ---


def reorder_columns(hierarchy: Hierarchy, column_id: str, target_index: int) -> ReorderResult:
    """Move a column to target_index (clamped) among its siblings."""
    index = _require_column(hierarchy, column_id)
    columns = list(hierarchy.columns)
    column = columns.pop(index)
    columns.insert(_clamp(target_index, 0, len(columns)), column)

    renumbered, ops = _renumber_columns(columns)
    return ReorderResult(
        hierarchy=hierarchy.model_copy(update={"columns": renumbered}),
        ops=_moved_first(ops, column_id),
    )


def move_task_within_column(
    hierarchy: Hierarchy, column_id: str, task_id: str, target_index: int
) -> ReorderResult:
    """Move a task to target_index (clamped) inside its own column."""
    col_index = _require_column(hierarchy, column_id)
    column = hierarchy.columns[col_index]
    index = _task_index(column, task_id)

    tasks = list(column.tasks)
    task = tasks.pop(index)
    tasks.insert(_clamp(target_index, 0, len(tasks)), task)

    renumbered, ops = _renumber_tasks(column.id, tasks)
    return ReorderResult(
        hierarchy=_with_column(hierarchy, col_index, column.model_copy(update={"tasks": renumbered})),
        ops=_moved_first(ops, task_id),
    )


def move_task_across_columns(
    hierarchy: Hierarchy,
    task_id: str,
    source_column_id: str,
    target_column_id: str,
    target_index: int,
) -> ReorderResult:
    """Move a task into another column at target_index.

    target_index is clamped to [0, len(target tasks)]; the length itself
    appends. The moved task's update comes first, followed by renumbered
    siblings of the source column and then of the target column.
    """
    if source_column_id == target_column_id:
        return move_task_within_column(hierarchy, source_column_id, task_id, target_index)

    src_index = _require_column(hierarchy, source_column_id)
    dst_index = _require_column(hierarchy, target_column_id)
    source = hierarchy.columns[src_index]
    target = hierarchy.columns[dst_index]

    source_tasks = list(source.tasks)
    task = source_tasks.pop(_task_index(source, task_id))
    target_tasks = list(target.tasks)
    target_tasks.insert(_clamp(target_index, 0, len(target_tasks)), task)

    source_renumbered, source_ops = _renumber_tasks(source.id, source_tasks)
    target_renumbered, target_ops = _renumber_tasks(target.id, target_tasks)

    columns = list(hierarchy.columns)
    columns[src_index] = source.model_copy(update={"tasks": source_renumbered})
    columns[dst_index] = target.model_copy(update={"tasks": target_renumbered})

    moved = [op for op in target_ops if op.task_id == task_id]
    displaced = [op for op in target_ops if op.task_id != task_id]
    return ReorderResult(
        hierarchy=hierarchy.model_copy(update={"columns": tuple(columns)}),
        ops=(*moved, *source_ops, *displaced),
    )


def _over_type(hierarchy: Hierarchy, drag: DragDescriptor) -> ItemType:
    if drag.over_type is not None:
        return drag.over_type
    if hierarchy.has_task(drag.over_id):
        return ItemType.TASK
    if hierarchy.has_column(drag.over_id):
        return ItemType.COLUMN
    raise InvalidReference(drag.over_id)


def _resolve_column_drag(hierarchy: Hierarchy, drag: DragDescriptor) -> ReorderResult | None:
    index = _require_column(hierarchy, drag.active_id)
    if _over_type(hierarchy, drag) == ItemType.TASK:
        # Hovering a task inside another column counts as hovering that column
        target, _ = _require_task(hierarchy, drag.over_id)
    else:
        target = _require_column(hierarchy, drag.over_id)

    if target == index:
        return None
    return reorder_columns(hierarchy, drag.active_id, target)


def _resolve_task_drag(hierarchy: Hierarchy, drag: DragDescriptor) -> ReorderResult | None:
    src_col, src_index = _require_task(hierarchy, drag.active_id)

    if _over_type(hierarchy, drag) == ItemType.TASK:
        dst_col, target_index = _require_task(hierarchy, drag.over_id)
    else:
        dst_col = _require_column(hierarchy, drag.over_id)
        if dst_col == src_col:
            return None
        target_index = len(hierarchy.columns[dst_col].tasks)

    source_id = hierarchy.columns[src_col].id
    if dst_col == src_col:
        if target_index == src_index:
            return None
        return move_task_within_column(hierarchy, source_id, drag.active_id, target_index)

    return move_task_across_columns(
        hierarchy, drag.active_id, source_id, hierarchy.columns[dst_col].id, target_index
    )


def resolve_drag_event(hierarchy: Hierarchy, drag: DragDescriptor) -> ReorderResult | None:
    """Turn a drag-end gesture into a reorder.

    Dropping on a task takes that task's slot (the hovered task shifts
    toward where the dragged one came from). Dropping on a column container
    appends to that column, which for an empty column means index 0.

    Returns None when nothing should change: the drop was cancelled, the
    item was dropped on itself, or the resulting position equals the
    current one.

    Raises:
        InvalidReference: active_id or over_id is not in the hierarchy.
    """
    if drag.over_id is None or drag.active_id == drag.over_id:
        return None
    if drag.active_type == ItemType.COLUMN:
        return _resolve_column_drag(hierarchy, drag)
    return _resolve_task_drag(hierarchy, drag)


# --- Lifecycle ---


def insert_task(hierarchy: Hierarchy, task: Task, index: int | None = None) -> ReorderResult:
    """Place a newly created task in its column (appended unless index is given)."""
    col_index = _require_column(hierarchy, task.column_id)
    if hierarchy.has_task(task.id):
        raise ValueError(f"Task {task.id!r} is already on the board")

    column = hierarchy.columns[col_index]
    tasks = list(column.tasks)
    position = len(tasks) if index is None else _clamp(index, 0, len(tasks))
    tasks.insert(position, task)

    renumbered, ops = _renumber_tasks(column.id, tasks)
    return ReorderResult(
        hierarchy=_with_column(hierarchy, col_index, column.model_copy(update={"tasks": renumbered})),
        ops=_moved_first(ops, task.id),
    )


def insert_column(hierarchy: Hierarchy, column: Column, index: int | None = None) -> ReorderResult:
    """Place a newly created column on the board (appended unless index is given)."""
    if column.board_id != hierarchy.board_id:
        raise ValueError(
            f"Column {column.id!r} belongs to board {column.board_id!r}, "
            f"not {hierarchy.board_id!r}"
        )
    if hierarchy.has_column(column.id):
        raise ValueError(f"Column {column.id!r} is already on the board")

    new_column = (
        column
        if isinstance(column, ColumnWithTasks)
        else ColumnWithTasks(**column.model_dump())
    )
    columns = list(hierarchy.columns)
    position = len(columns) if index is None else _clamp(index, 0, len(columns))
    columns.insert(position, new_column)

    renumbered, ops = _renumber_columns(columns)
    return ReorderResult(
        hierarchy=hierarchy.model_copy(update={"columns": renumbered}),
        ops=_moved_first(ops, column.id),
    )


def remove_task(hierarchy: Hierarchy, task_id: str) -> ReorderResult:
    """Drop a deleted task and close the gap it leaves."""
    col_index, task_index = _require_task(hierarchy, task_id)
    column = hierarchy.columns[col_index]
    tasks = list(column.tasks)
    del tasks[task_index]

    renumbered, ops = _renumber_tasks(column.id, tasks)
    return ReorderResult(
        hierarchy=_with_column(hierarchy, col_index, column.model_copy(update={"tasks": renumbered})),
        ops=tuple(ops),
    )


def remove_column(hierarchy: Hierarchy, column_id: str) -> ReorderResult:
    """Drop a deleted column (and its tasks) and close the gap."""
    index = _require_column(hierarchy, column_id)
    columns = list(hierarchy.columns)
    del columns[index]

    renumbered, ops = _renumber_columns(columns)
    return ReorderResult(
        hierarchy=hierarchy.model_copy(update={"columns": renumbered}),
        ops=tuple(ops),
    )


def replace_task(hierarchy: Hierarchy, task: Task) -> ReorderResult:
    """Swap in an edited task, keeping its current slot."""
    col_index, task_index = _require_task(hierarchy, task.id)
    column = hierarchy.columns[col_index]
    current = column.tasks[task_index]

    tasks = list(column.tasks)
    tasks[task_index] = task.model_copy(
        update={"column_id": current.column_id, "sort_order": current.sort_order}
    )
    return ReorderResult(
        hierarchy=_with_column(hierarchy, col_index, column.model_copy(update={"tasks": tuple(tasks)}))
    )


def replace_column(hierarchy: Hierarchy, column: Column) -> ReorderResult:
    """Swap in an edited column, keeping its slot and its tasks."""
    index = _require_column(hierarchy, column.id)
    current = hierarchy.columns[index]
    fields = column.model_dump(exclude={"id", "board_id", "sort_order", "tasks"})
    return ReorderResult(hierarchy=_with_column(hierarchy, index, current.model_copy(update=fields)))


# --- Reconciliation ---


def rollback(hierarchy: Hierarchy, failed_ops: Iterable[PositionUpdate]) -> ReorderResult:
    """Snap entities whose update failed back to their pre-drag slot.

    Entities whose updates went through stay where they are. Every failed
    entity is pulled out of its current list and reinserted at its previous
    index in its previous column, after which affected lists are renumbered.
    The returned ops are repairs: entities whose stored position no longer
    matches the dense order (typically siblings persisted around a failed
    move). A failed task whose previous column is gone is dropped, since the
    backend deleted it with the column.
    """
    failed_columns: dict[str, ColumnPositionUpdate] = {}
    failed_tasks: dict[str, TaskPositionUpdate] = {}
    for op in failed_ops:
        if isinstance(op, ColumnPositionUpdate):
            failed_columns.setdefault(op.column_id, op)
        else:
            failed_tasks.setdefault(op.task_id, op)

    columns = list(hierarchy.columns)
    repairs: list[PositionUpdate] = []

    if failed_columns:
        kept = [c for c in columns if c.id not in failed_columns]
        pulled = sorted(
            (c for c in columns if c.id in failed_columns),
            key=lambda c: failed_columns[c.id].previous_sort_order,
        )
        for column in pulled:
            previous = failed_columns[column.id].previous_sort_order
            kept.insert(
                _clamp(previous, 0, len(kept)),
                column.model_copy(update={"sort_order": previous}),
            )
        renumbered_columns, column_ops = _renumber_columns(kept)
        columns = list(renumbered_columns)
        repairs.extend(column_ops)

    if failed_tasks:
        lists: dict[str, list[Task]] = {}
        pulled_tasks: list[Task] = []
        for column in columns:
            lists[column.id] = []
            for task in column.tasks:
                if task.id in failed_tasks:
                    pulled_tasks.append(task)
                else:
                    lists[column.id].append(task)

        pulled_tasks.sort(key=lambda t: failed_tasks[t.id].previous_sort_order)
        for task in pulled_tasks:
            op = failed_tasks[task.id]
            home = lists.get(op.previous_column_id)
            if home is None:
                continue
            home.insert(
                _clamp(op.previous_sort_order, 0, len(home)),
                task.model_copy(
                    update={
                        "column_id": op.previous_column_id,
                        "sort_order": op.previous_sort_order,
                    }
                ),
            )

        for index, column in enumerate(columns):
            renumbered, task_ops = _renumber_tasks(column.id, lists[column.id])
            columns[index] = column.model_copy(update={"tasks": renumbered})
            repairs.extend(task_ops)

    return ReorderResult(
        hierarchy=hierarchy.model_copy(update={"columns": tuple(columns)}),
        ops=tuple(repairs),
    )


def positions_are_dense(hierarchy: Hierarchy) -> bool:
    """True when every sibling list is numbered exactly 0..n-1."""
    for col_index, column in enumerate(hierarchy.columns):
        if column.sort_order != col_index:
            return False
        for task_index, task in enumerate(column.tasks):
            if task.sort_order != task_index or task.column_id != column.id:
                return False
    return True
