"""Board session - optimistic updates reconciled against the backend.

A BoardSession owns the current hierarchy snapshot for one open board. Drags
are applied locally first, then the resulting position updates are sent to
the store. Updates for the same entity go out strictly in the order they
were produced, even across consecutive drags; updates for different
entities are sent concurrently and one failure never holds up another.
Failed entities snap back to the slot the backend last confirmed, unless a
newer update for them has been queued since; that one decides instead.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from typing import Any

from ..board.models import (
    Board,
    ColumnCreate,
    ColumnUpdate,
    Hierarchy,
    TaskCreate,
    TaskUpdate,
)
from ..board.reorder import (
    ColumnPositionUpdate,
    DragDescriptor,
    InvalidReference,
    ItemType,
    PositionUpdate,
    ReorderResult,
    insert_column,
    insert_task,
    remove_column,
    remove_task,
    replace_column,
    replace_task,
    resolve_drag_event,
    rollback,
)
from ..events import Event, EventManager, EventType, event_manager
from ..store.client import BoardStore, PartialBatchFailure, PersistenceFailure

logger = logging.getLogger(__name__)


@dataclass
class OpFailure:
    op: PositionUpdate
    error: PersistenceFailure


@dataclass
class ReconcileReport:
    """What happened to the updates of one reorder."""

    succeeded: list[PositionUpdate] = field(default_factory=list)
    failed: list[OpFailure] = field(default_factory=list)
    # Failed, but a newer update for the same entity was queued after it
    superseded: list[OpFailure] = field(default_factory=list)
    repaired: list[PositionUpdate] = field(default_factory=list)
    repair_failed: list[OpFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed

    def raise_for_failures(self) -> None:
        """Raise if any update failed.

        Raises:
            PartialBatchFailure: Some updates were persisted, some were not.
            PersistenceFailure: Every update failed.
        """
        if not self.failed:
            return
        first = self.failed[0].error
        unrepaired = [f.op.entity_id for f in self.repair_failed]
        if self.succeeded:
            raise PartialBatchFailure(
                [op.entity_id for op in self.succeeded],
                [f.op.entity_id for f in self.failed],
                detail=first.detail,
                unrepaired_ids=unrepaired,
            )
        message = f"{len(self.failed)} position update(s) failed: {first.message}"
        if unrepaired:
            message += f"; stored order left inconsistent for {', '.join(unrepaired)}"
        raise PersistenceFailure(message, status_code=first.status_code, detail=first.detail)


class BoardSession:
    """Current state of one board plus the optimistic-update protocol."""

    def __init__(
        self,
        store: BoardStore,
        board_id: str,
        events: EventManager | None = None,
    ):
        self.store = store
        self.board_id = board_id
        self.board: Board | None = None
        self.hierarchy: Hierarchy | None = None
        self._events = events or event_manager
        self._inflight: dict[str, asyncio.Task[PersistenceFailure | None]] = {}
        # Newest update queued per entity, and the position the backend
        # last confirmed for it (column_id is None for columns).
        self._latest: dict[str, PositionUpdate] = {}
        self._stored: dict[str, tuple[str | None, int]] = {}
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def load(self) -> Hierarchy:
        """Hydrate the board from the store."""
        data = await self.store.get_board_with_columns(self.board_id)
        self.board = data.board
        self.hierarchy = data.hierarchy
        self._latest.clear()
        self._stored.clear()
        self._closed = False
        logger.debug(
            "Loaded board %s with %d columns", self.board_id, len(self.hierarchy.columns)
        )
        return self.hierarchy

    def close(self) -> None:
        """Forget the board (e.g. the user navigated away).

        Writes already in flight keep going; their failures are only logged.
        """
        self._closed = True
        self.hierarchy = None

    async def drain(self) -> None:
        """Wait until every in-flight write has finished."""
        while self._inflight:
            await asyncio.wait(list(self._inflight.values()))

    # --- Drag and drop ---

    async def apply_drag(self, drag: DragDescriptor) -> ReconcileReport | None:
        """Apply a drag-end gesture optimistically and persist it.

        Returns None when the drag changes nothing (or names an unknown
        entity), otherwise a report of what the backend accepted.
        """
        hierarchy = self._current()
        try:
            result = resolve_drag_event(hierarchy, drag)
        except InvalidReference as e:
            logger.warning("Ignoring drag on board %s: %s", self.board_id, e)
            return None
        if result is None:
            return None

        self.hierarchy = result.hierarchy
        if drag.active_type == ItemType.COLUMN:
            await self._publish(
                EventType.COLUMN_REORDERED,
                {"column_ids": [c.id for c in result.hierarchy.columns]},
            )
        else:
            from_col, _ = hierarchy.locate_task(drag.active_id)
            to_col, position = result.hierarchy.locate_task(drag.active_id)
            await self._publish(
                EventType.TASK_MOVED,
                {
                    "task_id": drag.active_id,
                    "from_column": hierarchy.columns[from_col].id,
                    "to_column": result.hierarchy.columns[to_col].id,
                    "position": position,
                },
            )

        return await self._reconcile(result.ops)

    # --- Direct edits ---

    async def add_task(self, data: TaskCreate) -> ReconcileReport:
        """Create a task at the end of its column."""
        hierarchy = self._current()
        column = hierarchy.column(data.column_id)
        if column is None:
            raise InvalidReference(data.column_id, ItemType.COLUMN)

        task = await self.store.create_task(data.model_copy(update={"sort_order": len(column.tasks)}))
        result = insert_task(self._current(), task)
        await self._publish(EventType.TASK_CREATED, {"task": task.model_dump(mode="json")})
        return await self._commit(result)

    async def add_column(self, title: str) -> ReconcileReport:
        """Create a column at the right end of the board."""
        hierarchy = self._current()
        user_id = self.board.user_id if self.board else ""
        column = await self.store.create_column(
            ColumnCreate(
                board_id=self.board_id,
                title=title,
                user_id=user_id,
                sort_order=len(hierarchy.columns),
            )
        )
        result = insert_column(self._current(), column)
        await self._publish(EventType.COLUMN_CREATED, {"column": column.model_dump(mode="json")})
        return await self._commit(result)

    async def edit_task(self, task_id: str, data: TaskUpdate) -> None:
        if not self._current().has_task(task_id):
            raise InvalidReference(task_id, ItemType.TASK)
        task = await self.store.update_task(task_id, data.model_dump(mode="json", exclude_unset=True))
        self.hierarchy = replace_task(self._current(), task).hierarchy
        await self._publish(EventType.TASK_UPDATED, {"task": task.model_dump(mode="json")})

    async def edit_column(self, column_id: str, data: ColumnUpdate) -> None:
        if not self._current().has_column(column_id):
            raise InvalidReference(column_id, ItemType.COLUMN)
        column = await self.store.update_column(column_id, data.model_dump(exclude_unset=True))
        self.hierarchy = replace_column(self._current(), column).hierarchy
        await self._publish(EventType.COLUMN_UPDATED, {"column": column.model_dump(mode="json")})

    async def delete_task(self, task_id: str) -> ReconcileReport:
        """Delete a task and close the gap it leaves in its column."""
        if not self._current().has_task(task_id):
            raise InvalidReference(task_id, ItemType.TASK)
        await self.store.delete_task(task_id)
        result = remove_task(self._current(), task_id)
        await self._publish(EventType.TASK_DELETED, {"task_id": task_id})
        return await self._commit(result)

    async def delete_column(self, column_id: str) -> ReconcileReport:
        """Delete a column (the backend cascades its tasks) and close the gap."""
        if not self._current().has_column(column_id):
            raise InvalidReference(column_id, ItemType.COLUMN)
        await self.store.delete_column(column_id)
        result = remove_column(self._current(), column_id)
        await self._publish(EventType.COLUMN_DELETED, {"column_id": column_id})
        return await self._commit(result)

    # --- Reconciliation ---

    async def _commit(self, result: ReorderResult) -> ReconcileReport:
        self.hierarchy = result.hierarchy
        return await self._reconcile(result.ops)

    async def _reconcile(self, ops: Iterable[PositionUpdate]) -> ReconcileReport:
        ops = list(ops)
        report = ReconcileReport()
        for op, error in zip(ops, await self._dispatch(ops)):
            if error is None:
                report.succeeded.append(op)
            elif self._latest.get(op.entity_id) is not op:
                # A newer update for this entity decides where it ends up
                logger.info("Failed update for %s was superseded", op.entity_id)
                report.superseded.append(OpFailure(op=op, error=error))
            else:
                report.failed.append(OpFailure(op=op, error=error))

        if report.ok:
            return report

        failed_ids = [f.op.entity_id for f in report.failed]
        if self._closed or self.hierarchy is None:
            logger.warning(
                "Board %s closed; not rolling back failed updates for %s",
                self.board_id,
                ", ".join(failed_ids),
            )
            return report

        repaired = rollback(self.hierarchy, [self._as_stored(f.op) for f in report.failed])
        self.hierarchy = repaired.hierarchy
        logger.warning(
            "Rolled back %d of %d position updates on board %s",
            len(report.failed),
            len(ops),
            self.board_id,
        )
        await self._publish(
            EventType.REORDER_FAILED,
            {
                "entity_ids": failed_ids,
                "message": report.failed[0].error.message,
            },
        )

        if repaired.ops:
            # Single pass: a failed repair leaves a gap or duplicate in the
            # stored positions, which loading tolerates.
            repair_ops = list(repaired.ops)
            for op, error in zip(repair_ops, await self._dispatch(repair_ops)):
                if error is None:
                    report.repaired.append(op)
                else:
                    report.repair_failed.append(OpFailure(op=op, error=error))
            if report.repair_failed:
                logger.warning(
                    "Stored positions on board %s left inconsistent for %s",
                    self.board_id,
                    ", ".join(f.op.entity_id for f in report.repair_failed),
                )
            await self._publish(
                EventType.REORDER_REPAIRED,
                {
                    "entity_ids": [op.entity_id for op in report.repaired],
                    "failed_ids": [f.op.entity_id for f in report.repair_failed],
                },
            )
        return report

    def _as_stored(self, op: PositionUpdate) -> PositionUpdate:
        """Point a failed update's previous position at what the backend last confirmed."""
        column_id, sort_order = self._stored.get(op.entity_id, _previous_position(op))
        if isinstance(op, ColumnPositionUpdate):
            return replace(op, previous_sort_order=sort_order)
        return replace(op, previous_column_id=column_id, previous_sort_order=sort_order)

    async def _dispatch(self, ops: list[PositionUpdate]) -> list[PersistenceFailure | None]:
        if not ops:
            return []
        return list(await asyncio.gather(*(self._submit(op) for op in ops)))

    def _submit(self, op: PositionUpdate) -> asyncio.Task[PersistenceFailure | None]:
        # Nothing was sent for this entity since loading: the backend
        # still holds the position the op moves it away from.
        self._stored.setdefault(op.entity_id, _previous_position(op))
        self._latest[op.entity_id] = op
        previous = self._inflight.get(op.entity_id)
        task = asyncio.create_task(self._send(op, previous), name=f"persist-{op.entity_id}")
        self._inflight[op.entity_id] = task
        task.add_done_callback(lambda t, key=op.entity_id: self._forget(key, t))
        return task

    def _forget(self, entity_id: str, task: asyncio.Task[Any]) -> None:
        if self._inflight.get(entity_id) is task:
            del self._inflight[entity_id]

    async def _send(
        self, op: PositionUpdate, previous: asyncio.Task[Any] | None
    ) -> PersistenceFailure | None:
        if previous is not None:
            # Outcome of the earlier write does not matter, only its order
            await asyncio.wait([previous])
        try:
            await self.store.apply_op(op)
        except PersistenceFailure as e:
            logger.warning("Position update for %s failed: %s", op.entity_id, e.message)
            return e
        self._stored[op.entity_id] = _target_position(op)
        return None

    # --- Internal ---

    def _current(self) -> Hierarchy:
        if self.hierarchy is None:
            raise RuntimeError(f"Board {self.board_id} is not loaded")
        return self.hierarchy

    async def _publish(self, event_type: EventType, data: dict[str, Any]) -> None:
        await self._events.publish_to_board(self.board_id, Event(event_type=event_type, data=data))


def _previous_position(op: PositionUpdate) -> tuple[str | None, int]:
    if isinstance(op, ColumnPositionUpdate):
        return None, op.previous_sort_order
    return op.previous_column_id, op.previous_sort_order


def _target_position(op: PositionUpdate) -> tuple[str | None, int]:
    if isinstance(op, ColumnPositionUpdate):
        return None, op.sort_order
    return op.column_id, op.sort_order
