"""Tests for BoardSession optimistic updates and rollback."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from taskboard.board.models import Board, BoardWithColumns, Column, Task, TaskCreate, TaskUpdate
from taskboard.board.reorder import DragDescriptor, InvalidReference, positions_are_dense
from taskboard.events import EventManager, EventType, pending
from taskboard.store.client import BoardStore, PartialBatchFailure, PersistenceFailure
from taskboard.sync.session import BoardSession

BOARD = Board(id="board-1", title="Project Alpha", user_id="user-1")


def drag(active: str, over: str | None, active_type: str = "task", over_type: str | None = None):
    return DragDescriptor(
        active_id=active, active_type=active_type, over_id=over, over_type=over_type
    )


@pytest.fixture
def events():
    return EventManager()


@pytest.fixture
def mock_store(make_hierarchy):
    store = AsyncMock(spec=BoardStore)
    store.get_board_with_columns.return_value = BoardWithColumns(
        board=BOARD,
        hierarchy=make_hierarchy({"todo": ["T1", "T2", "T3"], "doing": ["U1"], "done": []}),
    )
    return store


@pytest_asyncio.fixture
async def session(mock_store, events):
    session = BoardSession(mock_store, "board-1", events=events)
    await session.load()
    return session


def failing_for(*keys: tuple[str, int]):
    """apply_op side effect failing for the given (entity_id, sort_order) pairs."""

    async def _apply(op):
        if (op.entity_id, op.sort_order) in keys:
            raise PersistenceFailure("permission denied", status_code=403, detail="rls")
        return None

    return _apply


class TestLoad:
    async def test_load_hydrates_board(self, session, mock_store):
        mock_store.get_board_with_columns.assert_awaited_once_with("board-1")
        assert session.board == BOARD
        assert [c.id for c in session.hierarchy.columns] == ["todo", "doing", "done"]

    async def test_requires_load(self, mock_store):
        session = BoardSession(mock_store, "board-1")

        with pytest.raises(RuntimeError):
            await session.apply_drag(drag("T1", "T2"))


class TestApplyDrag:
    async def test_successful_drag_persists_every_op(self, session, mock_store, layout):
        report = await session.apply_drag(drag("T3", "T1"))

        assert report.ok
        assert layout(session.hierarchy)["todo"] == ["T3", "T1", "T2"]
        sent = [call.args[0].entity_id for call in mock_store.apply_op.await_args_list]
        assert sorted(sent) == ["T1", "T2", "T3"]
        assert report.repaired == []

    async def test_noop_drags_send_nothing(self, session, mock_store):
        before = session.hierarchy

        assert await session.apply_drag(drag("T1", None)) is None
        assert await session.apply_drag(drag("T1", "T1")) is None
        assert await session.apply_drag(drag("T1", "todo", over_type="column")) is None

        mock_store.apply_op.assert_not_awaited()
        assert session.hierarchy is before

    async def test_invalid_reference_is_ignored(self, session, mock_store):
        before = session.hierarchy

        assert await session.apply_drag(drag("ghost", "T1")) is None

        assert session.hierarchy is before
        mock_store.apply_op.assert_not_awaited()

    async def test_move_event_published(self, session, events):
        queue = await events.subscribe_board("board-1")

        await session.apply_drag(drag("T2", "done", over_type="column"))

        [event] = pending(queue)
        assert event.event_type == EventType.TASK_MOVED
        assert event.data == {
            "task_id": "T2",
            "from_column": "todo",
            "to_column": "done",
            "position": 0,
        }
        assert event.channel == "board:board-1"

    async def test_column_drag(self, session, mock_store, events):
        queue = await events.subscribe_board("board-1")

        report = await session.apply_drag(drag("done", "todo", active_type="column"))

        assert report.ok
        assert [c.id for c in session.hierarchy.columns] == ["done", "todo", "doing"]
        assert mock_store.apply_op.await_count == 3
        [event] = pending(queue)
        assert event.event_type == EventType.COLUMN_REORDERED


class TestRollback:
    async def test_failed_op_snaps_back(self, session, mock_store, events, layout):
        mock_store.apply_op.side_effect = failing_for(("T3", 0))
        queue = await events.subscribe_board("board-1")

        report = await session.apply_drag(drag("T3", "T1"))

        assert not report.ok
        assert [f.op.entity_id for f in report.failed] == ["T3"]
        assert layout(session.hierarchy)["todo"] == ["T1", "T2", "T3"]
        assert positions_are_dense(session.hierarchy)
        # T1/T2 were persisted at 1/2 and get moved back up
        assert [(op.entity_id, op.sort_order) for op in report.repaired] == [("T1", 0), ("T2", 1)]

        types = [e.event_type for e in pending(queue)]
        assert types == [
            EventType.TASK_MOVED,
            EventType.REORDER_FAILED,
            EventType.REORDER_REPAIRED,
        ]

    async def test_partial_failure_raises_partial(self, session, mock_store):
        mock_store.apply_op.side_effect = failing_for(("T3", 0))

        report = await session.apply_drag(drag("T3", "T1"))

        with pytest.raises(PartialBatchFailure) as exc_info:
            report.raise_for_failures()
        assert exc_info.value.failed_ids == ["T3"]
        assert sorted(exc_info.value.succeeded_ids) == ["T1", "T2"]

    async def test_total_failure_restores_snapshot(self, session, mock_store, layout):
        before = session.hierarchy
        mock_store.apply_op.side_effect = PersistenceFailure("offline")

        report = await session.apply_drag(drag("T1", "U1"))

        assert layout(session.hierarchy) == layout(before)
        assert positions_are_dense(session.hierarchy)
        assert report.repaired == []
        with pytest.raises(PersistenceFailure) as exc_info:
            report.raise_for_failures()
        assert not isinstance(exc_info.value, PartialBatchFailure)

    async def test_failed_cross_column_move(self, session, mock_store, layout):
        mock_store.apply_op.side_effect = failing_for(("T1", 0))

        report = await session.apply_drag(drag("T1", "done", over_type="column"))

        assert [f.op.entity_id for f in report.failed] == ["T1"]
        assert layout(session.hierarchy) == {
            "todo": ["T1", "T2", "T3"],
            "doing": ["U1"],
            "done": [],
        }
        # T2/T3 were renumbered in the source column and must be put back
        assert sorted(op.entity_id for op in report.repaired) == ["T2", "T3"]
        assert positions_are_dense(session.hierarchy)

    async def test_failed_repair_is_reported(self, session, mock_store, events):
        mock_store.apply_op.side_effect = failing_for(("T3", 0), ("T1", 0))
        queue = await events.subscribe_board("board-1")

        report = await session.apply_drag(drag("T3", "T1"))

        assert [(op.entity_id, op.sort_order) for op in report.repaired] == [("T2", 1)]
        assert [(f.op.entity_id, f.op.sort_order) for f in report.repair_failed] == [("T1", 0)]
        with pytest.raises(PartialBatchFailure) as exc_info:
            report.raise_for_failures()
        assert exc_info.value.unrepaired_ids == ["T1"]
        assert "inconsistent for T1" in exc_info.value.message

        repaired_event = pending(queue)[-1]
        assert repaired_event.event_type == EventType.REORDER_REPAIRED
        assert repaired_event.data == {"entity_ids": ["T2"], "failed_ids": ["T1"]}


class TestOrdering:
    async def test_same_entity_ops_stay_in_order(self, session, mock_store):
        gate = asyncio.Event()
        calls: list[tuple[str, int]] = []

        async def _apply(op):
            calls.append((op.entity_id, op.sort_order))
            if (op.entity_id, op.sort_order) == ("T1", 1):
                await gate.wait()

        mock_store.apply_op.side_effect = _apply

        first = asyncio.create_task(session.apply_drag(drag("T2", "T1")))
        await asyncio.sleep(0.01)
        second = asyncio.create_task(session.apply_drag(drag("T1", "T2")))
        await asyncio.sleep(0.01)

        # T2's writes are independent of the stuck T1 write
        assert ("T2", 0) in calls and ("T2", 1) in calls
        assert ("T1", 0) not in calls

        gate.set()
        await asyncio.gather(first, second)

        assert [c for c in calls if c[0] == "T1"] == [("T1", 1), ("T1", 0)]

    async def test_failed_write_does_not_undo_newer_drag(self, session, mock_store, layout):
        gate = asyncio.Event()
        writes: list[tuple[str, str, int]] = []

        async def _apply(op):
            if op.entity_id == "T3" and op.column_id == "todo":
                await gate.wait()
                raise PersistenceFailure("timed out")
            writes.append((op.entity_id, op.column_id, op.sort_order))

        mock_store.apply_op.side_effect = _apply

        first = asyncio.create_task(session.apply_drag(drag("T3", "T1")))
        await asyncio.sleep(0.01)
        second = asyncio.create_task(session.apply_drag(drag("T3", "doing", over_type="column")))
        await asyncio.sleep(0.01)
        gate.set()
        first_report, second_report = await asyncio.gather(first, second)

        assert first_report.ok
        assert [f.op.entity_id for f in first_report.superseded] == ["T3"]
        assert second_report.ok
        assert first_report.repaired == [] and second_report.repaired == []
        assert layout(session.hierarchy) == {"todo": ["T1", "T2"], "doing": ["U1", "T3"], "done": []}
        assert [w for w in writes if w[0] == "T3"] == [("T3", "doing", 1)]

    async def test_rollback_after_two_failed_drags_uses_stored_position(
        self, session, mock_store, layout
    ):
        gate = asyncio.Event()

        async def _apply(op):
            if op.entity_id == "T3":
                if op.column_id == "todo":
                    await gate.wait()
                raise PersistenceFailure("offline")

        mock_store.apply_op.side_effect = _apply

        first = asyncio.create_task(session.apply_drag(drag("T3", "T1")))
        await asyncio.sleep(0.01)
        second = asyncio.create_task(session.apply_drag(drag("T3", "doing", over_type="column")))
        await asyncio.sleep(0.01)
        gate.set()
        first_report, second_report = await asyncio.gather(first, second)

        assert first_report.failed == []
        assert [f.op.entity_id for f in second_report.failed] == ["T3"]
        # Neither write landed, so T3 is back where it was loaded
        assert layout(session.hierarchy) == {
            "todo": ["T1", "T2", "T3"],
            "doing": ["U1"],
            "done": [],
        }
        assert positions_are_dense(session.hierarchy)
        assert second_report.repaired == []

    async def test_close_skips_rollback(self, session, mock_store):
        gate = asyncio.Event()

        async def _apply(op):
            await gate.wait()
            raise PersistenceFailure("too late")

        mock_store.apply_op.side_effect = _apply

        in_flight = asyncio.create_task(session.apply_drag(drag("T3", "T1")))
        await asyncio.sleep(0.01)
        session.close()
        gate.set()
        report = await in_flight

        assert len(report.failed) == 3
        assert session.closed
        assert session.hierarchy is None

    async def test_drain_waits_for_inflight(self, session, mock_store):
        gate = asyncio.Event()

        async def _apply(op):
            await gate.wait()

        mock_store.apply_op.side_effect = _apply

        in_flight = asyncio.create_task(session.apply_drag(drag("T3", "T1")))
        await asyncio.sleep(0.01)
        drained = asyncio.create_task(session.drain())
        await asyncio.sleep(0.01)
        assert not drained.done()

        gate.set()
        await asyncio.gather(in_flight, drained)
        assert session._inflight == {}


class TestDirectEdits:
    async def test_add_task_appends(self, session, mock_store, layout, events):
        mock_store.create_task.return_value = Task(
            id="T4", column_id="todo", title="New", sort_order=3
        )
        queue = await events.subscribe_board("board-1")

        report = await session.add_task(TaskCreate(column_id="todo", title="New"))

        sent = mock_store.create_task.await_args.args[0]
        assert sent.sort_order == 3
        assert layout(session.hierarchy)["todo"] == ["T1", "T2", "T3", "T4"]
        assert report.ok and report.succeeded == []
        [event] = pending(queue)
        assert event.event_type == EventType.TASK_CREATED

    async def test_add_column(self, session, mock_store):
        mock_store.create_column.return_value = Column(
            id="review", board_id="board-1", title="Review", sort_order=3, user_id="user-1"
        )

        await session.add_column("Review")

        sent = mock_store.create_column.await_args.args[0]
        assert (sent.sort_order, sent.user_id) == (3, "user-1")
        assert [c.id for c in session.hierarchy.columns][-1] == "review"

    async def test_delete_task_closes_gap(self, session, mock_store, layout):
        report = await session.delete_task("T1")

        mock_store.delete_task.assert_awaited_once_with("T1")
        assert layout(session.hierarchy)["todo"] == ["T2", "T3"]
        assert [(op.entity_id, op.sort_order) for op in report.succeeded] == [("T2", 0), ("T3", 1)]
        assert positions_are_dense(session.hierarchy)

    async def test_delete_column(self, session, mock_store):
        report = await session.delete_column("todo")

        mock_store.delete_column.assert_awaited_once_with("todo")
        assert [c.id for c in session.hierarchy.columns] == ["doing", "done"]
        assert len(report.succeeded) == 2

    async def test_delete_unknown_task_raises(self, session, mock_store):
        with pytest.raises(InvalidReference):
            await session.delete_task("ghost")
        mock_store.delete_task.assert_not_awaited()

    async def test_edit_task_keeps_slot(self, session, mock_store):
        mock_store.update_task.return_value = Task(
            id="T2", column_id="todo", title="Renamed", priority="high", sort_order=1
        )

        await session.edit_task("T2", TaskUpdate(title="Renamed", priority="high"))

        mock_store.update_task.assert_awaited_once_with(
            "T2", {"title": "Renamed", "priority": "high"}
        )
        assert session.hierarchy.task("T2").title == "Renamed"
        assert session.hierarchy.locate_task("T2") == (0, 1)

    async def test_edit_task_can_clear_fields(self, session, mock_store):
        mock_store.update_task.return_value = Task(
            id="T2", column_id="todo", title="Task T2", sort_order=1
        )

        await session.edit_task("T2", TaskUpdate(assignee=None, due_date=None))

        mock_store.update_task.assert_awaited_once_with("T2", {"assignee": None, "due_date": None})

    async def test_failed_store_call_leaves_state(self, session, mock_store):
        before = session.hierarchy
        mock_store.delete_task.side_effect = PersistenceFailure("nope", status_code=403)

        with pytest.raises(PersistenceFailure):
            await session.delete_task("T1")

        assert session.hierarchy is before
