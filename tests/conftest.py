"""Shared fixtures for building board hierarchies."""

from __future__ import annotations

import pytest

from taskboard.board.models import Column, Hierarchy, Task, build_hierarchy


def _make_hierarchy(layout: dict[str, list[str]], board_id: str = "board-1") -> Hierarchy:
    columns = [
        Column(id=cid, board_id=board_id, title=cid, sort_order=i, user_id="user-1")
        for i, cid in enumerate(layout)
    ]
    tasks = [
        Task(id=tid, column_id=cid, title=f"Task {tid}", sort_order=j)
        for cid, tids in layout.items()
        for j, tid in enumerate(tids)
    ]
    return build_hierarchy(board_id, columns, tasks)


def _layout(hierarchy: Hierarchy) -> dict[str, list[str]]:
    return {c.id: [t.id for t in c.tasks] for c in hierarchy.columns}


@pytest.fixture
def make_hierarchy():
    """Factory: {column_id: [task_id, ...]} -> densely numbered Hierarchy."""
    return _make_hierarchy


@pytest.fixture
def layout():
    """Reduce a hierarchy to {column_id: [task_id, ...]} for assertions."""
    return _layout
