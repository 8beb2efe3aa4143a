"""Board event models."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class EventType(StrEnum):
    # Task events
    TASK_CREATED = "task_created"
    TASK_MOVED = "task_moved"
    TASK_UPDATED = "task_updated"
    TASK_DELETED = "task_deleted"
    # Column events
    COLUMN_CREATED = "column_created"
    COLUMN_UPDATED = "column_updated"
    COLUMN_DELETED = "column_deleted"
    COLUMN_REORDERED = "column_reordered"
    # Reconciliation
    REORDER_FAILED = "reorder_failed"
    REORDER_REPAIRED = "reorder_repaired"


@dataclass
class Event:
    event_type: EventType
    data: dict[str, Any] = field(default_factory=dict)
    channel: str = ""
