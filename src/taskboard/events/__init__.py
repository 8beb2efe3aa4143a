"""Board event notifications."""

from .manager import EventManager, board_channel, event_manager, pending
from .models import Event, EventType

__all__ = ["EventManager", "board_channel", "event_manager", "pending", "Event", "EventType"]
