"""EventManager - in-memory pub/sub for board notifications."""

from __future__ import annotations

import asyncio
import contextlib
from collections import defaultdict
from collections.abc import AsyncIterator

from .models import Event


def board_channel(board_id: str) -> str:
    return f"board:{board_id}"


class EventManager:
    """In-memory pub/sub keyed by channel name.

    Each subscriber gets a bounded queue. A subscriber that falls behind
    misses events rather than slowing down the session publishing them.
    """

    def __init__(self, maxsize: int = 100) -> None:
        self._maxsize = maxsize
        self._channels: dict[str, set[asyncio.Queue]] = defaultdict(set)

    async def subscribe(self, channel: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._maxsize)
        self._channels[channel].add(queue)
        return queue

    async def subscribe_board(self, board_id: str) -> asyncio.Queue:
        return await self.subscribe(board_channel(board_id))

    async def unsubscribe(self, channel: str, queue: asyncio.Queue) -> None:
        self._channels[channel].discard(queue)
        if not self._channels[channel]:
            del self._channels[channel]

    @contextlib.asynccontextmanager
    async def watch_board(self, board_id: str) -> AsyncIterator[asyncio.Queue]:
        """Subscribe to a board for the duration of the block."""
        channel = board_channel(board_id)
        queue = await self.subscribe(channel)
        try:
            yield queue
        finally:
            await self.unsubscribe(channel, queue)

    async def publish(self, channel: str, event: Event) -> None:
        for queue in list(self._channels.get(channel, [])):
            with contextlib.suppress(asyncio.QueueFull):
                queue.put_nowait(event)

    async def publish_to_board(self, board_id: str, event: Event) -> None:
        event.channel = board_channel(board_id)
        await self.publish(event.channel, event)


def pending(queue: asyncio.Queue) -> list[Event]:
    """Take every event already queued, without waiting for more."""
    events = []
    while not queue.empty():
        events.append(queue.get_nowait())
    return events


# Singleton instance
event_manager = EventManager()
