"""taskboard: Kanban boards with drag-and-drop reordering.

Boards hold ordered columns, columns hold ordered tasks. The reorder engine
computes what a drag changes; a board session applies it optimistically and
reconciles it with the hosted backend.

Usage:
    # CLI
    $ taskboard show <board-id>
    $ taskboard move-task <board-id> <task-id> --over <task-or-column-id>

    # Python API
    from taskboard import BoardSession, BoardStore, DragDescriptor

    async with BoardStore(url, api_key, access_token=token) as store:
        session = BoardSession(store, board_id)
        await session.load()
        await session.apply_drag(
            DragDescriptor(active_id="t3", active_type="task", over_id="t1", over_type="task")
        )
"""

try:
    from importlib.metadata import version as _get_version

    __version__ = _get_version("taskboard")
except Exception:
    __version__ = "0.0.0-dev"


def __getattr__(name: str):
    """Lazy import for main classes."""
    if name == "BoardStore":
        from .store.client import BoardStore

        return BoardStore
    if name == "BoardSession":
        from .sync.session import BoardSession

        return BoardSession
    if name == "DragDescriptor":
        from .board.reorder import DragDescriptor

        return DragDescriptor
    if name == "StoreConfig":
        from .config import StoreConfig

        return StoreConfig
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "__version__",
    "BoardSession",
    "BoardStore",
    "DragDescriptor",
    "StoreConfig",
]
