"""Hosted backend access."""

from .client import (
    DEFAULT_COLUMNS,
    BatchItemResult,
    BoardStore,
    PartialBatchFailure,
    PersistenceFailure,
)

__all__ = [
    "DEFAULT_COLUMNS",
    "BatchItemResult",
    "BoardStore",
    "PartialBatchFailure",
    "PersistenceFailure",
]
