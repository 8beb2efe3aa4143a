"""Optimistic board state and backend reconciliation."""

from .session import BoardSession, OpFailure, ReconcileReport

__all__ = ["BoardSession", "OpFailure", "ReconcileReport"]
