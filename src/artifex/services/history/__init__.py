"""Generation history persistence."""

from artifex.services.history.store import DatabaseHistoryStore, HistoryStore

__all__ = ["DatabaseHistoryStore", "HistoryStore"]
