"""Repository layer - typed access to persisted state."""

from __future__ import annotations

from tabkeeper.repositories.sessions import SESSIONS_KEY, SessionStore
from tabkeeper.repositories.undo import UNDO_HISTORY_KEY, UndoHistoryRepository

__all__ = [
    'SESSIONS_KEY',
    'UNDO_HISTORY_KEY',
    'SessionStore',
    'UndoHistoryRepository',
]
