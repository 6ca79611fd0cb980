"""Persisted conversation memory."""

from .session import Session, SessionStore, directory_hash, truncate_history

__all__ = ["Session", "SessionStore", "directory_hash", "truncate_history"]
