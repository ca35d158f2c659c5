"""
Session Module

Acquisition, validation and persistence of 1Password sessions.
"""

from .manager import MAX_INTERACTIVE_ATTEMPTS, SessionManager
from .store import FileHandleStore, HandleStore, MemoryHandleStore

__all__ = [
    "MAX_INTERACTIVE_ATTEMPTS",
    "SessionManager",
    "HandleStore",
    "FileHandleStore",
    "MemoryHandleStore",
]
