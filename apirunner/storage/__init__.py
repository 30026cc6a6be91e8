"""Response cache and job history storage."""

from .base import JobStore, ResponseCache
from .memory import MemoryStore
from .sqlite import SQLiteStore

__all__ = [
    "JobStore",
    "ResponseCache",
    "MemoryStore",
    "SQLiteStore",
]
