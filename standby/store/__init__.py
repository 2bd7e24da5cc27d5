"""
Standby Selection Store Module

Persists which containers and volumes are selected for replication.
"""

from .selection import SelectionStore, SqliteSelectionStore

__all__ = [
    "SelectionStore",
    "SqliteSelectionStore",
]
