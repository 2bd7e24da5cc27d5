"""
Selection store.

Durable record of which containers and volumes a user marked for
replication: two independent key sets, each supporting insert-if-absent and
delete-if-present.
"""

from __future__ import annotations

import sqlite3
import threading

from abc import ABC, abstractmethod
from pathlib import Path

import structlog

from standby.core.errors import StoreError
from standby.core.models import ItemKind

logger = structlog.get_logger(__name__)

_TABLES: dict[ItemKind, tuple[str, str]] = {
    ItemKind.CONTAINER: ("selected_containers", "id"),
    ItemKind.VOLUME: ("selected_volumes", "name"),
}


class SelectionStore(ABC):
    """Key-membership store for selected containers and volumes."""

    @abstractmethod
    def get_selected(self, kind: ItemKind) -> set[str]:
        """Full membership snapshot for one kind."""

    @abstractmethod
    def add(self, kind: ItemKind, key: str) -> None:
        """Add a key; adding a present key is a no-op."""

    @abstractmethod
    def remove(self, kind: ItemKind, key: str) -> None:
        """Remove a key; removing an absent key is a no-op."""

    def set_selected(self, kind: ItemKind, key: str, selected: bool) -> None:
        if selected:
            self.add(kind, key)
        else:
            self.remove(kind, key)

    def selected_containers(self) -> set[str]:
        return self.get_selected(ItemKind.CONTAINER)

    def selected_volumes(self) -> set[str]:
        return self.get_selected(ItemKind.VOLUME)

    def close(self) -> None:
        pass


class SqliteSelectionStore(SelectionStore):
    """SQLite-backed selection store.

    A single connection is shared across threads and serialised with a lock;
    the FastAPI handlers and the replication job both read from it.
    """

    def __init__(self, db_path: str | Path = "./standby.db"):
        self._db_path = str(db_path)
        self._lock = threading.Lock()

        try:
            if self._db_path != ":memory:":
                Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self._db_path, check_same_thread=False)
        except (OSError, sqlite3.Error) as e:
            raise StoreError(f"Failed to open selection database: {e}") from e

        self._init_schema()
        logger.debug("Selection store opened", path=self._db_path)

    def _init_schema(self) -> None:
        try:
            with self._lock, self._conn:
                for table, column in _TABLES.values():
                    self._conn.execute(
                        f"CREATE TABLE IF NOT EXISTS {table} ({column} TEXT PRIMARY KEY)"
                    )
        except sqlite3.Error as e:
            raise StoreError(f"Failed to initialise selection schema: {e}") from e

    def get_selected(self, kind: ItemKind) -> set[str]:
        table, column = _TABLES[kind]
        try:
            with self._lock:
                rows = self._conn.execute(f"SELECT {column} FROM {table}").fetchall()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to read {table}: {e}") from e
        return {row[0] for row in rows}

    def add(self, kind: ItemKind, key: str) -> None:
        table, column = _TABLES[kind]
        self._execute(f"INSERT OR IGNORE INTO {table} ({column}) VALUES (?)", key, table)

    def remove(self, kind: ItemKind, key: str) -> None:
        table, column = _TABLES[kind]
        self._execute(f"DELETE FROM {table} WHERE {column} = ?", key, table)

    def _execute(self, query: str, key: str, table: str) -> None:
        try:
            with self._lock, self._conn:
                self._conn.execute(query, (key,))
        except sqlite3.Error as e:
            raise StoreError(f"Failed to update {table}: {e}") from e

    def close(self) -> None:
        with self._lock:
            self._conn.close()
