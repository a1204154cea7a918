"""
Database management and connection handling.

Records are stored as JSON documents in a single ``entities`` table keyed by
id and type. The record store writes every committed unit of work through
``execute_transaction`` so the database never holds half of an operation.
"""

import json
import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

from ..core.entities import AbstractEntity
from ..core.exceptions import PersistenceError


logger = logging.getLogger(__name__)

Statement = Tuple[str, Optional[tuple]]

ENTITIES_SCHEMA = """
    CREATE TABLE IF NOT EXISTS entities (
        id TEXT PRIMARY KEY,
        type TEXT NOT NULL,
        data TEXT NOT NULL,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        version INTEGER DEFAULT 1
    )
"""


class DatabaseManager(ABC):
    """Abstract base class for database management."""

    @abstractmethod
    def execute_query(self, query: str, params: Optional[tuple] = None) -> List[Dict[str, Any]]:
        """Execute a query and return results."""
        pass

    @abstractmethod
    def execute_update(self, query: str, params: Optional[tuple] = None) -> int:
        """Execute an update query and return affected rows."""
        pass

    @abstractmethod
    def execute_transaction(self, queries: List[Statement]) -> bool:
        """Execute multiple queries in a transaction."""
        pass

    @abstractmethod
    def table_exists(self, table_name: str) -> bool:
        pass

    @abstractmethod
    def close(self) -> None:
        pass


class SQLiteDatabase(DatabaseManager):
    """
    SQLite database implementation.

    One connection is kept open for the lifetime of the object so that an
    in-memory database (``":memory:"``) survives between calls.
    """

    def __init__(self, database_path: str = "registrar.db"):
        self._database_path = database_path
        self._lock = threading.RLock()
        try:
            self._conn = sqlite3.connect(database_path, check_same_thread=False)
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot open database {database_path}: {e}")
        self._conn.row_factory = sqlite3.Row
        self._initialize_database()

    @property
    def database_path(self) -> str:
        return self._database_path

    def _initialize_database(self) -> None:
        with self._lock:
            self._conn.execute(ENTITIES_SCHEMA)
            self._conn.execute("CREATE INDEX IF NOT EXISTS idx_entities_type ON entities(type)")
            self._conn.commit()

    def execute_query(self, query: str, params: Optional[tuple] = None) -> List[Dict[str, Any]]:
        with self._lock:
            try:
                cursor = self._conn.execute(query, params or ())
                columns = [description[0] for description in cursor.description]
                return [dict(zip(columns, row)) for row in cursor.fetchall()]
            except sqlite3.Error as e:
                raise PersistenceError(f"Query failed: {e}")

    def execute_update(self, query: str, params: Optional[tuple] = None) -> int:
        with self._lock:
            try:
                cursor = self._conn.execute(query, params or ())
                self._conn.commit()
                return cursor.rowcount
            except sqlite3.Error as e:
                self._conn.rollback()
                raise PersistenceError(f"Update failed: {e}")

    def execute_transaction(self, queries: List[Statement]) -> bool:
        with self._lock:
            try:
                cursor = self._conn.cursor()
                for query, params in queries:
                    cursor.execute(query, params or ())
                self._conn.commit()
                return True
            except sqlite3.Error as e:
                self._conn.rollback()
                logger.error("Transaction of %d statements rolled back: %s", len(queries), e)
                raise PersistenceError(f"Transaction failed: {e}")

    def table_exists(self, table_name: str) -> bool:
        query = "SELECT name FROM sqlite_master WHERE type='table' AND name=?"
        return len(self.execute_query(query, (table_name,))) > 0

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # Statement builders used by the record store.

    @staticmethod
    def upsert_statement(entity: AbstractEntity, version: int) -> Statement:
        data = entity.to_dict()
        data['version'] = version
        return (
            """
            INSERT INTO entities (id, type, data, created_at, updated_at, version)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                data = excluded.data,
                updated_at = excluded.updated_at,
                version = excluded.version
            """,
            (
                entity.id,
                entity.entity_type,
                json.dumps(data),
                entity.created_at.isoformat(),
                entity.updated_at.isoformat(),
                version,
            ),
        )

    @staticmethod
    def delete_statement(entity_id: str) -> Statement:
        return ("DELETE FROM entities WHERE id = ?", (entity_id,))

    def load_all(self) -> List[Tuple[str, Dict[str, Any]]]:
        """Every stored record as ``(type, data)`` in insertion order."""
        rows = self.execute_query("SELECT type, data FROM entities ORDER BY rowid")
        return [(row['type'], json.loads(row['data'])) for row in rows]
