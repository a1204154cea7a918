"""
In-memory record arena with versioned, all-or-nothing commits.

The store is the single source of committed state. Readers always receive
deep copies, so nothing a unit of work does to its copies is visible until
``commit`` succeeds. When a database is attached, each commit is written
through in one database transaction before the arena changes.
"""

import copy
import logging
import threading
from typing import Dict, Iterable, List, Mapping, Optional

from ..core.entities import AbstractEntity, Enrollment, entity_from_dict
from ..core.exceptions import ConcurrencyError
from .database import DatabaseManager


logger = logging.getLogger(__name__)


class RecordStore:
    """Committed records keyed by id, grouped by entity type."""

    def __init__(self, database: Optional[DatabaseManager] = None):
        self._database = database
        self._records: Dict[str, AbstractEntity] = {}
        self._by_type: Dict[str, Dict[str, AbstractEntity]] = {}
        self._sequence = 0
        self._lock = threading.RLock()

    @property
    def database(self) -> Optional[DatabaseManager]:
        return self._database

    def load(self) -> int:
        """Populate the arena from the attached database. Returns the record count."""
        if self._database is None:
            return 0
        with self._lock:
            loaded = 0
            for entity_type, data in self._database.load_all():
                entity = entity_from_dict(entity_type, data)
                self._put(entity)
                if isinstance(entity, Enrollment):
                    self._sequence = max(self._sequence, entity.queue_sequence)
                loaded += 1
            logger.info("Loaded %d records from %s", loaded, getattr(self._database, 'database_path', 'database'))
            return loaded

    def _put(self, entity: AbstractEntity) -> None:
        self._records[entity.id] = entity
        self._by_type.setdefault(entity.entity_type, {})[entity.id] = entity

    def _remove(self, entity_id: str) -> None:
        entity = self._records.pop(entity_id, None)
        if entity is not None:
            self._by_type.get(entity.entity_type, {}).pop(entity_id, None)

    def get(self, entity_id: str) -> Optional[AbstractEntity]:
        with self._lock:
            entity = self._records.get(entity_id)
            return copy.deepcopy(entity) if entity is not None else None

    def list(self, entity_type: str) -> List[AbstractEntity]:
        with self._lock:
            return [copy.deepcopy(e) for e in self._by_type.get(entity_type, {}).values()]

    def ids(self, entity_type: str) -> List[str]:
        with self._lock:
            return list(self._by_type.get(entity_type, {}).keys())

    def version_of(self, entity_id: str) -> int:
        with self._lock:
            entity = self._records.get(entity_id)
            return entity.version if entity is not None else 0

    def count(self, entity_type: str) -> int:
        with self._lock:
            return len(self._by_type.get(entity_type, {}))

    def next_sequence(self) -> int:
        """Monotonic counter used for waitlist order."""
        with self._lock:
            self._sequence += 1
            return self._sequence

    def commit(self, saves: Iterable[AbstractEntity], deletes: Iterable[str],
               expected_versions: Mapping[str, int]) -> None:
        """
        Apply staged saves and deletes atomically.

        Every touched record must still be at the version the unit of work
        read it at; otherwise ``ConcurrencyError`` is raised and nothing is
        applied.
        """
        saves = list(saves)
        deletes = list(deletes)
        with self._lock:
            for entity_id in [e.id for e in saves] + deletes:
                expected = expected_versions.get(entity_id, 0)
                current = self.version_of(entity_id)
                if current != expected:
                    raise ConcurrencyError(
                        f"Record {entity_id} changed concurrently (expected version {expected}, found {current})",
                        "VersionConflict",
                        {'id': entity_id, 'expected': expected, 'found': current},
                    )

            new_versions = {e.id: self.version_of(e.id) + 1 for e in saves}

            if self._database is not None and (saves or deletes):
                statements = [self._database.upsert_statement(e, new_versions[e.id]) for e in saves]
                statements += [self._database.delete_statement(entity_id) for entity_id in deletes]
                self._database.execute_transaction(statements)

            for entity in saves:
                committed = copy.deepcopy(entity)
                committed.mark_committed(new_versions[entity.id])
                entity.mark_committed(new_versions[entity.id])
                self._put(committed)
            for entity_id in deletes:
                self._remove(entity_id)
