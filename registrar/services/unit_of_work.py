"""
Unit of work and transaction manager.

Every mutating operation runs as::

    manager.run(lambda uow: ..., lock_keys=[f"section:{id}", ...])

The manager takes the write locks in sorted order, hands the operation a
fresh ``UnitOfWork``, commits it if the operation returns normally and
discards it if the operation raises. Version conflicts detected at commit are
retried with backoff.
"""

import logging
import uuid
from typing import Callable, Dict, Iterable, List, Optional, Set, Type, TypeVar, Union

from ..core.entities import AbstractEntity
from ..core.exceptions import NotFoundError, RegistrarException
from ..persistence.store import RecordStore
from .concurrency_manager import ConcurrencyManager, LockType


logger = logging.getLogger(__name__)

E = TypeVar('E', bound=AbstractEntity)
R = TypeVar('R')


class UnitOfWork:
    """Identity map over the record store with staged writes."""

    def __init__(self, store: RecordStore):
        self._store = store
        self._identity: Dict[str, AbstractEntity] = {}
        self._read_versions: Dict[str, int] = {}
        self._dirty: Dict[str, AbstractEntity] = {}
        self._deleted: Set[str] = set()
        self._after_commit: List[Callable[[], None]] = []
        self._closed = False

    @property
    def is_closed(self) -> bool:
        return self._closed

    def _track(self, entity: AbstractEntity) -> AbstractEntity:
        if entity.id not in self._identity:
            self._identity[entity.id] = entity
            self._read_versions[entity.id] = entity.version
        return self._identity[entity.id]

    def get(self, entity_id: str, entity_type: Optional[Type[E]] = None) -> Optional[E]:
        if entity_id in self._deleted:
            return None
        entity = self._identity.get(entity_id)
        if entity is None:
            stored = self._store.get(entity_id)
            if stored is None:
                return None
            entity = self._track(stored)
        if entity_type is not None and not isinstance(entity, entity_type):
            return None
        return entity

    def require(self, entity_id: str, entity_type: Type[E]) -> E:
        entity = self.get(entity_id, entity_type)
        if entity is None:
            raise NotFoundError(entity_type.__name__, entity_id)
        return entity

    def list(self, entity_type: Type[E]) -> List[E]:
        """All records of a type as seen by this unit of work, staged ones included."""
        type_name = entity_type.entity_type
        result: List[E] = []
        seen = set()
        for entity_id in self._store.ids(type_name):
            entity = self.get(entity_id, entity_type)
            if entity is not None:
                result.append(entity)
                seen.add(entity_id)
        for entity_id, entity in self._identity.items():
            if (entity_id not in seen and entity_id not in self._deleted
                    and isinstance(entity, entity_type)):
                result.append(entity)
        return result

    def add(self, entity: AbstractEntity) -> AbstractEntity:
        """Stage a new or changed record."""
        if entity.id in self._deleted:
            self._deleted.discard(entity.id)
        tracked = self._identity.get(entity.id)
        if tracked is None:
            self._identity[entity.id] = entity
            self._read_versions.setdefault(entity.id, entity.version)
        elif tracked is not entity:
            self._identity[entity.id] = entity
        self._dirty[entity.id] = entity
        return entity

    def remove(self, entity: AbstractEntity) -> None:
        self._track(entity)
        self._dirty.pop(entity.id, None)
        self._deleted.add(entity.id)

    def next_sequence(self) -> int:
        return self._store.next_sequence()

    def after_commit(self, callback: Callable[[], None]) -> None:
        """Register a side effect that runs only once the commit has succeeded."""
        self._after_commit.append(callback)

    def commit(self) -> None:
        if self._closed:
            raise RegistrarException("Unit of work already closed", "UnitOfWorkClosed")
        saves = list(self._dirty.values())
        deleted_existing = [eid for eid in self._deleted if self._read_versions.get(eid, 0) > 0]
        self._store.commit(saves, deleted_existing, self._read_versions)
        self._closed = True

    def rollback(self) -> None:
        self._identity.clear()
        self._dirty.clear()
        self._deleted.clear()
        self._after_commit.clear()
        self._closed = True

    def run_after_commit(self) -> None:
        callbacks, self._after_commit = self._after_commit, []
        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.exception("After-commit callback failed")


class TransactionManager:
    """Runs operations under ordered write locks inside a unit of work."""

    def __init__(self, store: RecordStore, concurrency_manager: ConcurrencyManager,
                 lock_timeout: float = 5.0, max_retries: int = 3, retry_backoff: float = 0.01):
        self._store = store
        self._concurrency = concurrency_manager
        self._lock_timeout = lock_timeout
        self._max_retries = max_retries
        self._retry_backoff = retry_backoff

    @property
    def store(self) -> RecordStore:
        return self._store

    def run(self, operation: Callable[[UnitOfWork], R],
            lock_keys: Union[Iterable[str], Callable[[UnitOfWork], Iterable[str]]] = (),
            holder_id: Optional[str] = None) -> R:
        """
        Run ``operation`` under write locks on ``lock_keys``.

        ``lock_keys`` may be a callable reading the keys from committed state;
        it is evaluated again before every attempt.
        """
        planned = None if callable(lock_keys) else sorted(set(lock_keys))

        def attempt() -> R:
            keys = planned if planned is not None else sorted(set(self.read(lock_keys)))
            holder = holder_id or str(uuid.uuid4())
            with self._concurrency.lock_many(keys, LockType.WRITE, holder, self._lock_timeout):
                uow = UnitOfWork(self._store)
                try:
                    result = operation(uow)
                    uow.commit()
                except Exception:
                    uow.rollback()
                    raise
            uow.run_after_commit()
            return result

        return self._concurrency.execute_with_retry(attempt, self._max_retries, self._retry_backoff)

    def read(self, operation: Callable[[UnitOfWork], R]) -> R:
        """Run a read-only operation over a consistent set of copies; nothing is committed."""
        uow = UnitOfWork(self._store)
        try:
            return operation(uow)
        finally:
            uow.rollback()
