"""
Concurrency management and thread safety components.
"""

import logging
import threading
import time
import uuid
from collections import defaultdict
from contextlib import contextmanager, ExitStack
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Set

from ..core.exceptions import ConcurrencyError


logger = logging.getLogger(__name__)


class LockType(Enum):
    """Types of locks available."""
    READ = "read"
    WRITE = "write"


@dataclass
class LockInfo:
    """Information about a held lock."""
    lock_id: str
    resource_id: str
    lock_type: LockType
    holder_id: str
    acquired_at: float


class ConcurrencyManager:
    """
    Pessimistic per-resource locks plus retry for optimistic conflicts.

    Read locks are shared, write locks are exclusive. A holder that already
    owns a lock on a resource may take it again. Acquisition waits up to
    ``timeout`` seconds and then raises ``ConcurrencyError``.
    """

    def __init__(self, default_timeout: float = 5.0):
        self._default_timeout = default_timeout
        self._locks: Dict[str, Dict[LockType, Set[str]]] = defaultdict(lambda: defaultdict(set))
        self._lock_holders: Dict[str, LockInfo] = {}
        self._lock = threading.RLock()
        self._released = threading.Condition(self._lock)

    def acquire_lock(self, resource_id: str, lock_type: LockType,
                     holder_id: str, timeout: Optional[float] = None) -> str:
        """Acquire a lock on a resource, waiting until it is free or the timeout expires."""
        timeout = self._default_timeout if timeout is None else timeout
        deadline = time.monotonic() + timeout
        with self._released:
            while not self._can_acquire_lock(resource_id, lock_type, holder_id):
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    logger.warning("Timed out waiting for %s lock on %s (holder %s)",
                                   lock_type.value, resource_id, holder_id)
                    raise ConcurrencyError(
                        f"Timeout acquiring {lock_type.value} lock on {resource_id}",
                        "LockTimeout",
                        {'resource_id': resource_id},
                    )
                self._released.wait(remaining)

            lock_id = str(uuid.uuid4())
            self._locks[resource_id][lock_type].add(lock_id)
            self._lock_holders[lock_id] = LockInfo(
                lock_id=lock_id,
                resource_id=resource_id,
                lock_type=lock_type,
                holder_id=holder_id,
                acquired_at=time.time(),
            )
            return lock_id

    def release_lock(self, lock_id: str) -> bool:
        """Release a lock."""
        with self._released:
            lock_info = self._lock_holders.pop(lock_id, None)
            if lock_info is None:
                return False

            resource_id = lock_info.resource_id
            lock_type = lock_info.lock_type
            self._locks[resource_id][lock_type].discard(lock_id)

            # Clean up empty lock types and resources
            if not self._locks[resource_id][lock_type]:
                del self._locks[resource_id][lock_type]
            if not self._locks[resource_id]:
                del self._locks[resource_id]

            self._released.notify_all()
            return True

    def _can_acquire_lock(self, resource_id: str, lock_type: LockType, holder_id: str) -> bool:
        if resource_id not in self._locks:
            return True
        existing_locks = self._locks[resource_id]

        others = [
            self._lock_holders[lock_id]
            for lock_ids in existing_locks.values()
            for lock_id in lock_ids
            if self._lock_holders[lock_id].holder_id != holder_id
        ]
        if not others:
            return True  # Same holder can acquire multiple locks

        if lock_type == LockType.READ:
            # Read locks can coexist with other read locks
            return all(info.lock_type == LockType.READ for info in others)
        return False

    @contextmanager
    def lock(self, resource_id: str, lock_type: LockType,
             holder_id: str, timeout: Optional[float] = None) -> Iterator[str]:
        """Context manager for acquiring and releasing locks."""
        lock_id = None
        try:
            lock_id = self.acquire_lock(resource_id, lock_type, holder_id, timeout)
            yield lock_id
        finally:
            if lock_id:
                self.release_lock(lock_id)

    @contextmanager
    def lock_many(self, resource_ids: Iterable[str], lock_type: LockType,
                  holder_id: str, timeout: Optional[float] = None) -> Iterator[List[str]]:
        """Lock several resources in sorted order so two callers never deadlock."""
        with ExitStack() as stack:
            lock_ids = [
                stack.enter_context(self.lock(resource_id, lock_type, holder_id, timeout))
                for resource_id in sorted(set(resource_ids))
            ]
            yield lock_ids

    def execute_with_retry(self, func: Callable[[], Any], max_retries: int = 3,
                           backoff_factor: float = 0.01) -> Any:
        """Execute a function, retrying with exponential backoff on ``ConcurrencyError``."""
        for attempt in range(max_retries + 1):
            try:
                return func()
            except ConcurrencyError as e:
                if attempt >= max_retries:
                    raise
                delay = backoff_factor * (2 ** attempt)
                logger.info("Concurrency conflict (%s); retry %d/%d in %.3fs",
                            e.error_code, attempt + 1, max_retries, delay)
                time.sleep(delay)

    def get_lock_info(self, resource_id: str) -> List[LockInfo]:
        """Get information about all locks on a resource."""
        with self._lock:
            if resource_id not in self._locks:
                return []
            return [
                self._lock_holders[lock_id]
                for lock_ids in self._locks[resource_id].values()
                for lock_id in lock_ids
            ]

    def get_holder_locks(self, holder_id: str) -> List[LockInfo]:
        """Get all locks held by a specific holder."""
        with self._lock:
            return [info for info in self._lock_holders.values() if info.holder_id == holder_id]
