"""
Core interfaces and abstract base classes for the Registrar platform.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Generic, List, Optional, TypeVar

from .enums import AuditAction


T = TypeVar('T')


class Repository(ABC, Generic[T]):
    """Generic repository interface for data access."""

    @abstractmethod
    def save(self, entity: T) -> T:
        """Stage an entity for the current unit of work."""
        pass

    @abstractmethod
    def find_by_id(self, entity_id: str) -> Optional[T]:
        """Find entity by ID."""
        pass

    @abstractmethod
    def get(self, entity_id: str) -> T:
        """Find entity by ID or raise ``NotFoundError``."""
        pass

    @abstractmethod
    def find_all(self, filters: Optional[Dict[str, Any]] = None) -> List[T]:
        """Find all entities whose attributes equal the given filters."""
        pass

    @abstractmethod
    def delete(self, entity_id: str) -> bool:
        """Stage the deletion of an entity."""
        pass

    @abstractmethod
    def count(self, filters: Optional[Dict[str, Any]] = None) -> int:
        pass


class AuditSink(ABC):
    """Fire-and-forget receiver of audit records."""

    @abstractmethod
    def append(self, entity: str, action: AuditAction, actor: Optional[str],
               details: Optional[Dict[str, Any]] = None) -> None:
        pass


class NotificationDispatcher(ABC):
    """Best-effort delivery of messages to users."""

    @abstractmethod
    def notify(self, recipient_id: str, subject: str, body: str,
               data: Optional[Dict[str, Any]] = None) -> None:
        pass
