"""
Audit and notification collaborators.

Both are invoked after a transaction commits. Their failures are logged and
never propagate back into the operation that triggered them.
"""

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional

from ..core.enums import AuditAction
from ..core.interfaces import AuditSink, NotificationDispatcher


logger = logging.getLogger(__name__)


@dataclass
class AuditRecord:
    """One appended audit entry."""
    entity: str
    action: AuditAction
    actor: Optional[str]
    details: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return {
            'entity': self.entity,
            'action': self.action.value,
            'actor': self.actor,
            'timestamp': self.timestamp,
            'details': self.details,
        }


@dataclass
class Notification:
    recipient_id: str
    subject: str
    body: str
    data: Dict[str, Any] = field(default_factory=dict)


class InMemoryAuditSink(AuditSink):
    """Bounded in-memory audit log."""

    def __init__(self, max_records: int = 10000):
        self._records: Deque[AuditRecord] = deque(maxlen=max_records)
        self._lock = threading.RLock()

    def append(self, entity: str, action: AuditAction, actor: Optional[str],
               details: Optional[Dict[str, Any]] = None) -> None:
        with self._lock:
            self._records.append(AuditRecord(entity, action, actor, dict(details or {})))

    def records(self, entity: Optional[str] = None,
                action: Optional[AuditAction] = None) -> List[AuditRecord]:
        with self._lock:
            return [
                r for r in self._records
                if (entity is None or r.entity == entity) and (action is None or r.action == action)
            ]


class InMemoryNotificationDispatcher(NotificationDispatcher):
    """Collects notifications; a real deployment would hand them to a mail or push service."""

    def __init__(self, max_messages: int = 10000):
        self._sent: Deque[Notification] = deque(maxlen=max_messages)
        self._lock = threading.RLock()

    def notify(self, recipient_id: str, subject: str, body: str,
               data: Optional[Dict[str, Any]] = None) -> None:
        with self._lock:
            self._sent.append(Notification(recipient_id, subject, body, dict(data or {})))

    def sent_to(self, recipient_id: str) -> List[Notification]:
        with self._lock:
            return [n for n in self._sent if n.recipient_id == recipient_id]


class EventService:
    """Fire-and-forget front for the audit sink and the notification dispatcher."""

    def __init__(self, audit_sink: Optional[AuditSink] = None,
                 notifier: Optional[NotificationDispatcher] = None):
        self._audit_sink = audit_sink or InMemoryAuditSink()
        self._notifier = notifier or InMemoryNotificationDispatcher()

    @property
    def audit_sink(self) -> AuditSink:
        return self._audit_sink

    @property
    def notifier(self) -> NotificationDispatcher:
        return self._notifier

    def audit(self, entity: str, action: AuditAction, actor: Optional[str],
              details: Optional[Dict[str, Any]] = None) -> None:
        try:
            self._audit_sink.append(entity, action, actor, details)
        except Exception:
            logger.exception("Audit sink rejected %s for %s", action.value, entity)

    def notify(self, recipient_id: str, subject: str, body: str,
               data: Optional[Dict[str, Any]] = None) -> None:
        try:
            self._notifier.notify(recipient_id, subject, body, data)
        except Exception:
            logger.exception("Notification to %s failed", recipient_id)
