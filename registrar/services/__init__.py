"""
Services module containing the registrar's transactional operations.
"""

from .concurrency_manager import ConcurrencyManager, LockType
from .unit_of_work import TransactionManager, UnitOfWork
from .event_service import EventService, InMemoryAuditSink, InMemoryNotificationDispatcher
from .catalog_service import CatalogService
from .scheduler_service import SchedulerService
from .enrollment_service import EnrollmentService
from .grading_service import GradingService
from .transcript_service import TranscriptService
from .graduation_service import GraduationService

__all__ = [
    "ConcurrencyManager",
    "LockType",
    "TransactionManager",
    "UnitOfWork",
    "EventService",
    "InMemoryAuditSink",
    "InMemoryNotificationDispatcher",
    "CatalogService",
    "SchedulerService",
    "EnrollmentService",
    "GradingService",
    "TranscriptService",
    "GraduationService",
]
