"""
Core module containing the records model, grading rules and invariants.
"""

from .entities import *
from .interfaces import *
from .exceptions import *
from .enums import *
from .timeslots import TimeSlot
from .grading import GradeValue

__all__ = [
    # Entities
    "AbstractEntity",
    "Student",
    "Program",
    "Course",
    "Term",
    "Section",
    "Enrollment",
    "Assessment",
    "Grade",
    "TranscriptEntry",
    "Transcript",
    "GraduationRecord",
    "AlumniProfile",
    "TimeSlot",
    "GradeValue",

    # Interfaces
    "Repository",
    "AuditSink",
    "NotificationDispatcher",

    # Enums
    "ErrorKind",
    "StudentStatus",
    "EnrollmentStatus",
    "GradeScale",
    "UserRole",
    "AuditAction",

    # Exceptions
    "RegistrarException",
    "InvariantViolationError",
    "NotFoundError",
    "ValidationError",
    "AuthorizationError",
    "ConcurrencyError",
    "PersistenceError",
    "ConfigurationError",
]
