"""
Enumerations and constants for the Registrar platform.
"""

from enum import Enum
from typing import Dict, FrozenSet, Set


class ErrorKind(Enum):
    """Tag carried by every platform error."""
    INVARIANT_VIOLATION = "invariant_violation"
    NOT_FOUND = "not_found"
    VALIDATION = "validation"
    AUTHORIZATION = "authorization"
    CONCURRENCY = "concurrency"
    PERSISTENCE = "persistence"
    CONFIGURATION = "configuration"


class StudentStatus(Enum):
    """Lifecycle of a student record."""
    ACTIVE = "active"
    SUSPENDED = "suspended"
    GRADUATED = "graduated"
    INACTIVE = "inactive"


class EnrollmentStatus(Enum):
    """Status of an enrollment."""
    ACTIVE = "active"
    ENROLLED = "enrolled"
    WAITLISTED = "waitlisted"
    DROPPED = "dropped"
    COMPLETED = "completed"
    FAILED = "failed"
    WITHDRAWN = "withdrawn"
    PENDING = "pending"

    @property
    def is_counted(self) -> bool:
        """Whether the enrollment occupies a seat in its section."""
        return self in COUNTED_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_final(self) -> bool:
        """Completed and failed can only change through an appeal."""
        return self in FINAL_STATUSES


COUNTED_STATUSES: FrozenSet[EnrollmentStatus] = frozenset({
    EnrollmentStatus.ACTIVE,
    EnrollmentStatus.ENROLLED,
})

FINAL_STATUSES: FrozenSet[EnrollmentStatus] = frozenset({
    EnrollmentStatus.COMPLETED,
    EnrollmentStatus.FAILED,
})

TERMINAL_STATUSES: FrozenSet[EnrollmentStatus] = FINAL_STATUSES | frozenset({
    EnrollmentStatus.DROPPED,
    EnrollmentStatus.WITHDRAWN,
})

# Statuses that block a second enrollment in the same course and term.
HOLDING_STATUSES: FrozenSet[EnrollmentStatus] = COUNTED_STATUSES | frozenset({
    EnrollmentStatus.WAITLISTED,
})


class GradeScale(Enum):
    """Letter grade scales. One is chosen per deployment."""
    FIVE_POINT = "five_point"
    FOUR_POINT = "four_point"


class UserRole(Enum):
    """Roles supplied by the identity provider."""
    STUDENT = "student"
    INSTRUCTOR = "instructor"
    REGISTRAR = "registrar"
    ADMIN = "admin"
    DEPARTMENT_HEAD = "department_head"


class AuditAction(Enum):
    """Types of audit actions."""
    STUDENT_ENROLLED = "student_enrolled"
    STUDENT_WAITLISTED = "student_waitlisted"
    STUDENT_DROPPED = "student_dropped"
    WAITLIST_PROMOTED = "waitlist_promoted"
    SECTION_CLOSED = "section_closed"
    SECTION_CREATED = "section_created"
    SECTION_RESCHEDULED = "section_rescheduled"
    CAPACITY_CHANGED = "capacity_changed"
    ASSESSMENT_CREATED = "assessment_created"
    ASSESSMENT_UPDATED = "assessment_updated"
    ASSESSMENT_DELETED = "assessment_deleted"
    GRADE_POSTED = "grade_posted"
    GRADE_EDITED = "grade_edited"
    FINAL_GRADES_POSTED = "final_grades_posted"
    SECTION_LOCKED = "section_locked"
    SECTION_UNLOCKED = "section_unlocked"
    GRADES_REOPENED = "grades_reopened"
    TERM_PROCESSED = "term_processed"
    GRADUATION_APPROVED = "graduation_approved"
    ALUMNI_PROFILE_CREATED = "alumni_profile_created"


STUDENT_TRANSITIONS: Dict[StudentStatus, Set[StudentStatus]] = {
    StudentStatus.ACTIVE: {StudentStatus.SUSPENDED, StudentStatus.GRADUATED, StudentStatus.INACTIVE},
    StudentStatus.SUSPENDED: {StudentStatus.ACTIVE, StudentStatus.INACTIVE},
    StudentStatus.GRADUATED: set(),
    StudentStatus.INACTIVE: {StudentStatus.ACTIVE},
}

ENROLLMENT_TRANSITIONS: Dict[EnrollmentStatus, Set[EnrollmentStatus]] = {
    EnrollmentStatus.PENDING: {EnrollmentStatus.ACTIVE, EnrollmentStatus.WAITLISTED,
                               EnrollmentStatus.DROPPED, EnrollmentStatus.WITHDRAWN},
    EnrollmentStatus.WAITLISTED: {EnrollmentStatus.ACTIVE, EnrollmentStatus.DROPPED,
                                  EnrollmentStatus.WITHDRAWN},
    EnrollmentStatus.ACTIVE: {EnrollmentStatus.COMPLETED, EnrollmentStatus.FAILED,
                              EnrollmentStatus.DROPPED, EnrollmentStatus.WITHDRAWN},
    EnrollmentStatus.ENROLLED: {EnrollmentStatus.COMPLETED, EnrollmentStatus.FAILED,
                                EnrollmentStatus.DROPPED, EnrollmentStatus.WITHDRAWN},
    EnrollmentStatus.DROPPED: set(),
    EnrollmentStatus.WITHDRAWN: set(),
    EnrollmentStatus.COMPLETED: set(),
    EnrollmentStatus.FAILED: set(),
}
