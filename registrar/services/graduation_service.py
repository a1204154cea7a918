"""
Graduation service: degree audits and graduation processing.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional

from ..core.entities import AlumniProfile, GraduationRecord, utcnow
from ..core.enums import AuditAction, StudentStatus, UserRole
from ..core.exceptions import InvariantViolationError
from ..core.grading import calculate_gpa, missing_codes
from ..persistence.repositories import Repositories
from .access import require_role
from .event_service import EventService
from .unit_of_work import TransactionManager, UnitOfWork


logger = logging.getLogger(__name__)


@dataclass
class DegreeAuditResult:
    """Eligibility verdict with the numbers behind it."""
    student_id: str
    eligible: bool
    missing_requirements: List[str]
    total_credits: float
    required_credits: float
    gpa: float
    required_gpa: float
    missing_courses: List[str] = field(default_factory=list)
    outstanding_enrollments: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'student_id': self.student_id,
            'eligible': self.eligible,
            'missing_requirements': list(self.missing_requirements),
            'total_credits': self.total_credits,
            'required_credits': self.required_credits,
            'gpa': self.gpa,
            'required_gpa': self.required_gpa,
            'missing_courses': list(self.missing_courses),
            'outstanding_enrollments': list(self.outstanding_enrollments),
        }


@dataclass
class GraduationResult:
    graduation_id: str
    alumni_id: str
    student_id: str

    def to_dict(self) -> Dict[str, Any]:
        return {'graduation_id': self.graduation_id, 'alumni_id': self.alumni_id,
                'student_id': self.student_id}


def _format_number(value: float) -> str:
    return f"{value:g}"


class GraduationService:
    """Runs degree audits and records approved graduations."""

    def __init__(self, transactions: TransactionManager, events: EventService,
                 default_min_credits: float = 120, default_min_gpa: float = 2.0,
                 clock: Callable = utcnow):
        self._transactions = transactions
        self._events = events
        self._default_min_credits = default_min_credits
        self._default_min_gpa = default_min_gpa
        self._clock = clock

    def _audit(self, repos: Repositories, student_id: str) -> DegreeAuditResult:
        student = repos.students.get(student_id)
        program = repos.programs.find_by_id(student.program_id) if student.program_id else None
        required_credits = program.min_credits if program else self._default_min_credits
        required_gpa = program.min_gpa if program else self._default_min_gpa
        required_courses = program.required_courses if program else []

        transcript = repos.transcripts.find_by_student(student_id)
        entries = list(transcript.current_entries) if transcript else []

        # A course passed more than once earns its credits once.
        earned: Dict[str, float] = {}
        for entry in entries:
            if entry.is_passing:
                earned[entry.course_code] = entry.credits
        total_credits = sum(earned.values())
        gpa = calculate_gpa(entries)

        missing_courses = missing_codes(required_courses, earned.keys())
        outstanding = [
            e.id for e in repos.enrollments.find_by_student(student_id) if not e.status.is_terminal
        ]

        missing = []
        if total_credits < required_credits:
            missing.append(
                f"Earn {_format_number(required_credits - total_credits)} more credits "
                f"({_format_number(total_credits)} of {_format_number(required_credits)})")
        if gpa < required_gpa:
            missing.append(f"Raise GPA to {required_gpa:.2f} (currently {gpa:.2f})")
        for code in missing_courses:
            missing.append(f"Complete required course {code}")
        if outstanding:
            missing.append(f"Resolve {len(outstanding)} outstanding enrollment(s)")

        return DegreeAuditResult(
            student_id=student_id,
            eligible=not missing,
            missing_requirements=missing,
            total_credits=total_credits,
            required_credits=required_credits,
            gpa=gpa,
            required_gpa=required_gpa,
            missing_courses=missing_courses,
            outstanding_enrollments=outstanding,
        )

    def run_degree_audit(self, student_id: str) -> DegreeAuditResult:
        """Read-only audit; unmet requirements are reported, not raised."""
        return self._transactions.read(lambda uow: self._audit(Repositories(uow), student_id))

    def process_graduation(self, student_id: str, approver_id: str,
                           approver_roles: Iterable[str] = ()) -> GraduationResult:
        """
        Graduate an eligible student: status, graduation record and alumni
        profile are written together or not at all.
        """
        require_role(approver_id, approver_roles, UserRole.REGISTRAR, action="approve graduation")

        def operation(uow: UnitOfWork) -> GraduationResult:
            repos = Repositories(uow)
            if repos.graduations.find_by_student(student_id) is not None:
                raise InvariantViolationError(
                    "GraduationRecord", "Uniqueness",
                    f"Student {student_id} already has a graduation record",
                    error_code="DuplicateGraduation",
                )

            audit = self._audit(repos, student_id)
            if not audit.eligible:
                raise InvariantViolationError(
                    "Student", "Graduation Eligibility",
                    "Student is not eligible to graduate: " + "; ".join(audit.missing_requirements),
                    error_code="NotEligible",
                    details=audit.to_dict(),
                )

            student = repos.students.get(student_id)
            student.transition_to(StudentStatus.GRADUATED)
            repos.students.save(student)

            now = self._clock()
            record = GraduationRecord(student_id, student.program_id, approver_id,
                                      audit.total_credits, audit.gpa, graduation_date=now)
            repos.graduations.save(record)
            profile = AlumniProfile(student_id, now.year, student.email)
            repos.alumni.save(profile)

            uow.after_commit(lambda: self._events.audit(
                "student", AuditAction.GRADUATION_APPROVED, approver_id,
                {'student_id': student_id, 'graduation_id': record.id, 'gpa': audit.gpa}))
            uow.after_commit(lambda: self._events.audit(
                "alumni_profile", AuditAction.ALUMNI_PROFILE_CREATED, approver_id,
                {'student_id': student_id, 'alumni_id': profile.id}))
            uow.after_commit(lambda: self._events.notify(
                student_id, "Graduation approved", "Congratulations, your graduation has been approved.",
                {'graduation_id': record.id}))
            return GraduationResult(record.id, profile.id, student_id)

        try:
            result = self._transactions.run(operation, lock_keys=[f"student:{student_id}"])
        except InvariantViolationError as e:
            logger.warning("Graduation of %s rejected: %s", student_id, e.message)
            raise
        logger.info("Student %s graduated (record %s)", student_id, result.graduation_id)
        return result
