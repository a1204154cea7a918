"""
Enrollment service: admission, waitlisting, drops and waitlist promotion.

Every operation runs in one unit of work under the section lock (and the
student lock where the student's other enrollments are consulted). The
section's ``enrollment_count`` is recomputed from the enrollment records of
the section inside the same unit of work and written back with the records,
so the counter never disagrees with them.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set

from ..core import validators
from ..core.entities import Enrollment, Section, utcnow
from ..core.enums import AuditAction, EnrollmentStatus, HOLDING_STATUSES
from ..core.exceptions import InvariantViolationError
from ..persistence.repositories import Repositories
from .event_service import EventService
from .scheduler_service import SchedulerService
from .unit_of_work import TransactionManager, UnitOfWork


logger = logging.getLogger(__name__)


@dataclass
class AdmissionResult:
    """Result of an admit-or-waitlist request."""
    enrollment_id: str
    status: EnrollmentStatus
    enrollment_count: int
    waitlist_position: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'enrollment_id': self.enrollment_id,
            'status': self.status.value,
            'enrollment_count': self.enrollment_count,
            'waitlist_position': self.waitlist_position,
        }


@dataclass
class DropResult:
    """Result of a drop or withdrawal."""
    enrollment_id: str
    status: EnrollmentStatus
    enrollment_count: int
    promoted_enrollment_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'enrollment_id': self.enrollment_id,
            'status': self.status.value,
            'enrollment_count': self.enrollment_count,
            'promoted_enrollment_id': self.promoted_enrollment_id,
        }


@dataclass
class CapacityResult:
    section_id: str
    capacity: int
    enrollment_count: int
    promoted_enrollment_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'section_id': self.section_id,
            'capacity': self.capacity,
            'enrollment_count': self.enrollment_count,
            'promoted_enrollment_ids': list(self.promoted_enrollment_ids),
        }


class _DeadlineClosed:
    """Returned from the admission unit of work when it closed an expired section."""

    def __init__(self, section: Section):
        self.section = section


def passed_course_codes(repos: Repositories, student_id: str) -> Set[str]:
    """Course codes the student has completed with a passing grade."""
    codes = set()
    transcript = repos.transcripts.find_by_student(student_id)
    if transcript is not None:
        codes.update(entry.course_code for entry in transcript.current_entries if entry.is_passing)
    for enrollment in repos.enrollments.find_by_student(student_id):
        if enrollment.status == EnrollmentStatus.COMPLETED:
            course = repos.courses.find_by_id(enrollment.course_id)
            if course is not None:
                codes.add(course.code)
    return codes


def refresh_enrollment_count(repos: Repositories, section: Section) -> int:
    """Recompute the section's counter from its records and stage the section."""
    count = repos.enrollments.count_for_section(section.id)
    section.set_enrollment_count(count)
    repos.sections.save(section)
    return count


def promote_from_waitlist(repos: Repositories, section: Section) -> List[Enrollment]:
    """Fill free seats from the head of the waitlist, in queue order."""
    promoted = []
    waitlist = repos.enrollments.waitlist_for_section(section.id)
    count = repos.enrollments.count_for_section(section.id)
    while waitlist and count < section.capacity:
        head = waitlist.pop(0)
        head.transition_to(EnrollmentStatus.ACTIVE)
        repos.enrollments.save(head)
        promoted.append(head)
        count += 1
    return promoted


class EnrollmentService:
    """Admits, waitlists, drops and promotes enrollments atomically."""

    def __init__(self, transactions: TransactionManager, scheduler: SchedulerService,
                 events: EventService, clock: Callable[[], datetime] = utcnow):
        self._transactions = transactions
        self._scheduler = scheduler
        self._events = events
        self._clock = clock

    def admit_or_waitlist(self, student_id: str, section_id: str, join_waitlist: bool = False,
                          actor_id: Optional[str] = None) -> AdmissionResult:
        """
        Admit a student into a section, or place them on its waitlist.

        Raises ``InvariantViolationError`` with error codes ``DeadlinePassed``,
        ``SectionClosed``, ``PrerequisiteMissing``, ``ScheduleConflict``,
        ``DuplicateEnrollment`` or ``SectionFull``; ``NotFoundError`` for an
        unknown student or section.
        """
        def operation(uow: UnitOfWork):
            repos = Repositories(uow)
            student = repos.students.get(student_id)
            section = repos.sections.get(section_id)
            course = repos.courses.get(section.course_id)

            if not student.is_active:
                raise InvariantViolationError(
                    "Enrollment", "Student Status",
                    f"Student {student.student_number} is {student.status.value} and cannot enroll",
                    error_code="InvalidTransition",
                )

            if section.deadline_passed(self._clock()):
                if section.is_open_for_enrollment:
                    section.set_open(False)
                    repos.sections.save(section)
                    return _DeadlineClosed(section)
                raise self._deadline_error(section)
            if not section.is_open_for_enrollment:
                label = " ".join(part for part in (course.code, section.section_number) if part)
                raise InvariantViolationError(
                    "Section", "Open For Enrollment",
                    f"Section {label} is not open for enrollment",
                    error_code="SectionClosed",
                )

            passed = passed_course_codes(repos, student_id)
            missing = [code for code in course.prerequisites if code not in passed]
            if missing:
                raise InvariantViolationError(
                    "Enrollment", "Prerequisites",
                    f"Missing prerequisites for {course.code}: {', '.join(missing)}",
                    error_code="PrerequisiteMissing",
                    details={'missing': missing},
                )

            self._scheduler.check_student_conflicts(repos, student_id, section.term_id,
                                                    section.schedule_slots)

            for existing in repos.enrollments.find_by_student(student_id):
                if (existing.status in HOLDING_STATUSES and existing.course_id == course.id
                        and existing.term_id == section.term_id):
                    raise InvariantViolationError(
                        "Enrollment", "Duplicate Enrollment",
                        f"Student is already {existing.status.value} in {course.code} this term",
                        error_code="DuplicateEnrollment",
                        details={'enrollment_id': existing.id},
                    )

            count = repos.enrollments.count_for_section(section.id)
            if count >= section.capacity:
                if not join_waitlist:
                    raise InvariantViolationError(
                        "Section", "Capacity",
                        f"Section is full ({count}/{section.capacity})",
                        error_code="SectionFull",
                        details={'enrollment_count': count, 'capacity': section.capacity},
                    )
                status = EnrollmentStatus.WAITLISTED
            else:
                validators.capacity(count, section.capacity)
                status = EnrollmentStatus.ACTIVE

            enrollment = Enrollment(student_id, section.id, course.id, section.term_id,
                                    status, queue_sequence=uow.next_sequence(),
                                    enrolled_at=self._clock())
            repos.enrollments.save(enrollment)
            count = refresh_enrollment_count(repos, section)

            position = None
            if status == EnrollmentStatus.WAITLISTED:
                position = len(repos.enrollments.waitlist_for_section(section.id))

            action = (AuditAction.STUDENT_WAITLISTED if status == EnrollmentStatus.WAITLISTED
                      else AuditAction.STUDENT_ENROLLED)
            details = {'enrollment_id': enrollment.id, 'section_id': section.id,
                       'student_id': student_id, 'course_code': course.code}
            uow.after_commit(lambda: self._events.audit("enrollment", action, actor_id or student_id, details))
            return AdmissionResult(enrollment.id, status, count, position)

        # The student's schedule check reads other sections of the term, which
        # reschedules change under the term's schedule lock.
        term_id = self._transactions.read(lambda uow: Repositories(uow).sections.get(section_id).term_id)
        outcome = self._transactions.run(operation, lock_keys=[f"schedule:{term_id}",
                                                               f"section:{section_id}",
                                                               f"student:{student_id}"])
        if isinstance(outcome, _DeadlineClosed):
            self._events.audit("section", AuditAction.SECTION_CLOSED, actor_id,
                               {'section_id': section_id, 'reason': 'enrollment deadline passed'})
            logger.warning("Rejected enrollment of %s into %s: deadline passed", student_id, section_id)
            raise self._deadline_error(outcome.section)

        logger.info("Student %s %s in section %s (count %d)", student_id, outcome.status.value,
                    section_id, outcome.enrollment_count)
        return outcome

    @staticmethod
    def _deadline_error(section: Section) -> InvariantViolationError:
        deadline = section.enrollment_deadline.isoformat() if section.enrollment_deadline else "unknown"
        return InvariantViolationError(
            "Section", "Enrollment Deadline",
            f"Enrollment deadline {deadline} has passed",
            error_code="DeadlinePassed",
            details={'enrollment_deadline': deadline},
        )

    def drop(self, enrollment_id: str, actor_id: str, withdraw: bool = False) -> DropResult:
        """Drop (or withdraw) an enrollment and promote the head of the waitlist into a freed seat."""
        current = self._transactions.read(lambda uow: Repositories(uow).enrollments.get(enrollment_id))
        section_id, student_id = current.section_id, current.student_id

        def operation(uow: UnitOfWork) -> DropResult:
            repos = Repositories(uow)
            enrollment = repos.enrollments.get(enrollment_id)
            section = repos.sections.get(enrollment.section_id)

            enrollment.drop(actor_id, withdraw=withdraw)
            repos.enrollments.save(enrollment)

            promoted = promote_from_waitlist(repos, section)
            count = refresh_enrollment_count(repos, section)

            drop_details = {'enrollment_id': enrollment.id, 'section_id': section.id,
                            'status': enrollment.status.value}
            uow.after_commit(lambda: self._events.audit(
                "enrollment", AuditAction.STUDENT_DROPPED, actor_id, drop_details))
            for promoted_enrollment in promoted:
                self._after_promotion(uow, promoted_enrollment, actor_id)

            return DropResult(enrollment.id, enrollment.status, count,
                              promoted[0].id if promoted else None)

        result = self._transactions.run(operation, lock_keys=[f"section:{section_id}",
                                                              f"student:{student_id}"])
        logger.info("Enrollment %s %s by %s; promoted %s", enrollment_id, result.status.value,
                    actor_id, result.promoted_enrollment_id)
        return result

    def _after_promotion(self, uow: UnitOfWork, enrollment: Enrollment, actor_id: Optional[str]) -> None:
        details = {'enrollment_id': enrollment.id, 'section_id': enrollment.section_id,
                   'student_id': enrollment.student_id}
        uow.after_commit(lambda: self._events.audit(
            "enrollment", AuditAction.WAITLIST_PROMOTED, actor_id, details))
        uow.after_commit(lambda: self._events.notify(
            enrollment.student_id, "Enrolled from waitlist",
            "A seat opened up and you have been enrolled in the section.", details))

    def waitlist_position(self, enrollment_id: str) -> Optional[int]:
        """1-based place in the waitlist, or None when not waitlisted."""
        def query(uow: UnitOfWork) -> Optional[int]:
            repos = Repositories(uow)
            enrollment = repos.enrollments.get(enrollment_id)
            if enrollment.status != EnrollmentStatus.WAITLISTED:
                return None
            queue = repos.enrollments.waitlist_for_section(enrollment.section_id)
            return [e.id for e in queue].index(enrollment.id) + 1

        return self._transactions.read(query)

    def update_capacity(self, section_id: str, capacity: int,
                        actor_id: Optional[str] = None) -> CapacityResult:
        """Change a section's capacity; new seats are filled from the waitlist."""
        def operation(uow: UnitOfWork) -> CapacityResult:
            repos = Repositories(uow)
            section = repos.sections.get(section_id)
            current = repos.enrollments.count_for_section(section.id)
            validators.capacity_update(current, capacity)
            old_capacity = section.capacity
            section.set_capacity(capacity)

            promoted = promote_from_waitlist(repos, section)
            count = refresh_enrollment_count(repos, section)

            uow.after_commit(lambda: self._events.audit(
                "section", AuditAction.CAPACITY_CHANGED, actor_id,
                {'section_id': section.id, 'from': old_capacity, 'to': capacity}))
            for promoted_enrollment in promoted:
                self._after_promotion(uow, promoted_enrollment, actor_id)
            return CapacityResult(section.id, capacity, count, [e.id for e in promoted])

        result = self._transactions.run(operation, lock_keys=[f"section:{section_id}"])
        logger.info("Section %s capacity set to %d", section_id, capacity)
        return result

    def set_enrollment_open(self, section_id: str, is_open: bool,
                            actor_id: Optional[str] = None) -> Section:
        def operation(uow: UnitOfWork) -> Section:
            repos = Repositories(uow)
            section = repos.sections.get(section_id)
            section.set_open(is_open)
            repos.sections.save(section)
            if not is_open:
                uow.after_commit(lambda: self._events.audit(
                    "section", AuditAction.SECTION_CLOSED, actor_id, {'section_id': section_id}))
            return section

        return self._transactions.run(operation, lock_keys=[f"section:{section_id}"])

    def enrollments_for_section(self, section_id: str) -> List[Enrollment]:
        return self._transactions.read(
            lambda uow: Repositories(uow).enrollments.find_by_section(section_id))

    def enrollments_for_student(self, student_id: str) -> List[Enrollment]:
        return self._transactions.read(
            lambda uow: Repositories(uow).enrollments.find_by_student(student_id))
