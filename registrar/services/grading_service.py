"""
Grading service: assessments, scores, final grades and grade locks.

All letter grades come from one ``GradeScale`` handed to the service at
construction.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Union

from ..core import validators
from ..core.entities import Assessment, Enrollment, Grade, Section, TranscriptEntry
from ..core.enums import AuditAction, EnrollmentStatus, GradeScale, UserRole
from ..core.exceptions import ConcurrencyError, InvariantViolationError, ValidationError
from ..core.grading import GradeValue, percentage_to_grade, score_to_grade, weighted_final_percentage
from ..persistence.repositories import Repositories
from .access import require_role
from .event_service import EventService
from .unit_of_work import TransactionManager, UnitOfWork


logger = logging.getLogger(__name__)

GRADE_MANAGERS = (UserRole.REGISTRAR, UserRole.ADMIN)


@dataclass
class GradeUpdate:
    """One score in a bulk update."""
    enrollment_id: str
    assessment_id: str
    score: float

    @classmethod
    def coerce(cls, value: Union['GradeUpdate', Dict[str, Any]]) -> 'GradeUpdate':
        if isinstance(value, GradeUpdate):
            return value
        try:
            return cls(value['enrollment_id'], value['assessment_id'], float(value['score']))
        except KeyError as e:
            raise ValidationError(str(e.args[0]), "Field is required")


@dataclass
class FinalGradeResult:
    """Outcome of final grade posting for one enrollment."""
    enrollment_id: str
    student_id: str
    final_percentage: float
    letter: str
    points: float
    status: EnrollmentStatus

    def to_dict(self) -> Dict[str, Any]:
        return {
            'enrollment_id': self.enrollment_id,
            'student_id': self.student_id,
            'final_percentage': self.final_percentage,
            'letter': self.letter,
            'points': self.points,
            'status': self.status.value,
        }


class GradingService:
    """Records scores and posts final grades for sections."""

    def __init__(self, transactions: TransactionManager, events: EventService,
                 scale: GradeScale = GradeScale.FIVE_POINT):
        self._transactions = transactions
        self._events = events
        self._scale = scale

    @property
    def scale(self) -> GradeScale:
        return self._scale

    # Assessments

    def create_assessment(self, section_id: str, title: str, weight: float, total_points: float,
                          due_date: Optional[datetime] = None,
                          actor_id: Optional[str] = None) -> Assessment:
        assessment = Assessment(section_id, title, weight, total_points, due_date)

        def operation(uow: UnitOfWork) -> Assessment:
            repos = Repositories(uow)
            section = repos.sections.get(section_id)
            section.ensure_grades_writable()
            existing = repos.assessments.find_by_section(section.id)
            validators.assessment_weight_total([a.weight for a in existing], assessment.weight)
            repos.assessments.save(assessment)
            uow.after_commit(lambda: self._events.audit(
                "assessment", AuditAction.ASSESSMENT_CREATED, actor_id,
                {'assessment_id': assessment.id, 'section_id': section_id, 'weight': weight}))
            return assessment

        result = self._transactions.run(operation, lock_keys=[f"section:{section_id}"])
        logger.info("Created assessment '%s' (%.2f%%) in section %s", title, weight, section_id)
        return result

    def update_assessment(self, assessment_id: str, title: Optional[str] = None,
                          weight: Optional[float] = None, total_points: Optional[float] = None,
                          due_date: Optional[datetime] = None,
                          actor_id: Optional[str] = None) -> Assessment:
        section_id = self._transactions.read(
            lambda uow: Repositories(uow).assessments.get(assessment_id).section_id)

        def operation(uow: UnitOfWork) -> Assessment:
            repos = Repositories(uow)
            assessment = repos.assessments.get(assessment_id)
            section = repos.sections.get(assessment.section_id)
            section.ensure_grades_writable()

            assessment.update(title=title, weight=weight, total_points=total_points, due_date=due_date)
            others = [a.weight for a in repos.assessments.find_by_section(section.id)
                      if a.id != assessment.id]
            validators.assessment_weight_total(others, assessment.weight)

            # Stored percentages follow the new total points.
            for grade in repos.grades.find_for_assessment(assessment.id):
                validators.score_bounds(grade.score, assessment.total_points)
                grade.rescore(grade.score, score_to_grade(grade.score, assessment.total_points, self._scale),
                              grade.graded_by)
                repos.grades.save(grade)

            repos.assessments.save(assessment)
            uow.after_commit(lambda: self._events.audit(
                "assessment", AuditAction.ASSESSMENT_UPDATED, actor_id,
                {'assessment_id': assessment.id, 'weight': assessment.weight}))
            return assessment

        return self._transactions.run(operation, lock_keys=[f"section:{section_id}"])

    def delete_assessment(self, assessment_id: str, actor_id: Optional[str] = None) -> bool:
        section_id = self._transactions.read(
            lambda uow: Repositories(uow).assessments.get(assessment_id).section_id)

        def operation(uow: UnitOfWork) -> bool:
            repos = Repositories(uow)
            assessment = repos.assessments.get(assessment_id)
            repos.sections.get(assessment.section_id).ensure_grades_writable()
            for grade in repos.grades.find_for_assessment(assessment.id):
                repos.grades.delete(grade.id)
            repos.assessments.delete(assessment.id)
            uow.after_commit(lambda: self._events.audit(
                "assessment", AuditAction.ASSESSMENT_DELETED, actor_id, {'assessment_id': assessment_id}))
            return True

        return self._transactions.run(operation, lock_keys=[f"section:{section_id}"])

    def assessments_for_section(self, section_id: str) -> List[Assessment]:
        return self._transactions.read(lambda uow: Repositories(uow).assessments.find_by_section(section_id))

    # Scores

    def _stage_grade(self, repos: Repositories, update: GradeUpdate, section: Section,
                     actor_id: Optional[str]) -> Grade:
        enrollment = repos.enrollments.get(update.enrollment_id)
        assessment = repos.assessments.get(update.assessment_id)
        if enrollment.section_id != section.id or assessment.section_id != section.id:
            raise ValidationError(
                "assessment_id",
                f"Assessment {assessment.id} and enrollment {enrollment.id} belong to different sections",
            )
        if not (enrollment.is_counted or enrollment.status.is_final):
            raise InvariantViolationError(
                "Grade", "Enrollment Status",
                f"Cannot grade an enrollment that is {enrollment.status.value}",
                error_code="NotEnrolled",
            )
        section.ensure_grades_writable()
        validators.score_bounds(update.score, assessment.total_points)

        value = score_to_grade(update.score, assessment.total_points, self._scale)
        grade = repos.grades.find_pair(enrollment.id, assessment.id)
        if grade is None:
            grade = Grade(enrollment.id, assessment.id, update.score, value, actor_id)
        else:
            grade.rescore(update.score, value, actor_id)
        repos.grades.save(grade)
        return grade

    def _section_of_enrollment(self, enrollment_id: str) -> str:
        return self._transactions.read(lambda uow: Repositories(uow).enrollments.get(enrollment_id).section_id)

    def record_grade(self, enrollment_id: str, assessment_id: str, score: float,
                     actor_id: Optional[str] = None) -> Grade:
        """Insert or replace the score of one enrollment on one assessment."""
        update = GradeUpdate(enrollment_id, assessment_id, float(score))
        section_id = self._section_of_enrollment(enrollment_id)

        def operation(uow: UnitOfWork) -> Grade:
            repos = Repositories(uow)
            section = repos.sections.get(section_id)
            grade = self._stage_grade(repos, update, section, actor_id)
            action = AuditAction.GRADE_EDITED if grade.version else AuditAction.GRADE_POSTED
            uow.after_commit(lambda: self._events.audit(
                "grade", action, actor_id, {'grade_id': grade.id, 'score': update.score}))
            return grade

        grade = self._transactions.run(operation, lock_keys=[f"section:{section_id}"])
        logger.info("Recorded %.2f on assessment %s for enrollment %s", score, assessment_id, enrollment_id)
        return grade

    def bulk_update_grades(self, updates: Iterable[Union[GradeUpdate, Dict[str, Any]]],
                           actor_id: Optional[str] = None) -> List[Grade]:
        """Record many scores; either all of them are stored or none is."""
        updates = [GradeUpdate.coerce(u) for u in updates]
        if not updates:
            return []
        section_ids = sorted({self._section_of_enrollment(u.enrollment_id) for u in updates})

        def operation(uow: UnitOfWork) -> List[Grade]:
            repos = Repositories(uow)
            grades = []
            for update in updates:
                enrollment = repos.enrollments.get(update.enrollment_id)
                section = repos.sections.get(enrollment.section_id)
                grades.append(self._stage_grade(repos, update, section, actor_id))
            uow.after_commit(lambda: self._events.audit(
                "grade", AuditAction.GRADE_POSTED, actor_id, {'count': len(grades)}))
            return grades

        grades = self._transactions.run(operation, lock_keys=[f"section:{s}" for s in section_ids])
        logger.info("Bulk recorded %d grades", len(grades))
        return grades

    # Final grades

    def _final_grade(self, repos: Repositories, enrollment: Enrollment,
                     assessments: Sequence[Assessment]) -> GradeValue:
        validators.final_weight_total([a.weight for a in assessments])
        grades = {g.assessment_id: g for g in repos.grades.find_for_enrollment(enrollment.id)}
        missing = [a.title for a in assessments if a.id not in grades]
        if missing:
            raise InvariantViolationError(
                "Grade", "Complete Grades",
                f"Missing grades for: {', '.join(missing)}",
                error_code="MissingGrades",
                details={'missing': missing},
            )
        percentage = weighted_final_percentage((grades[a.id].percentage, a.weight) for a in assessments)
        return percentage_to_grade(percentage, self._scale)

    def compute_final_grade(self, enrollment_id: str) -> GradeValue:
        """Weighted final grade of an enrollment; nothing is stored."""
        def query(uow: UnitOfWork) -> GradeValue:
            repos = Repositories(uow)
            enrollment = repos.enrollments.get(enrollment_id)
            return self._final_grade(repos, enrollment, repos.assessments.find_by_section(enrollment.section_id))

        return self._transactions.read(query)

    def post_final_grades(self, section_id: str, actor_id: Optional[str] = None) -> List[FinalGradeResult]:
        """
        Post final grades for every enrolled student of a section.

        Each enrollment is completed (or failed for an F) and gets one
        transcript entry; the section is then marked posted and no longer
        editable. Posting a reopened section regrades the enrollments that
        were already graded: a changed grade is corrected on the enrollment
        and appended to the transcript as a correction entry. If any
        enrollment cannot be graded nothing is written and the error lists
        every failure in ``details["failures"]``.
        """
        planned: Set[str] = set()

        def lock_keys(uow: UnitOfWork) -> List[str]:
            enrollments = Repositories(uow).enrollments.gradable_for_section(section_id)
            keys = [f"section:{section_id}"] + [f"student:{e.student_id}" for e in enrollments]
            planned.clear()
            planned.update(keys)
            return keys

        def operation(uow: UnitOfWork) -> List[FinalGradeResult]:
            repos = Repositories(uow)
            section = repos.sections.get(section_id)
            if section.final_grades_posted:
                raise InvariantViolationError(
                    "Section", "Final Grade Posting", "Final grades have already been posted",
                    error_code="FinalGradePosting",
                )
            if section.is_locked:
                section.ensure_grades_writable()

            course = repos.courses.get(section.course_id)
            term = repos.terms.get(section.term_id)
            assessments = repos.assessments.find_by_section(section.id)
            validators.final_weight_total([a.weight for a in assessments])

            enrollments = repos.enrollments.gradable_for_section(section.id)
            if any(f"student:{e.student_id}" not in planned for e in enrollments):
                raise ConcurrencyError(f"Enrollments of section {section_id} changed while locking",
                                       "LockSetChanged", {'section_id': section_id})

            computed = []
            failures = []
            for enrollment in enrollments:
                try:
                    computed.append((enrollment, self._final_grade(repos, enrollment, assessments)))
                except InvariantViolationError as e:
                    failures.append({
                        'enrollment_id': enrollment.id,
                        'student_id': enrollment.student_id,
                        'error_code': e.error_code,
                        'message': e.reason,
                        'details': e.details,
                    })
            if failures:
                raise InvariantViolationError(
                    "Section", "Final Grade Posting",
                    f"{len(failures)} of {len(enrollments)} enrollments could not be graded",
                    error_code="FinalGradePosting",
                    details={'failures': failures},
                )

            results = []
            corrected = []
            for enrollment, value in computed:
                validators.transcript_entry(course.code, course.credits, value.points, self._scale)
                regrade = enrollment.status.is_final
                if not (regrade and enrollment.has_final_grade(value)):
                    enrollment.record_final_grade(value)
                    repos.enrollments.save(enrollment)

                    transcript = repos.transcripts.get_or_create(enrollment.student_id)
                    transcript.append(TranscriptEntry(
                        course_code=course.code,
                        course_title=course.title,
                        credits=course.credits,
                        grade=value,
                        term=term.name,
                        year=term.year,
                        enrollment_id=enrollment.id,
                        is_correction=regrade,
                    ))
                    repos.transcripts.save(transcript)
                    if regrade:
                        corrected.append(enrollment.id)
                results.append(FinalGradeResult(enrollment.id, enrollment.student_id, value.numeric,
                                                value.letter, value.points, enrollment.status))

            section.mark_final_grades_posted()
            repos.sections.save(section)

            uow.after_commit(lambda: self._events.audit(
                "section", AuditAction.FINAL_GRADES_POSTED, actor_id,
                {'section_id': section_id, 'count': len(results), 'corrected': corrected}))
            for result in results:
                uow.after_commit(lambda r=result: self._events.notify(
                    r.student_id, f"Final grade posted for {course.code}",
                    f"Your final grade is {r.letter}.", r.to_dict()))
            return results

        try:
            results = self._transactions.run(operation, lock_keys=lock_keys)
        except InvariantViolationError as e:
            logger.warning("Final grade posting for section %s rejected: %s", section_id, e.message)
            raise
        logger.info("Posted %d final grades for section %s", len(results), section_id)
        return results

    # Locks

    def set_section_lock(self, section_id: str, locked: bool, reason: Optional[str] = None,
                         actor_id: Optional[str] = None, roles: Iterable[str] = ()) -> Section:
        require_role(actor_id, roles, *GRADE_MANAGERS, action="lock or unlock sections")

        def operation(uow: UnitOfWork) -> Section:
            repos = Repositories(uow)
            section = repos.sections.get(section_id)
            section.set_lock(locked, reason)
            repos.sections.save(section)
            action = AuditAction.SECTION_LOCKED if locked else AuditAction.SECTION_UNLOCKED
            uow.after_commit(lambda: self._events.audit(
                "section", action, actor_id, {'section_id': section_id, 'reason': reason}))
            return section

        section = self._transactions.run(operation, lock_keys=[f"section:{section_id}"])
        logger.info("Section %s %s by %s", section_id, "locked" if locked else "unlocked", actor_id)
        return section

    def reopen_grades(self, section_id: str, reason: Optional[str] = None,
                      actor_id: Optional[str] = None, roles: Iterable[str] = ()) -> Section:
        """
        Make posted grades editable again; the section must not be locked.

        The section counts as unposted until ``post_final_grades`` runs again,
        which regrades its enrollments from the edited scores.
        """
        require_role(actor_id, roles, *GRADE_MANAGERS, action="reopen grades")

        def operation(uow: UnitOfWork) -> Section:
            repos = Repositories(uow)
            section = repos.sections.get(section_id)
            if section.is_locked:
                section.ensure_grades_writable()
            if not section.final_grades_posted:
                raise InvariantViolationError(
                    "Section", "Final Grade Posting", "Final grades have not been posted",
                    error_code="FinalGradePosting",
                )
            section.reopen_grades()
            repos.sections.save(section)
            uow.after_commit(lambda: self._events.audit(
                "section", AuditAction.GRADES_REOPENED, actor_id, {'section_id': section_id, 'reason': reason}))
            return section

        return self._transactions.run(operation, lock_keys=[f"section:{section_id}"])
