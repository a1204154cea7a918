"""
Transcript service: GPA, term GPA and term-end processing.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence

from ..core import validators
from ..core.entities import Transcript, TranscriptEntry
from ..core.enums import AuditAction, GradeScale, UserRole
from ..core.exceptions import InvariantViolationError
from ..core.grading import calculate_gpa, standing_for_gpa
from ..persistence.repositories import Repositories
from .access import require_role
from .event_service import EventService
from .unit_of_work import TransactionManager, UnitOfWork


logger = logging.getLogger(__name__)


def term_gpa(entries: Sequence[TranscriptEntry], term: str, year: int) -> float:
    """GPA over the entries of one term."""
    return calculate_gpa([e for e in entries if e.term == term and e.year == year])


@dataclass
class TranscriptView:
    student_id: str
    entries: List[TranscriptEntry]
    gpa: float
    total_credits: float
    earned_credits: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            'student_id': self.student_id,
            'entries': [e.to_dict() for e in self.entries],
            'gpa': self.gpa,
            'total_credits': self.total_credits,
            'earned_credits': self.earned_credits,
        }


@dataclass
class TermEndResult:
    term_id: str
    students_processed: int
    sections_locked: int
    standings: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'term_id': self.term_id,
            'students_processed': self.students_processed,
            'sections_locked': self.sections_locked,
            'standings': self.standings,
        }


class TranscriptService:
    """Reads transcripts and closes out terms."""

    def __init__(self, transactions: TransactionManager, events: EventService,
                 scale: GradeScale = GradeScale.FIVE_POINT):
        self._transactions = transactions
        self._events = events
        self._scale = scale

    @staticmethod
    def calculate_gpa(entries: Sequence[TranscriptEntry]) -> float:
        return calculate_gpa(entries)

    def get_transcript(self, student_id: str) -> TranscriptView:
        """Current transcript entries with a GPA recomputed from them."""
        def query(uow: UnitOfWork) -> TranscriptView:
            repos = Repositories(uow)
            repos.students.get(student_id)
            transcript = repos.transcripts.find_by_student(student_id) or Transcript(student_id)
            entries = list(transcript.current_entries)
            gpa = transcript.gpa
            if not validators.gpa_matches(transcript.stored_gpa, entries):
                logger.warning("Transcript %s stores GPA %.2f, recomputed %.2f; using recomputed",
                               transcript.id, transcript.stored_gpa, gpa)
            return TranscriptView(
                student_id=student_id,
                entries=entries,
                gpa=gpa,
                total_credits=sum(e.credits for e in entries),
                earned_credits=sum(e.credits for e in entries if e.is_passing),
            )

        return self._transactions.read(query)

    def process_term_end(self, term_id: str, actor_id: Optional[str] = None,
                         roles: Iterable[str] = ()) -> TermEndResult:
        """
        Close a term: every section with enrollments must have posted grades.
        Each student's term GPA sets their academic standing, and every
        section of the term is locked.
        """
        require_role(actor_id, roles, UserRole.REGISTRAR, UserRole.ADMIN, action="process term end")

        def operation(uow: UnitOfWork) -> TermEndResult:
            repos = Repositories(uow)
            term = repos.terms.get(term_id)
            sections = repos.sections.find_by_term(term_id)

            pending = [
                s.id for s in sections
                if not s.final_grades_posted and repos.enrollments.gradable_for_section(s.id)
            ]
            if pending:
                raise InvariantViolationError(
                    "Term", "Term End",
                    f"{len(pending)} section(s) have not posted final grades",
                    error_code="MissingGrades",
                    details={'sections': pending},
                )

            student_ids = sorted({
                e.student_id
                for s in sections
                for e in repos.enrollments.find_by_section(s.id)
                if e.status.is_final
            })
            standings = {}
            for student_id in student_ids:
                student = repos.students.get(student_id)
                transcript = repos.transcripts.find_by_student(student_id)
                entries = list(transcript.current_entries) if transcript else []
                gpa = term_gpa(entries, term.name, term.year)
                standing = standing_for_gpa(gpa, self._scale)
                student.set_academic_standing(standing)
                repos.students.save(student)
                standings[student_id] = {'term_gpa': gpa, 'cumulative_gpa': calculate_gpa(entries),
                                         'academic_standing': standing}

            for section in sections:
                section.set_lock(True, f"Term {term.name} {term.year} processed")
                repos.sections.save(section)
            term.mark_processed()
            repos.terms.save(term)

            uow.after_commit(lambda: self._events.audit(
                "term", AuditAction.TERM_PROCESSED, actor_id,
                {'term_id': term_id, 'students': len(student_ids), 'sections': len(sections)}))
            return TermEndResult(term_id, len(student_ids), len(sections), standings)

        section_ids = self._transactions.read(
            lambda uow: [s.id for s in Repositories(uow).sections.find_by_term(term_id)])
        result = self._transactions.run(
            operation, lock_keys=[f"schedule:{term_id}"] + [f"section:{s}" for s in section_ids])
        logger.info("Processed term %s: %d students, %d sections locked",
                    term_id, result.students_processed, result.sections_locked)
        return result
