"""
Repository pattern implementations for data access.

Repositories read and stage records through a ``UnitOfWork``; they never
write to the store directly, so everything saved through them commits or
rolls back with the enclosing transaction.
"""

from enum import Enum
from typing import Any, Dict, Generic, List, Optional, Type, TypeVar, TYPE_CHECKING

from ..core.entities import (
    AbstractEntity, AlumniProfile, Assessment, Course, Enrollment, Grade,
    GraduationRecord, Program, Section, Student, Term, Transcript,
)
from ..core.enums import EnrollmentStatus
from ..core.interfaces import Repository

if TYPE_CHECKING:
    from ..services.unit_of_work import UnitOfWork

T = TypeVar('T', bound=AbstractEntity)


def _matches(entity: AbstractEntity, filters: Dict[str, Any]) -> bool:
    for key, expected in filters.items():
        actual = getattr(entity, key, None)
        if isinstance(actual, Enum) and not isinstance(expected, Enum):
            actual = actual.value
        if actual != expected:
            return False
    return True


class BaseRepository(Repository[T], Generic[T]):
    """Base repository implementation with common functionality."""

    entity_class: Type[AbstractEntity] = AbstractEntity

    def __init__(self, uow: 'UnitOfWork'):
        self._uow = uow

    def save(self, entity: T) -> T:
        self._uow.add(entity)
        return entity

    def find_by_id(self, entity_id: str) -> Optional[T]:
        return self._uow.get(entity_id, self.entity_class)

    def get(self, entity_id: str) -> T:
        return self._uow.require(entity_id, self.entity_class)

    def find_all(self, filters: Optional[Dict[str, Any]] = None) -> List[T]:
        entities = self._uow.list(self.entity_class)
        if filters:
            entities = [e for e in entities if _matches(e, filters)]
        return sorted(entities, key=lambda e: e.created_at)

    def find_one(self, filters: Dict[str, Any]) -> Optional[T]:
        matches = self.find_all(filters)
        return matches[0] if matches else None

    def delete(self, entity_id: str) -> bool:
        entity = self.find_by_id(entity_id)
        if entity is None:
            return False
        self._uow.remove(entity)
        return True

    def count(self, filters: Optional[Dict[str, Any]] = None) -> int:
        return len(self.find_all(filters))


class StudentRepository(BaseRepository[Student]):
    entity_class = Student

    def find_by_number(self, student_number: str) -> Optional[Student]:
        return self.find_one({'student_number': student_number})


class ProgramRepository(BaseRepository[Program]):
    entity_class = Program

    def find_by_code(self, code: str) -> Optional[Program]:
        return self.find_one({'code': code})


class CourseRepository(BaseRepository[Course]):
    entity_class = Course

    def find_by_code(self, code: str) -> Optional[Course]:
        return self.find_one({'code': code})

    def prerequisite_catalog(self) -> Dict[str, List[str]]:
        return {course.code: course.prerequisites for course in self.find_all()}


class TermRepository(BaseRepository[Term]):
    entity_class = Term


class SectionRepository(BaseRepository[Section]):
    entity_class = Section

    def find_by_term(self, term_id: str) -> List[Section]:
        return self.find_all({'term_id': term_id})

    def find_by_instructor(self, instructor_id: str, term_id: str) -> List[Section]:
        return self.find_all({'instructor_id': instructor_id, 'term_id': term_id})

    def find_by_course(self, course_id: str) -> List[Section]:
        return self.find_all({'course_id': course_id})


class EnrollmentRepository(BaseRepository[Enrollment]):
    entity_class = Enrollment

    def find_by_section(self, section_id: str) -> List[Enrollment]:
        return self.find_all({'section_id': section_id})

    def find_by_student(self, student_id: str) -> List[Enrollment]:
        return self.find_all({'student_id': student_id})

    def counted_for_section(self, section_id: str) -> List[Enrollment]:
        return [e for e in self.find_by_section(section_id) if e.is_counted]

    def gradable_for_section(self, section_id: str) -> List[Enrollment]:
        """Enrollments that receive a final grade: seated ones and already graded ones."""
        return [e for e in self.find_by_section(section_id) if e.is_counted or e.status.is_final]

    def count_for_section(self, section_id: str) -> int:
        """The value ``Section.enrollment_count`` must equal."""
        return len(self.counted_for_section(section_id))

    def waitlist_for_section(self, section_id: str) -> List[Enrollment]:
        """Waitlisted enrollments in queue order."""
        waiting = self.find_all({'section_id': section_id, 'status': EnrollmentStatus.WAITLISTED})
        return sorted(waiting, key=lambda e: e.queue_sequence)


class AssessmentRepository(BaseRepository[Assessment]):
    entity_class = Assessment

    def find_by_section(self, section_id: str) -> List[Assessment]:
        return self.find_all({'section_id': section_id})


class GradeRepository(BaseRepository[Grade]):
    entity_class = Grade

    def find_for_enrollment(self, enrollment_id: str) -> List[Grade]:
        return self.find_all({'enrollment_id': enrollment_id})

    def find_for_assessment(self, assessment_id: str) -> List[Grade]:
        return self.find_all({'assessment_id': assessment_id})

    def find_pair(self, enrollment_id: str, assessment_id: str) -> Optional[Grade]:
        return self.find_one({'enrollment_id': enrollment_id, 'assessment_id': assessment_id})


class TranscriptRepository(BaseRepository[Transcript]):
    entity_class = Transcript

    def find_by_student(self, student_id: str) -> Optional[Transcript]:
        return self.find_by_id(Transcript.id_for(student_id))

    def get_or_create(self, student_id: str) -> Transcript:
        # Two creators for one student share the id, so the later commit conflicts.
        transcript = self.find_by_student(student_id)
        if transcript is None:
            transcript = Transcript(student_id)
        return transcript


class GraduationRecordRepository(BaseRepository[GraduationRecord]):
    entity_class = GraduationRecord

    def find_by_student(self, student_id: str) -> Optional[GraduationRecord]:
        return self.find_one({'student_id': student_id})


class AlumniProfileRepository(BaseRepository[AlumniProfile]):
    entity_class = AlumniProfile

    def find_by_student(self, student_id: str) -> Optional[AlumniProfile]:
        return self.find_one({'student_id': student_id})


class Repositories:
    """All repositories bound to one unit of work."""

    def __init__(self, uow: 'UnitOfWork'):
        self.uow = uow
        self.students = StudentRepository(uow)
        self.programs = ProgramRepository(uow)
        self.courses = CourseRepository(uow)
        self.terms = TermRepository(uow)
        self.sections = SectionRepository(uow)
        self.enrollments = EnrollmentRepository(uow)
        self.assessments = AssessmentRepository(uow)
        self.grades = GradeRepository(uow)
        self.transcripts = TranscriptRepository(uow)
        self.graduations = GraduationRecordRepository(uow)
        self.alumni = AlumniProfileRepository(uow)
