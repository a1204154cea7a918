"""
Core entities of the Registrar platform.

Entities keep their state in private attributes behind read-only properties;
mutation goes through methods that enforce the entity's own invariants.
Cross-record rules (capacity against enrollment records, prerequisites,
schedule conflicts) live in the services.
"""

import uuid
from abc import ABC
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple, Type

from .enums import EnrollmentStatus, StudentStatus
from .exceptions import InvariantViolationError, ValidationError
from .grading import GradeValue, calculate_gpa
from .timeslots import TimeSlot
from . import validators


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_dt(value: Any) -> Optional[datetime]:
    """Parse an ISO string (or pass a datetime through) as an aware UTC-default datetime."""
    if value is None:
        return None
    parsed = value if isinstance(value, datetime) else datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class AbstractEntity(ABC):
    """Base abstract entity with universal ID, lifecycle, and versioning."""

    entity_type: str = "entity"

    def __init__(self, entity_id: Optional[str] = None):
        self._id = entity_id or str(uuid.uuid4())
        self._created_at = utcnow()
        self._updated_at = self._created_at
        self._version = 0

    @property
    def id(self) -> str:
        return self._id

    @property
    def created_at(self) -> datetime:
        return self._created_at

    @property
    def updated_at(self) -> datetime:
        return self._updated_at

    @property
    def version(self) -> int:
        """Committed version; 0 until the record is first stored."""
        return self._version

    def touch(self) -> None:
        self._updated_at = utcnow()

    def mark_committed(self, version: int) -> None:
        self._version = version

    def _base_dict(self) -> Dict[str, Any]:
        return {
            'id': self._id,
            'created_at': self._created_at.isoformat(),
            'updated_at': self._updated_at.isoformat(),
            'version': self._version,
        }

    def to_dict(self) -> Dict[str, Any]:
        return self._base_dict()

    def _restore_base(self, data: Dict[str, Any]) -> None:
        self._created_at = _parse_dt(data.get('created_at')) or self._created_at
        self._updated_at = _parse_dt(data.get('updated_at')) or self._updated_at
        self._version = int(data.get('version', 0))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AbstractEntity':
        raise NotImplementedError

    def __str__(self) -> str:
        return f"{self.__class__.__name__}(id={self._id})"

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(id={self._id}, version={self._version})"


class Student(AbstractEntity):
    """A student record with its lifecycle status."""

    entity_type = "student"

    def __init__(self, student_number: str, first_name: str, last_name: str, email: str,
                 program_id: Optional[str] = None, status: StudentStatus = StudentStatus.ACTIVE,
                 **kwargs):
        super().__init__(**kwargs)
        if not student_number or not student_number.strip():
            raise ValidationError("student_number", "Student number is required")
        self._student_number = student_number.strip()
        self._first_name = first_name
        self._last_name = last_name
        self._email = email
        self._program_id = program_id
        self._status = status
        self._academic_standing: Optional[str] = None

    @property
    def student_number(self) -> str:
        return self._student_number

    @property
    def first_name(self) -> str:
        return self._first_name

    @property
    def last_name(self) -> str:
        return self._last_name

    @property
    def full_name(self) -> str:
        return f"{self._first_name} {self._last_name}"

    @property
    def email(self) -> str:
        return self._email

    @property
    def program_id(self) -> Optional[str]:
        return self._program_id

    @property
    def status(self) -> StudentStatus:
        return self._status

    @property
    def academic_standing(self) -> Optional[str]:
        return self._academic_standing

    @property
    def is_active(self) -> bool:
        return self._status == StudentStatus.ACTIVE

    def transition_to(self, new_status: StudentStatus) -> None:
        validators.student_status_transition(self._status, new_status)
        self._status = new_status
        self.touch()

    def set_academic_standing(self, standing: str) -> None:
        self._academic_standing = standing
        self.touch()

    def to_dict(self) -> Dict[str, Any]:
        data = self._base_dict()
        data.update({
            'student_number': self._student_number,
            'first_name': self._first_name,
            'last_name': self._last_name,
            'email': self._email,
            'program_id': self._program_id,
            'status': self._status.value,
            'academic_standing': self._academic_standing,
        })
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Student':
        student = cls(
            student_number=data['student_number'],
            first_name=data['first_name'],
            last_name=data['last_name'],
            email=data['email'],
            program_id=data.get('program_id'),
            status=StudentStatus(data.get('status', 'active')),
            entity_id=data['id'],
        )
        student._academic_standing = data.get('academic_standing')
        student._restore_base(data)
        return student


class Program(AbstractEntity):
    """Degree program and its graduation requirements."""

    entity_type = "program"

    def __init__(self, code: str, name: str, min_credits: float = 120,
                 min_gpa: float = 2.0, required_courses: Optional[List[str]] = None, **kwargs):
        super().__init__(**kwargs)
        if not code or not code.strip():
            raise ValidationError("code", "Program code is required")
        if min_credits < 0:
            raise ValidationError("min_credits", "Minimum credits cannot be negative")
        if min_gpa < 0:
            raise ValidationError("min_gpa", "Minimum GPA cannot be negative")
        self._code = code.strip()
        self._name = name
        self._min_credits = min_credits
        self._min_gpa = min_gpa
        self._required_courses: List[str] = list(dict.fromkeys(required_courses or []))

    @property
    def code(self) -> str:
        return self._code

    @property
    def name(self) -> str:
        return self._name

    @property
    def min_credits(self) -> float:
        return self._min_credits

    @property
    def min_gpa(self) -> float:
        return self._min_gpa

    @property
    def required_courses(self) -> List[str]:
        return list(self._required_courses)

    def to_dict(self) -> Dict[str, Any]:
        data = self._base_dict()
        data.update({
            'code': self._code,
            'name': self._name,
            'min_credits': self._min_credits,
            'min_gpa': self._min_gpa,
            'required_courses': list(self._required_courses),
        })
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Program':
        program = cls(data['code'], data['name'], data.get('min_credits', 120),
                      data.get('min_gpa', 2.0), data.get('required_courses', []),
                      entity_id=data['id'])
        program._restore_base(data)
        return program


class Course(AbstractEntity):
    """Course entity representing an academic course."""

    entity_type = "course"

    def __init__(self, code: str, title: str, credits: float,
                 prerequisites: Optional[List[str]] = None, **kwargs):
        super().__init__(**kwargs)
        if not code or not code.strip():
            raise ValidationError("code", "Course code is required")
        if credits <= 0:
            raise ValidationError("credits", f"Credits ({credits}) must be greater than 0")
        self._code = code.strip()
        self._title = title
        self._credits = credits
        self._prerequisites: List[str] = list(dict.fromkeys(prerequisites or []))

    @property
    def code(self) -> str:
        return self._code

    @property
    def title(self) -> str:
        return self._title

    @property
    def credits(self) -> float:
        return self._credits

    @property
    def prerequisites(self) -> List[str]:
        return list(self._prerequisites)

    def to_dict(self) -> Dict[str, Any]:
        data = self._base_dict()
        data.update({
            'code': self._code,
            'title': self._title,
            'credits': self._credits,
            'prerequisites': list(self._prerequisites),
        })
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Course':
        course = cls(data['code'], data['title'], data['credits'],
                     data.get('prerequisites', []), entity_id=data['id'])
        course._restore_base(data)
        return course


class Term(AbstractEntity):
    """Academic term, e.g. "First Semester" 2025."""

    entity_type = "term"

    def __init__(self, name: str, year: int, **kwargs):
        super().__init__(**kwargs)
        if not name or not name.strip():
            raise ValidationError("name", "Term name is required")
        self._name = name.strip()
        self._year = int(year)
        self._is_processed = False

    @property
    def name(self) -> str:
        return self._name

    @property
    def year(self) -> int:
        return self._year

    @property
    def is_processed(self) -> bool:
        return self._is_processed

    def mark_processed(self) -> None:
        self._is_processed = True
        self.touch()

    def to_dict(self) -> Dict[str, Any]:
        data = self._base_dict()
        data.update({'name': self._name, 'year': self._year, 'is_processed': self._is_processed})
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Term':
        term = cls(data['name'], data['year'], entity_id=data['id'])
        term._is_processed = bool(data.get('is_processed', False))
        term._restore_base(data)
        return term


class Section(AbstractEntity):
    """
    A scheduled offering of a course in a term.

    ``enrollment_count`` is a projection of the counted enrollment records of
    the section; the enrollment service recomputes it inside every transaction
    that touches those records and writes it back with ``set_enrollment_count``.
    """

    entity_type = "section"

    def __init__(self, course_id: str, term_id: str, instructor_id: Optional[str], capacity: int,
                 schedule_slots: Optional[List[TimeSlot]] = None, section_number: str = "",
                 enrollment_deadline: Optional[datetime] = None, **kwargs):
        super().__init__(**kwargs)
        if capacity < 0:
            raise ValidationError("capacity", "Capacity cannot be negative")
        self._course_id = course_id
        self._term_id = term_id
        self._instructor_id = instructor_id
        self._capacity = int(capacity)
        self._schedule_slots: List[TimeSlot] = list(schedule_slots or [])
        self._section_number = section_number
        self._enrollment_deadline = _parse_dt(enrollment_deadline)
        self._enrollment_count = 0
        self._is_open_for_enrollment = True
        self._final_grades_posted = False
        self._grades_editable = True
        self._is_locked = False
        self._lock_reason: Optional[str] = None

    @property
    def course_id(self) -> str:
        return self._course_id

    @property
    def term_id(self) -> str:
        return self._term_id

    @property
    def instructor_id(self) -> Optional[str]:
        return self._instructor_id

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def enrollment_count(self) -> int:
        return self._enrollment_count

    @property
    def seats_available(self) -> int:
        return max(self._capacity - self._enrollment_count, 0)

    @property
    def is_full(self) -> bool:
        return self._enrollment_count >= self._capacity

    @property
    def schedule_slots(self) -> List[TimeSlot]:
        return list(self._schedule_slots)

    @property
    def section_number(self) -> str:
        return self._section_number

    @property
    def enrollment_deadline(self) -> Optional[datetime]:
        return self._enrollment_deadline

    @property
    def is_open_for_enrollment(self) -> bool:
        return self._is_open_for_enrollment

    @property
    def final_grades_posted(self) -> bool:
        return self._final_grades_posted

    @property
    def grades_editable(self) -> bool:
        return self._grades_editable

    @property
    def is_locked(self) -> bool:
        return self._is_locked

    @property
    def lock_reason(self) -> Optional[str]:
        return self._lock_reason

    def deadline_passed(self, now: Optional[datetime] = None) -> bool:
        if self._enrollment_deadline is None:
            return False
        return (now or utcnow()) > self._enrollment_deadline

    def set_enrollment_count(self, count: int) -> None:
        validators.enrollment_count_within_capacity(count, self._capacity)
        self._enrollment_count = count
        self.touch()

    def set_capacity(self, capacity: int) -> None:
        validators.capacity_update(self._enrollment_count, capacity)
        self._capacity = capacity
        self.touch()

    def set_schedule(self, slots: List[TimeSlot]) -> None:
        self._schedule_slots = list(slots)
        self.touch()

    def assign_instructor(self, instructor_id: str) -> None:
        self._instructor_id = instructor_id
        self.touch()

    def set_open(self, is_open: bool) -> None:
        self._is_open_for_enrollment = is_open
        self.touch()

    def set_enrollment_deadline(self, deadline: Optional[datetime]) -> None:
        self._enrollment_deadline = _parse_dt(deadline)
        self.touch()

    def mark_final_grades_posted(self) -> None:
        self._final_grades_posted = True
        self._grades_editable = False
        self.touch()

    def reopen_grades(self) -> None:
        """Allow edits again; the section must be posted again afterwards."""
        self._final_grades_posted = False
        self._grades_editable = True
        self.touch()

    def set_lock(self, locked: bool, reason: Optional[str] = None) -> None:
        self._is_locked = locked
        self._lock_reason = reason if locked else None
        self.touch()

    def ensure_grades_writable(self) -> None:
        if self._is_locked:
            raise InvariantViolationError(
                "Section", "Grade Lock",
                f"Section is locked{': ' + self._lock_reason if self._lock_reason else ''}",
                error_code="GradesLocked",
            )
        if self._final_grades_posted and not self._grades_editable:
            raise InvariantViolationError(
                "Section", "Grade Lock",
                "Final grades have been posted and are no longer editable",
                error_code="GradesLocked",
            )

    def to_dict(self) -> Dict[str, Any]:
        data = self._base_dict()
        data.update({
            'course_id': self._course_id,
            'term_id': self._term_id,
            'instructor_id': self._instructor_id,
            'capacity': self._capacity,
            'enrollment_count': self._enrollment_count,
            'schedule_slots': [slot.to_dict() for slot in self._schedule_slots],
            'section_number': self._section_number,
            'enrollment_deadline': _iso(self._enrollment_deadline),
            'is_open_for_enrollment': self._is_open_for_enrollment,
            'final_grades_posted': self._final_grades_posted,
            'grades_editable': self._grades_editable,
            'is_locked': self._is_locked,
            'lock_reason': self._lock_reason,
        })
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Section':
        section = cls(
            course_id=data['course_id'],
            term_id=data['term_id'],
            instructor_id=data.get('instructor_id'),
            capacity=data['capacity'],
            schedule_slots=[TimeSlot.from_dict(s) for s in data.get('schedule_slots', [])],
            section_number=data.get('section_number', ''),
            enrollment_deadline=_parse_dt(data.get('enrollment_deadline')),
            entity_id=data['id'],
        )
        section._enrollment_count = int(data.get('enrollment_count', 0))
        section._is_open_for_enrollment = bool(data.get('is_open_for_enrollment', True))
        section._final_grades_posted = bool(data.get('final_grades_posted', False))
        section._grades_editable = bool(data.get('grades_editable', True))
        section._is_locked = bool(data.get('is_locked', False))
        section._lock_reason = data.get('lock_reason')
        section._restore_base(data)
        return section


class Enrollment(AbstractEntity):
    """One student's seat (or waitlist place) in one section."""

    entity_type = "enrollment"

    def __init__(self, student_id: str, section_id: str, course_id: str, term_id: str,
                 status: EnrollmentStatus, queue_sequence: int,
                 enrolled_at: Optional[datetime] = None, **kwargs):
        super().__init__(**kwargs)
        self._student_id = student_id
        self._section_id = section_id
        self._course_id = course_id
        self._term_id = term_id
        self._status = status
        self._queue_sequence = int(queue_sequence)
        self._enrolled_at = _parse_dt(enrolled_at) or utcnow()
        self._grade: Optional[str] = None
        self._grade_points: Optional[float] = None
        self._final_percentage: Optional[float] = None
        self._dropped_at: Optional[datetime] = None
        self._dropped_by: Optional[str] = None

    @property
    def student_id(self) -> str:
        return self._student_id

    @property
    def section_id(self) -> str:
        return self._section_id

    @property
    def course_id(self) -> str:
        return self._course_id

    @property
    def term_id(self) -> str:
        return self._term_id

    @property
    def status(self) -> EnrollmentStatus:
        return self._status

    @property
    def queue_sequence(self) -> int:
        """Monotonic position assigned at creation; orders the waitlist."""
        return self._queue_sequence

    @property
    def enrolled_at(self) -> datetime:
        return self._enrolled_at

    @property
    def grade(self) -> Optional[str]:
        return self._grade

    @property
    def grade_points(self) -> Optional[float]:
        return self._grade_points

    @property
    def final_percentage(self) -> Optional[float]:
        return self._final_percentage

    @property
    def dropped_by(self) -> Optional[str]:
        return self._dropped_by

    @property
    def is_counted(self) -> bool:
        return self._status.is_counted

    def transition_to(self, new_status: EnrollmentStatus, appeal: bool = False) -> None:
        validators.enrollment_status_transition(self._status, new_status, appeal=appeal)
        self._status = new_status
        self.touch()

    def drop(self, actor_id: str, withdraw: bool = False) -> None:
        self.transition_to(EnrollmentStatus.WITHDRAWN if withdraw else EnrollmentStatus.DROPPED)
        self._dropped_at = self._updated_at
        self._dropped_by = actor_id

    def has_final_grade(self, grade: GradeValue) -> bool:
        return (self._grade == grade.letter and self._grade_points == grade.points
                and self._final_percentage == grade.numeric)

    def record_final_grade(self, grade: GradeValue) -> None:
        """Complete or fail the enrollment; a graded enrollment is corrected in place."""
        new_status = EnrollmentStatus.COMPLETED if grade.is_passing else EnrollmentStatus.FAILED
        if new_status != self._status:
            self.transition_to(new_status, appeal=self._status.is_final)
        else:
            self.touch()
        self._grade = grade.letter
        self._grade_points = grade.points
        self._final_percentage = grade.numeric

    def to_dict(self) -> Dict[str, Any]:
        data = self._base_dict()
        data.update({
            'student_id': self._student_id,
            'section_id': self._section_id,
            'course_id': self._course_id,
            'term_id': self._term_id,
            'status': self._status.value,
            'queue_sequence': self._queue_sequence,
            'enrolled_at': self._enrolled_at.isoformat(),
            'grade': self._grade,
            'grade_points': self._grade_points,
            'final_percentage': self._final_percentage,
            'dropped_at': _iso(self._dropped_at),
            'dropped_by': self._dropped_by,
        })
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Enrollment':
        enrollment = cls(
            student_id=data['student_id'],
            section_id=data['section_id'],
            course_id=data['course_id'],
            term_id=data['term_id'],
            status=EnrollmentStatus(data['status']),
            queue_sequence=data['queue_sequence'],
            enrolled_at=_parse_dt(data.get('enrolled_at')),
            entity_id=data['id'],
        )
        enrollment._grade = data.get('grade')
        enrollment._grade_points = data.get('grade_points')
        enrollment._final_percentage = data.get('final_percentage')
        enrollment._dropped_at = _parse_dt(data.get('dropped_at'))
        enrollment._dropped_by = data.get('dropped_by')
        enrollment._restore_base(data)
        return enrollment


class Assessment(AbstractEntity):
    """A weighted piece of coursework in a section."""

    entity_type = "assessment"

    def __init__(self, section_id: str, title: str, weight: float, total_points: float,
                 due_date: Optional[datetime] = None, **kwargs):
        super().__init__(**kwargs)
        if not title or not title.strip():
            raise ValidationError("title", "Assessment title is required")
        validators.assessment_fields(weight, total_points)
        self._section_id = section_id
        self._title = title.strip()
        self._weight = float(weight)
        self._total_points = float(total_points)
        self._due_date = _parse_dt(due_date)

    @property
    def section_id(self) -> str:
        return self._section_id

    @property
    def title(self) -> str:
        return self._title

    @property
    def weight(self) -> float:
        return self._weight

    @property
    def total_points(self) -> float:
        return self._total_points

    @property
    def due_date(self) -> Optional[datetime]:
        return self._due_date

    def update(self, title: Optional[str] = None, weight: Optional[float] = None,
               total_points: Optional[float] = None, due_date: Optional[datetime] = None) -> None:
        new_weight = self._weight if weight is None else float(weight)
        new_total = self._total_points if total_points is None else float(total_points)
        validators.assessment_fields(new_weight, new_total)
        if title is not None:
            if not title.strip():
                raise ValidationError("title", "Assessment title is required")
            self._title = title.strip()
        self._weight = new_weight
        self._total_points = new_total
        if due_date is not None:
            self._due_date = _parse_dt(due_date)
        self.touch()

    def to_dict(self) -> Dict[str, Any]:
        data = self._base_dict()
        data.update({
            'section_id': self._section_id,
            'title': self._title,
            'weight': self._weight,
            'total_points': self._total_points,
            'due_date': _iso(self._due_date),
        })
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Assessment':
        assessment = cls(data['section_id'], data['title'], data['weight'], data['total_points'],
                         _parse_dt(data.get('due_date')), entity_id=data['id'])
        assessment._restore_base(data)
        return assessment


class Grade(AbstractEntity):
    """Score of one enrollment on one assessment."""

    entity_type = "grade"

    def __init__(self, enrollment_id: str, assessment_id: str, score: float,
                 value: GradeValue, graded_by: Optional[str] = None, **kwargs):
        super().__init__(**kwargs)
        self._enrollment_id = enrollment_id
        self._assessment_id = assessment_id
        self._score = float(score)
        self._value = value
        self._graded_by = graded_by

    @property
    def enrollment_id(self) -> str:
        return self._enrollment_id

    @property
    def assessment_id(self) -> str:
        return self._assessment_id

    @property
    def score(self) -> float:
        return self._score

    @property
    def value(self) -> GradeValue:
        return self._value

    @property
    def percentage(self) -> float:
        return self._value.numeric

    @property
    def graded_by(self) -> Optional[str]:
        return self._graded_by

    def rescore(self, score: float, value: GradeValue, graded_by: Optional[str]) -> None:
        self._score = float(score)
        self._value = value
        self._graded_by = graded_by
        self.touch()

    def to_dict(self) -> Dict[str, Any]:
        data = self._base_dict()
        data.update({
            'enrollment_id': self._enrollment_id,
            'assessment_id': self._assessment_id,
            'score': self._score,
            'value': self._value.to_dict(),
            'graded_by': self._graded_by,
        })
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Grade':
        grade = cls(data['enrollment_id'], data['assessment_id'], data['score'],
                    GradeValue.from_dict(data['value']), data.get('graded_by'),
                    entity_id=data['id'])
        grade._restore_base(data)
        return grade


@dataclass(frozen=True)
class TranscriptEntry:
    """Immutable snapshot of one finished course attempt."""
    course_code: str
    course_title: str
    credits: float
    grade: GradeValue
    term: str
    year: int
    enrollment_id: Optional[str] = None
    recorded_at: str = field(default_factory=lambda: utcnow().isoformat())
    is_correction: bool = False

    @property
    def is_passing(self) -> bool:
        return self.grade.is_passing

    def to_dict(self) -> Dict[str, Any]:
        return {
            'course_code': self.course_code,
            'course_title': self.course_title,
            'credits': self.credits,
            'grade': self.grade.to_dict(),
            'term': self.term,
            'year': self.year,
            'enrollment_id': self.enrollment_id,
            'recorded_at': self.recorded_at,
            'is_correction': self.is_correction,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TranscriptEntry':
        return cls(
            course_code=data['course_code'],
            course_title=data['course_title'],
            credits=data['credits'],
            grade=GradeValue.from_dict(data['grade']),
            term=data['term'],
            year=int(data['year']),
            enrollment_id=data.get('enrollment_id'),
            recorded_at=data.get('recorded_at') or utcnow().isoformat(),
            is_correction=bool(data.get('is_correction', False)),
        )


class Transcript(AbstractEntity):
    """
    Append-only list of transcript entries for one student.

    A regraded course gets a correction entry; the original stays in
    ``entries`` while ``current_entries`` keeps only the latest entry per
    enrollment. The stored GPA is written on every append but ``gpa``
    always recomputes from the current entries.

    Each student has one transcript, whose id is derived from the student id.
    """

    entity_type = "transcript"

    def __init__(self, student_id: str, **kwargs):
        kwargs.setdefault('entity_id', self.id_for(student_id))
        super().__init__(**kwargs)
        self._student_id = student_id
        self._entries: List[TranscriptEntry] = []
        self._stored_gpa = 0.0

    @staticmethod
    def id_for(student_id: str) -> str:
        return f"transcript:{student_id}"

    @property
    def student_id(self) -> str:
        return self._student_id

    @property
    def entries(self) -> Tuple[TranscriptEntry, ...]:
        """Every entry ever appended, corrections included."""
        return tuple(self._entries)

    @property
    def current_entries(self) -> Tuple[TranscriptEntry, ...]:
        latest: Dict[str, int] = {}
        for index, entry in enumerate(self._entries):
            if entry.enrollment_id:
                latest[entry.enrollment_id] = index
        return tuple(
            entry for index, entry in enumerate(self._entries)
            if not entry.enrollment_id or latest[entry.enrollment_id] == index
        )

    @property
    def gpa(self) -> float:
        return calculate_gpa(self.current_entries)

    @property
    def stored_gpa(self) -> float:
        return self._stored_gpa

    def has_entry_for(self, enrollment_id: str) -> bool:
        return any(entry.enrollment_id == enrollment_id for entry in self._entries)

    def append(self, entry: TranscriptEntry) -> None:
        if entry.enrollment_id:
            exists = self.has_entry_for(entry.enrollment_id)
            if exists and not entry.is_correction:
                raise InvariantViolationError(
                    "Transcript", "Append Only",
                    f"Enrollment {entry.enrollment_id} already has a transcript entry",
                    error_code="Uniqueness",
                )
            if entry.is_correction and not exists:
                raise InvariantViolationError(
                    "Transcript", "Append Only",
                    f"Enrollment {entry.enrollment_id} has no entry to correct",
                    error_code="InvalidTransition",
                )
        self._entries.append(entry)
        self._stored_gpa = self.gpa
        self.touch()

    def to_dict(self) -> Dict[str, Any]:
        data = self._base_dict()
        data.update({
            'student_id': self._student_id,
            'entries': [entry.to_dict() for entry in self._entries],
            'gpa': self.gpa,
        })
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Transcript':
        transcript = cls(data['student_id'], entity_id=data['id'])
        transcript._entries = [TranscriptEntry.from_dict(e) for e in data.get('entries', [])]
        transcript._stored_gpa = float(data.get('gpa', 0.0))
        transcript._restore_base(data)
        return transcript


class GraduationRecord(AbstractEntity):
    """Approved graduation; at most one per student."""

    entity_type = "graduation_record"

    def __init__(self, student_id: str, program_id: Optional[str], approved_by: str,
                 total_credits: float, gpa: float, graduation_date: Optional[datetime] = None,
                 **kwargs):
        super().__init__(**kwargs)
        self._student_id = student_id
        self._program_id = program_id
        self._approved_by = approved_by
        self._total_credits = total_credits
        self._gpa = gpa
        self._graduation_date = _parse_dt(graduation_date) or utcnow()

    @property
    def student_id(self) -> str:
        return self._student_id

    @property
    def program_id(self) -> Optional[str]:
        return self._program_id

    @property
    def approved_by(self) -> str:
        return self._approved_by

    @property
    def total_credits(self) -> float:
        return self._total_credits

    @property
    def gpa(self) -> float:
        return self._gpa

    @property
    def graduation_date(self) -> datetime:
        return self._graduation_date

    def to_dict(self) -> Dict[str, Any]:
        data = self._base_dict()
        data.update({
            'student_id': self._student_id,
            'program_id': self._program_id,
            'approved_by': self._approved_by,
            'total_credits': self._total_credits,
            'gpa': self._gpa,
            'graduation_date': self._graduation_date.isoformat(),
        })
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'GraduationRecord':
        record = cls(data['student_id'], data.get('program_id'), data['approved_by'],
                     data['total_credits'], data['gpa'], _parse_dt(data.get('graduation_date')),
                     entity_id=data['id'])
        record._restore_base(data)
        return record


class AlumniProfile(AbstractEntity):
    """Default alumni profile created on graduation."""

    entity_type = "alumni_profile"

    def __init__(self, student_id: str, graduation_year: int, contact_email: str,
                 employment_status: str = "unknown", **kwargs):
        super().__init__(**kwargs)
        self._student_id = student_id
        self._graduation_year = graduation_year
        self._contact_email = contact_email
        self._employment_status = employment_status

    @property
    def student_id(self) -> str:
        return self._student_id

    @property
    def graduation_year(self) -> int:
        return self._graduation_year

    @property
    def contact_email(self) -> str:
        return self._contact_email

    @property
    def employment_status(self) -> str:
        return self._employment_status

    def to_dict(self) -> Dict[str, Any]:
        data = self._base_dict()
        data.update({
            'student_id': self._student_id,
            'graduation_year': self._graduation_year,
            'contact_email': self._contact_email,
            'employment_status': self._employment_status,
        })
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AlumniProfile':
        profile = cls(data['student_id'], data['graduation_year'], data['contact_email'],
                      data.get('employment_status', 'unknown'), entity_id=data['id'])
        profile._restore_base(data)
        return profile


ENTITY_TYPES: Dict[str, Type[AbstractEntity]] = {
    cls.entity_type: cls
    for cls in (Student, Program, Course, Term, Section, Enrollment,
                Assessment, Grade, Transcript, GraduationRecord, AlumniProfile)
}


def entity_from_dict(entity_type: str, data: Dict[str, Any]) -> AbstractEntity:
    try:
        cls = ENTITY_TYPES[entity_type]
    except KeyError:
        raise ValidationError("type", f"Unknown entity type '{entity_type}'")
    return cls.from_dict(data)
