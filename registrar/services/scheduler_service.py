"""
Scheduler service: section timetables and conflict detection.

Conflicts are found by comparing every candidate slot with every slot of
every in-scope section (``find_conflicts``). The cost is
O(sections x slots per section x candidate slots), which stays small for the
number of sections a term holds. ``find_conflicts`` is the only place that
loop lives, so it can be swapped for a sweep line over sorted start times
without changing any caller.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from ..core import validators
from ..core.entities import Section
from ..core.enums import AuditAction
from ..core.exceptions import InvariantViolationError, ValidationError
from ..core.timeslots import TimeSlot
from ..persistence.repositories import Repositories
from .event_service import EventService
from .unit_of_work import TransactionManager, UnitOfWork


logger = logging.getLogger(__name__)

SlotInput = Union[TimeSlot, Dict[str, Any]]


class ConflictScope:
    INSTRUCTOR = "instructor"
    ROOM = "room"
    STUDENT = "student"


@dataclass(frozen=True)
class ScheduleConflict:
    """A candidate slot that overlaps a slot of an existing section."""
    scope: str
    section_id: str
    course_code: str
    candidate: TimeSlot
    existing: TimeSlot

    def describe(self) -> str:
        where = f" in room {self.existing.room}" if self.scope == ConflictScope.ROOM else ""
        return (f"{self.course_code} meets {self.existing.describe()}{where}, "
                f"overlapping {self.candidate.describe()}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            'scope': self.scope,
            'section_id': self.section_id,
            'course_code': self.course_code,
            'candidate': self.candidate.to_dict(),
            'existing': self.existing.to_dict(),
        }


def coerce_slots(slots: Iterable[SlotInput]) -> List[TimeSlot]:
    result = []
    for slot in slots:
        if isinstance(slot, TimeSlot):
            result.append(TimeSlot.create(slot.day, slot.start_time, slot.end_time, slot.room))
        elif isinstance(slot, dict):
            try:
                result.append(TimeSlot.from_dict(slot))
            except KeyError as e:
                raise ValidationError("schedule_slots", f"Slot is missing {e}")
        else:
            raise ValidationError("schedule_slots", f"Unsupported slot {slot!r}")
    return result


def validate_slots(slots: Sequence[TimeSlot]) -> None:
    for slot in slots:
        validators.schedule_slot_validity(slot)
    validators.no_overlapping_slots(slots)


def find_conflicts(candidate_slots: Sequence[TimeSlot], sections: Iterable[Section],
                   course_codes: Dict[str, str], scope: str,
                   same_room_only: bool = False) -> List[ScheduleConflict]:
    """Pairwise overlap test of candidate slots against the slots of ``sections``."""
    conflicts = []
    for section in sections:
        for existing in section.schedule_slots:
            for candidate in candidate_slots:
                if same_room_only and (not candidate.room or candidate.room != existing.room):
                    continue
                if candidate.overlaps_with(existing):
                    conflicts.append(ScheduleConflict(
                        scope=scope,
                        section_id=section.id,
                        course_code=course_codes.get(section.course_id, section.course_id),
                        candidate=candidate,
                        existing=existing,
                    ))
    return conflicts


class SchedulerService:
    """Creates and reschedules sections without instructor or room double-booking."""

    def __init__(self, transactions: TransactionManager, events: EventService):
        self._transactions = transactions
        self._events = events

    # Checks usable inside any unit of work.

    @staticmethod
    def _course_codes(repos: Repositories) -> Dict[str, str]:
        return {course.id: course.code for course in repos.courses.find_all()}

    @staticmethod
    def _raise_conflicts(aggregate: str, conflicts: List[ScheduleConflict], label: str) -> None:
        if conflicts:
            raise InvariantViolationError(
                aggregate, "Schedule Conflict",
                f"{label} schedule conflict: " + "; ".join(c.describe() for c in conflicts),
                error_code="ScheduleConflict",
                details={'conflicts': [c.to_dict() for c in conflicts]},
            )

    def check_instructor_conflicts(self, repos: Repositories, instructor_id: Optional[str],
                                   term_id: str, slots: Sequence[TimeSlot],
                                   exclude_section_id: Optional[str] = None) -> None:
        if not instructor_id:
            return
        sections = [s for s in repos.sections.find_by_instructor(instructor_id, term_id)
                    if s.id != exclude_section_id]
        conflicts = find_conflicts(slots, sections, self._course_codes(repos), ConflictScope.INSTRUCTOR)
        self._raise_conflicts("Section", conflicts, "Instructor")

    def check_room_conflicts(self, repos: Repositories, term_id: str, slots: Sequence[TimeSlot],
                             exclude_section_id: Optional[str] = None) -> None:
        sections = [s for s in repos.sections.find_by_term(term_id) if s.id != exclude_section_id]
        conflicts = find_conflicts(slots, sections, self._course_codes(repos), ConflictScope.ROOM,
                                   same_room_only=True)
        self._raise_conflicts("Section", conflicts, "Room")

    def check_student_conflicts(self, repos: Repositories, student_id: str, term_id: str,
                                slots: Sequence[TimeSlot],
                                exclude_section_id: Optional[str] = None) -> None:
        section_ids = {
            e.section_id for e in repos.enrollments.find_by_student(student_id)
            if e.is_counted and e.term_id == term_id and e.section_id != exclude_section_id
        }
        sections = [repos.sections.get(section_id) for section_id in sorted(section_ids)]
        conflicts = find_conflicts(slots, sections, self._course_codes(repos), ConflictScope.STUDENT)
        self._raise_conflicts("Enrollment", conflicts, "Student")

    # Operations.

    def create_section(self, course_id: str, term_id: str, instructor_id: Optional[str],
                       capacity: int, schedule_slots: Iterable[SlotInput] = (),
                       section_number: str = "", enrollment_deadline: Optional[datetime] = None,
                       actor_id: Optional[str] = None) -> Section:
        slots = coerce_slots(schedule_slots)
        validate_slots(slots)

        def operation(uow: UnitOfWork) -> Section:
            repos = Repositories(uow)
            course = repos.courses.get(course_id)
            repos.terms.get(term_id)
            self.check_instructor_conflicts(repos, instructor_id, term_id, slots)
            self.check_room_conflicts(repos, term_id, slots)

            section = Section(course_id, term_id, instructor_id, capacity, slots,
                              section_number=section_number, enrollment_deadline=enrollment_deadline)
            repos.sections.save(section)
            uow.after_commit(lambda: self._events.audit(
                "section", AuditAction.SECTION_CREATED, actor_id,
                {'section_id': section.id, 'course_code': course.code, 'capacity': capacity}))
            return section

        section = self._transactions.run(operation, lock_keys=[f"schedule:{term_id}"])
        logger.info("Created section %s for course %s in term %s", section.id, course_id, term_id)
        return section

    def reschedule_section(self, section_id: str, schedule_slots: Iterable[SlotInput],
                           actor_id: Optional[str] = None) -> Section:
        slots = coerce_slots(schedule_slots)
        validate_slots(slots)
        term_id = self._term_of(section_id)

        def operation(uow: UnitOfWork) -> Section:
            repos = Repositories(uow)
            section = repos.sections.get(section_id)
            self.check_instructor_conflicts(repos, section.instructor_id, section.term_id, slots,
                                            exclude_section_id=section.id)
            self.check_room_conflicts(repos, section.term_id, slots, exclude_section_id=section.id)
            for enrollment in repos.enrollments.counted_for_section(section.id):
                self.check_student_conflicts(repos, enrollment.student_id, section.term_id, slots,
                                             exclude_section_id=section.id)
            section.set_schedule(slots)
            repos.sections.save(section)
            uow.after_commit(lambda: self._events.audit(
                "section", AuditAction.SECTION_RESCHEDULED, actor_id,
                {'section_id': section.id, 'slots': [s.to_dict() for s in slots]}))
            return section

        section = self._transactions.run(operation, lock_keys=[f"schedule:{term_id}",
                                                               f"section:{section_id}"])
        logger.info("Rescheduled section %s", section_id)
        return section

    def assign_instructor(self, section_id: str, instructor_id: str,
                          actor_id: Optional[str] = None) -> Section:
        term_id = self._term_of(section_id)

        def operation(uow: UnitOfWork) -> Section:
            repos = Repositories(uow)
            section = repos.sections.get(section_id)
            self.check_instructor_conflicts(repos, instructor_id, section.term_id,
                                            section.schedule_slots, exclude_section_id=section.id)
            section.assign_instructor(instructor_id)
            repos.sections.save(section)
            return section

        section = self._transactions.run(operation, lock_keys=[f"schedule:{term_id}",
                                                               f"section:{section_id}"])
        logger.info("Assigned instructor %s to section %s", instructor_id, section_id)
        return section

    def find_free_rooms(self, term_id: str, day: str, start_time: str, end_time: str,
                        rooms: Iterable[str]) -> List[str]:
        """Rooms from ``rooms`` with no booking overlapping the given interval."""
        window = TimeSlot.create(day, start_time, end_time)
        validators.schedule_slot_validity(window)

        def query(uow: UnitOfWork) -> List[str]:
            sections = Repositories(uow).sections.find_by_term(term_id)
            busy = {
                slot.room
                for section in sections
                for slot in section.schedule_slots
                if slot.room and slot.overlaps_with(window)
            }
            return [room for room in rooms if room not in busy]

        return self._transactions.read(query)

    def _term_of(self, section_id: str) -> str:
        return self._transactions.read(lambda uow: Repositories(uow).sections.get(section_id).term_id)
