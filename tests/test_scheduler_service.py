"""
Tests for section scheduling and conflict detection.
"""

import pytest

from registrar.core.exceptions import InvariantViolationError, NotFoundError, ValidationError
from registrar.core.timeslots import TimeSlot
from registrar.services.scheduler_service import ConflictScope, find_conflicts

from .conftest import MONDAY_10, MONDAY_1030, TUESDAY_10


class TestSectionCreation:
    def test_slots_are_normalized(self, make_section, cs101):
        section = make_section(cs101, slots=[{'day': 'mon', 'start_time': '9:00', 'end_time': '10:15'}])
        assert section.schedule_slots == [TimeSlot("Monday", "09:00", "10:15", "")]

    def test_overlapping_own_slots(self, make_section, cs101):
        with pytest.raises(InvariantViolationError) as exc:
            make_section(cs101, slots=[MONDAY_10, MONDAY_1030])
        assert exc.value.error_code == "ScheduleConflict"

    def test_start_after_end(self, make_section, cs101):
        with pytest.raises(ValidationError):
            make_section(cs101, slots=[{'day': 'Monday', 'start_time': '12:00', 'end_time': '11:00'}])

    def test_unknown_course(self, platform, term):
        with pytest.raises(NotFoundError):
            platform.scheduler.create_section("missing", term.id, None, 10)

    def test_room_double_booking(self, make_section, cs101, math101):
        make_section(cs101, slots=[MONDAY_10])
        same_room = dict(MONDAY_1030, room=MONDAY_10['room'])
        with pytest.raises(InvariantViolationError) as exc:
            make_section(math101, slots=[same_room])
        assert exc.value.error_code == "ScheduleConflict"
        assert exc.value.details['conflicts'][0]['scope'] == ConflictScope.ROOM

    def test_instructor_double_booking_on_create(self, make_section, cs101, math101):
        make_section(cs101, slots=[MONDAY_10], instructor_id="prof-1")
        with pytest.raises(InvariantViolationError):
            make_section(math101, slots=[MONDAY_1030], instructor_id="prof-1")


class TestInstructorAssignment:
    def test_conflicting_assignment_names_the_slot(self, platform, make_section, cs101, math101):
        make_section(cs101, slots=[MONDAY_10], instructor_id="prof-1")
        other = make_section(math101, slots=[MONDAY_1030], instructor_id="prof-2")

        with pytest.raises(InvariantViolationError) as exc:
            platform.scheduler.assign_instructor(other.id, "prof-1")

        assert exc.value.error_code == "ScheduleConflict"
        assert "Monday 10:00-11:00" in exc.value.message
        conflict = exc.value.details['conflicts'][0]
        assert conflict['scope'] == ConflictScope.INSTRUCTOR
        assert conflict['course_code'] == "CS101"
        assert platform.catalog.get_section(other.id).instructor_id == "prof-2"

    def test_free_instructor_can_be_assigned(self, platform, make_section, cs101, math101):
        make_section(cs101, slots=[MONDAY_10], instructor_id="prof-1")
        other = make_section(math101, slots=[TUESDAY_10])
        assert platform.scheduler.assign_instructor(other.id, "prof-1").instructor_id == "prof-1"


class TestRescheduling:
    def test_reschedule_checks_enrolled_students(self, platform, make_section, cs101, math101, student):
        first = make_section(cs101, slots=[MONDAY_10])
        second = make_section(math101, slots=[TUESDAY_10])
        platform.enrollment.admit_or_waitlist(student.id, first.id)
        platform.enrollment.admit_or_waitlist(student.id, second.id)

        with pytest.raises(InvariantViolationError) as exc:
            platform.scheduler.reschedule_section(second.id, [MONDAY_1030])
        assert exc.value.details['conflicts'][0]['scope'] == ConflictScope.STUDENT
        assert platform.catalog.get_section(second.id).schedule_slots[0].day == "Tuesday"

    def test_reschedule_ignores_own_slots(self, platform, make_section, cs101):
        section = make_section(cs101, slots=[MONDAY_10], instructor_id="prof-1")
        moved = platform.scheduler.reschedule_section(section.id, [dict(MONDAY_10, end_time="11:30")])
        assert moved.schedule_slots[0].end_time == "11:30"


class TestFreeRooms:
    def test_booked_rooms_are_excluded(self, platform, make_section, cs101, term):
        make_section(cs101, slots=[MONDAY_10])
        free = platform.scheduler.find_free_rooms(term.id, "Monday", "10:30", "11:30", ["R1", "R2", "R3"])
        assert free == ["R2", "R3"]
        assert platform.scheduler.find_free_rooms(term.id, "Monday", "11:00", "12:00", ["R1"]) == ["R1"]


def test_find_conflicts_is_pairwise(platform, make_section, cs101):
    section = make_section(cs101, slots=[MONDAY_10, TUESDAY_10])
    candidates = [TimeSlot.create("Monday", "10:59", "11:30"), TimeSlot.create("Tuesday", "09:00", "10:01")]
    conflicts = find_conflicts(candidates, [section], {cs101.id: "CS101"}, ConflictScope.STUDENT)
    assert len(conflicts) == 2
    assert conflicts[0].describe() == "CS101 meets Monday 10:00-11:00, overlapping Monday 10:59-11:30"
