"""
Tests for admission, waitlisting, drops and capacity changes.
"""

import threading
from datetime import datetime, timedelta, timezone

import pytest

from registrar.core.enums import AuditAction, EnrollmentStatus, StudentStatus
from registrar.core.exceptions import InvariantViolationError, NotFoundError
from registrar.persistence import Repositories

from .conftest import MONDAY_10, MONDAY_1030, TUESDAY_10


def counted(platform, section_id):
    return [e for e in platform.enrollment.enrollments_for_section(section_id) if e.is_counted]


def assert_count_matches_records(platform, section_id):
    section = platform.catalog.get_section(section_id)
    assert section.enrollment_count == len(counted(platform, section_id))
    assert section.enrollment_count <= section.capacity


class TestAdmission:
    def test_admit_into_open_section(self, platform, make_section, cs101, student, audit_sink):
        section = make_section(cs101, capacity=2)
        result = platform.enrollment.admit_or_waitlist(student.id, section.id)

        assert result.status == EnrollmentStatus.ACTIVE
        assert result.enrollment_count == 1
        assert result.waitlist_position is None
        assert_count_matches_records(platform, section.id)
        assert audit_sink.records("enrollment", AuditAction.STUDENT_ENROLLED)

    def test_full_section_rejects_without_waitlist(self, platform, make_section, cs101, make_student):
        section = make_section(cs101, capacity=1)
        platform.enrollment.admit_or_waitlist(make_student().id, section.id)

        with pytest.raises(InvariantViolationError) as exc:
            platform.enrollment.admit_or_waitlist(make_student().id, section.id)
        assert exc.value.error_code == "SectionFull"
        assert_count_matches_records(platform, section.id)

    def test_waitlist_promotion_on_drop(self, platform, make_section, cs101, make_student, notifier):
        section = make_section(cs101, capacity=1)
        first, second = make_student(), make_student()

        admitted = platform.enrollment.admit_or_waitlist(first.id, section.id)
        waiting = platform.enrollment.admit_or_waitlist(second.id, section.id, join_waitlist=True)
        assert waiting.status == EnrollmentStatus.WAITLISTED
        assert waiting.waitlist_position == 1
        assert waiting.enrollment_count == 1

        dropped = platform.enrollment.drop(admitted.enrollment_id, first.id)

        assert dropped.status == EnrollmentStatus.DROPPED
        assert dropped.promoted_enrollment_id == waiting.enrollment_id
        assert dropped.enrollment_count == 1
        statuses = {e.id: e.status for e in platform.enrollment.enrollments_for_section(section.id)}
        assert statuses[waiting.enrollment_id] == EnrollmentStatus.ACTIVE
        assert notifier.sent_to(second.id)
        assert_count_matches_records(platform, section.id)

    def test_waitlist_is_first_come_first_served(self, platform, make_section, cs101, make_student):
        section = make_section(cs101, capacity=1)
        holder = platform.enrollment.admit_or_waitlist(make_student().id, section.id)
        queued = [platform.enrollment.admit_or_waitlist(make_student().id, section.id, join_waitlist=True)
                  for _ in range(3)]

        assert [platform.enrollment.waitlist_position(q.enrollment_id) for q in queued] == [1, 2, 3]
        result = platform.enrollment.drop(holder.enrollment_id, "registrar-1")
        assert result.promoted_enrollment_id == queued[0].enrollment_id
        assert platform.enrollment.waitlist_position(queued[1].enrollment_id) == 1

    def test_withdraw(self, platform, make_section, cs101, student):
        section = make_section(cs101)
        admitted = platform.enrollment.admit_or_waitlist(student.id, section.id)
        result = platform.enrollment.drop(admitted.enrollment_id, student.id, withdraw=True)
        assert result.status == EnrollmentStatus.WITHDRAWN
        assert result.enrollment_count == 0

    def test_dropping_twice_is_rejected(self, platform, make_section, cs101, student):
        section = make_section(cs101)
        admitted = platform.enrollment.admit_or_waitlist(student.id, section.id)
        platform.enrollment.drop(admitted.enrollment_id, student.id)
        with pytest.raises(InvariantViolationError) as exc:
            platform.enrollment.drop(admitted.enrollment_id, student.id)
        assert exc.value.error_code == "InvalidTransition"

    def test_missing_prerequisite_is_named(self, platform, make_section, cs201, student):
        section = make_section(cs201)
        with pytest.raises(InvariantViolationError) as exc:
            platform.enrollment.admit_or_waitlist(student.id, section.id)
        assert exc.value.error_code == "PrerequisiteMissing"
        assert exc.value.details['missing'] == ["CS101"]
        assert "CS101" in exc.value.message
        assert counted(platform, section.id) == []

    def test_prerequisite_satisfied_by_passed_course(self, platform, make_section, cs101, cs201, student):
        intro = make_section(cs101)
        exam = platform.grading.create_assessment(intro.id, "Exam", 100, 100)
        admitted = platform.enrollment.admit_or_waitlist(student.id, intro.id)
        platform.grading.record_grade(admitted.enrollment_id, exam.id, 80, "instructor-1")
        platform.grading.post_final_grades(intro.id, "instructor-1")

        advanced = make_section(cs201)
        result = platform.enrollment.admit_or_waitlist(student.id, advanced.id)
        assert result.status == EnrollmentStatus.ACTIVE

    def test_duplicate_enrollment_in_same_course_and_term(self, platform, make_section, cs101, student):
        first = make_section(cs101, section_number="001")
        second = make_section(cs101, section_number="002")
        platform.enrollment.admit_or_waitlist(student.id, first.id)

        with pytest.raises(InvariantViolationError) as exc:
            platform.enrollment.admit_or_waitlist(student.id, second.id)
        assert exc.value.error_code == "DuplicateEnrollment"

    def test_student_schedule_conflict(self, platform, make_section, cs101, math101, student):
        morning = make_section(cs101, slots=[MONDAY_10])
        overlapping = make_section(math101, slots=[MONDAY_1030])
        platform.enrollment.admit_or_waitlist(student.id, morning.id)

        with pytest.raises(InvariantViolationError) as exc:
            platform.enrollment.admit_or_waitlist(student.id, overlapping.id)
        assert exc.value.error_code == "ScheduleConflict"
        assert "CS101" in exc.value.message

    def test_non_overlapping_sections_are_fine(self, platform, make_section, cs101, math101, student):
        platform.enrollment.admit_or_waitlist(student.id, make_section(cs101, slots=[MONDAY_10]).id)
        result = platform.enrollment.admit_or_waitlist(student.id, make_section(math101, slots=[TUESDAY_10]).id)
        assert result.status == EnrollmentStatus.ACTIVE

    def test_inactive_student_cannot_enroll(self, platform, make_section, cs101, student):
        platform.catalog.change_student_status(student.id, StudentStatus.SUSPENDED)
        with pytest.raises(InvariantViolationError) as exc:
            platform.enrollment.admit_or_waitlist(student.id, make_section(cs101).id)
        assert exc.value.error_code == "InvalidTransition"

    def test_closed_section(self, platform, make_section, cs101, student):
        section = make_section(cs101)
        platform.enrollment.set_enrollment_open(section.id, False)
        with pytest.raises(InvariantViolationError) as exc:
            platform.enrollment.admit_or_waitlist(student.id, section.id)
        assert exc.value.error_code == "SectionClosed"

    def test_deadline_closes_section(self, platform, make_section, cs101, student, audit_sink):
        yesterday = datetime.now(timezone.utc) - timedelta(days=1)
        section = make_section(cs101, enrollment_deadline=yesterday)

        with pytest.raises(InvariantViolationError) as exc:
            platform.enrollment.admit_or_waitlist(student.id, section.id)
        assert exc.value.error_code == "DeadlinePassed"
        assert not platform.catalog.get_section(section.id).is_open_for_enrollment
        assert audit_sink.records("section", AuditAction.SECTION_CLOSED)

        with pytest.raises(InvariantViolationError) as exc:
            platform.enrollment.admit_or_waitlist(student.id, section.id)
        assert exc.value.error_code == "DeadlinePassed"

    def test_unknown_section(self, platform, student):
        with pytest.raises(NotFoundError):
            platform.enrollment.admit_or_waitlist(student.id, "missing")


class TestCapacity:
    def test_raising_capacity_promotes_waitlist(self, platform, make_section, cs101, make_student):
        section = make_section(cs101, capacity=1)
        platform.enrollment.admit_or_waitlist(make_student().id, section.id)
        waiting = platform.enrollment.admit_or_waitlist(make_student().id, section.id, join_waitlist=True)

        result = platform.enrollment.update_capacity(section.id, 2)
        assert result.promoted_enrollment_ids == [waiting.enrollment_id]
        assert result.enrollment_count == 2
        assert_count_matches_records(platform, section.id)

    def test_capacity_below_enrollment_is_rejected(self, platform, make_section, cs101, make_student):
        section = make_section(cs101, capacity=2)
        platform.enrollment.admit_or_waitlist(make_student().id, section.id)
        platform.enrollment.admit_or_waitlist(make_student().id, section.id)

        with pytest.raises(InvariantViolationError) as exc:
            platform.enrollment.update_capacity(section.id, 1)
        assert exc.value.error_code == "CapacityExceeded"
        assert platform.catalog.get_section(section.id).capacity == 2

    def test_concurrent_admissions_never_overfill(self, platform, make_section, cs101, make_student):
        section = make_section(cs101, capacity=5)
        students = [make_student() for _ in range(20)]
        outcomes = []
        outcomes_lock = threading.Lock()

        def admit(student_id):
            try:
                result = platform.enrollment.admit_or_waitlist(student_id, section.id)
                outcome = result.status.value
            except InvariantViolationError as e:
                outcome = e.error_code
            with outcomes_lock:
                outcomes.append(outcome)

        threads = [threading.Thread(target=admit, args=(s.id,)) for s in students]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert outcomes.count("active") == 5
        assert outcomes.count("SectionFull") == 15
        assert_count_matches_records(platform, section.id)

    def test_count_is_recomputed_from_records(self, platform, make_section, cs101, make_student):
        section = make_section(cs101, capacity=3)
        for _ in range(3):
            platform.enrollment.admit_or_waitlist(make_student().id, section.id)

        stored = platform.transactions.read(lambda uow: Repositories(uow).sections.get(section.id))
        assert stored.enrollment_count == 3
        assert stored.is_full
        assert stored.seats_available == 0


class TestScheduleRaces:
    def test_reschedule_waits_for_admission_in_the_same_term(self, platform, make_section, cs101, math101,
                                                             student, monkeypatch):
        target = make_section(cs101, slots=[MONDAY_10])
        current = make_section(math101, slots=[TUESDAY_10])
        platform.enrollment.admit_or_waitlist(student.id, current.id)

        checked = threading.Event()
        rescheduled = threading.Event()
        original = platform.scheduler.check_student_conflicts
        calls = []

        def check_student_conflicts(repos, student_id, term_id, slots, exclude_section_id=None):
            original(repos, student_id, term_id, slots, exclude_section_id=exclude_section_id)
            if not calls:
                # Hold the admission between its schedule check and its commit.
                calls.append(student_id)
                checked.set()
                rescheduled.wait(timeout=0.5)

        monkeypatch.setattr(platform.scheduler, "check_student_conflicts", check_student_conflicts)
        outcomes = {}

        def admit():
            try:
                outcomes['admit'] = platform.enrollment.admit_or_waitlist(student.id, target.id)
            except InvariantViolationError as e:
                outcomes['admit'] = e

        def reschedule():
            try:
                outcomes['reschedule'] = platform.scheduler.reschedule_section(current.id, [MONDAY_1030])
            except InvariantViolationError as e:
                outcomes['reschedule'] = e
            finally:
                rescheduled.set()

        admitting = threading.Thread(target=admit)
        admitting.start()
        assert checked.wait(timeout=2.0)
        rescheduling = threading.Thread(target=reschedule)
        rescheduling.start()
        admitting.join(timeout=5.0)
        rescheduling.join(timeout=5.0)

        assert outcomes['admit'].status == EnrollmentStatus.ACTIVE
        assert isinstance(outcomes['reschedule'], InvariantViolationError)
        assert outcomes['reschedule'].error_code == "ScheduleConflict"
        assert platform.catalog.get_section(current.id).schedule_slots[0].day == "Tuesday"
