"""
Tests for grade conversion, GPA, standing, time slots and the pure validators.
"""

from types import SimpleNamespace

import pytest

from registrar.core import validators
from registrar.core.enums import EnrollmentStatus, GradeScale, StudentStatus
from registrar.core.exceptions import InvariantViolationError, ValidationError
from registrar.core.grading import (
    GradeValue, calculate_gpa, letter_to_points, percentage_to_grade, score_to_grade,
    standing_for_gpa, weighted_final_percentage,
)
from registrar.core.timeslots import TimeSlot, parse_hhmm


def entry(points, credits):
    return SimpleNamespace(grade=SimpleNamespace(points=points), credits=credits)


class TestGradeConversion:
    @pytest.mark.parametrize("percentage,letter,points", [
        (100, "A", 5.0), (70, "A", 5.0), (69.99, "B", 4.0), (60, "B", 4.0),
        (55, "C", 3.0), (45, "D", 2.0), (40, "E", 1.0), (39.99, "F", 0.0), (0, "F", 0.0),
    ])
    def test_five_point_boundaries(self, percentage, letter, points):
        value = percentage_to_grade(percentage)
        assert (value.letter, value.points) == (letter, points)

    @pytest.mark.parametrize("percentage,letter,points", [
        (95, "A", 4.0), (85, "B", 3.0), (74, "C", 2.0), (60, "D", 1.0), (59, "F", 0.0),
    ])
    def test_four_point_boundaries(self, percentage, letter, points):
        value = percentage_to_grade(percentage, GradeScale.FOUR_POINT)
        assert (value.letter, value.points) == (letter, points)

    def test_seventy_four_on_each_scale(self):
        assert score_to_grade(74, 100) == GradeValue(74.0, "A", 5.0)
        assert score_to_grade(74, 100, GradeScale.FOUR_POINT) == GradeValue(74.0, "C", 2.0)

    def test_score_is_scaled_by_total_points(self):
        value = score_to_grade(45, 50)
        assert value.numeric == 90.0
        assert value.letter == "A"

    @pytest.mark.parametrize("score,total", [(-1, 100), (101, 100), (10, 0)])
    def test_out_of_range_scores_are_rejected(self, score, total):
        with pytest.raises(InvariantViolationError) as exc:
            score_to_grade(score, total)
        assert exc.value.error_code == "ScoreOutOfRange"

    def test_fail_is_not_passing(self):
        assert not percentage_to_grade(10).is_passing
        assert percentage_to_grade(40).is_passing

    def test_letter_to_points(self):
        assert letter_to_points("b") == 4.0
        assert letter_to_points("A", GradeScale.FOUR_POINT) == 4.0
        assert letter_to_points("Z") == 0.0

    def test_weighted_final_percentage(self):
        assert weighted_final_percentage([(80, 40), (70, 60)]) == 74.0


class TestGpa:
    def test_credit_weighted_average(self):
        assert calculate_gpa([entry(5.0, 3), entry(3.0, 4)]) == round((15 + 12) / 7, 2)

    def test_empty_transcript_has_zero_gpa(self):
        assert calculate_gpa([]) == 0.0

    def test_recomputation_is_stable(self):
        entries = [entry(4.0, 3), entry(2.0, 2), entry(5.0, 1)]
        assert calculate_gpa(entries) == calculate_gpa(list(entries))

    @pytest.mark.parametrize("gpa,standing", [
        (4.6, "First Class"), (4.5, "First Class"), (3.5, "Second Class (Upper Division)"),
        (2.4, "Second Class (Lower Division)"), (1.5, "Third Class"), (1.49, "Probation"),
    ])
    def test_standing_on_five_point_scale(self, gpa, standing):
        assert standing_for_gpa(gpa) == standing

    def test_standing_thresholds_scale_with_four_point(self):
        assert standing_for_gpa(3.6, GradeScale.FOUR_POINT) == "First Class"
        assert standing_for_gpa(3.5, GradeScale.FOUR_POINT) == "Second Class (Upper Division)"

    def test_gpa_matches(self):
        entries = [entry(5.0, 3)]
        assert validators.gpa_matches(5.0, entries)
        assert validators.gpa_matches(None, entries)
        assert not validators.gpa_matches(4.0, entries)


class TestTimeSlots:
    def test_create_normalizes_day_and_time(self):
        slot = TimeSlot.create("mon", "9:05", "10:00", " R1 ")
        assert slot == TimeSlot("Monday", "09:05", "10:00", "R1")
        assert slot.describe() == "Monday 09:05-10:00"

    def test_half_open_intervals(self):
        first = TimeSlot.create("Monday", "10:00", "11:00")
        assert first.overlaps_with(TimeSlot.create("Monday", "10:30", "11:30"))
        assert not first.overlaps_with(TimeSlot.create("Monday", "11:00", "12:00"))
        assert not first.overlaps_with(TimeSlot.create("Tuesday", "10:00", "11:00"))

    @pytest.mark.parametrize("value", ["25:00", "10:60", "ten", ""])
    def test_invalid_times(self, value):
        with pytest.raises(ValidationError):
            parse_hhmm(value)

    def test_unknown_day(self):
        with pytest.raises(ValidationError):
            TimeSlot.create("Funday", "10:00", "11:00")


class TestValidators:
    def test_capacity(self):
        validators.capacity(2, 3)
        with pytest.raises(InvariantViolationError) as exc:
            validators.capacity(3, 3)
        assert exc.value.error_code == "CapacityExceeded"

    def test_capacity_update(self):
        with pytest.raises(ValidationError):
            validators.capacity_update(0, -1)
        with pytest.raises(InvariantViolationError):
            validators.capacity_update(5, 4)
        validators.capacity_update(5, 5)

    def test_assessment_weight_total(self):
        validators.assessment_weight_total([40, 40], 20)
        with pytest.raises(InvariantViolationError) as exc:
            validators.assessment_weight_total([40, 40], 20.5)
        assert exc.value.error_code == "WeightOverflow"

    def test_final_weight_total(self):
        validators.final_weight_total([33.33, 33.33, 33.34])
        with pytest.raises(InvariantViolationError) as exc:
            validators.final_weight_total([40, 50])
        assert exc.value.error_code == "WeightTotal"

    def test_student_transitions(self):
        validators.student_status_transition(StudentStatus.ACTIVE, StudentStatus.GRADUATED)
        with pytest.raises(InvariantViolationError) as exc:
            validators.student_status_transition(StudentStatus.GRADUATED, StudentStatus.ACTIVE)
        assert exc.value.error_code == "InvalidTransition"

    def test_final_enrollment_statuses_only_change_on_appeal(self):
        with pytest.raises(InvariantViolationError):
            validators.enrollment_status_transition(EnrollmentStatus.COMPLETED, EnrollmentStatus.FAILED)
        validators.enrollment_status_transition(EnrollmentStatus.COMPLETED, EnrollmentStatus.FAILED,
                                                appeal=True)
        with pytest.raises(InvariantViolationError):
            validators.enrollment_status_transition(EnrollmentStatus.COMPLETED, EnrollmentStatus.ACTIVE,
                                                    appeal=True)

    def test_slot_order(self):
        with pytest.raises(ValidationError):
            validators.schedule_slot_validity(TimeSlot.create("Monday", "11:00", "10:00"))

    def test_section_slots_may_not_overlap(self):
        slots = [TimeSlot.create("Monday", "10:00", "11:00"), TimeSlot.create("Monday", "10:59", "12:00")]
        with pytest.raises(InvariantViolationError) as exc:
            validators.no_overlapping_slots(slots)
        assert exc.value.error_code == "ScheduleConflict"

    def test_prerequisite_cycle(self):
        catalog = {"A": [], "B": ["A"], "C": ["B"]}
        validators.no_prerequisite_cycle("D", ["C"], catalog)
        with pytest.raises(InvariantViolationError) as exc:
            validators.no_prerequisite_cycle("A", ["C"], catalog)
        assert exc.value.error_code == "PrerequisiteCycle"
        assert "A -> C -> B -> A" in exc.value.message

    def test_uniqueness(self):
        with pytest.raises(InvariantViolationError) as exc:
            validators.uniqueness("CS101", ["CS101"], "Course", "Course code")
        assert "CS101" in exc.value.message
