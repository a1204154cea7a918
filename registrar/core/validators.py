"""
Invariant validators.

Pure functions over already-fetched state. Each one returns ``None`` when the
rule holds and raises ``InvariantViolationError`` (or ``ValidationError`` for
malformed input) naming the aggregate, the invariant and enough context for
the caller to correct the request.
"""

from typing import Any, Iterable, List, Mapping, Optional, Sequence

from .enums import (
    EnrollmentStatus, StudentStatus, GradeScale,
    ENROLLMENT_TRANSITIONS, STUDENT_TRANSITIONS,
)
from .exceptions import InvariantViolationError, ValidationError
from .grading import WEIGHT_TOLERANCE, calculate_gpa, max_points
from .timeslots import TimeSlot


# ---------------------------------------------------------------- capacity

def capacity(enrollment_count: int, section_capacity: int) -> None:
    """Admission check: a seat must be free."""
    if enrollment_count >= section_capacity:
        raise InvariantViolationError(
            "Section", "Capacity",
            f"Section is at capacity ({enrollment_count}/{section_capacity})",
            error_code="CapacityExceeded",
            details={'enrollment_count': enrollment_count, 'capacity': section_capacity},
        )


def enrollment_count_within_capacity(enrollment_count: int, section_capacity: int) -> None:
    """Post-mutation check on the recomputed projection."""
    if enrollment_count > section_capacity:
        raise InvariantViolationError(
            "Section", "Capacity",
            f"Enrollment count ({enrollment_count}) exceeds capacity ({section_capacity})",
            error_code="CapacityExceeded",
            details={'enrollment_count': enrollment_count, 'capacity': section_capacity},
        )


def capacity_update(current_count: int, new_capacity: int) -> None:
    if new_capacity < 0:
        raise ValidationError("capacity", "Capacity cannot be negative")
    if new_capacity < current_count:
        raise InvariantViolationError(
            "Section", "Capacity Update",
            f"Cannot reduce capacity to {new_capacity} below current enrollment count ({current_count})",
            error_code="CapacityExceeded",
            details={'enrollment_count': current_count, 'capacity': new_capacity},
        )


# ---------------------------------------------------------------- assessments

def assessment_fields(weight: float, total_points: float) -> None:
    if weight < 0 or weight > 100:
        raise ValidationError("weight", f"Weight ({weight}) must be between 0 and 100")
    if total_points <= 0:
        raise ValidationError("total_points", f"Total points ({total_points}) must be greater than 0")


def assessment_weight_total(existing_weights: Iterable[float], candidate_weight: float) -> None:
    """The weights of a section may never sum past 100 after a create or update."""
    existing_total = sum(existing_weights)
    total = existing_total + candidate_weight
    if total > 100 + WEIGHT_TOLERANCE:
        raise InvariantViolationError(
            "Assessment", "Weight Total",
            f"Total assessment weight would be {total:.2f}% (existing {existing_total:.2f}% "
            f"+ new {candidate_weight:.2f}%), which exceeds 100%",
            error_code="WeightOverflow",
            details={'existing_total': existing_total, 'candidate': candidate_weight, 'total': total},
        )


def final_weight_total(weights: Sequence[float]) -> None:
    """A final grade can only be computed when the weights sum to exactly 100."""
    total = sum(weights)
    if abs(total - 100) > WEIGHT_TOLERANCE:
        raise InvariantViolationError(
            "Assessment", "Weight Total",
            f"Assessment weights sum to {total:.2f}%, expected 100%",
            error_code="WeightTotal",
            details={'total': total},
        )


def score_bounds(score: float, total_points: float) -> None:
    if score < 0 or score > total_points:
        raise ValidationError("score", f"Score ({score}) must be between 0 and {total_points}")


# ---------------------------------------------------------------- transitions

def student_status_transition(current: StudentStatus, new: StudentStatus) -> None:
    if new not in STUDENT_TRANSITIONS[current]:
        raise InvariantViolationError(
            "Student", "Status Transition",
            f"Cannot transition student from {current.value} to {new.value}",
            error_code="InvalidTransition",
            details={'from': current.value, 'to': new.value},
        )


def enrollment_status_transition(current: EnrollmentStatus, new: EnrollmentStatus,
                                 appeal: bool = False) -> None:
    """
    Completed and failed are sinks; an appeal may only swap one for the other.
    """
    if appeal and current.is_final and new.is_final and current != new:
        return
    if new not in ENROLLMENT_TRANSITIONS[current]:
        raise InvariantViolationError(
            "Enrollment", "Status Transition",
            f"Cannot transition enrollment from {current.value} to {new.value}",
            error_code="InvalidTransition",
            details={'from': current.value, 'to': new.value},
        )


# ---------------------------------------------------------------- schedules

def schedule_slot_validity(slot: TimeSlot) -> None:
    if slot.start_minute >= slot.end_minute:
        raise ValidationError(
            "schedule_slots",
            f"Start time ({slot.start_time}) must be before end time ({slot.end_time}) on {slot.day}",
        )


def no_overlapping_slots(slots: Sequence[TimeSlot]) -> None:
    """A section's own meeting slots may not overlap each other."""
    for i, first in enumerate(slots):
        for second in slots[i + 1:]:
            if first.overlaps_with(second):
                raise InvariantViolationError(
                    "Section", "Schedule",
                    f"Schedule slots overlap: {first.describe()} and {second.describe()}",
                    error_code="ScheduleConflict",
                )


# ---------------------------------------------------------------- uniqueness

def uniqueness(key: Any, existing_keys: Iterable[Any], aggregate: str = "Record",
               label: str = "key") -> None:
    if key in set(existing_keys):
        raise InvariantViolationError(
            aggregate, "Uniqueness",
            f"{label} '{key}' already exists",
            error_code="Uniqueness",
            details={'key': key if isinstance(key, str) else list(key)},
        )


def no_prerequisite_cycle(course_code: str, prerequisites: Iterable[str],
                          catalog: Mapping[str, Iterable[str]]) -> None:
    """
    ``catalog`` maps every known course code to its prerequisite codes. The
    candidate edges ``course_code -> prerequisites`` must not close a loop.
    """
    direct = list(prerequisites)
    if course_code in direct:
        raise InvariantViolationError(
            "Course", "Prerequisites",
            f"Course {course_code} cannot be its own prerequisite",
            error_code="PrerequisiteCycle",
        )

    stack: List[List[str]] = [[code] for code in direct]
    visited = set()
    while stack:
        path = stack.pop()
        code = path[-1]
        if code == course_code:
            chain = " -> ".join([course_code] + path)
            raise InvariantViolationError(
                "Course", "Prerequisites",
                f"Circular prerequisite chain: {chain}",
                error_code="PrerequisiteCycle",
            )
        if code in visited:
            continue
        visited.add(code)
        for nxt in catalog.get(code, ()):
            stack.append(path + [nxt])


# ---------------------------------------------------------------- transcripts

def transcript_entry(course_code: str, credits: float, points: float,
                     scale: GradeScale = GradeScale.FIVE_POINT) -> None:
    if not course_code or not course_code.strip():
        raise ValidationError("course_code", "Course code is required")
    if credits <= 0:
        raise ValidationError("credits", f"Credits ({credits}) must be greater than 0")
    if points < 0 or points > max_points(scale):
        raise ValidationError("points", f"Grade points ({points}) out of range for {scale.value}")


def gpa_matches(stored_gpa: Optional[float], entries: Sequence[Any]) -> bool:
    """Whether a stored GPA agrees with the GPA recomputed from ``entries``."""
    return stored_gpa is None or abs(stored_gpa - calculate_gpa(entries)) <= WEIGHT_TOLERANCE
