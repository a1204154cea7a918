"""
Grade scale tables and the pure arithmetic behind grading and GPA.

A deployment uses exactly one ``GradeScale``; every conversion in the
platform goes through ``score_to_grade`` / ``percentage_to_grade`` with that
scale so letter grades and points never disagree between call sites.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .enums import GradeScale
from .exceptions import InvariantViolationError


# (minimum percentage, letter, points), highest first.
SCALE_TABLES: Dict[GradeScale, Tuple[Tuple[float, str, float], ...]] = {
    GradeScale.FIVE_POINT: (
        (70.0, "A", 5.0),
        (60.0, "B", 4.0),
        (50.0, "C", 3.0),
        (45.0, "D", 2.0),
        (40.0, "E", 1.0),
        (0.0, "F", 0.0),
    ),
    GradeScale.FOUR_POINT: (
        (90.0, "A", 4.0),
        (80.0, "B", 3.0),
        (70.0, "C", 2.0),
        (60.0, "D", 1.0),
        (0.0, "F", 0.0),
    ),
}

# Academic standing by term GPA on the five-point scale.
STANDING_THRESHOLDS: Tuple[Tuple[float, str], ...] = (
    (4.5, "First Class"),
    (3.5, "Second Class (Upper Division)"),
    (2.4, "Second Class (Lower Division)"),
    (1.5, "Third Class"),
)
PROBATION = "Probation"

WEIGHT_TOLERANCE = 0.01


def max_points(scale: GradeScale) -> float:
    return SCALE_TABLES[scale][0][2]


def round2(value: float) -> float:
    return round(value + 0.0, 2)


@dataclass(frozen=True)
class GradeValue:
    """A percentage with its letter and grade points."""
    numeric: float
    letter: str
    points: float

    @property
    def is_passing(self) -> bool:
        return self.points > 0

    def to_dict(self) -> Dict[str, Any]:
        return {'numeric': self.numeric, 'letter': self.letter, 'points': self.points}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'GradeValue':
        return cls(numeric=float(data['numeric']), letter=data['letter'], points=float(data['points']))


def percentage_to_grade(percentage: float, scale: GradeScale = GradeScale.FIVE_POINT) -> GradeValue:
    """Map a 0-100 percentage onto the scale's letter table."""
    if percentage < 0 or percentage > 100 + WEIGHT_TOLERANCE:
        raise InvariantViolationError(
            "GradingEngine", "Score Conversion",
            f"Percentage ({percentage}) must be between 0 and 100",
            error_code="ScoreOutOfRange",
        )

    rounded = round2(percentage)
    for minimum, letter, points in SCALE_TABLES[scale]:
        if rounded >= minimum:
            return GradeValue(numeric=rounded, letter=letter, points=points)
    # unreachable: every table ends at 0.0
    raise InvariantViolationError("GradingEngine", "Score Conversion", f"No grade for {rounded}")


def score_to_grade(score: float, total_points: float,
                   scale: GradeScale = GradeScale.FIVE_POINT) -> GradeValue:
    """Convert a raw score into percentage, letter and points."""
    if total_points <= 0:
        raise InvariantViolationError(
            "GradingEngine", "Score Conversion",
            f"Total points ({total_points}) must be greater than 0",
            error_code="ScoreOutOfRange",
        )
    if score < 0 or score > total_points:
        raise InvariantViolationError(
            "GradingEngine", "Score Conversion",
            f"Score ({score}) must be between 0 and {total_points}",
            error_code="ScoreOutOfRange",
        )
    return percentage_to_grade(score / total_points * 100, scale)


def letter_to_points(letter: str, scale: GradeScale = GradeScale.FIVE_POINT) -> float:
    for _, table_letter, points in SCALE_TABLES[scale]:
        if table_letter == letter.upper():
            return points
    return 0.0


def weighted_final_percentage(components: Iterable[Tuple[float, float]]) -> float:
    """Sum of ``numeric / 100 * weight`` over (numeric, weight) pairs, rounded to 2 places."""
    return round2(sum(numeric / 100 * weight for numeric, weight in components))


def calculate_gpa(entries: Sequence[Any]) -> float:
    """
    GPA = sum(points * credits) / sum(credits), rounded to 2 places.

    Accepts anything with ``credits`` and ``grade.points``; returns 0 for no
    entries or zero credits.
    """
    total_points = 0.0
    total_credits = 0.0
    for entry in entries:
        total_points += entry.grade.points * entry.credits
        total_credits += entry.credits

    if total_credits == 0:
        return 0.0
    return round2(total_points / total_credits)


def standing_for_gpa(gpa: float, scale: GradeScale = GradeScale.FIVE_POINT) -> str:
    """Academic standing label; thresholds scale with the maximum points."""
    factor = max_points(scale) / max_points(GradeScale.FIVE_POINT)
    for minimum, label in STANDING_THRESHOLDS:
        if gpa >= round2(minimum * factor):
            return label
    return PROBATION


def missing_codes(required: Iterable[str], available: Iterable[str]) -> List[str]:
    """Required codes not present in ``available``, in required order."""
    have = set(available)
    seen = set()
    missing = []
    for code in required:
        if code not in have and code not in seen:
            missing.append(code)
            seen.add(code)
    return missing


def parse_scale(value: Optional[str]) -> GradeScale:
    if value is None:
        return GradeScale.FIVE_POINT
    if isinstance(value, GradeScale):
        return value
    return GradeScale(value)
