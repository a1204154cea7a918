"""
Day-scoped time intervals used by section schedules.
"""

import re
from dataclasses import dataclass
from typing import Any, Dict

from .exceptions import ValidationError


DAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")

_TIME_PATTERN = re.compile(r'^(\d{1,2}):(\d{2})(?::(\d{2}))?$')


def parse_hhmm(value: str) -> int:
    """Parse "HH:MM" (optionally "HH:MM:SS") into minutes since midnight."""
    match = _TIME_PATTERN.match(value.strip()) if isinstance(value, str) else None
    if not match:
        raise ValidationError("time", f"'{value}' is not a valid HH:MM time")

    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 24 or minutes > 59 or (hours == 24 and minutes != 0):
        raise ValidationError("time", f"'{value}' is out of range")
    return hours * 60 + minutes


def format_minutes(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def normalize_day(day: str) -> str:
    """Accept "mon", "Monday" or "MONDAY" and return the canonical day name."""
    if not isinstance(day, str) or not day.strip():
        raise ValidationError("day", "Day is required")
    candidate = day.strip().lower()
    for name in DAYS:
        if name.lower() == candidate or name[:3].lower() == candidate:
            return name
    raise ValidationError("day", f"Unknown day '{day}'")


@dataclass(frozen=True)
class TimeSlot:
    """Represents a weekly meeting slot of a section."""
    day: str
    start_time: str
    end_time: str
    room: str = ""

    @property
    def start_minute(self) -> int:
        return parse_hhmm(self.start_time)

    @property
    def end_minute(self) -> int:
        return parse_hhmm(self.end_time)

    def overlaps_with(self, other: 'TimeSlot') -> bool:
        """Check if this time slot overlaps with another."""
        return (self.day == other.day and
                self.start_minute < other.end_minute and
                other.start_minute < self.end_minute)

    def describe(self) -> str:
        return f"{self.day} {self.start_time}-{self.end_time}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'day': self.day,
            'start_time': self.start_time,
            'end_time': self.end_time,
            'room': self.room,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TimeSlot':
        return cls.create(data['day'], data['start_time'], data['end_time'], data.get('room', ''))

    @classmethod
    def create(cls, day: str, start_time: str, end_time: str, room: str = "") -> 'TimeSlot':
        """Build a slot with a canonical day and zero-padded times."""
        start = format_minutes(parse_hhmm(start_time))
        end = format_minutes(parse_hhmm(end_time))
        return cls(day=normalize_day(day), start_time=start, end_time=end, room=(room or "").strip())
