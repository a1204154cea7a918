"""
Shared fixtures: an in-memory platform with a small catalog.
"""

import pytest

from registrar.main import RegistrarPlatform
from registrar.services import EventService, InMemoryAuditSink, InMemoryNotificationDispatcher


MONDAY_10 = {'day': 'Monday', 'start_time': '10:00', 'end_time': '11:00', 'room': 'R1'}
MONDAY_1030 = {'day': 'Monday', 'start_time': '10:30', 'end_time': '11:30', 'room': 'R2'}
TUESDAY_10 = {'day': 'Tuesday', 'start_time': '10:00', 'end_time': '11:00', 'room': 'R1'}

REGISTRAR_ROLES = ["registrar"]


@pytest.fixture
def audit_sink():
    return InMemoryAuditSink()


@pytest.fixture
def notifier():
    return InMemoryNotificationDispatcher()


@pytest.fixture
def platform(audit_sink, notifier):
    platform = RegistrarPlatform({'database_path': ':memory:', 'lock_timeout': 2.0},
                                 event_service=EventService(audit_sink, notifier))
    yield platform
    platform.stop_platform()


@pytest.fixture
def term(platform):
    return platform.catalog.create_term("Fall", 2024)


@pytest.fixture
def cs101(platform):
    return platform.catalog.create_course("CS101", "Introduction to Programming", 3)


@pytest.fixture
def cs201(platform, cs101):
    return platform.catalog.create_course("CS201", "Data Structures", 4, ["CS101"])


@pytest.fixture
def math101(platform):
    return platform.catalog.create_course("MATH101", "Calculus I", 3)


@pytest.fixture
def make_student(platform):
    counter = {'n': 0}

    def factory(program_id=None):
        counter['n'] += 1
        n = counter['n']
        return platform.catalog.register_student(f"S{n:03d}", f"First{n}", f"Last{n}",
                                                 f"student{n}@university.edu", program_id)

    return factory


@pytest.fixture
def student(make_student):
    return make_student()


@pytest.fixture
def make_section(platform, term):
    def factory(course, capacity=30, slots=(), instructor_id=None, **kwargs):
        return platform.scheduler.create_section(course.id, term.id, instructor_id, capacity,
                                                 list(slots), **kwargs)

    return factory


@pytest.fixture
def graded_section(platform, make_section, cs101):
    """A CS101 section with a 40% midterm and a 60% final exam."""
    section = make_section(cs101, capacity=10)
    midterm = platform.grading.create_assessment(section.id, "Midterm", 40, 50)
    final = platform.grading.create_assessment(section.id, "Final Exam", 60, 100)
    return section, midterm, final
