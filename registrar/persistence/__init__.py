"""
Persistence module: SQLite storage, the committed record store and repositories.
"""

from .database import DatabaseManager, SQLiteDatabase
from .store import RecordStore
from .repositories import (
    Repositories, StudentRepository, ProgramRepository, CourseRepository, TermRepository,
    SectionRepository, EnrollmentRepository, AssessmentRepository, GradeRepository,
    TranscriptRepository, GraduationRecordRepository, AlumniProfileRepository,
)

__all__ = [
    "DatabaseManager",
    "SQLiteDatabase",
    "RecordStore",
    "Repositories",
    "StudentRepository",
    "ProgramRepository",
    "CourseRepository",
    "TermRepository",
    "SectionRepository",
    "EnrollmentRepository",
    "AssessmentRepository",
    "GradeRepository",
    "TranscriptRepository",
    "GraduationRecordRepository",
    "AlumniProfileRepository",
]
