"""
Catalog service: programs, courses, terms and student records.
"""

import logging
from typing import Iterable, List, Optional

from ..core import validators
from ..core.entities import Course, Program, Student, Term
from ..core.enums import StudentStatus
from ..core.exceptions import NotFoundError
from ..persistence.repositories import Repositories
from .unit_of_work import TransactionManager, UnitOfWork


logger = logging.getLogger(__name__)

CATALOG_LOCK = "catalog"


class CatalogService:
    """Creates reference records while keeping codes and numbers unique."""

    def __init__(self, transactions: TransactionManager, default_min_credits: float = 120,
                 default_min_gpa: float = 2.0):
        self._transactions = transactions
        self._default_min_credits = default_min_credits
        self._default_min_gpa = default_min_gpa

    def create_program(self, code: str, name: str, min_credits: Optional[float] = None,
                       min_gpa: Optional[float] = None,
                       required_courses: Iterable[str] = ()) -> Program:
        program = Program(
            code, name,
            self._default_min_credits if min_credits is None else min_credits,
            self._default_min_gpa if min_gpa is None else min_gpa,
            list(required_courses),
        )

        def operation(uow: UnitOfWork) -> Program:
            repos = Repositories(uow)
            validators.uniqueness(program.code, [p.code for p in repos.programs.find_all()],
                                  "Program", "Program code")
            repos.programs.save(program)
            return program

        result = self._transactions.run(operation, lock_keys=[CATALOG_LOCK])
        logger.info("Created program %s", result.code)
        return result

    def create_course(self, code: str, title: str, credits: float,
                      prerequisites: Iterable[str] = ()) -> Course:
        course = Course(code, title, credits, list(prerequisites))

        def operation(uow: UnitOfWork) -> Course:
            repos = Repositories(uow)
            catalog = repos.courses.prerequisite_catalog()
            validators.uniqueness(course.code, catalog.keys(), "Course", "Course code")
            for prerequisite in course.prerequisites:
                if prerequisite != course.code and prerequisite not in catalog:
                    raise NotFoundError("Course", prerequisite)
            validators.no_prerequisite_cycle(course.code, course.prerequisites, catalog)
            repos.courses.save(course)
            return course

        result = self._transactions.run(operation, lock_keys=[CATALOG_LOCK])
        logger.info("Created course %s (%g credits)", result.code, result.credits)
        return result

    def create_term(self, name: str, year: int) -> Term:
        term = Term(name, year)

        def operation(uow: UnitOfWork) -> Term:
            repos = Repositories(uow)
            validators.uniqueness((term.name, term.year),
                                  [(t.name, t.year) for t in repos.terms.find_all()], "Term", "Term")
            repos.terms.save(term)
            return term

        return self._transactions.run(operation, lock_keys=[CATALOG_LOCK])

    def register_student(self, student_number: str, first_name: str, last_name: str, email: str,
                         program_id: Optional[str] = None) -> Student:
        student = Student(student_number, first_name, last_name, email, program_id)

        def operation(uow: UnitOfWork) -> Student:
            repos = Repositories(uow)
            validators.uniqueness(student.student_number,
                                  [s.student_number for s in repos.students.find_all()],
                                  "Student", "Student number")
            if program_id is not None:
                repos.programs.get(program_id)
            repos.students.save(student)
            return student

        result = self._transactions.run(operation, lock_keys=[CATALOG_LOCK])
        logger.info("Registered student %s", result.student_number)
        return result

    def change_student_status(self, student_id: str, status: StudentStatus) -> Student:
        def operation(uow: UnitOfWork) -> Student:
            repos = Repositories(uow)
            student = repos.students.get(student_id)
            student.transition_to(status)
            repos.students.save(student)
            return student

        return self._transactions.run(operation, lock_keys=[f"student:{student_id}"])

    def get_student(self, student_id: str) -> Student:
        return self._transactions.read(lambda uow: Repositories(uow).students.get(student_id))

    def get_section(self, section_id: str):
        return self._transactions.read(lambda uow: Repositories(uow).sections.get(section_id))

    def list_courses(self) -> List[Course]:
        return self._transactions.read(lambda uow: Repositories(uow).courses.find_all())

    def list_sections(self, term_id: Optional[str] = None):
        def query(uow: UnitOfWork):
            sections = Repositories(uow).sections
            return sections.find_by_term(term_id) if term_id else sections.find_all()

        return self._transactions.read(query)
