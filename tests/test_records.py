"""
Tests for transcripts, term-end processing, degree audits and graduation.
"""

import logging

import pytest

from registrar.core.enums import AuditAction, StudentStatus
from registrar.core.exceptions import AuthorizationError, InvariantViolationError
from registrar.persistence import Repositories
from registrar.services.transcript_service import term_gpa

from .conftest import REGISTRAR_ROLES


def complete_course(platform, section, student, percentage):
    exam = platform.grading.assessments_for_section(section.id)
    if not exam:
        exam = [platform.grading.create_assessment(section.id, "Exam", 100, 100)]
    enrollment = platform.enrollment.admit_or_waitlist(student.id, section.id)
    platform.grading.record_grade(enrollment.enrollment_id, exam[0].id, percentage)
    return enrollment.enrollment_id


@pytest.fixture
def program(platform, cs101):
    return platform.catalog.create_program("BSC-CS", "BSc Computer Science", min_credits=6,
                                           min_gpa=2.0, required_courses=["CS101"])


class TestTranscripts:
    def test_gpa_across_courses(self, platform, make_section, cs101, math101, student):
        intro = make_section(cs101)
        calc = make_section(math101)
        complete_course(platform, intro, student, 74)
        complete_course(platform, calc, student, 55)
        platform.grading.post_final_grades(intro.id)
        platform.grading.post_final_grades(calc.id)

        view = platform.transcripts.get_transcript(student.id)
        assert view.gpa == 4.0
        assert view.total_credits == 6
        assert view.earned_credits == 6
        assert platform.transcripts.get_transcript(student.id).gpa == view.gpa

    def test_failed_course_counts_in_gpa_but_not_credits(self, platform, make_section, cs101, math101,
                                                         student):
        intro = make_section(cs101)
        calc = make_section(math101)
        complete_course(platform, intro, student, 90)
        complete_course(platform, calc, student, 10)
        platform.grading.post_final_grades(intro.id)
        platform.grading.post_final_grades(calc.id)

        view = platform.transcripts.get_transcript(student.id)
        assert view.gpa == 2.5
        assert view.earned_credits == 3

    def test_term_gpa_filters_by_term(self, platform, make_section, cs101, student):
        section = make_section(cs101)
        complete_course(platform, section, student, 65)
        platform.grading.post_final_grades(section.id)
        entries = platform.transcripts.get_transcript(student.id).entries

        assert term_gpa(entries, "Fall", 2024) == 4.0
        assert term_gpa(entries, "Spring", 2025) == 0.0

    def test_stale_stored_gpa_is_recomputed_on_read(self, platform, make_section, cs101, student, caplog):
        section = make_section(cs101)
        complete_course(platform, section, student, 80)
        platform.grading.post_final_grades(section.id)

        def overwrite_stored_gpa(uow):
            repos = Repositories(uow)
            transcript = repos.transcripts.find_by_student(student.id)
            transcript._stored_gpa = 1.0
            repos.transcripts.save(transcript)

        platform.transactions.run(overwrite_stored_gpa)

        with caplog.at_level(logging.WARNING, logger="registrar.services.transcript_service"):
            view = platform.transcripts.get_transcript(student.id)
        assert view.gpa == 5.0
        assert "recomputed 5.00" in caplog.text

    def test_transcript_is_append_only(self, platform, make_section, cs101, student):
        section = make_section(cs101)
        enrollment_id = complete_course(platform, section, student, 65)
        platform.grading.post_final_grades(section.id)

        transcript = platform.transcripts.get_transcript(student.id)
        stored = platform.transactions.read(lambda uow: Repositories(uow).transcripts.find_by_student(student.id))
        with pytest.raises(InvariantViolationError):
            stored.append(transcript.entries[0])
        assert stored.has_entry_for(enrollment_id)


class TestTermEnd:
    def test_requires_registrar(self, platform, term):
        with pytest.raises(AuthorizationError):
            platform.transcripts.process_term_end(term.id, "prof-1", ["instructor"])

    def test_unposted_sections_block_term_end(self, platform, make_section, cs101, student, term):
        section = make_section(cs101)
        complete_course(platform, section, student, 80)
        with pytest.raises(InvariantViolationError) as exc:
            platform.transcripts.process_term_end(term.id, "reg-1", REGISTRAR_ROLES)
        assert exc.value.error_code == "MissingGrades"
        assert exc.value.details['sections'] == [section.id]

    def test_reopened_section_blocks_term_end_until_reposted(self, platform, make_section, cs101, student,
                                                             term):
        section = make_section(cs101)
        complete_course(platform, section, student, 80)
        platform.grading.post_final_grades(section.id)
        platform.grading.reopen_grades(section.id, "regrade", "reg-1", REGISTRAR_ROLES)

        with pytest.raises(InvariantViolationError) as exc:
            platform.transcripts.process_term_end(term.id, "reg-1", REGISTRAR_ROLES)
        assert exc.value.details['sections'] == [section.id]

        platform.grading.post_final_grades(section.id)
        assert platform.transcripts.process_term_end(term.id, "reg-1", REGISTRAR_ROLES).students_processed == 1

    def test_standing_and_locks(self, platform, make_section, cs101, math101, make_student, term,
                                audit_sink):
        strong, weak = make_student(), make_student()
        intro = make_section(cs101)
        complete_course(platform, intro, strong, 95)
        complete_course(platform, intro, weak, 42)
        empty = make_section(math101)
        platform.grading.post_final_grades(intro.id)

        result = platform.transcripts.process_term_end(term.id, "reg-1", REGISTRAR_ROLES)

        assert result.students_processed == 2
        assert result.sections_locked == 2
        assert result.standings[strong.id]['academic_standing'] == "First Class"
        assert result.standings[weak.id]['academic_standing'] == "Probation"
        assert platform.catalog.get_student(weak.id).academic_standing == "Probation"
        assert platform.catalog.get_section(empty.id).is_locked
        assert audit_sink.records("term", AuditAction.TERM_PROCESSED)


class TestDegreeAudit:
    def test_missing_requirements_are_listed(self, platform, program, make_section, math101, make_student):
        student = make_student(program.id)
        section = make_section(math101)
        complete_course(platform, section, student, 50)
        platform.grading.post_final_grades(section.id)

        audit = platform.graduation.run_degree_audit(student.id)

        assert not audit.eligible
        assert audit.total_credits == 3
        assert audit.missing_courses == ["CS101"]
        assert "Earn 3 more credits (3 of 6)" in audit.missing_requirements
        assert "Complete required course CS101" in audit.missing_requirements

    def test_low_gpa_and_open_enrollments(self, platform, program, make_section, cs101, math101,
                                          make_student):
        student = make_student(program.id)
        intro = make_section(cs101)
        complete_course(platform, intro, student, 41)
        platform.grading.post_final_grades(intro.id)
        platform.enrollment.admit_or_waitlist(student.id, make_section(math101).id)

        audit = platform.graduation.run_degree_audit(student.id)
        assert "Raise GPA to 2.00 (currently 1.00)" in audit.missing_requirements
        assert "Resolve 1 outstanding enrollment(s)" in audit.missing_requirements

    def test_students_without_program_use_defaults(self, platform, student):
        audit = platform.graduation.run_degree_audit(student.id)
        assert audit.required_credits == 120
        assert audit.required_gpa == 2.0
        assert audit.gpa == 0.0


class TestGraduation:
    @pytest.fixture
    def eligible(self, platform, program, make_section, cs101, math101, make_student):
        student = make_student(program.id)
        for course in (cs101, math101):
            section = make_section(course)
            complete_course(platform, section, student, 75)
            platform.grading.post_final_grades(section.id)
        return student

    def test_requires_registrar_role(self, platform, eligible):
        with pytest.raises(AuthorizationError):
            platform.graduation.process_graduation(eligible.id, "prof-1", ["instructor"])
        assert platform.catalog.get_student(eligible.id).status == StudentStatus.ACTIVE

    def test_graduate_and_create_alumni_profile(self, platform, eligible, notifier):
        assert platform.graduation.run_degree_audit(eligible.id).eligible

        result = platform.graduation.process_graduation(eligible.id, "reg-1", REGISTRAR_ROLES)

        assert platform.catalog.get_student(eligible.id).status == StudentStatus.GRADUATED

        def lookup(uow):
            repos = Repositories(uow)
            return repos.graduations.get(result.graduation_id), repos.alumni.get(result.alumni_id)

        record, profile = platform.transactions.read(lookup)
        assert record.gpa == 5.0
        assert record.total_credits == 6
        assert record.approved_by == "reg-1"
        assert profile.contact_email == eligible.email
        assert notifier.sent_to(eligible.id)

        with pytest.raises(InvariantViolationError) as exc:
            platform.graduation.process_graduation(eligible.id, "reg-1", REGISTRAR_ROLES)
        assert exc.value.error_code == "DuplicateGraduation"

    def test_ineligible_student_is_not_changed(self, platform, program, make_student):
        student = make_student(program.id)
        with pytest.raises(InvariantViolationError) as exc:
            platform.graduation.process_graduation(student.id, "reg-1", REGISTRAR_ROLES)
        assert exc.value.error_code == "NotEligible"
        assert exc.value.details['missing_requirements']
        assert platform.catalog.get_student(student.id).status == StudentStatus.ACTIVE
        assert platform.transactions.read(
            lambda uow: Repositories(uow).graduations.find_by_student(student.id)) is None
