"""
Registrar: course enrollment, grading, transcripts and graduation records.

A transactional records platform for a university registrar: sections with
capacity and waitlists, conflict-free scheduling, weighted grading, GPA and
academic standing, degree audits and graduation processing.
"""

__version__ = "1.0.0"
__author__ = "Registrar Development Team"
__description__ = "Enrollment, grading and academic records platform"
