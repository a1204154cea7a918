"""
Main entry point for the Registrar platform.
"""

import logging
import threading
import time
from typing import Any, Dict, Optional

from .api.rest_api import RegistrarRestAPI
from .config import DEFAULT_CONFIG, configure_logging, load_config, validate_config
from .core.grading import parse_scale
from .persistence import RecordStore, SQLiteDatabase
from .services import (
    CatalogService, ConcurrencyManager, EnrollmentService, EventService, GradingService,
    GraduationService, SchedulerService, TranscriptService, TransactionManager,
)


logger = logging.getLogger(__name__)


class RegistrarPlatform:
    """Main platform class that wires storage, services and the REST API."""

    def __init__(self, config: Optional[Dict[str, Any]] = None,
                 event_service: Optional[EventService] = None):
        merged = dict(DEFAULT_CONFIG)
        merged.update(config or {})
        self._config = validate_config(merged)

        self._event_service = event_service
        self._rest_thread = None
        self._running = False

        self._initialize_platform()

    def _initialize_platform(self):
        """Initialize the platform with all services."""
        config = self._config
        scale = parse_scale(config['grade_scale'])

        self._database = SQLiteDatabase(config['database_path'])
        self._store = RecordStore(self._database)
        loaded = self._store.load()
        logger.info("Database ready at %s (%d records)", config['database_path'], loaded)

        self._concurrency_manager = ConcurrencyManager(default_timeout=float(config['lock_timeout']))
        self._transactions = TransactionManager(
            self._store,
            self._concurrency_manager,
            lock_timeout=float(config['lock_timeout']),
            max_retries=int(config['max_retries']),
            retry_backoff=float(config['retry_backoff']),
        )

        if self._event_service is None:
            self._event_service = EventService()

        min_credits = float(config['default_min_credits'])
        min_gpa = float(config['default_min_gpa'])
        self._catalog_service = CatalogService(self._transactions, min_credits, min_gpa)
        self._scheduler_service = SchedulerService(self._transactions, self._event_service)
        self._enrollment_service = EnrollmentService(self._transactions, self._scheduler_service,
                                                     self._event_service)
        self._grading_service = GradingService(self._transactions, self._event_service, scale)
        self._transcript_service = TranscriptService(self._transactions, self._event_service, scale)
        self._graduation_service = GraduationService(self._transactions, self._event_service,
                                                     min_credits, min_gpa)

        self._rest_app = RegistrarRestAPI(
            self._catalog_service,
            self._scheduler_service,
            self._enrollment_service,
            self._grading_service,
            self._transcript_service,
            self._graduation_service,
        )
        logger.info("Registrar platform initialized (grade scale %s)", scale.value)

    @property
    def config(self) -> Dict[str, Any]:
        return dict(self._config)

    @property
    def store(self) -> RecordStore:
        return self._store

    @property
    def transactions(self) -> TransactionManager:
        return self._transactions

    @property
    def concurrency_manager(self) -> ConcurrencyManager:
        return self._concurrency_manager

    @property
    def events(self) -> EventService:
        return self._event_service

    @property
    def catalog(self) -> CatalogService:
        return self._catalog_service

    @property
    def scheduler(self) -> SchedulerService:
        return self._scheduler_service

    @property
    def enrollment(self) -> EnrollmentService:
        return self._enrollment_service

    @property
    def grading(self) -> GradingService:
        return self._grading_service

    @property
    def transcripts(self) -> TranscriptService:
        return self._transcript_service

    @property
    def graduation(self) -> GraduationService:
        return self._graduation_service

    @property
    def rest_api(self) -> RegistrarRestAPI:
        return self._rest_app

    def start_rest_server(self, host: Optional[str] = None, port: Optional[int] = None):
        """Start the REST server in a background thread."""
        import uvicorn

        host = host or self._config['rest_host']
        port = port or int(self._config['rest_port'])

        def run_server():
            uvicorn.run(
                self._rest_app.app,
                host=host,
                port=port,
                log_level=str(self._config['log_level']).lower()
            )

        self._rest_thread = threading.Thread(target=run_server, daemon=True)
        self._rest_thread.start()
        self._running = True
        logger.info("REST server started on %s:%d (docs at /docs)", host, port)

    def stop_platform(self):
        """Stop the platform and release the database connection."""
        self._database.close()
        self._running = False
        logger.info("Registrar platform stopped")

    def run_demo(self):
        """Run a short enrollment and grading walkthrough against the configured database."""
        catalog = self._catalog_service
        course = catalog.create_course("CS101", "Introduction to Computer Science", 3)
        term = catalog.create_term("Fall", 2024)
        student = catalog.register_student("S001", "Alice", "Johnson", "alice@university.edu")

        section = self._scheduler_service.create_section(
            course.id, term.id, "instructor-1", 30,
            [{'day': 'Monday', 'start_time': '10:00', 'end_time': '11:00', 'room': 'CS-101'}],
            section_number="001",
        )
        admission = self._enrollment_service.admit_or_waitlist(student.id, section.id)
        logger.info("Enrolled %s: %s", student.full_name, admission.to_dict())

        exam = self._grading_service.create_assessment(section.id, "Final Exam", 100, 100)
        self._grading_service.record_grade(admission.enrollment_id, exam.id, 74, "instructor-1")
        for result in self._grading_service.post_final_grades(section.id, "instructor-1"):
            logger.info("Final grade: %s", result.to_dict())

        transcript = self._transcript_service.get_transcript(student.id)
        logger.info("Transcript GPA for %s: %.2f", student.full_name, transcript.gpa)
        logger.info("Degree audit: %s", self._graduation_service.run_degree_audit(student.id).to_dict())


def main():
    """Main entry point."""
    import argparse

    parser = argparse.ArgumentParser(description="Registrar enrollment and records platform")
    parser.add_argument("--config", type=str, help="Configuration file path")
    parser.add_argument("--host", type=str, help="REST server host")
    parser.add_argument("--port", type=int, help="REST server port")
    parser.add_argument("--database", type=str, help="SQLite database path")
    parser.add_argument("--demo", action="store_true", help="Run demo mode")

    args = parser.parse_args()

    config = load_config(args.config)
    if args.database:
        config['database_path'] = args.database
    configure_logging(config['log_level'])

    platform = RegistrarPlatform(config)

    try:
        if args.demo:
            platform.run_demo()
        else:
            platform.start_rest_server(args.host, args.port)
            logger.info("Platform is running. Press Ctrl+C to stop.")
            while True:
                time.sleep(1)
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    finally:
        platform.stop_platform()


if __name__ == "__main__":
    main()
