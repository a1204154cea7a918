"""
REST API implementation for the Registrar platform using FastAPI.

The caller's identity arrives in the ``X-User-Id`` and ``X-User-Roles``
(comma separated) headers set by the identity provider in front of the API.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Header, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ..core.entities import Section
from ..core.enums import ErrorKind, StudentStatus
from ..core.exceptions import RegistrarException, ValidationError
from ..services import (
    CatalogService, EnrollmentService, GradingService, GraduationService,
    SchedulerService, TranscriptService,
)


logger = logging.getLogger(__name__)

STATUS_BY_KIND: Dict[ErrorKind, int] = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.VALIDATION: 422,
    ErrorKind.INVARIANT_VIOLATION: 409,
    ErrorKind.CONCURRENCY: 503,
    ErrorKind.AUTHORIZATION: 403,
    ErrorKind.PERSISTENCE: 500,
    ErrorKind.CONFIGURATION: 500,
}


@dataclass
class Actor:
    """Caller identity taken from request headers."""
    user_id: Optional[str]
    roles: List[str] = field(default_factory=list)


def current_actor(x_user_id: Optional[str] = Header(None),
                  x_user_roles: Optional[str] = Header(None)) -> Actor:
    roles = [r.strip().lower() for r in (x_user_roles or "").split(",") if r.strip()]
    return Actor(user_id=x_user_id, roles=roles)


# Pydantic models for API
class ProgramCreate(BaseModel):
    code: str = Field(..., min_length=1, max_length=20)
    name: str = Field(..., min_length=1, max_length=200)
    min_credits: Optional[float] = Field(None, ge=0)
    min_gpa: Optional[float] = Field(None, ge=0)
    required_courses: List[str] = []


class CourseCreate(BaseModel):
    code: str = Field(..., min_length=1, max_length=20)
    title: str = Field(..., min_length=1, max_length=200)
    credits: float = Field(..., gt=0)
    prerequisites: List[str] = []


class TermCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    year: int = Field(..., ge=1900, le=3000)


class StudentCreate(BaseModel):
    student_number: str = Field(..., min_length=1, max_length=20)
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., pattern=r'^[^@]+@[^@]+\.[^@]+$')
    program_id: Optional[str] = None


class StudentStatusChange(BaseModel):
    status: StudentStatus


class SlotModel(BaseModel):
    day: str
    start_time: str
    end_time: str
    room: str = ""


class SectionCreate(BaseModel):
    course_id: str = Field(..., min_length=1)
    term_id: str = Field(..., min_length=1)
    instructor_id: Optional[str] = None
    capacity: int = Field(..., ge=0)
    section_number: str = ""
    schedule_slots: List[SlotModel] = []
    enrollment_deadline: Optional[datetime] = None


class ScheduleUpdate(BaseModel):
    schedule_slots: List[SlotModel]


class InstructorAssignment(BaseModel):
    instructor_id: str = Field(..., min_length=1)


class CapacityUpdate(BaseModel):
    capacity: int = Field(..., ge=0)


class EnrollmentOpenUpdate(BaseModel):
    is_open: bool


class EnrollmentRequest(BaseModel):
    student_id: str = Field(..., min_length=1)
    section_id: str = Field(..., min_length=1)
    join_waitlist: bool = False


class EnrollmentResponse(BaseModel):
    enrollment_id: str
    status: str
    enrollment_count: int
    waitlist_position: Optional[int] = None


class DropRequest(BaseModel):
    withdraw: bool = False


class DropResponse(BaseModel):
    enrollment_id: str
    status: str
    enrollment_count: int
    promoted_enrollment_id: Optional[str] = None


class AssessmentCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    weight: float = Field(..., ge=0, le=100)
    total_points: float = Field(..., gt=0)
    due_date: Optional[datetime] = None


class AssessmentUpdate(BaseModel):
    title: Optional[str] = None
    weight: Optional[float] = Field(None, ge=0, le=100)
    total_points: Optional[float] = Field(None, gt=0)
    due_date: Optional[datetime] = None


class GradeRecord(BaseModel):
    enrollment_id: str = Field(..., min_length=1)
    assessment_id: str = Field(..., min_length=1)
    score: float


class BulkGradeRequest(BaseModel):
    grades: List[GradeRecord] = Field(..., min_length=1)


class SectionLockRequest(BaseModel):
    locked: bool
    reason: Optional[str] = None


class ReopenRequest(BaseModel):
    reason: Optional[str] = None


def _section_payload(section: Section) -> Dict[str, Any]:
    payload = section.to_dict()
    payload['seats_available'] = section.seats_available
    return payload


class RegistrarRestAPI:
    """REST API implementation for the Registrar platform."""

    def __init__(self, catalog_service: CatalogService, scheduler_service: SchedulerService,
                 enrollment_service: EnrollmentService, grading_service: GradingService,
                 transcript_service: TranscriptService, graduation_service: GraduationService):
        self._catalog = catalog_service
        self._scheduler = scheduler_service
        self._enrollment = enrollment_service
        self._grading = grading_service
        self._transcripts = transcript_service
        self._graduation = graduation_service

        self.app = FastAPI(
            title="Registrar API",
            description="Enrollment, grading, transcript and graduation records",
            version="1.0.0",
            docs_url="/docs",
            redoc_url="/redoc"
        )

        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

        self._setup_error_handlers()
        self._setup_routes()

    def _setup_error_handlers(self):
        @self.app.exception_handler(RegistrarException)
        async def registrar_error(request: Request, exc: RegistrarException):
            code = STATUS_BY_KIND.get(exc.kind, status.HTTP_500_INTERNAL_SERVER_ERROR)
            if code >= 500:
                logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
            return JSONResponse(status_code=code, content={'error': exc.to_dict()})

    def _setup_routes(self):
        """Setup API routes."""
        app = self.app

        @app.get("/", response_model=Dict[str, str])
        def root():
            return {"message": "Registrar API", "version": "1.0.0", "docs": "/docs"}

        @app.get("/health", response_model=Dict[str, str])
        def health_check():
            return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}

        # Catalog
        @app.post("/programs", status_code=status.HTTP_201_CREATED)
        def create_program(data: ProgramCreate):
            return self._catalog.create_program(data.code, data.name, data.min_credits,
                                                data.min_gpa, data.required_courses).to_dict()

        @app.post("/courses", status_code=status.HTTP_201_CREATED)
        def create_course(data: CourseCreate):
            return self._catalog.create_course(data.code, data.title, data.credits,
                                               data.prerequisites).to_dict()

        @app.get("/courses")
        def list_courses(skip: int = 0, limit: int = 100):
            return [c.to_dict() for c in self._catalog.list_courses()[skip:skip + limit]]

        @app.post("/terms", status_code=status.HTTP_201_CREATED)
        def create_term(data: TermCreate):
            return self._catalog.create_term(data.name, data.year).to_dict()

        @app.post("/students", status_code=status.HTTP_201_CREATED)
        def create_student(data: StudentCreate):
            return self._catalog.register_student(data.student_number, data.first_name,
                                                  data.last_name, data.email, data.program_id).to_dict()

        @app.get("/students/{student_id}")
        def get_student(student_id: str):
            return self._catalog.get_student(student_id).to_dict()

        @app.post("/students/{student_id}/status")
        def change_student_status(student_id: str, data: StudentStatusChange):
            return self._catalog.change_student_status(student_id, data.status).to_dict()

        # Sections and scheduling
        @app.post("/sections", status_code=status.HTTP_201_CREATED)
        def create_section(data: SectionCreate, actor: Actor = Depends(current_actor)):
            section = self._scheduler.create_section(
                data.course_id, data.term_id, data.instructor_id, data.capacity,
                [slot.model_dump() for slot in data.schedule_slots], data.section_number,
                data.enrollment_deadline, actor.user_id)
            return _section_payload(section)

        @app.get("/sections")
        def list_sections(term_id: Optional[str] = None):
            return [_section_payload(s) for s in self._catalog.list_sections(term_id)]

        @app.get("/sections/{section_id}")
        def get_section(section_id: str):
            return _section_payload(self._catalog.get_section(section_id))

        @app.put("/sections/{section_id}/schedule")
        def reschedule_section(section_id: str, data: ScheduleUpdate, actor: Actor = Depends(current_actor)):
            section = self._scheduler.reschedule_section(
                section_id, [slot.model_dump() for slot in data.schedule_slots], actor.user_id)
            return _section_payload(section)

        @app.put("/sections/{section_id}/instructor")
        def assign_instructor(section_id: str, data: InstructorAssignment,
                              actor: Actor = Depends(current_actor)):
            return _section_payload(self._scheduler.assign_instructor(section_id, data.instructor_id,
                                                                      actor.user_id))

        @app.put("/sections/{section_id}/capacity")
        def update_capacity(section_id: str, data: CapacityUpdate, actor: Actor = Depends(current_actor)):
            return self._enrollment.update_capacity(section_id, data.capacity, actor.user_id).to_dict()

        @app.put("/sections/{section_id}/enrollment-open")
        def set_enrollment_open(section_id: str, data: EnrollmentOpenUpdate,
                                actor: Actor = Depends(current_actor)):
            return _section_payload(self._enrollment.set_enrollment_open(section_id, data.is_open,
                                                                         actor.user_id))

        @app.get("/sections/{section_id}/enrollments")
        def section_enrollments(section_id: str):
            return [e.to_dict() for e in self._enrollment.enrollments_for_section(section_id)]

        @app.get("/rooms/free")
        def free_rooms(term_id: str, day: str, start_time: str, end_time: str, rooms: str):
            candidates = [r.strip() for r in rooms.split(",") if r.strip()]
            if not candidates:
                raise ValidationError("rooms", "At least one room is required")
            return {"rooms": self._scheduler.find_free_rooms(term_id, day, start_time, end_time, candidates)}

        # Enrollment
        @app.post("/enrollments", response_model=EnrollmentResponse, status_code=status.HTTP_201_CREATED)
        def admit_or_waitlist(data: EnrollmentRequest, actor: Actor = Depends(current_actor)):
            result = self._enrollment.admit_or_waitlist(data.student_id, data.section_id,
                                                        data.join_waitlist, actor.user_id)
            return EnrollmentResponse(**result.to_dict())

        @app.post("/enrollments/{enrollment_id}/drop", response_model=DropResponse)
        def drop(enrollment_id: str, data: Optional[DropRequest] = None,
                 actor: Actor = Depends(current_actor)):
            withdraw = data.withdraw if data else False
            result = self._enrollment.drop(enrollment_id, actor.user_id or "anonymous", withdraw=withdraw)
            return DropResponse(**result.to_dict())

        @app.get("/enrollments/{enrollment_id}/waitlist-position")
        def waitlist_position(enrollment_id: str):
            return {"enrollment_id": enrollment_id,
                    "position": self._enrollment.waitlist_position(enrollment_id)}

        @app.get("/students/{student_id}/enrollments")
        def student_enrollments(student_id: str):
            return [e.to_dict() for e in self._enrollment.enrollments_for_student(student_id)]

        # Assessments and grades
        @app.post("/sections/{section_id}/assessments", status_code=status.HTTP_201_CREATED)
        def create_assessment(section_id: str, data: AssessmentCreate, actor: Actor = Depends(current_actor)):
            return self._grading.create_assessment(section_id, data.title, data.weight,
                                                   data.total_points, data.due_date, actor.user_id).to_dict()

        @app.get("/sections/{section_id}/assessments")
        def list_assessments(section_id: str):
            return [a.to_dict() for a in self._grading.assessments_for_section(section_id)]

        @app.put("/assessments/{assessment_id}")
        def update_assessment(assessment_id: str, data: AssessmentUpdate,
                              actor: Actor = Depends(current_actor)):
            return self._grading.update_assessment(assessment_id, data.title, data.weight,
                                                   data.total_points, data.due_date, actor.user_id).to_dict()

        @app.delete("/assessments/{assessment_id}")
        def delete_assessment(assessment_id: str, actor: Actor = Depends(current_actor)):
            return {"deleted": self._grading.delete_assessment(assessment_id, actor.user_id)}

        @app.put("/grades")
        def record_grade(data: GradeRecord, actor: Actor = Depends(current_actor)):
            return self._grading.record_grade(data.enrollment_id, data.assessment_id, data.score,
                                              actor.user_id).to_dict()

        @app.put("/grades/bulk")
        def bulk_update_grades(data: BulkGradeRequest, actor: Actor = Depends(current_actor)):
            updates = [g.model_dump() for g in data.grades]
            return [g.to_dict() for g in self._grading.bulk_update_grades(updates, actor.user_id)]

        @app.get("/enrollments/{enrollment_id}/final-grade")
        def final_grade(enrollment_id: str):
            return self._grading.compute_final_grade(enrollment_id).to_dict()

        @app.post("/sections/{section_id}/final-grades")
        def post_final_grades(section_id: str, actor: Actor = Depends(current_actor)):
            results = self._grading.post_final_grades(section_id, actor.user_id)
            return {"section_id": section_id, "results": [r.to_dict() for r in results]}

        @app.post("/sections/{section_id}/lock")
        def set_section_lock(section_id: str, data: SectionLockRequest, actor: Actor = Depends(current_actor)):
            section = self._grading.set_section_lock(section_id, data.locked, data.reason,
                                                     actor.user_id, actor.roles)
            return _section_payload(section)

        @app.post("/sections/{section_id}/reopen-grades")
        def reopen_grades(section_id: str, data: Optional[ReopenRequest] = None,
                          actor: Actor = Depends(current_actor)):
            section = self._grading.reopen_grades(section_id, data.reason if data else None,
                                                  actor.user_id, actor.roles)
            return _section_payload(section)

        # Transcripts, terms and graduation
        @app.get("/students/{student_id}/transcript")
        def transcript(student_id: str):
            return self._transcripts.get_transcript(student_id).to_dict()

        @app.post("/terms/{term_id}/end")
        def process_term_end(term_id: str, actor: Actor = Depends(current_actor)):
            return self._transcripts.process_term_end(term_id, actor.user_id, actor.roles).to_dict()

        @app.get("/students/{student_id}/degree-audit")
        def degree_audit(student_id: str):
            return self._graduation.run_degree_audit(student_id).to_dict()

        @app.post("/students/{student_id}/graduation", status_code=status.HTTP_201_CREATED)
        def process_graduation(student_id: str, actor: Actor = Depends(current_actor)):
            return self._graduation.process_graduation(student_id, actor.user_id, actor.roles).to_dict()
