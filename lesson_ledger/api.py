from fastapi import FastAPI, HTTPException, Response, status
from fastapi.middleware.cors import CORSMiddleware

from .config import get_settings
from .exceptions import (
    ConcurrentUpdateError,
    ConflictError,
    InvariantViolation,
    LedgerServiceError,
    LedgerValidationError,
    NotFoundError,
)
from .logging_config import setup_logging
from .models import (
    ActivationResult,
    AssignLessonRequest,
    Attendance,
    BackfillResult,
    CleanupResult,
    CreateLessonRequest,
    CreateMemberRequest,
    LedgerHistoryResponse,
    Lesson,
    LessonAttendance,
    Member,
    MemberLesson,
    MemberPackage,
    PackageDefinition,
    PurchasePackageRequest,
    RecordAttendanceRequest,
    ReconciliationReport,
    UpdateAttendanceRequest,
)
from .service import LessonLedgerService

settings = get_settings()
setup_logging(settings)

app = FastAPI(
    title=settings.APP_NAME,
    description="Lesson credit ledger for studio memberships: packages, attendance and credit balances",
    version=settings.API_VERSION,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

ledger_service = LessonLedgerService(settings=settings)

_STATUS_BY_ERROR = [
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (ConcurrentUpdateError, status.HTTP_409_CONFLICT),
    (LedgerValidationError, status.HTTP_400_BAD_REQUEST),
    (InvariantViolation, 422),
]


def http_error(exc: LedgerServiceError) -> HTTPException:
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=code, detail=str(exc))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


@app.get("/health", tags=["System"])
def health_check():
    return {"status": "healthy", "service": "lesson-ledger"}


# Packages

@app.get("/packages", response_model=list[PackageDefinition], tags=["Packages"])
def list_packages() -> list[PackageDefinition]:
    return ledger_service.list_package_definitions()


# Members

@app.post("/members", response_model=Member, status_code=status.HTTP_201_CREATED, tags=["Members"])
def create_member(request: CreateMemberRequest) -> Member:
    return ledger_service.create_member(request)


@app.get("/members", response_model=list[Member], tags=["Members"])
def list_members() -> list[Member]:
    return ledger_service.list_members()


@app.get("/members/{member_id}", response_model=Member, tags=["Members"])
def get_member(member_id: int) -> Member:
    try:
        return ledger_service.get_member(member_id)
    except LedgerServiceError as e:
        raise http_error(e)


@app.get("/members/{member_id}/ledger", response_model=LedgerHistoryResponse, tags=["Members"])
def get_member_ledger(member_id: int, limit: int = 50, offset: int = 0) -> LedgerHistoryResponse:
    try:
        return ledger_service.ledger.history(member_id, limit, offset)
    except LedgerServiceError as e:
        raise http_error(e)


@app.get("/members/{member_id}/reconcile", response_model=ReconciliationReport, tags=["Members"])
def reconcile_member(member_id: int) -> ReconciliationReport:
    try:
        return ledger_service.jobs.reconcile_member(member_id)
    except LedgerServiceError as e:
        raise http_error(e)


# Member packages

@app.post(
    "/member-packages/purchase",
    response_model=MemberPackage,
    status_code=status.HTTP_201_CREATED,
    tags=["Member packages"],
)
def purchase_package(request: PurchasePackageRequest) -> MemberPackage:
    try:
        return ledger_service.purchase(request.member_id, request.package_name)
    except LedgerServiceError as e:
        raise http_error(e)


@app.get("/member-packages/member/{member_id}", response_model=list[MemberPackage], tags=["Member packages"])
def list_member_packages(member_id: int) -> list[MemberPackage]:
    return ledger_service.ledger.list_packages(member_id)


@app.delete(
    "/member-packages/{package_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["Member packages"],
)
def delete_member_package(package_id: int) -> Response:
    try:
        ledger_service.delete_package(package_id)
    except LedgerServiceError as e:
        raise http_error(e)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.post(
    "/member-packages/activate-waiting/{member_id}",
    response_model=ActivationResult,
    tags=["Member packages"],
)
def activate_waiting(member_id: int) -> ActivationResult:
    try:
        return ledger_service.activate_waiting(member_id)
    except LedgerServiceError as e:
        raise http_error(e)


@app.post("/member-packages/cleanup-duplicates", response_model=CleanupResult, tags=["Member packages"])
def cleanup_duplicates() -> CleanupResult:
    return ledger_service.cleanup_duplicate_packages()


@app.post("/member-packages/backfill", response_model=BackfillResult, tags=["Member packages"])
def backfill_all() -> BackfillResult:
    return ledger_service.jobs.backfill_all()


@app.post("/member-packages/backfill/{member_id}", response_model=BackfillResult, tags=["Member packages"])
def backfill_member(member_id: int) -> BackfillResult:
    try:
        return ledger_service.backfill_package(member_id)
    except LedgerServiceError as e:
        raise http_error(e)


# Lesson attendance

@app.post(
    "/lesson-attendances",
    response_model=LessonAttendance,
    status_code=status.HTTP_201_CREATED,
    tags=["Lesson attendance"],
)
def record_attendance(request: RecordAttendanceRequest) -> LessonAttendance:
    try:
        return ledger_service.record_attendance(request)
    except LedgerServiceError as e:
        raise http_error(e)


@app.get("/lesson-attendances", response_model=list[LessonAttendance], tags=["Lesson attendance"])
def list_attendances() -> list[LessonAttendance]:
    return ledger_service.attendance.list_attendances()


@app.get("/lesson-attendances/member/{member_id}", response_model=list[LessonAttendance], tags=["Lesson attendance"])
def list_member_attendances(member_id: int) -> list[LessonAttendance]:
    return ledger_service.attendance.list_attendances(member_id=member_id)


@app.get("/lesson-attendances/lesson/{lesson_id}", response_model=list[LessonAttendance], tags=["Lesson attendance"])
def list_lesson_attendances(lesson_id: int) -> list[LessonAttendance]:
    return ledger_service.attendance.list_attendances(lesson_id=lesson_id)


@app.get(
    "/lesson-attendances/lesson/{lesson_id}/date/{lesson_date}",
    response_model=list[LessonAttendance],
    tags=["Lesson attendance"],
)
def list_lesson_attendances_on(lesson_id: int, lesson_date: str) -> list[LessonAttendance]:
    return ledger_service.attendance.list_attendances(lesson_id=lesson_id, lesson_date=lesson_date)


@app.get("/lesson-attendances/date/{lesson_date}", response_model=list[LessonAttendance], tags=["Lesson attendance"])
def list_attendances_on(lesson_date: str) -> list[LessonAttendance]:
    return ledger_service.attendance.list_attendances(lesson_date=lesson_date)


@app.get("/lesson-attendances/{attendance_id}", response_model=LessonAttendance, tags=["Lesson attendance"])
def get_attendance(attendance_id: int) -> LessonAttendance:
    try:
        return ledger_service.attendance.get_attendance(attendance_id)
    except LedgerServiceError as e:
        raise http_error(e)


@app.put(
    "/lesson-attendances/{attendance_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["Lesson attendance"],
)
def update_attendance(attendance_id: int, request: UpdateAttendanceRequest) -> Response:
    try:
        ledger_service.update_attendance(attendance_id, request)
    except LedgerServiceError as e:
        raise http_error(e)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.delete(
    "/lesson-attendances/{attendance_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["Lesson attendance"],
)
def delete_attendance(attendance_id: int) -> Response:
    try:
        ledger_service.delete_attendance(attendance_id)
    except LedgerServiceError as e:
        raise http_error(e)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Check-in log

@app.get("/attendance/member/{member_id}", response_model=list[Attendance], tags=["Check-ins"])
def list_check_ins(member_id: int) -> list[Attendance]:
    return ledger_service.attendance.list_check_ins(member_id)


@app.put("/attendance/{attendance_id}/checkout", status_code=status.HTTP_204_NO_CONTENT, tags=["Check-ins"])
def check_out(attendance_id: int) -> Response:
    try:
        ledger_service.attendance.check_out(attendance_id)
    except LedgerServiceError as e:
        raise http_error(e)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Lessons and assignments

@app.post("/lessons", response_model=Lesson, status_code=status.HTTP_201_CREATED, tags=["Lessons"])
def create_lesson(request: CreateLessonRequest) -> Lesson:
    return ledger_service.scheduler.create_lesson(request)


@app.get("/lessons", response_model=list[Lesson], tags=["Lessons"])
def list_lessons() -> list[Lesson]:
    return ledger_service.scheduler.list_lessons()


@app.post(
    "/member-lessons/assign",
    response_model=MemberLesson,
    status_code=status.HTTP_201_CREATED,
    tags=["Lessons"],
)
def assign_lesson(request: AssignLessonRequest) -> MemberLesson:
    try:
        return ledger_service.scheduler.assign_lesson(request)
    except LedgerServiceError as e:
        raise http_error(e)


@app.get("/member-lessons/member/{member_id}", response_model=list[MemberLesson], tags=["Lessons"])
def list_member_lessons(member_id: int) -> list[MemberLesson]:
    return ledger_service.scheduler.list_assignments(member_id=member_id)


@app.delete("/member-lessons/{assignment_id}", status_code=status.HTTP_204_NO_CONTENT, tags=["Lessons"])
def unassign_lesson(assignment_id: int) -> Response:
    try:
        ledger_service.scheduler.unassign(assignment_id)
    except LedgerServiceError as e:
        raise http_error(e)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
