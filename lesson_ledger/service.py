from typing import Optional

from .activation import PackageActivator
from .attendance import AttendanceRecorder
from .config import Settings, get_settings
from .ledger import CreditLedger, utcnow
from .models import (
    ActivationResult,
    BackfillResult,
    CleanupResult,
    CreateMemberRequest,
    LessonAttendance,
    Member,
    MemberPackage,
    PackageDefinition,
    RecordAttendanceRequest,
    UpdateAttendanceRequest,
)
from .reconciliation import ReconciliationJobs
from .scheduling import LessonScheduler
from .storage import InMemoryStorage


class LessonLedgerService:
    """Wires the ledger components over one storage instance."""

    def __init__(self, storage: Optional[InMemoryStorage] = None, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.storage = storage or InMemoryStorage(self.settings)
        self.ledger = CreditLedger(self.storage, self.settings)
        self.activator = PackageActivator(self.ledger)
        self.attendance = AttendanceRecorder(self.ledger, self.settings)
        self.jobs = ReconciliationJobs(self.ledger)
        self.scheduler = LessonScheduler(self.activator)

    # Members

    def create_member(self, request: CreateMemberRequest) -> Member:
        now = utcnow()
        doc = self.storage.members.insert({
            **request.model_dump(),
            "total_lessons": 0,
            "attended_count": 0,
            "extra_count": 0,
            "remaining_lessons": 0,
            "is_active": True,
            "created_at": now,
            "updated_at": now,
        })
        return Member(**doc)

    def get_member(self, member_id: int) -> Member:
        return Member(**self.ledger.get_member(member_id))

    def list_members(self) -> list[Member]:
        return [Member(**doc) for doc in self.storage.members.find_many()]

    def list_package_definitions(self) -> list[PackageDefinition]:
        return [PackageDefinition(**p) for p in self.storage.packages.values()]

    # Ledger operations

    def purchase(self, member_id: Optional[int], package_name: Optional[str]) -> MemberPackage:
        return self.ledger.purchase(member_id, package_name)

    def delete_package(self, package_id: int) -> None:
        self.ledger.delete_package(package_id)

    def activate_waiting(self, member_id: int) -> ActivationResult:
        return self.activator.activate_waiting(member_id)

    def record_attendance(self, request: RecordAttendanceRequest) -> LessonAttendance:
        return self.attendance.record_attendance(request)

    def update_attendance(self, attendance_id: int, request: UpdateAttendanceRequest) -> LessonAttendance:
        return self.attendance.update_attendance(attendance_id, request)

    def delete_attendance(self, attendance_id: int) -> None:
        self.attendance.delete_attendance(attendance_id)

    def cleanup_duplicate_packages(self) -> CleanupResult:
        return self.jobs.cleanup_duplicate_packages()

    def backfill_package(self, member_id: int) -> BackfillResult:
        return self.jobs.backfill_package(member_id)
