from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict


class LessonType(str, Enum):
    INCLUDED = "included"
    EXTRA = "extra"

    @classmethod
    def _missing_(cls, value):
        # Values written by the earlier Turkish-language front end
        legacy = {"pakete-dahil": cls.INCLUDED, "ekstra": cls.EXTRA}
        if isinstance(value, str):
            return legacy.get(value.strip().lower())
        return None


class CreditEffect(str, Enum):
    ATTENDED = "attended"
    NO_SHOW = "no_show"
    EXTRA = "extra"
    NONE = "none"


class PackageStatus(str, Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    EXHAUSTED = "exhausted"


class LedgerEventType(str, Enum):
    PURCHASE = "purchase"
    CONSUME = "consume"
    REFUND = "refund"
    TRANSITION = "transition"
    ACTIVATE = "activate"
    PACKAGE_DELETE = "package_delete"
    BACKFILL = "backfill"
    DUPLICATE_REMOVED = "duplicate_removed"


class PackageDefinition(BaseModel):
    name: str
    lesson_count: int = Field(..., ge=0)
    price: Decimal = Decimal("0")

    model_config = ConfigDict(from_attributes=True)


class Member(BaseModel):
    id: int
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    phone_number: str = ""
    membership_type: str = ""
    total_lessons: int = 0
    attended_count: int = 0
    extra_count: int = 0
    remaining_lessons: int = 0
    is_active: bool = True
    version: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    def is_exhausted(self) -> bool:
        return is_exhausted(self.model_dump())


class MemberPackage(BaseModel):
    id: int
    member_id: int
    package_name: str
    lesson_count: int
    price: Decimal = Decimal("0")
    remaining_lessons: int
    purchased_at: datetime
    is_active: bool = True
    version: int = 0

    model_config = ConfigDict(from_attributes=True)

    @property
    def status(self) -> PackageStatus:
        if not self.is_active:
            return PackageStatus.WAITING
        if self.remaining_lessons > 0:
            return PackageStatus.ACTIVE
        return PackageStatus.EXHAUSTED


class LessonAttendance(BaseModel):
    id: int
    member_id: int
    lesson_id: int
    lesson_date: str
    attended: bool = False
    type: LessonType = LessonType.INCLUDED
    effect: CreditEffect = CreditEffect.NONE
    package_id: Optional[int] = None
    package_name: str = ""
    notes: str = ""
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class Attendance(BaseModel):
    id: int
    member_id: int
    check_in_time: datetime
    check_out_time: Optional[datetime] = None
    notes: str = ""
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class Lesson(BaseModel):
    id: int
    name: str
    instructor: str = ""
    day_of_week: str = ""
    start_time: str = ""
    end_time: str = ""
    max_capacity: int = 0
    location: str = ""
    is_active: bool = True

    model_config = ConfigDict(from_attributes=True)


class MemberLesson(BaseModel):
    id: int
    member_id: int
    lesson_id: int
    days_of_week: list[str] = Field(default_factory=list)
    start_date: str
    end_date: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class LedgerEntry(BaseModel):
    id: int
    member_id: int
    event_type: LedgerEventType
    package_id: Optional[int] = None
    attendance_id: Optional[int] = None
    total_delta: int = 0
    attended_delta: int = 0
    extra_delta: int = 0
    remaining_delta: int = 0
    package_delta: int = 0
    remaining_after: int = 0
    description: str = ""
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# Requests

class CreateMemberRequest(BaseModel):
    first_name: str
    last_name: str = ""
    email: str = ""
    phone_number: str = ""
    membership_type: str = ""


class PurchasePackageRequest(BaseModel):
    member_id: Optional[int] = None
    package_name: Optional[str] = None

    model_config = ConfigDict(json_schema_extra={
        "example": {"member_id": 1, "package_name": "Grup8"}
    })


class RecordAttendanceRequest(BaseModel):
    member_id: Optional[int] = None
    lesson_id: Optional[int] = None
    lesson_date: Optional[str] = None
    attended: bool = False
    type: LessonType = LessonType.INCLUDED
    notes: str = ""

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "member_id": 1,
            "lesson_id": 3,
            "lesson_date": "2024-05-06",
            "attended": True,
            "type": "included",
        }
    })


class UpdateAttendanceRequest(BaseModel):
    attended: Optional[bool] = None
    type: Optional[LessonType] = None
    notes: Optional[str] = None


class CreateLessonRequest(BaseModel):
    name: str
    instructor: str = ""
    day_of_week: str = ""
    start_time: str = ""
    end_time: str = ""
    max_capacity: int = 0
    location: str = ""


class AssignLessonRequest(BaseModel):
    member_id: Optional[int] = None
    lesson_id: Optional[int] = None
    days_of_week: list[str] = Field(default_factory=list)
    start_date: Optional[str] = None
    end_date: Optional[str] = None


# Responses

class ActivationResult(BaseModel):
    member_id: int
    activated: bool
    package: Optional[MemberPackage] = None
    message: str


class CleanupResult(BaseModel):
    cleaned: int
    message: str


class BackfillResult(BaseModel):
    created: int
    reason: Optional[str] = None
    package: Optional[MemberPackage] = None


class LedgerHistoryResponse(BaseModel):
    member_id: int
    entries: list[LedgerEntry]
    total_count: int
    remaining_lessons: int


class CounterSnapshot(BaseModel):
    total_lessons: int = 0
    attended_count: int = 0
    extra_count: int = 0
    remaining_lessons: int = 0


class ReconciliationReport(BaseModel):
    member_id: int
    stored: CounterSnapshot
    derived: CounterSnapshot
    entries: int
    in_sync: bool


def is_exhausted(member: dict) -> bool:
    """A member is exhausted when they hold lessons and have no credit left
    to draw, either because every lesson was attended or because no-show
    charges drained the balance."""
    total = member.get("total_lessons") or 0
    if total <= 0:
        return False
    attended = member.get("attended_count") or 0
    remaining = member.get("remaining_lessons") or 0
    return attended == total or remaining == 0
