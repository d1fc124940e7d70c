import logging
from typing import Optional

from .config import Settings
from .effects import charges_package, effect_for_edit, effect_for_record
from .exceptions import (
    AttendanceNotFoundError,
    ConflictError,
    InvariantViolation,
    LedgerValidationError,
    LessonNotFoundError,
    NotFoundError,
)
from .ledger import CreditLedger, utcnow
from .models import (
    Attendance,
    CreditEffect,
    LedgerEventType,
    LessonAttendance,
    LessonType,
    RecordAttendanceRequest,
    UpdateAttendanceRequest,
)

logger = logging.getLogger(__name__)


class AttendanceRecorder:
    """Records lesson attendance and keeps the member's credits in step.

    Each row remembers the credit effect it applied, so an edit reverts
    exactly that effect before applying the new one.
    """

    def __init__(self, ledger: CreditLedger, settings: Optional[Settings] = None):
        self.ledger = ledger
        self.storage = ledger.storage
        self.settings = settings or ledger.settings

    def get_attendance(self, attendance_id: int) -> LessonAttendance:
        return LessonAttendance(**self._load(attendance_id))

    def list_attendances(
        self,
        member_id: Optional[int] = None,
        lesson_id: Optional[int] = None,
        lesson_date: Optional[str] = None,
    ) -> list[LessonAttendance]:
        where = {}
        if member_id is not None:
            where["member_id"] = member_id
        if lesson_id is not None:
            where["lesson_id"] = lesson_id
        if lesson_date is not None:
            where["lesson_date"] = lesson_date
        return [LessonAttendance(**row) for row in self.storage.lesson_attendances.find_many(where)]

    def record_attendance(self, request: RecordAttendanceRequest) -> LessonAttendance:
        missing = [
            name for name in ("member_id", "lesson_id", "lesson_date")
            if getattr(request, name) in (None, "")
        ]
        if missing:
            raise LedgerValidationError(f"Missing required fields: {', '.join(missing)}")

        member_id = request.member_id
        with self.storage.locks.hold(member_id):
            self.ledger.get_member(member_id)
            if not self.storage.lessons.find_by_id(request.lesson_id):
                raise LessonNotFoundError(f"Lesson {request.lesson_id} not found")

            existing = self.storage.lesson_attendances.find_one({
                "member_id": member_id,
                "lesson_id": request.lesson_id,
                "lesson_date": request.lesson_date,
            })
            if existing:
                raise ConflictError(
                    f"Attendance already exists for this member, lesson and date (id={existing['id']})"
                )

            effect = effect_for_record(request.type, request.attended)
            if charges_package(effect):
                funding = self.ledger.ensure_funding_package(member_id)
                if funding is None:
                    raise InvariantViolation(f"Member {member_id} has no remaining lesson credits")
            else:
                funding = self.ledger.peek_funding_package(member_id)

            now = utcnow()
            row = self.storage.lesson_attendances.insert({
                "member_id": member_id,
                "lesson_id": request.lesson_id,
                "lesson_date": request.lesson_date,
                "attended": request.attended,
                "type": LessonType(request.type),
                "effect": effect,
                "package_id": funding["id"] if funding else None,
                "package_name": funding["package_name"] if funding else "",
                "notes": request.notes or "",
                "created_at": now,
                "updated_at": None,
            })

            check_in = None
            try:
                if request.attended:
                    check_in = self._append_check_in(member_id, request.lesson_id, request.lesson_date)
                self.ledger.consume(member_id, request.type, request.attended, attendance_id=row["id"])
            except Exception:
                if check_in is not None:
                    self.storage.attendances.delete(check_in.id)
                self.storage.lesson_attendances.delete(row["id"])
                raise

        return LessonAttendance(**row)

    def update_attendance(self, attendance_id: int, request: UpdateAttendanceRequest) -> LessonAttendance:
        member_id = self._load(attendance_id)["member_id"]

        with self.storage.locks.hold(member_id):
            prev = self._load(attendance_id)
            row = dict(prev)
            if request.notes is not None:
                row["notes"] = request.notes

            old_type = LessonType(prev["type"])
            new_attended = prev["attended"] if request.attended is None else request.attended
            new_type = old_type if request.type is None else LessonType(request.type)

            if new_attended != prev["attended"] or new_type != old_type:
                old_effect = CreditEffect(prev.get("effect") or effect_for_record(old_type, prev["attended"]))
                new_effect = effect_for_edit(new_type, new_attended)
                funding = self.ledger.apply_transition(
                    member_id, old_effect, new_effect,
                    package_id=prev.get("package_id"),
                    attendance_id=attendance_id,
                )
                if not charges_package(new_effect):
                    peeked = self.ledger.peek_funding_package(member_id)
                    funding_id = peeked["id"] if peeked else None
                    funding_name = peeked["package_name"] if peeked else ""
                else:
                    funding_id = funding.id if funding else None
                    funding_name = funding.package_name if funding else ""

                row.update({
                    "attended": new_attended,
                    "type": new_type,
                    "effect": new_effect,
                    "package_id": funding_id,
                    "package_name": funding_name,
                })
                if new_attended and not prev["attended"]:
                    self._append_check_in(member_id, prev["lesson_id"], prev["lesson_date"])

            row["updated_at"] = utcnow()
            row = self.storage.lesson_attendances.save(row)

        return LessonAttendance(**row)

    def delete_attendance(self, attendance_id: int) -> None:
        member_id = self._load(attendance_id)["member_id"]

        with self.storage.locks.hold(member_id):
            row = self._load(attendance_id)
            effect = CreditEffect(row.get("effect") or CreditEffect.NONE)
            if effect != CreditEffect.NONE:
                if self.settings.REFUND_ON_ATTENDANCE_DELETE:
                    self.ledger.apply_transition(
                        member_id, effect, CreditEffect.NONE,
                        package_id=row.get("package_id"),
                        attendance_id=attendance_id,
                        event_type=LedgerEventType.REFUND,
                    )
                else:
                    logger.warning(
                        "Deleted attendance %s of member %s keeps its %s credit effect",
                        attendance_id, member_id, effect.value,
                    )
            self.storage.lesson_attendances.delete(attendance_id)

    def _load(self, attendance_id: int) -> dict:
        row = self.storage.lesson_attendances.find_by_id(attendance_id)
        if not row:
            raise AttendanceNotFoundError(f"LessonAttendance {attendance_id} not found")
        return row

    # Check-in log

    def _append_check_in(self, member_id: int, lesson_id: int, lesson_date: str) -> Attendance:
        return self.check_in(member_id, notes=f"lesson:{lesson_id} date:{lesson_date}")

    def check_in(self, member_id: int, notes: str = "") -> Attendance:
        now = utcnow()
        record = self.storage.attendances.insert({
            "member_id": member_id,
            "check_in_time": now,
            "check_out_time": None,
            "notes": notes,
            "created_at": now,
        })
        return Attendance(**record)

    def check_out(self, attendance_id: int) -> Attendance:
        record = self.storage.attendances.find_by_id(attendance_id)
        if not record:
            raise NotFoundError(f"Attendance {attendance_id} not found")
        record["check_out_time"] = utcnow()
        return Attendance(**self.storage.attendances.save(record))

    def list_check_ins(self, member_id: int) -> list[Attendance]:
        return [Attendance(**r) for r in self.storage.attendances.find_many({"member_id": member_id})]
