"""
Lesson catalogue and member-lesson assignments.

Assigning a member to a lesson is refused once the member has used up
every credit and no waiting package can take over.
"""

import logging
from typing import Optional

from .activation import PackageActivator
from .exceptions import (
    ConflictError,
    InvariantViolation,
    LedgerValidationError,
    LessonNotFoundError,
    NotFoundError,
)
from .models import AssignLessonRequest, CreateLessonRequest, Lesson, MemberLesson

logger = logging.getLogger(__name__)


class LessonScheduler:
    def __init__(self, activator: PackageActivator):
        self.activator = activator
        self.ledger = activator.ledger
        self.storage = activator.storage

    def create_lesson(self, request: CreateLessonRequest) -> Lesson:
        doc = self.storage.lessons.insert({**request.model_dump(), "is_active": True})
        return Lesson(**doc)

    def get_lesson(self, lesson_id: int) -> Lesson:
        doc = self.storage.lessons.find_by_id(lesson_id)
        if not doc:
            raise LessonNotFoundError(f"Lesson {lesson_id} not found")
        return Lesson(**doc)

    def list_lessons(self) -> list[Lesson]:
        return [Lesson(**doc) for doc in self.storage.lessons.find_many()]

    def assign_lesson(self, request: AssignLessonRequest) -> MemberLesson:
        if not request.member_id or not request.lesson_id or not request.start_date:
            raise LedgerValidationError("member_id, lesson_id, start_date required")

        self.get_lesson(request.lesson_id)
        member_id = request.member_id
        with self.storage.locks.hold(member_id):
            member = self.ledger.get_member(member_id)
            if self.ledger.is_out_of_credit(member_id, member):
                if self.activator.promote_next(member_id) is None:
                    raise InvariantViolation("Member has no remaining lesson credits and no waiting packages")

            existing = self.storage.member_lessons.find_one({"member_id": member_id, "lesson_id": request.lesson_id})
            if existing:
                raise ConflictError("Member is already assigned to this lesson")

            doc = self.storage.member_lessons.insert({
                "member_id": member_id,
                "lesson_id": request.lesson_id,
                "days_of_week": list(request.days_of_week),
                "start_date": request.start_date,
                "end_date": request.end_date,
            })

        logger.info("Assigned member %s to lesson %s", member_id, request.lesson_id)
        return MemberLesson(**doc)

    def list_assignments(self, member_id: Optional[int] = None, lesson_id: Optional[int] = None) -> list[MemberLesson]:
        where = {}
        if member_id is not None:
            where["member_id"] = member_id
        if lesson_id is not None:
            where["lesson_id"] = lesson_id
        return [MemberLesson(**doc) for doc in self.storage.member_lessons.find_many(where)]

    def unassign(self, assignment_id: int) -> None:
        if not self.storage.member_lessons.delete(assignment_id):
            raise NotFoundError(f"MemberLesson {assignment_id} not found")
