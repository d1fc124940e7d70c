"""
Tests for waiting-package activation.

Tests cover:
1. Scenario A: eight lessons drain Grup8 and promote the waiting Grup12
2. FIFO order across several waiting packages
3. activate_waiting idempotence
4. Promotion after mixed no-show and attended history
"""

import pytest

from lesson_ledger.exceptions import MemberNotFoundError
from lesson_ledger.models import CreateLessonRequest, CreateMemberRequest, RecordAttendanceRequest
from lesson_ledger.service import LessonLedgerService


def new_member(service: LessonLedgerService) -> int:
    return service.create_member(CreateMemberRequest(first_name="Mert", last_name="Kaya")).id


def add_waiting_package(service, member_id, name, lesson_count, package_id=None) -> int:
    doc = {
        "member_id": member_id,
        "package_name": name,
        "lesson_count": lesson_count,
        "price": 0,
        "remaining_lessons": lesson_count,
        "purchased_at": "2024-01-01T00:00:00+00:00",
        "is_active": False,
    }
    if package_id is not None:
        doc["id"] = package_id
    return service.storage.member_packages.insert(doc)["id"]


def attend_lessons(service, member_id, count, start=0):
    for i in range(start, start + count):
        lesson = service.scheduler.create_lesson(CreateLessonRequest(name=f"Lesson {i}"))
        service.record_attendance(RecordAttendanceRequest(
            member_id=member_id, lesson_id=lesson.id, lesson_date="2024-05-06", attended=True,
        ))


def active_balance(service, member_id) -> int:
    return sum(p.remaining_lessons for p in service.ledger.list_packages(member_id) if p.is_active)


class TestScenarioA:

    def test_eight_lessons_drain_package(self):
        """Test Grup8 drains to zero after eight attended lessons."""
        service = LessonLedgerService()
        member_id = new_member(service)
        package = service.purchase(member_id, "Grup8")

        attend_lessons(service, member_id, 8)

        member = service.get_member(member_id)
        assert member.attended_count == 8
        assert member.remaining_lessons == 0
        assert service.ledger.get_package(package.id)["remaining_lessons"] == 0
        assert member.is_exhausted()

    def test_eighth_lesson_promotes_waiting_package(self):
        """Test the waiting Grup12 takes over on the eighth lesson."""
        service = LessonLedgerService()
        member_id = new_member(service)
        service.purchase(member_id, "Grup8")
        waiting_id = add_waiting_package(service, member_id, "Grup12", 12)

        attend_lessons(service, member_id, 7)
        assert service.ledger.get_package(waiting_id)["is_active"] is False

        attend_lessons(service, member_id, 1, start=7)

        member = service.get_member(member_id)
        assert member.total_lessons == 20
        assert member.remaining_lessons == 12
        assert member.attended_count == 8
        assert member.membership_type == "Grup12"
        waiting = service.ledger.get_package(waiting_id)
        assert waiting["is_active"] is True
        assert waiting["remaining_lessons"] == 12

    def test_lessons_after_promotion_draw_new_package(self):
        """Test the ninth lesson is charged to the promoted package."""
        service = LessonLedgerService()
        member_id = new_member(service)
        service.purchase(member_id, "Grup8")
        waiting_id = add_waiting_package(service, member_id, "Grup12", 12)

        attend_lessons(service, member_id, 9)

        member = service.get_member(member_id)
        assert member.remaining_lessons == 11
        assert member.remaining_lessons == max(member.total_lessons - member.attended_count, 0)
        assert service.ledger.get_package(waiting_id)["remaining_lessons"] == 11


class TestFifoActivation:

    def test_lowest_id_waiting_package_first(self):
        """Test P1(id=5) activates before P2(id=9)."""
        service = LessonLedgerService()
        member_id = new_member(service)
        service.purchase(member_id, "Grup8")
        p2 = add_waiting_package(service, member_id, "Bireysel8", 8, package_id=9)
        p1 = add_waiting_package(service, member_id, "Grup12", 12, package_id=5)

        attend_lessons(service, member_id, 8)

        assert service.ledger.get_package(p1)["is_active"] is True
        assert service.ledger.get_package(p2)["is_active"] is False
        assert service.get_member(member_id).membership_type == "Grup12"

        attend_lessons(service, member_id, 12, start=8)

        assert service.ledger.get_package(p2)["is_active"] is True
        member = service.get_member(member_id)
        assert member.membership_type == "Bireysel8"
        assert member.total_lessons == 28
        assert member.remaining_lessons == 8


class TestActivateWaiting:

    def test_noop_when_member_not_exhausted(self):
        """Test activate_waiting changes nothing while credits remain."""
        service = LessonLedgerService()
        member_id = new_member(service)
        service.purchase(member_id, "Grup8")
        waiting_id = add_waiting_package(service, member_id, "Grup12", 12)
        before = service.get_member(member_id)

        result = service.activate_waiting(member_id)

        assert result.activated is False
        assert service.get_member(member_id) == before
        assert service.ledger.get_package(waiting_id)["is_active"] is False

    def test_noop_when_nothing_waiting(self):
        """Test an exhausted member without waiting packages stays exhausted."""
        service = LessonLedgerService()
        member_id = new_member(service)
        service.purchase(member_id, "Grup8")
        attend_lessons(service, member_id, 8)
        before = service.get_member(member_id)

        result = service.activate_waiting(member_id)

        assert result.activated is False
        assert result.message == "No waiting package found"
        assert service.get_member(member_id) == before

    def test_activates_for_exhausted_member(self):
        """Test a waiting package added after exhaustion is picked up on demand."""
        service = LessonLedgerService()
        member_id = new_member(service)
        service.purchase(member_id, "Grup8")
        attend_lessons(service, member_id, 8)
        waiting_id = add_waiting_package(service, member_id, "Grup12", 12)

        result = service.activate_waiting(member_id)
        again = service.activate_waiting(member_id)

        assert result.activated is True
        assert result.package.id == waiting_id
        assert again.activated is False
        member = service.get_member(member_id)
        assert member.total_lessons == 20
        assert member.remaining_lessons == 12

    def test_unknown_member(self):
        service = LessonLedgerService()
        with pytest.raises(MemberNotFoundError):
            service.activate_waiting(404)


class TestMixedHistoryActivation:
    """No-show and attended charges interleaved before the package runs out."""

    def test_no_show_then_attended_promotes_waiting_package(self):
        """Test one no-show plus seven lessons drains Grup8 and promotes Grup12."""
        service = LessonLedgerService()
        member_id = new_member(service)
        service.purchase(member_id, "Grup8")
        waiting_id = add_waiting_package(service, member_id, "Grup12", 12)
        no_show_lesson = service.scheduler.create_lesson(CreateLessonRequest(name="Early class"))
        service.record_attendance(RecordAttendanceRequest(
            member_id=member_id, lesson_id=no_show_lesson.id, lesson_date="2024-05-01", attended=False,
        ))

        attend_lessons(service, member_id, 7)

        member = service.get_member(member_id)
        assert service.ledger.get_package(waiting_id)["is_active"] is True
        assert member.membership_type == "Grup12"
        assert member.total_lessons == 20
        assert member.attended_count == 7
        assert member.remaining_lessons == 12
        assert member.remaining_lessons == active_balance(service, member_id)

        # The next lesson is funded by the promoted package
        attend_lessons(service, member_id, 1, start=7)

        assert service.ledger.get_package(waiting_id)["remaining_lessons"] == 11
        assert service.get_member(member_id).remaining_lessons == 11

    def test_activate_waiting_when_active_packages_are_empty(self):
        """Test activation follows the package balances even when counters still show credit."""
        service = LessonLedgerService()
        member_id = new_member(service)
        package = service.purchase(member_id, "Grup8")
        waiting_id = add_waiting_package(service, member_id, "Grup12", 12)

        drained = service.storage.member_packages.find_by_id(package.id)
        drained["remaining_lessons"] = 0
        service.storage.member_packages.save(drained)
        assert service.get_member(member_id).remaining_lessons == 8

        result = service.activate_waiting(member_id)

        assert result.activated is True
        assert result.package.id == waiting_id

    def test_record_promotes_waiting_package_before_charging(self):
        """Test a charge with only empty active packages draws from the next waiting one."""
        service = LessonLedgerService()
        member_id = new_member(service)
        package = service.purchase(member_id, "Grup8")
        waiting_id = add_waiting_package(service, member_id, "Grup12", 12)

        drained = service.storage.member_packages.find_by_id(package.id)
        drained["remaining_lessons"] = 0
        service.storage.member_packages.save(drained)

        lesson = service.scheduler.create_lesson(CreateLessonRequest(name="Reformer"))
        row = service.record_attendance(RecordAttendanceRequest(
            member_id=member_id, lesson_id=lesson.id, lesson_date="2024-05-06", attended=True,
        ))

        assert row.package_id == waiting_id
        assert service.ledger.get_package(waiting_id)["remaining_lessons"] == 11
