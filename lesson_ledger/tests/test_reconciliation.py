"""
Tests for the repair jobs: duplicate cleanup, backfill and reconciliation.
"""

import pytest

from lesson_ledger.exceptions import MemberNotFoundError
from lesson_ledger.models import (
    CreateLessonRequest,
    CreateMemberRequest,
    RecordAttendanceRequest,
    UpdateAttendanceRequest,
)
from lesson_ledger.service import LessonLedgerService


def add_package(service, member_id, name, lesson_count=8):
    return service.storage.member_packages.insert({
        "member_id": member_id,
        "package_name": name,
        "lesson_count": lesson_count,
        "price": 0,
        "remaining_lessons": lesson_count,
        "purchased_at": "2024-01-01T00:00:00+00:00",
        "is_active": True,
    })["id"]


def legacy_member(service, **counters) -> int:
    """A member created before packages existed: counters but no package rows."""
    member = service.storage.members.insert({
        "first_name": "Okan",
        "last_name": "Aydin",
        "membership_type": counters.pop("membership_type", ""),
        "total_lessons": 0,
        "attended_count": 0,
        "extra_count": 0,
        "remaining_lessons": 0,
        "is_active": True,
        **counters,
    })
    return member["id"]


class TestCleanupDuplicates:

    def test_keeps_highest_id_per_name(self):
        """Test only the newest package of each name survives."""
        service = LessonLedgerService()
        member_id = service.create_member(CreateMemberRequest(first_name="Zeynep")).id
        old = add_package(service, member_id, "Grup8")
        newest = add_package(service, member_id, "Grup8")
        other = add_package(service, member_id, "Bireysel8")

        result = service.cleanup_duplicate_packages()

        assert result.cleaned == 1
        remaining = {p.id for p in service.ledger.list_packages(member_id)}
        assert remaining == {newest, other}
        assert old not in remaining

    def test_idempotent(self):
        service = LessonLedgerService()
        member_id = service.create_member(CreateMemberRequest(first_name="Zeynep")).id
        for _ in range(3):
            add_package(service, member_id, "Grup12", 12)

        first = service.cleanup_duplicate_packages()
        second = service.cleanup_duplicate_packages()

        assert first.cleaned == 2
        assert second.cleaned == 0
        assert len(service.ledger.list_packages(member_id)) == 1

    def test_members_are_grouped_separately(self):
        """Test same-named packages of different members are not duplicates."""
        service = LessonLedgerService()
        a = service.create_member(CreateMemberRequest(first_name="A")).id
        b = service.create_member(CreateMemberRequest(first_name="B")).id
        service.purchase(a, "Grup8")
        service.purchase(b, "Grup8")

        assert service.cleanup_duplicate_packages().cleaned == 0


class TestBackfill:

    def test_backfill_from_member_counters(self):
        """Test a legacy member gets a package built from their counters."""
        service = LessonLedgerService()
        member_id = legacy_member(
            service, membership_type="Grup12", total_lessons=12, attended_count=4, remaining_lessons=8,
        )

        result = service.backfill_package(member_id)

        assert result.created == 1
        assert result.package.package_name == "Grup12"
        assert result.package.lesson_count == 12
        assert result.package.remaining_lessons == 8
        assert result.package.is_active is True

    def test_backfill_derives_remaining_when_zero(self):
        service = LessonLedgerService()
        member_id = legacy_member(service, total_lessons=8, attended_count=3, remaining_lessons=0)

        result = service.backfill_package(member_id)

        assert result.package.package_name == "Paket"
        assert result.package.remaining_lessons == 5

    def test_backfill_skips_member_with_package(self):
        service = LessonLedgerService()
        member_id = service.create_member(CreateMemberRequest(first_name="Zeynep")).id
        service.purchase(member_id, "Grup8")

        result = service.backfill_package(member_id)

        assert result.created == 0
        assert result.reason == "exists"

    def test_backfill_skips_member_without_lessons(self):
        service = LessonLedgerService()
        member_id = service.create_member(CreateMemberRequest(first_name="Zeynep")).id

        result = service.backfill_package(member_id)

        assert result.created == 0
        assert result.reason == "no-lessons"

    def test_backfill_all(self):
        """Test bulk backfill creates one package per eligible member and is idempotent."""
        service = LessonLedgerService()
        legacy_member(service, total_lessons=8, remaining_lessons=8)
        legacy_member(service, total_lessons=12, remaining_lessons=2, attended_count=10)
        service.create_member(CreateMemberRequest(first_name="New"))

        assert service.jobs.backfill_all().created == 2
        assert service.jobs.backfill_all().created == 0

    def test_backfill_unknown_member(self):
        service = LessonLedgerService()
        with pytest.raises(MemberNotFoundError):
            service.backfill_package(42)


class TestReconcileMember:

    def test_in_sync_after_ledger_operations(self):
        """Test replaying ledger entries reproduces the stored counters."""
        service = LessonLedgerService()
        member_id = service.create_member(CreateMemberRequest(first_name="Deniz")).id
        service.purchase(member_id, "Grup8")
        lesson_id = service.scheduler.create_lesson(CreateLessonRequest(name="Yoga")).id
        rows = [
            service.record_attendance(RecordAttendanceRequest(
                member_id=member_id, lesson_id=lesson_id, lesson_date=f"2024-06-0{day}", attended=True,
            ))
            for day in range(1, 5)
        ]
        service.update_attendance(rows[0].id, UpdateAttendanceRequest(attended=False))
        service.update_attendance(rows[1].id, UpdateAttendanceRequest(type="extra"))

        report = service.jobs.reconcile_member(member_id)

        assert report.in_sync is True
        assert report.stored.attended_count == 2
        assert report.stored.extra_count == 1
        assert report.stored.remaining_lessons == 6
        assert report.entries == 7

    def test_detects_direct_counter_edit(self):
        """Test a counter written outside the ledger shows up as drift."""
        service = LessonLedgerService()
        member_id = service.create_member(CreateMemberRequest(first_name="Deniz")).id
        service.purchase(member_id, "Grup8")

        member = service.storage.members.find_by_id(member_id)
        member["remaining_lessons"] = 3
        service.storage.members.save(member)

        report = service.jobs.reconcile_member(member_id)

        assert report.in_sync is False
        assert report.stored.remaining_lessons == 3
        assert report.derived.remaining_lessons == 8
