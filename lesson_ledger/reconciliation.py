"""
Batch repair jobs over stored members and packages.

All jobs are idempotent: running one twice in a row changes nothing the
second time.
"""

import logging
from collections import defaultdict

from .effects import Counters
from .ledger import CreditLedger, utcnow
from .models import (
    BackfillResult,
    CleanupResult,
    CounterSnapshot,
    LedgerEventType,
    MemberPackage,
    ReconciliationReport,
)

logger = logging.getLogger(__name__)


class ReconciliationJobs:
    def __init__(self, ledger: CreditLedger):
        self.ledger = ledger
        self.storage = ledger.storage
        self.settings = ledger.settings

    def cleanup_duplicate_packages(self) -> CleanupResult:
        """Keep only the most recent package of each name per member."""
        cleaned = 0
        for member in self.storage.members.find_many():
            member_id = member["id"]
            with self.storage.locks.hold(member_id):
                groups: dict[str, list[dict]] = defaultdict(list)
                for package in self.storage.member_packages.find_many({"member_id": member_id}):
                    groups[package["package_name"]].append(package)

                for package_name, packages in groups.items():
                    if len(packages) < 2:
                        continue
                    packages.sort(key=lambda p: p["id"], reverse=True)
                    for duplicate in packages[1:]:
                        self.storage.member_packages.delete(duplicate["id"])
                        self.ledger.record(
                            LedgerEventType.DUPLICATE_REMOVED, member_id, member, member,
                            package_id=duplicate["id"],
                            package_delta=-duplicate["remaining_lessons"],
                            description=f"Removed duplicate {package_name} package",
                        )
                        cleaned += 1

        if cleaned:
            logger.info("Removed %s duplicate packages", cleaned)
        return CleanupResult(cleaned=cleaned, message=f"Removed {cleaned} duplicate packages")

    def backfill_package(self, member_id: int) -> BackfillResult:
        """Create the package a pre-package member should have had."""
        with self.storage.locks.hold(member_id):
            member = self.ledger.get_member(member_id)
            if self.storage.member_packages.count({"member_id": member_id}) > 0:
                return BackfillResult(created=0, reason="exists")

            total = member.get("total_lessons") or 0
            remaining = member.get("remaining_lessons") or 0
            if total <= 0 and remaining <= 0:
                return BackfillResult(created=0, reason="no-lessons")

            attended = member.get("attended_count") or 0
            package = self.storage.member_packages.insert({
                "member_id": member_id,
                "package_name": member.get("membership_type") or self.settings.BACKFILL_PACKAGE_NAME,
                "lesson_count": total or remaining,
                "price": 0,
                "remaining_lessons": remaining if remaining > 0 else max(total - attended, 0),
                "purchased_at": utcnow(),
                "is_active": True,
            })
            self.ledger.record(
                LedgerEventType.BACKFILL, member_id, member, member,
                package_id=package["id"],
                package_delta=package["remaining_lessons"],
                description=f"Backfilled package {package['package_name']}",
            )

        logger.info("Backfilled package %s for member %s", package["id"], member_id)
        return BackfillResult(created=1, package=MemberPackage(**package))

    def backfill_all(self) -> BackfillResult:
        created = sum(
            self.backfill_package(member["id"]).created
            for member in self.storage.members.find_many()
        )
        return BackfillResult(created=created)

    def reconcile_member(self, member_id: int) -> ReconciliationReport:
        """Fold the member's ledger entries into counters and compare them with
        the stored ones."""
        member = self.ledger.get_member(member_id)
        entries = self.storage.ledger_entries.find_many({"member_id": member_id})

        derived = CounterSnapshot()
        for entry in entries:
            derived.total_lessons += entry["total_delta"]
            derived.attended_count += entry["attended_delta"]
            derived.extra_count += entry["extra_delta"]
            derived.remaining_lessons += entry["remaining_delta"]

        counters = Counters.from_member(member)
        stored = CounterSnapshot(
            total_lessons=counters.total_lessons,
            attended_count=counters.attended_count,
            extra_count=counters.extra_count,
            remaining_lessons=counters.remaining_lessons,
        )
        in_sync = stored == derived
        if not in_sync:
            logger.warning("Member %s counters drifted from ledger: stored=%s derived=%s", member_id, stored, derived)
        return ReconciliationReport(
            member_id=member_id,
            stored=stored,
            derived=derived,
            entries=len(entries),
            in_sync=in_sync,
        )
