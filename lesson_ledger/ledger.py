import logging
from datetime import datetime, timezone
from typing import Optional, TYPE_CHECKING

from .config import Settings, get_settings
from .effects import (
    CounterDelta,
    Counters,
    apply_delta,
    effect_for_record,
    transition_delta,
)
from .exceptions import (
    ConflictError,
    InvariantViolation,
    LedgerValidationError,
    MemberNotFoundError,
    PackageNotFoundError,
)
from .models import (
    CreditEffect,
    LedgerEntry,
    LedgerEventType,
    LedgerHistoryResponse,
    LessonType,
    MemberPackage,
    is_exhausted,
)
from .storage import InMemoryStorage

if TYPE_CHECKING:
    from .activation import PackageActivator

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CreditLedger:
    """Lesson credits a member bought, used and has left.

    The ledger is the only writer of the counters on a member
    (``total_lessons``, ``attended_count``, ``extra_count``,
    ``remaining_lessons``) and of package balances. Each write appends a
    ``LedgerEntry`` with the deltas it applied.
    """

    def __init__(self, storage: Optional[InMemoryStorage] = None, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.storage = storage or InMemoryStorage(self.settings)
        self.activator: Optional["PackageActivator"] = None

    def bind_activator(self, activator: "PackageActivator") -> None:
        self.activator = activator

    # Lookups

    def get_member(self, member_id: int) -> dict:
        member = self.storage.members.find_by_id(member_id)
        if not member:
            raise MemberNotFoundError(f"Member {member_id} not found")
        return member

    def get_package(self, package_id: int) -> dict:
        package = self.storage.member_packages.find_by_id(package_id)
        if not package:
            raise PackageNotFoundError(f"Member package {package_id} not found")
        return package

    def list_packages(self, member_id: int) -> list[MemberPackage]:
        return [
            MemberPackage(**p)
            for p in self.storage.member_packages.find_many({"member_id": member_id}, descending=True)
        ]

    def peek_funding_package(self, member_id: int) -> Optional[dict]:
        """The package the next charged lesson would draw from: the oldest
        active package that still has credits."""
        candidates = self.storage.member_packages.find_many(
            {"member_id": member_id, "is_active": True},
            predicate=lambda p: (p.get("remaining_lessons") or 0) > 0,
        )
        return candidates[0] if candidates else None

    def ensure_funding_package(self, member_id: int) -> Optional[dict]:
        """Like ``peek_funding_package``, but promotes the next waiting
        package first when every active package is empty."""
        funding = self.peek_funding_package(member_id)
        if funding is None and self.activator and self.activator.promote_next(member_id):
            funding = self.peek_funding_package(member_id)
        return funding

    def is_out_of_credit(self, member_id: int, member: Optional[dict] = None) -> bool:
        """True when the member counters are exhausted or the member holds
        active packages and none of them has a credit left."""
        member = member or self.get_member(member_id)
        if is_exhausted(member):
            return True
        active = self.storage.member_packages.count({"member_id": member_id, "is_active": True})
        return active > 0 and self.peek_funding_package(member_id) is None

    # Purchase

    def purchase(self, member_id: Optional[int], package_name: Optional[str]) -> MemberPackage:
        if not member_id or not package_name:
            raise LedgerValidationError("member_id and package_name are required")

        definition = self.storage.get_package_definition(package_name)
        if not definition:
            raise PackageNotFoundError(f"Package {package_name} not found")

        with self.storage.locks.hold(member_id):
            member = self.get_member(member_id)
            if self.storage.member_packages.count({"member_id": member_id}) > 0:
                raise ConflictError(
                    f"Member {member_id} already owns a package; delete it before buying a new one"
                )

            now = utcnow()
            lesson_count = definition["lesson_count"]
            package = self.storage.member_packages.insert({
                "member_id": member_id,
                "package_name": definition["name"],
                "lesson_count": lesson_count,
                "price": definition["price"],
                "remaining_lessons": lesson_count,
                "purchased_at": now,
                "is_active": True,
            })

            before = dict(member)
            Counters(total_lessons=lesson_count, remaining_lessons=lesson_count).write_to(member)
            member["membership_type"] = definition["name"]
            member["updated_at"] = now
            member = self.storage.members.save(member)

            self.record(
                LedgerEventType.PURCHASE, member_id, before, member,
                package_id=package["id"],
                package_delta=lesson_count,
                description=f"Purchased {definition['name']} ({lesson_count} lessons)",
            )

        logger.info("Member %s purchased package %s (%s lessons)", member_id, definition["name"], lesson_count)
        return MemberPackage(**package)

    # Consume / refund

    def consume(
        self,
        member_id: int,
        kind: LessonType,
        attended: bool,
        attendance_id: Optional[int] = None,
    ) -> Optional[MemberPackage]:
        effect = effect_for_record(kind, attended)
        return self._apply(
            member_id, transition_delta(CreditEffect.NONE, effect), LedgerEventType.CONSUME,
            attendance_id=attendance_id,
            description=f"Consumed credit for {effect.value} lesson",
        )

    def refund(
        self,
        member_id: int,
        kind: LessonType,
        attended: bool,
        package_id: Optional[int] = None,
        attendance_id: Optional[int] = None,
    ) -> Optional[MemberPackage]:
        effect = effect_for_record(kind, attended)
        return self._apply(
            member_id, transition_delta(effect, CreditEffect.NONE), LedgerEventType.REFUND,
            package_id=package_id,
            attendance_id=attendance_id,
            description=f"Refunded credit for {effect.value} lesson",
        )

    def apply_transition(
        self,
        member_id: int,
        old: CreditEffect,
        new: CreditEffect,
        package_id: Optional[int] = None,
        attendance_id: Optional[int] = None,
        event_type: LedgerEventType = LedgerEventType.TRANSITION,
    ) -> Optional[MemberPackage]:
        """Move an attendance from effect ``old`` to ``new`` in one step.

        Returns the package funding the attendance afterwards (``None``
        when nothing funds it).
        """
        return self._apply(
            member_id, transition_delta(old, new), event_type,
            package_id=package_id,
            attendance_id=attendance_id,
            description=f"Attendance effect {old.value} -> {new.value}",
        )

    def _apply(
        self,
        member_id: int,
        delta: CounterDelta,
        event_type: LedgerEventType,
        package_id: Optional[int] = None,
        attendance_id: Optional[int] = None,
        description: str = "",
    ) -> Optional[MemberPackage]:
        with self.storage.locks.hold(member_id):
            self.get_member(member_id)
            packages = self.storage.member_packages

            funding = None
            if delta.package < 0:
                funding = self.ensure_funding_package(member_id)
                if funding is None:
                    raise InvariantViolation(
                        f"Member {member_id} has no package with remaining lessons to charge"
                    )
                funding["remaining_lessons"] -= 1
                funding = packages.save(funding)
            elif delta.package > 0:
                funding = self._refund_target(member_id, package_id)
                if funding is None:
                    logger.warning(
                        "No package of member %s can take back a credit (package %s); counters only",
                        member_id, package_id,
                    )
                else:
                    funding["remaining_lessons"] = min(funding["remaining_lessons"] + 1, funding["lesson_count"])
                    funding = packages.save(funding)
            elif package_id is not None:
                funding = packages.find_by_id(package_id)

            if delta.is_zero:
                return MemberPackage(**funding) if funding else None

            # Reloaded: a promotion above may have saved the member
            member = self.get_member(member_id)
            before = dict(member)
            apply_delta(Counters.from_member(member), delta).write_to(member)
            member["updated_at"] = utcnow()
            member = self.storage.members.save(member)

            self.record(
                event_type, member_id, before, member,
                package_id=funding["id"] if funding else package_id,
                package_delta=delta.package if funding else 0,
                attendance_id=attendance_id,
                description=description,
            )

            charged = delta.package < 0 or delta.attended > 0
            if charged and self.activator and self.is_out_of_credit(member_id, member):
                self.activator.promote_next(member_id)

        return MemberPackage(**funding) if funding else None

    def _refund_target(self, member_id: int, package_id: Optional[int]) -> Optional[dict]:
        if package_id is not None:
            package = self.storage.member_packages.find_by_id(package_id)
            if (
                package
                and package["member_id"] == member_id
                and package["remaining_lessons"] < package["lesson_count"]
            ):
                return package
        drawn = self.storage.member_packages.find_many(
            {"member_id": member_id, "is_active": True},
            descending=True,
            predicate=lambda p: p["remaining_lessons"] < p["lesson_count"],
        )
        return drawn[0] if drawn else None

    # Activation

    def activate_package(self, member_id: int, package_id: int) -> MemberPackage:
        """Turn a waiting package into the active one and add its lessons on
        top of the member's current totals."""
        with self.storage.locks.hold(member_id):
            package = self.get_package(package_id)
            member = self.get_member(member_id)
            now = utcnow()

            previous_balance = package["remaining_lessons"]
            package["is_active"] = True
            package["remaining_lessons"] = package["lesson_count"]
            package = self.storage.member_packages.save(package)

            before = dict(member)
            member["total_lessons"] = (member.get("total_lessons") or 0) + package["lesson_count"]
            member["remaining_lessons"] = (member.get("remaining_lessons") or 0) + package["lesson_count"]
            member["membership_type"] = package["package_name"]
            member["updated_at"] = now
            member = self.storage.members.save(member)

            self.record(
                LedgerEventType.ACTIVATE, member_id, before, member,
                package_id=package["id"],
                package_delta=package["lesson_count"] - previous_balance,
                description=f"Activated waiting package {package['package_name']}",
            )

        logger.info("Activated waiting package %s (%s) for member %s", package["id"], package["package_name"], member_id)
        return MemberPackage(**package)

    # Deletion

    def delete_package(self, package_id: int) -> None:
        member_id = self.get_package(package_id)["member_id"]

        with self.storage.locks.hold(member_id):
            package = self.get_package(package_id)
            member = self.storage.members.find_by_id(member_id)
            if member:
                before = dict(member)
                Counters().write_to(member)
                member["membership_type"] = self.settings.NO_PACKAGE_LABEL
                member["updated_at"] = utcnow()
                member = self.storage.members.save(member)
                self.record(
                    LedgerEventType.PACKAGE_DELETE, member_id, before, member,
                    package_id=package_id,
                    package_delta=-package["remaining_lessons"],
                    description=f"Deleted package {package['package_name']}",
                )
            else:
                logger.warning("Package %s belongs to missing member %s", package_id, member_id)

            self.storage.member_packages.delete(package_id)
            logger.info("Deleted package %s (%s) of member %s", package_id, package["package_name"], member_id)

            if package["is_active"] and member and self.activator:
                self.activator.promote_next(member_id)

    # History

    def record(
        self,
        event_type: LedgerEventType,
        member_id: int,
        before: dict,
        after: dict,
        package_id: Optional[int] = None,
        package_delta: int = 0,
        attendance_id: Optional[int] = None,
        description: str = "",
    ) -> LedgerEntry:
        old = Counters.from_member(before)
        new = Counters.from_member(after)
        entry = self.storage.ledger_entries.insert({
            "member_id": member_id,
            "event_type": event_type,
            "package_id": package_id,
            "attendance_id": attendance_id,
            "total_delta": new.total_lessons - old.total_lessons,
            "attended_delta": new.attended_count - old.attended_count,
            "extra_delta": new.extra_count - old.extra_count,
            "remaining_delta": new.remaining_lessons - old.remaining_lessons,
            "package_delta": package_delta,
            "remaining_after": new.remaining_lessons,
            "description": description,
            "created_at": utcnow(),
        })
        return LedgerEntry(**entry)

    def history(self, member_id: int, limit: int = 50, offset: int = 0) -> LedgerHistoryResponse:
        member = self.get_member(member_id)
        all_entries = [
            LedgerEntry(**e)
            for e in self.storage.ledger_entries.find_many({"member_id": member_id}, descending=True)
        ]
        return LedgerHistoryResponse(
            member_id=member_id,
            entries=all_entries[offset:offset + limit],
            total_count=len(all_entries),
            remaining_lessons=member.get("remaining_lessons") or 0,
        )
