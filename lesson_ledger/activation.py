"""
Promotion of waiting packages.

A member's packages move through Waiting (``is_active`` false, full
balance) -> Active (drawn down) -> Exhausted (no credits left). When the
member runs out, by counters or because every active package is empty,
the oldest waiting package (lowest id, i.e. first purchased) becomes
active.
"""

import logging
from typing import Optional

from .ledger import CreditLedger
from .models import ActivationResult, MemberPackage

logger = logging.getLogger(__name__)


class PackageActivator:
    def __init__(self, ledger: CreditLedger):
        self.ledger = ledger
        self.storage = ledger.storage
        ledger.bind_activator(self)

    def next_waiting(self, member_id: int) -> Optional[dict]:
        return self.storage.member_packages.find_one({"member_id": member_id, "is_active": False})

    def promote_next(self, member_id: int) -> Optional[MemberPackage]:
        with self.storage.locks.hold(member_id):
            waiting = self.next_waiting(member_id)
            if waiting is None:
                logger.info("Member %s has no waiting package to activate", member_id)
                return None
            return self.ledger.activate_package(member_id, waiting["id"])

    def activate_waiting(self, member_id: int) -> ActivationResult:
        with self.storage.locks.hold(member_id):
            member = self.ledger.get_member(member_id)
            if not self.ledger.is_out_of_credit(member_id, member):
                return ActivationResult(
                    member_id=member_id,
                    activated=False,
                    message="Member still has remaining lessons",
                )
            package = self.promote_next(member_id)

        if package is None:
            return ActivationResult(member_id=member_id, activated=False, message="No waiting package found")
        return ActivationResult(
            member_id=member_id,
            activated=True,
            package=package,
            message="Waiting package activated successfully",
        )
