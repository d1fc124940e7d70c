"""
Lesson Credit Ledger for studio memberships

This module provides:
- Package purchase with a single active package per member
- Credit consumption and refund driven by lesson attendance
- FIFO promotion of waiting packages when credits run out
- Idempotent repair jobs (duplicate cleanup, backfill, reconciliation)
- Per-member serialization of every counter update
"""

from .models import (
    CreditEffect,
    LessonType,
    LedgerEventType,
    Member,
    MemberPackage,
    LessonAttendance,
    Attendance,
    LedgerEntry,
)
from .exceptions import (
    LedgerServiceError,
    LedgerValidationError,
    NotFoundError,
    ConflictError,
    InvariantViolation,
    ConcurrentUpdateError,
)
from .ledger import CreditLedger
from .activation import PackageActivator
from .attendance import AttendanceRecorder
from .reconciliation import ReconciliationJobs
from .scheduling import LessonScheduler
from .service import LessonLedgerService

__all__ = [
    "CreditEffect",
    "LessonType",
    "LedgerEventType",
    "Member",
    "MemberPackage",
    "LessonAttendance",
    "Attendance",
    "LedgerEntry",
    "LedgerServiceError",
    "LedgerValidationError",
    "NotFoundError",
    "ConflictError",
    "InvariantViolation",
    "ConcurrentUpdateError",
    "CreditLedger",
    "PackageActivator",
    "AttendanceRecorder",
    "ReconciliationJobs",
    "LessonScheduler",
    "LessonLedgerService",
]
