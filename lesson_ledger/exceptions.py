class LedgerServiceError(Exception):
    pass


class LedgerValidationError(LedgerServiceError):
    """A required field is missing or malformed."""


class NotFoundError(LedgerServiceError):
    pass


class MemberNotFoundError(NotFoundError):
    pass


class PackageNotFoundError(NotFoundError):
    pass


class AttendanceNotFoundError(NotFoundError):
    pass


class LessonNotFoundError(NotFoundError):
    pass


class ConflictError(LedgerServiceError):
    pass


class InvariantViolation(LedgerServiceError):
    """A ledger operation would break a counter invariant, e.g. charging a
    lesson when no package has credits left."""


class ConcurrentUpdateError(LedgerServiceError):
    """A document was saved with a stale version."""
