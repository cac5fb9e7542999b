"""Error hierarchy for enrollment operations and record store failures.

Store errors are split into transient failures (worth retrying) and permanent
failures (retrying will not help), so tenacity retry decorators can classify
them by type:

    @retry(retry=retry_if_exception_type(TransientStoreError), stop=stop_after_attempt(3))
    async def get(self, path: str) -> dict:
        ...
"""


class EnrollmentError(Exception):
    """Base exception for all enrollment errors."""

    pass


class EnrollmentValidationError(EnrollmentError):
    """Enrollment rejected before any record was mutated.

    Attributes:
        errors: Human-readable reasons collected by the validator.
    """

    def __init__(self, errors: list[str], message: str | None = None) -> None:
        self.errors = list(errors)
        super().__init__(
            message or f"Enrollment validation failed: {', '.join(self.errors)}"
        )


class SessionFullError(EnrollmentValidationError):
    """Session reached capacity and its waitlist is disabled."""

    def __init__(self) -> None:
        super().__init__(["Theory lesson is full and waitlist is disabled"])


class NotEnrolledError(EnrollmentError):
    """Unenroll attempted for a student with no active or waitlisted record."""

    pass


class StoreError(EnrollmentError):
    """Base exception for record store failures."""

    pass


class TransientStoreError(StoreError):
    """Temporary failure that may succeed on retry.

    Examples: connection reset, request timeout, 503 Service Unavailable.
    """

    pass


class PermanentStoreError(StoreError):
    """Failure that won't succeed on retry.

    Examples: malformed update, validation rejected by the backend.
    """

    pass


class RecordNotFoundError(PermanentStoreError):
    """The requested document does not exist."""

    pass


class StoreAuthenticationError(PermanentStoreError):
    """Token expired or missing - needs a fresh token, not a retry."""

    pass


class StorePermissionError(PermanentStoreError):
    """Authenticated but not allowed to touch this record."""

    pass


class PreconditionFailedError(PermanentStoreError):
    """Conditional write rejected because the document no longer matches."""

    pass


class CriticalRollbackFailure(EnrollmentError):
    """Rollback could not undo a partial enrollment.

    Never raised. Built to carry context to the critical error sink, since the
    records now need manual operator attention.
    """

    def __init__(self, lesson_id: str, student_id: str, cause: str) -> None:
        self.lesson_id = lesson_id
        self.student_id = student_id
        self.cause = cause
        super().__init__(
            f"Rollback failed for student {student_id} in lesson {lesson_id}: {cause}"
        )
