"""Theory lesson enrollment for the conservatory management backend.

Enrolls and unenrolls students in capacity-bounded theory lessons, keeps the
lesson roster and the student's enrollment mirror in sync, manages the
waitlist, and rolls back partial writes.
"""

from src.enrollment.coordinator import EnrollmentCoordinator
from src.enrollment.errors import (
    EnrollmentError,
    EnrollmentValidationError,
    NotEnrolledError,
    SessionFullError,
    StoreError,
    TransientStoreError,
)
from src.enrollment.models import (
    EnrollmentResult,
    UnenrollmentResult,
    ValidationResult,
    WaitlistResult,
)
from src.enrollment.store import HttpRecordStore, InMemoryRecordStore

__all__ = [
    "EnrollmentCoordinator",
    "EnrollmentError",
    "EnrollmentValidationError",
    "NotEnrolledError",
    "SessionFullError",
    "StoreError",
    "TransientStoreError",
    "EnrollmentResult",
    "UnenrollmentResult",
    "ValidationResult",
    "WaitlistResult",
    "HttpRecordStore",
    "InMemoryRecordStore",
]
