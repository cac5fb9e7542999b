"""Theory lesson enrollment coordinator.

Keeps two records in sync: the lesson document (canonical roster and
``currentEnrollment`` count) and the student document (denormalized mirror
with performance and audit trail). The two writes are separate store calls,
so a failure between them is unwound by rollback_enrollment().
"""

from collections.abc import Callable
from datetime import datetime
from typing import Any

from pydantic import ValidationError as ModelValidationError

from src.enrollment.errors import (
    CriticalRollbackFailure,
    EnrollmentError,
    EnrollmentValidationError,
    NotEnrolledError,
    PreconditionFailedError,
    RecordNotFoundError,
    SessionFullError,
    StoreError,
)
from src.enrollment.logging import get_logger
from src.enrollment.models import (
    AuditEntry,
    Enrollment,
    EnrollmentMethod,
    EnrollmentResult,
    EnrollmentStatus,
    LessonEnrollment,
    Student,
    TheoryLesson,
    UnenrollmentResult,
    ValidationResult,
    WaitlistResult,
    utc_now,
)
from src.enrollment.reporting import CriticalErrorReporter
from src.enrollment.store.base import RecordStore, lesson_path, student_path
from src.enrollment.validation import EnrollmentValidator
from src.enrollment.waitlist import WaitlistManager

logger = get_logger(__name__)

DEFAULT_ENROLL_REASON = "Manual enrollment"
DEFAULT_UNENROLL_REASON = "Manual unenrollment"
ROLLBACK_REASON = "Rollback due to error"


class EnrollmentCoordinator:
    """Enroll and unenroll students in capacity-bounded theory lessons.

    Example:
        store = HttpRecordStore.from_config()
        coordinator = EnrollmentCoordinator(store)
        result = await coordinator.enroll_student("lesson-1", "student-7", performed_by="admin")
    """

    def __init__(
        self,
        store: RecordStore,
        *,
        reporter: CriticalErrorReporter | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.clock = clock
        self.reporter = reporter or CriticalErrorReporter(store, clock=clock)
        self.validator = EnrollmentValidator(store)
        self.waitlist = WaitlistManager(store, self.reporter, clock=clock)

    async def validate_enrollment(self, lesson_id: str, student_id: str) -> ValidationResult:
        return await self.validator.validate(lesson_id, student_id)

    async def get_student_enrollment(
        self, lesson_id: str, student_id: str
    ) -> Enrollment | None:
        """Find the student's active or waitlisted record in the lesson.

        Waitlist entries are returned as an Enrollment with status "waitlist".
        Read failures are logged and treated as "not enrolled".
        """
        try:
            lesson = await self._get_lesson(lesson_id)
        except (StoreError, ModelValidationError) as e:
            logger.error(
                "enrollment_lookup_failed",
                lesson_id=lesson_id,
                student_id=student_id,
                error=str(e),
            )
            return None

        enrollment = lesson.find_enrollment(student_id)
        if enrollment is not None:
            return enrollment
        entry = lesson.find_waitlist_entry(student_id)
        if entry is not None:
            return Enrollment(
                student_id=student_id,
                enrolled_at=entry.queued_at,
                status=EnrollmentStatus.WAITLIST,
            )
        return None

    async def enroll_student(
        self,
        lesson_id: str,
        student_id: str,
        *,
        method: EnrollmentMethod | str = EnrollmentMethod.MANUAL,
        performed_by: str = "system",
        reason: str | None = None,
        transaction: Any = None,
    ) -> EnrollmentResult:
        """Validate, then write the lesson roster and the student mirror.

        Raises:
            EnrollmentValidationError: Validation failed or ``method`` is
                unknown; nothing was written.
            SessionFullError: The lesson filled up between validation and the
                write and its waitlist is disabled; nothing was written.
            EnrollmentError: A write failed. Partial writes were rolled back.
        """
        logger.info("enrollment_started", lesson_id=lesson_id, student_id=student_id)

        try:
            enrollment_method = EnrollmentMethod(method)
        except ValueError as e:
            raise EnrollmentValidationError([f"Unknown enrollment method: {method}"]) from e

        validation = await self.validate_enrollment(lesson_id, student_id)
        if not validation.is_valid:
            logger.warning(
                "enrollment_rejected",
                lesson_id=lesson_id,
                student_id=student_id,
                errors=validation.errors,
            )
            raise EnrollmentValidationError(validation.errors)

        if validation.enrollment_status == EnrollmentStatus.WAITLIST.value:
            return await self._join_waitlist(lesson_id, student_id, transaction)

        lesson = validation.lesson
        now = self.clock()
        enrollment = Enrollment(
            student_id=student_id,
            enrolled_at=now,
            status=EnrollmentStatus.ACTIVE,
            enrollment_method=enrollment_method,
            performed_by=performed_by,
        )
        mirror = LessonEnrollment(
            lesson_id=lesson_id,
            enrolled_at=now,
            status=EnrollmentStatus.ACTIVE,
            audit_trail=[
                AuditEntry(
                    action="enrolled",
                    performed_at=now,
                    performed_by=performed_by,
                    reason=reason or DEFAULT_ENROLL_REASON,
                )
            ],
        )

        try:
            updated_lesson = await self._add_student_to_lesson(
                lesson, enrollment, transaction
            )
        except PreconditionFailedError:
            # Seat taken between validation and write; nothing was applied
            logger.warning(
                "enrollment_capacity_race", lesson_id=lesson_id, student_id=student_id
            )
            if lesson.capacity.waitlist_enabled:
                return await self._join_waitlist(lesson_id, student_id, transaction)
            raise SessionFullError()
        except StoreError as e:
            raise await self._failed_enrollment(lesson_id, student_id, e, transaction) from e

        try:
            await self._add_lesson_to_student(student_id, mirror, transaction)
        except StoreError as e:
            raise await self._failed_enrollment(lesson_id, student_id, e, transaction) from e

        logger.info("enrollment_completed", lesson_id=lesson_id, student_id=student_id)
        return EnrollmentResult(
            status="enrolled",
            lesson=updated_lesson,
            enrollment_data=mirror,
        )

    async def _join_waitlist(
        self, lesson_id: str, student_id: str, transaction: Any
    ) -> EnrollmentResult:
        try:
            result = await self.waitlist.add_to_waitlist(lesson_id, student_id, transaction)
        except StoreError as e:
            logger.error(
                "waitlist_join_failed",
                lesson_id=lesson_id,
                student_id=student_id,
                error=str(e),
            )
            raise EnrollmentError(f"Failed to enroll student: {e}") from e
        return EnrollmentResult(status=result.status, position=result.position)

    async def _failed_enrollment(
        self, lesson_id: str, student_id: str, error: StoreError, transaction: Any
    ) -> EnrollmentError:
        """Log, roll back, and build the error for the caller to raise."""
        logger.error(
            "enrollment_failed",
            lesson_id=lesson_id,
            student_id=student_id,
            error=str(error),
        )
        await self.rollback_enrollment(lesson_id, student_id, transaction)
        return EnrollmentError(f"Failed to enroll student: {error}")

    async def _add_student_to_lesson(
        self, lesson: TheoryLesson, enrollment: Enrollment, transaction: Any
    ) -> dict[str, Any]:
        precondition = None
        if lesson.capacity.max_students is not None:
            precondition = {
                "capacity.currentEnrollment": {"$lt": lesson.capacity.max_students}
            }
        return await self.store.patch(
            lesson_path(lesson.id),
            {
                "$push": {"enrollment.enrolledStudents": enrollment.to_document()},
                "$inc": {"capacity.currentEnrollment": 1},
                "$set": {"updatedAt": self.clock().isoformat()},
            },
            transaction=transaction,
            precondition=precondition,
        )

    async def _add_lesson_to_student(
        self, student_id: str, mirror: LessonEnrollment, transaction: Any
    ) -> dict[str, Any]:
        return await self.store.patch(
            student_path(student_id),
            {
                "$push": {"enrollments.theoryLessons": mirror.to_document()},
                "$set": {"updatedAt": self.clock().isoformat()},
            },
            transaction=transaction,
        )

    async def unenroll_student(
        self,
        lesson_id: str,
        student_id: str,
        *,
        reason: str | None = None,
        transaction: Any = None,
    ) -> UnenrollmentResult:
        """Remove the student from the lesson, then offer the seat to the waitlist.

        Raises:
            NotEnrolledError: No active or waitlisted record for the pair.
            EnrollmentError: A write failed. No compensation is attempted.
        """
        logger.info("unenrollment_started", lesson_id=lesson_id, student_id=student_id)

        current = await self.get_student_enrollment(lesson_id, student_id)
        if current is None:
            raise NotEnrolledError("Student is not enrolled in this theory lesson")

        try:
            if current.status == EnrollmentStatus.WAITLIST:
                await self._remove_student_from_waitlist(lesson_id, student_id, transaction)
            else:
                await self._remove_student_from_lesson(lesson_id, student_id, transaction)
                await self._deactivate_student_lesson(
                    student_id,
                    lesson_id,
                    reason or DEFAULT_UNENROLL_REASON,
                    transaction,
                )
        except StoreError as e:
            logger.error(
                "unenrollment_failed",
                lesson_id=lesson_id,
                student_id=student_id,
                error=str(e),
            )
            raise EnrollmentError(f"Failed to unenroll student: {e}") from e

        promoted = await self.waitlist.process_waitlist(lesson_id, transaction)

        logger.info(
            "unenrollment_completed",
            lesson_id=lesson_id,
            student_id=student_id,
            promoted=promoted,
        )
        return UnenrollmentResult(processed_waitlist=promoted)

    async def _remove_student_from_lesson(
        self, lesson_id: str, student_id: str, transaction: Any
    ) -> dict[str, Any]:
        return await self.store.patch(
            lesson_path(lesson_id),
            {
                "$pull": {
                    "enrollment.enrolledStudents": {
                        "studentId": student_id,
                        "status": EnrollmentStatus.ACTIVE.value,
                    }
                },
                "$inc": {"capacity.currentEnrollment": -1},
                "$set": {"updatedAt": self.clock().isoformat()},
            },
            transaction=transaction,
        )

    async def _remove_student_from_waitlist(
        self, lesson_id: str, student_id: str, transaction: Any
    ) -> dict[str, Any]:
        # A waitlisted student may be held in the queue or as a roster entry
        # with status "waitlist"; neither occupies a seat.
        return await self.store.patch(
            lesson_path(lesson_id),
            {
                "$pull": {
                    "enrollment.waitlist": {"studentId": student_id},
                    "enrollment.enrolledStudents": {
                        "studentId": student_id,
                        "status": EnrollmentStatus.WAITLIST.value,
                    },
                },
                "$set": {"updatedAt": self.clock().isoformat()},
            },
            transaction=transaction,
        )

    async def _deactivate_student_lesson(
        self, student_id: str, lesson_id: str, reason: str, transaction: Any
    ) -> dict[str, Any]:
        now = self.clock().isoformat()
        return await self.store.patch(
            student_path(student_id),
            {
                "$set": {
                    "enrollments.theoryLessons.$[elem].status": EnrollmentStatus.INACTIVE.value,
                    "enrollments.theoryLessons.$[elem].unenrolledAt": now,
                    "updatedAt": now,
                },
                "$push": {
                    "enrollments.theoryLessons.$[elem].auditTrail": {
                        "action": "unenrolled",
                        "performedAt": now,
                        "reason": reason,
                    }
                },
            },
            transaction=transaction,
            array_filters=[
                {"elem.lessonId": lesson_id, "elem.status": EnrollmentStatus.ACTIVE.value}
            ],
        )

    async def add_to_waitlist(
        self, lesson_id: str, student_id: str, transaction: Any = None
    ) -> WaitlistResult:
        return await self.waitlist.add_to_waitlist(lesson_id, student_id, transaction)

    async def process_waitlist(self, lesson_id: str, transaction: Any = None) -> bool:
        return await self.waitlist.process_waitlist(lesson_id, transaction)

    async def enroll_from_waitlist(
        self, lesson_id: str, student_id: str, transaction: Any = None
    ) -> Enrollment:
        return await self.waitlist.enroll_from_waitlist(lesson_id, student_id, transaction)

    async def get_next_waitlist_position(self, lesson_id: str) -> int:
        return await self.waitlist.get_next_waitlist_position(lesson_id)

    async def get_waitlist_position(self, lesson_id: str, student_id: str) -> int | None:
        return await self.waitlist.get_waitlist_position(lesson_id, student_id)

    async def rollback_enrollment(
        self, lesson_id: str, student_id: str, transaction: Any = None
    ) -> None:
        """Undo whatever part of a failed enroll_student() was applied.

        Each step only writes if its record is actually present, so running
        this with no prior writes changes nothing. Never raises: step failures
        are logged, and if any step that was needed could not run, a critical
        error is reported for manual intervention.
        """
        logger.info("rollback_started", lesson_id=lesson_id, student_id=student_id)
        failures: list[str] = []

        try:
            lesson = await self._get_lesson(lesson_id)
            if lesson.find_enrollment(student_id, frozenset({EnrollmentStatus.ACTIVE})):
                await self._remove_student_from_lesson(lesson_id, student_id, transaction)
                logger.info("rollback_step_applied", step="lesson", lesson_id=lesson_id)
            else:
                logger.debug("rollback_step_skipped", step="lesson", reason="not_present")
        except RecordNotFoundError as e:
            logger.debug("rollback_step_skipped", step="lesson", reason=str(e))
        except (StoreError, ModelValidationError) as e:
            logger.warning("rollback_step_failed", step="lesson", error=str(e))
            failures.append(f"lesson: {e}")

        try:
            student = await self._get_student(student_id)
            active = [
                mirror
                for mirror in student.lesson_enrollments(EnrollmentStatus.ACTIVE)
                if mirror.lesson_id == lesson_id
            ]
            if active:
                await self._deactivate_student_lesson(
                    student_id, lesson_id, ROLLBACK_REASON, transaction
                )
                logger.info("rollback_step_applied", step="student", student_id=student_id)
            else:
                logger.debug("rollback_step_skipped", step="student", reason="not_present")
        except RecordNotFoundError as e:
            logger.debug("rollback_step_skipped", step="student", reason=str(e))
        except (StoreError, ModelValidationError) as e:
            logger.warning("rollback_step_failed", step="student", error=str(e))
            failures.append(f"student: {e}")

        if failures:
            failure = CriticalRollbackFailure(lesson_id, student_id, "; ".join(failures))
            logger.error("rollback_failed", error=str(failure))
            await self.reporter.report(
                "rollback_failed",
                {"lessonId": lesson_id, "studentId": student_id, "error": failure.cause},
            )
            return

        logger.info("rollback_completed", lesson_id=lesson_id, student_id=student_id)

    async def _get_lesson(self, lesson_id: str) -> TheoryLesson:
        return TheoryLesson.model_validate(await self.store.get(lesson_path(lesson_id)))

    async def _get_student(self, student_id: str) -> Student:
        return Student.model_validate(await self.store.get(student_path(student_id)))
