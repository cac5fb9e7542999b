"""Waitlist queueing and promotion for full theory lessons.

Entries are appended with a static ``position`` for initial display. Ordering
decisions always re-sort by ``queuedAt``, and live positions are computed on
read by get_waitlist_position().
"""

from collections.abc import Callable
from datetime import datetime
from typing import Any

from pydantic import ValidationError as ModelValidationError

from src.enrollment.errors import NotEnrolledError, PreconditionFailedError, StoreError
from src.enrollment.logging import get_logger
from src.enrollment.models import (
    AuditEntry,
    Enrollment,
    EnrollmentMethod,
    EnrollmentStatus,
    LessonEnrollment,
    TheoryLesson,
    WaitlistEntry,
    WaitlistResult,
    utc_now,
)
from src.enrollment.reporting import CriticalErrorReporter
from src.enrollment.store.base import RecordStore, lesson_path, student_path

logger = get_logger(__name__)

PROMOTION_REASON = "Space became available"


class WaitlistManager:
    def __init__(
        self,
        store: RecordStore,
        reporter: CriticalErrorReporter,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.reporter = reporter
        self.clock = clock

    async def _get_lesson(self, lesson_id: str) -> TheoryLesson:
        return TheoryLesson.model_validate(await self.store.get(lesson_path(lesson_id)))

    async def get_next_waitlist_position(self, lesson_id: str) -> int:
        """Position a new entry would get: current waitlist length + 1.

        Falls back to 1 when the lesson cannot be read.
        """
        try:
            lesson = await self._get_lesson(lesson_id)
        except (StoreError, ModelValidationError) as e:
            logger.warning("waitlist_position_unavailable", lesson_id=lesson_id, error=str(e))
            return 1
        return len(lesson.enrollment.waitlist) + 1

    async def get_waitlist_position(self, lesson_id: str, student_id: str) -> int | None:
        """Live 1-based rank of the student in queuedAt order, or None."""
        lesson = await self._get_lesson(lesson_id)
        for rank, entry in enumerate(lesson.queued_waitlist(), start=1):
            if entry.student_id == student_id:
                return rank
        return None

    async def add_to_waitlist(
        self, lesson_id: str, student_id: str, transaction: Any = None
    ) -> WaitlistResult:
        now = self.clock()
        entry = WaitlistEntry(
            student_id=student_id,
            queued_at=now,
            position=await self.get_next_waitlist_position(lesson_id),
        )
        await self.store.patch(
            lesson_path(lesson_id),
            {
                "$push": {"enrollment.waitlist": entry.to_document()},
                "$set": {"updatedAt": now.isoformat()},
            },
            transaction=transaction,
        )
        logger.info(
            "waitlist_joined",
            lesson_id=lesson_id,
            student_id=student_id,
            position=entry.position,
        )
        return WaitlistResult(position=entry.position)

    async def process_waitlist(self, lesson_id: str, transaction: Any = None) -> bool:
        """Promote the longest-waiting student if a seat is free.

        Returns:
            True if a student was promoted. Store failures are logged and
            reported as False.
        """
        try:
            lesson = await self._get_lesson(lesson_id)
            queue = lesson.queued_waitlist()
            if not queue:
                logger.debug("waitlist_empty", lesson_id=lesson_id)
                return False
            if lesson.capacity.is_full:
                logger.debug(
                    "waitlist_no_free_seat",
                    lesson_id=lesson_id,
                    current=lesson.capacity.current_enrollment,
                    max=lesson.capacity.max_students,
                )
                return False
            await self.enroll_from_waitlist(lesson_id, queue[0].student_id, transaction)
            return True
        except (StoreError, NotEnrolledError, ModelValidationError) as e:
            logger.error("waitlist_processing_failed", lesson_id=lesson_id, error=str(e))
            return False

    async def enroll_from_waitlist(
        self, lesson_id: str, student_id: str, transaction: Any = None
    ) -> Enrollment:
        """Move a waitlisted student into the active roster.

        The lesson write pulls the waitlist entry and pushes the enrollment in
        one patch. The student gets a fresh active mirror entry; waitlisting
        never creates one.

        Raises:
            NotEnrolledError: The student is not on this lesson's waitlist.
            PreconditionFailedError: The lesson has no free seat; nothing was
                written.
            StoreError: Either write failed. If only the student write failed,
                a critical error is reported before re-raising.
        """
        lesson = await self._get_lesson(lesson_id)
        if lesson.find_waitlist_entry(student_id) is None:
            raise NotEnrolledError(
                f"Student {student_id} is not on the waitlist for theory lesson {lesson_id}"
            )

        now = self.clock()
        enrollment = Enrollment(
            student_id=student_id,
            enrolled_at=now,
            status=EnrollmentStatus.ACTIVE,
            enrollment_method=EnrollmentMethod.WAITLIST_PROMOTION,
            performed_by="system",
        )
        precondition = None
        if lesson.capacity.max_students is not None:
            precondition = {
                "capacity.currentEnrollment": {"$lt": lesson.capacity.max_students}
            }
        try:
            await self.store.patch(
                lesson_path(lesson_id),
                {
                    "$pull": {"enrollment.waitlist": {"studentId": student_id}},
                    "$push": {"enrollment.enrolledStudents": enrollment.to_document()},
                    "$inc": {"capacity.currentEnrollment": 1},
                    "$set": {"updatedAt": now.isoformat()},
                },
                transaction=transaction,
                precondition=precondition,
            )
        except PreconditionFailedError:
            logger.warning(
                "waitlist_promotion_no_seat", lesson_id=lesson_id, student_id=student_id
            )
            raise

        mirror = LessonEnrollment(
            lesson_id=lesson_id,
            enrolled_at=now,
            status=EnrollmentStatus.ACTIVE,
            audit_trail=[
                AuditEntry(
                    action="promoted_from_waitlist",
                    performed_at=now,
                    performed_by="system",
                    reason=PROMOTION_REASON,
                )
            ],
        )
        try:
            await self.store.patch(
                student_path(student_id),
                {
                    "$push": {"enrollments.theoryLessons": mirror.to_document()},
                    "$set": {"updatedAt": now.isoformat()},
                },
                transaction=transaction,
            )
        except StoreError as e:
            await self.reporter.report(
                "waitlist_promotion_mirror_failed",
                {"lessonId": lesson_id, "studentId": student_id, "error": str(e)},
            )
            raise

        logger.info("waitlist_promoted", lesson_id=lesson_id, student_id=student_id)
        return enrollment
