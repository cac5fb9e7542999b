"""Enrollment eligibility checks.

The pure helpers (schedule overlap, academic requirements) take already loaded
models. EnrollmentValidator adds the reads: the lesson, the student, and every
other lesson the student is actively enrolled in for the conflict check.
"""

from pydantic import ValidationError as ModelValidationError

from src.enrollment.errors import RecordNotFoundError, StoreError
from src.enrollment.logging import get_logger
from src.enrollment.models import (
    EnrollmentStatus,
    Schedule,
    Student,
    TheoryLesson,
    ValidationResult,
)
from src.enrollment.store.base import RecordStore, lesson_path, student_path

logger = get_logger(__name__)

DEFAULT_THEORY_LEVEL = "beginner"
ANY_LEVEL = "all"


def has_schedule_conflict(first: Schedule | None, second: Schedule | None) -> bool:
    """Two weekly slots conflict if they share a day and their times overlap.

    A lesson without a schedule never conflicts.
    """
    if first is None or second is None:
        return False
    return first.overlaps(second)


def validate_academic_requirements(student: Student, lesson: TheoryLesson) -> list[str]:
    """Return one error string per unmet requirement (empty list = eligible)."""
    errors: list[str] = []
    requirements = lesson.academic_requirements
    info = student.academic_info

    target_grades = requirements.target_grades
    if target_grades and info.class_ not in target_grades:
        errors.append(
            f'Student grade "{info.class_}" not eligible '
            f"(requires: {', '.join(target_grades)})"
        )

    student_level = info.theory_level or DEFAULT_THEORY_LEVEL
    lesson_level = requirements.level
    if lesson_level and lesson_level != ANY_LEVEL and lesson_level != student_level:
        errors.append(
            f'Student level "{student_level}" not compatible with '
            f'lesson level "{lesson_level}"'
        )

    completed = set(info.completed_courses)
    missing = [course for course in requirements.prerequisites if course not in completed]
    if missing:
        errors.append(f"Missing prerequisites: {', '.join(missing)}")

    return errors


class EnrollmentValidator:
    """Runs every eligibility check and collects all failures.

    Only the existence checks stop early, since the remaining checks need both
    documents.
    """

    def __init__(self, store: RecordStore) -> None:
        self.store = store

    async def _load_lesson(self, lesson_id: str) -> TheoryLesson | None:
        try:
            return TheoryLesson.model_validate(await self.store.get(lesson_path(lesson_id)))
        except RecordNotFoundError:
            return None

    async def _load_student(self, student_id: str) -> Student | None:
        try:
            return Student.model_validate(await self.store.get(student_path(student_id)))
        except RecordNotFoundError:
            return None

    async def validate(self, lesson_id: str, student_id: str) -> ValidationResult:
        try:
            lesson = await self._load_lesson(lesson_id)
            student = await self._load_student(student_id)
        except (StoreError, ModelValidationError) as e:
            logger.error(
                "validation_load_failed",
                lesson_id=lesson_id,
                student_id=student_id,
                error=str(e),
            )
            return ValidationResult(
                is_valid=False,
                errors=[f"Validation failed: {e}"],
                enrollment_status=None,
            )

        errors: list[str] = []
        if lesson is None or not lesson.is_active:
            errors.append("Theory lesson not found or inactive")
        if student is None or not student.is_active:
            errors.append("Student not found or inactive")
        if errors:
            return ValidationResult(is_valid=False, errors=errors, enrollment_status=None)

        enrollment_status = "enrolled"

        existing = lesson.find_enrollment(student_id)
        if existing is not None:
            errors.append(f"Student already {existing.status.value} in this lesson")
        elif lesson.find_waitlist_entry(student_id) is not None:
            errors.append(
                f"Student already {EnrollmentStatus.WAITLIST.value} in this lesson"
            )

        if lesson.capacity.is_full:
            if lesson.capacity.waitlist_enabled:
                enrollment_status = "waitlist"
            else:
                errors.append("Theory lesson is full and waitlist is disabled")

        errors.extend(validate_academic_requirements(student, lesson))
        errors.extend(await self.check_schedule_conflicts(student, lesson))

        result = ValidationResult(
            is_valid=not errors,
            errors=errors,
            enrollment_status=enrollment_status,
            lesson=lesson,
            student=student,
        )
        logger.debug(
            "enrollment_validated",
            lesson_id=lesson_id,
            student_id=student_id,
            is_valid=result.is_valid,
            status=enrollment_status,
            error_count=len(errors),
        )
        return result

    async def check_schedule_conflicts(
        self, student: Student, lesson: TheoryLesson
    ) -> list[str]:
        """Compare the lesson's slot against every other active enrollment."""
        errors: list[str] = []
        try:
            for enrolled in student.lesson_enrollments(EnrollmentStatus.ACTIVE):
                if enrolled.lesson_id == lesson.id:
                    continue
                try:
                    other = await self._load_lesson(enrolled.lesson_id)
                except ModelValidationError as e:
                    raise StoreError(f"Unreadable lesson {enrolled.lesson_id}: {e}") from e
                if other is None:
                    # Stale mirror entry pointing at a deleted lesson
                    logger.warning(
                        "conflict_check_lesson_missing",
                        student_id=student.id,
                        lesson_id=enrolled.lesson_id,
                    )
                    continue
                if has_schedule_conflict(other.schedule, lesson.schedule):
                    errors.append(f'Schedule conflicts with "{other.display_name}"')
        except StoreError as e:
            logger.error(
                "schedule_validation_failed", student_id=student.id, error=str(e)
            )
            return [f"Schedule validation failed: {e}"]
        return errors
