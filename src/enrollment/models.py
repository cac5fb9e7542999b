"""Pydantic models for theory lesson and student documents.

All data structures use Pydantic v2 for validation, serialization, and type safety.
Documents on the wire use camelCase keys (``enrolledStudents``, ``queuedAt``);
fields here are snake_case with camelCase aliases.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

_DAY_NAMES = {
    "sunday": 0,
    "monday": 1,
    "tuesday": 2,
    "wednesday": 3,
    "thursday": 4,
    "friday": 5,
    "saturday": 6,
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_minutes(value: str) -> int:
    """Convert "HH:MM" to minutes since midnight."""
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


class EnrollmentStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    WAITLIST = "waitlist"


class EnrollmentMethod(str, Enum):
    MANUAL = "manual"
    WAITLIST_PROMOTION = "waitlist_promotion"


# Statuses that occupy the (lesson, student) pair
HELD_STATUSES = frozenset({EnrollmentStatus.ACTIVE, EnrollmentStatus.WAITLIST})


class DocumentModel(BaseModel):
    """Base for models that map to camelCase store documents."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_document(self) -> dict[str, Any]:
        """Serialize to a JSON-safe dict with camelCase keys."""
        return self.model_dump(by_alias=True, mode="json")


class Schedule(DocumentModel):
    """Weekly slot of a lesson. Wall-clock times, single timezone."""

    day_of_week: int  # 0 = Sunday .. 6 = Saturday; names are accepted on input
    start_time: str  # "HH:MM"
    end_time: str  # "HH:MM"

    @field_validator("day_of_week", mode="before")
    @classmethod
    def _normalize_day(cls, value: Any) -> Any:
        if isinstance(value, str):
            key = value.strip().lower()
            if key in _DAY_NAMES:
                return _DAY_NAMES[key]
            if key.isdigit():
                return int(key)
            raise ValueError(f"Unknown day of week: {value!r}")
        return value

    @field_validator("start_time", "end_time")
    @classmethod
    def _check_time(cls, value: str) -> str:
        to_minutes(value)
        return value

    def overlaps(self, other: "Schedule") -> bool:
        """Same day and half-open [start, end) intervals intersect."""
        if self.day_of_week != other.day_of_week:
            return False
        start1, end1 = to_minutes(self.start_time), to_minutes(self.end_time)
        start2, end2 = to_minutes(other.start_time), to_minutes(other.end_time)
        return start1 < end2 and start2 < end1


class Capacity(DocumentModel):
    max_students: int | None = Field(default=None, ge=0)  # None = unbounded
    current_enrollment: int = 0
    waitlist_enabled: bool = False

    @property
    def is_full(self) -> bool:
        if self.max_students is None:
            return False
        return self.current_enrollment >= self.max_students


class AcademicRequirements(DocumentModel):
    target_grades: list[str] = Field(default_factory=list)
    level: str | None = None
    prerequisites: list[str] = Field(default_factory=list)


class Enrollment(DocumentModel):
    """Enrollment record embedded in a lesson's ``enrolledStudents``."""

    student_id: str
    enrolled_at: datetime
    status: EnrollmentStatus = EnrollmentStatus.ACTIVE
    enrollment_method: EnrollmentMethod = EnrollmentMethod.MANUAL
    performed_by: str = "system"


class WaitlistEntry(DocumentModel):
    student_id: str
    queued_at: datetime
    position: int  # assigned at insertion, goes stale after removals


class LessonRoster(DocumentModel):
    enrolled_students: list[Enrollment] = Field(default_factory=list)
    waitlist: list[WaitlistEntry] = Field(default_factory=list)


class TheoryLesson(DocumentModel):
    """A scheduled, capacity-bounded group lesson."""

    id: str = Field(alias="_id")
    title: str | None = None
    category: str | None = None
    is_active: bool = False
    schedule: Schedule | None = None
    capacity: Capacity = Field(default_factory=Capacity)
    academic_requirements: AcademicRequirements = Field(
        default_factory=AcademicRequirements
    )
    enrollment: LessonRoster = Field(default_factory=LessonRoster)

    @property
    def display_name(self) -> str:
        return self.title or self.category or self.id

    def find_enrollment(
        self, student_id: str, statuses: frozenset = HELD_STATUSES
    ) -> Enrollment | None:
        for enrollment in self.enrollment.enrolled_students:
            if enrollment.student_id == student_id and enrollment.status in statuses:
                return enrollment
        return None

    def find_waitlist_entry(self, student_id: str) -> WaitlistEntry | None:
        for entry in self.enrollment.waitlist:
            if entry.student_id == student_id:
                return entry
        return None

    def queued_waitlist(self) -> list[WaitlistEntry]:
        """Waitlist sorted by ``queuedAt``; storage order is not trusted."""
        return sorted(self.enrollment.waitlist, key=lambda entry: entry.queued_at)

    def active_count(self) -> int:
        return sum(
            1
            for enrollment in self.enrollment.enrolled_students
            if enrollment.status == EnrollmentStatus.ACTIVE
        )


class Performance(DocumentModel):
    attendance_rate: float = 0
    last_attended: datetime | None = None
    grade: str | None = None
    notes: str = ""


class AuditEntry(DocumentModel):
    action: str  # enrolled, unenrolled, promoted_from_waitlist
    performed_at: datetime
    performed_by: str | None = None
    reason: str | None = None


class LessonEnrollment(DocumentModel):
    """Mirror of an enrollment kept on the student document."""

    lesson_id: str
    enrolled_at: datetime
    status: EnrollmentStatus = EnrollmentStatus.ACTIVE
    unenrolled_at: datetime | None = None
    performance: Performance = Field(default_factory=Performance)
    audit_trail: list[AuditEntry] = Field(default_factory=list)


class AcademicInfo(DocumentModel):
    class_: str | None = Field(default=None, alias="class")
    theory_level: str | None = None
    completed_courses: list[str] = Field(default_factory=list)


class StudentEnrollments(DocumentModel):
    theory_lessons: list[LessonEnrollment] = Field(default_factory=list)


class Student(DocumentModel):
    id: str = Field(alias="_id")
    is_active: bool = False
    academic_info: AcademicInfo = Field(default_factory=AcademicInfo)
    enrollments: StudentEnrollments = Field(default_factory=StudentEnrollments)

    def lesson_enrollments(
        self, status: EnrollmentStatus | None = None
    ) -> list[LessonEnrollment]:
        lessons = self.enrollments.theory_lessons
        if status is None:
            return list(lessons)
        return [lesson for lesson in lessons if lesson.status == status]


class ValidationResult(BaseModel):
    is_valid: bool
    errors: list[str] = Field(default_factory=list)
    enrollment_status: str | None = "enrolled"  # "enrolled", "waitlist" or None
    lesson: TheoryLesson | None = None
    student: Student | None = None


class WaitlistResult(BaseModel):
    success: bool = True
    status: str = "waitlist"
    position: int


class EnrollmentResult(BaseModel):
    success: bool = True
    status: str  # "enrolled" or "waitlist"
    position: int | None = None
    lesson: dict[str, Any] | None = None
    enrollment_data: LessonEnrollment | None = None


class UnenrollmentResult(BaseModel):
    success: bool = True
    status: str = "unenrolled"
    processed_waitlist: bool = False
