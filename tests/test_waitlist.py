"""Tests for waitlist queueing and promotion."""

from datetime import timedelta

import pytest

from src.enrollment.errors import (
    NotEnrolledError,
    PreconditionFailedError,
    TransientStoreError,
)
from src.enrollment.store.base import lesson_path, student_path
from tests.factories import START, active_entries, make_lesson, make_student, seed


def _lesson(store):
    return store.document(lesson_path("lesson-1"))


class TestAddToWaitlist:
    @pytest.mark.asyncio
    async def test_positions_are_assigned_in_arrival_order(self, coordinator, store):
        seed(store, make_lesson(max_students=1, enrolled=("a",)))

        first = await coordinator.add_to_waitlist("lesson-1", "s1")
        second = await coordinator.add_to_waitlist("lesson-1", "s2")

        assert (first.success, first.status, first.position) == (True, "waitlist", 1)
        assert second.position == 2
        waitlist = _lesson(store)["enrollment"]["waitlist"]
        assert [(e["studentId"], e["position"]) for e in waitlist] == [("s1", 1), ("s2", 2)]
        assert _lesson(store)["capacity"]["currentEnrollment"] == 1

    @pytest.mark.asyncio
    async def test_next_position_falls_back_to_one(self, coordinator, store):
        seed(store, make_lesson())
        store.fail_next("get", "/theory/", TransientStoreError("down"))
        assert await coordinator.get_next_waitlist_position("lesson-1") == 1

    @pytest.mark.asyncio
    async def test_stored_positions_go_stale_but_live_position_does_not(
        self, coordinator, store
    ):
        seed(store, make_lesson(max_students=1, enrolled=("a",)))
        for student_id in ("s1", "s2", "s3"):
            await coordinator.add_to_waitlist("lesson-1", student_id)

        await store.patch(
            lesson_path("lesson-1"), {"$pull": {"enrollment.waitlist": {"studentId": "s1"}}}
        )

        stored = {e["studentId"]: e["position"] for e in _lesson(store)["enrollment"]["waitlist"]}
        assert stored == {"s2": 2, "s3": 3}
        assert await coordinator.get_waitlist_position("lesson-1", "s2") == 1
        assert await coordinator.get_waitlist_position("lesson-1", "s3") == 2
        assert await coordinator.get_waitlist_position("lesson-1", "s1") is None


class TestProcessWaitlist:
    @pytest.mark.asyncio
    async def test_empty_waitlist(self, coordinator, store):
        seed(store, make_lesson())
        assert await coordinator.process_waitlist("lesson-1") is False

    @pytest.mark.asyncio
    async def test_promotes_earliest_queued_regardless_of_storage_order(
        self, coordinator, store
    ):
        t1 = START
        t2 = START + timedelta(minutes=1)
        t3 = START + timedelta(minutes=2)
        seed(
            store,
            make_lesson(
                max_students=2,
                enrolled=("a",),
                waitlist=(("third", t3), ("first", t1), ("second", t2)),
            ),
            make_student("first"),
        )

        assert await coordinator.process_waitlist("lesson-1") is True

        lesson = _lesson(store)
        assert [e["studentId"] for e in active_entries(lesson)] == ["a", "first"]
        assert [e["studentId"] for e in lesson["enrollment"]["waitlist"]] == [
            "third",
            "second",
        ]
        assert lesson["capacity"]["currentEnrollment"] == 2

    @pytest.mark.asyncio
    async def test_full_lesson_promotes_nobody(self, coordinator, store):
        seed(
            store,
            make_lesson(max_students=1, enrolled=("a",), waitlist=(("s1", START),)),
            make_student("s1"),
        )
        assert await coordinator.process_waitlist("lesson-1") is False
        assert len(_lesson(store)["enrollment"]["waitlist"]) == 1

    @pytest.mark.asyncio
    async def test_store_failure_returns_false(self, coordinator, store):
        seed(store, make_lesson(waitlist=(("s1", START),)), make_student("s1"))
        store.fail_next("patch", "/theory/", TransientStoreError("down"))

        assert await coordinator.process_waitlist("lesson-1") is False
        assert len(_lesson(store)["enrollment"]["waitlist"]) == 1


class TestEnrollFromWaitlist:
    @pytest.mark.asyncio
    async def test_promotion_writes_lesson_and_fresh_mirror(self, coordinator, store):
        seed(
            store,
            make_lesson(waitlist=(("s1", START),)),
            make_student("s1", lessons=(("lesson-1", "inactive"),)),
        )

        enrollment = await coordinator.enroll_from_waitlist("lesson-1", "s1")

        assert enrollment.enrollment_method.value == "waitlist_promotion"
        lesson = _lesson(store)
        assert lesson["enrollment"]["waitlist"] == []
        assert lesson["capacity"]["currentEnrollment"] == 1

        mirrors = store.document(student_path("s1"))["enrollments"]["theoryLessons"]
        assert [m["status"] for m in mirrors] == ["inactive", "active"]
        assert mirrors[-1]["auditTrail"] == [
            {
                "action": "promoted_from_waitlist",
                "performedAt": mirrors[-1]["enrolledAt"],
                "performedBy": "system",
                "reason": "Space became available",
            }
        ]

    @pytest.mark.asyncio
    async def test_student_not_on_waitlist(self, coordinator, store):
        seed(store, make_lesson(), make_student("s1"))
        with pytest.raises(NotEnrolledError):
            await coordinator.enroll_from_waitlist("lesson-1", "s1")
        assert _lesson(store)["capacity"]["currentEnrollment"] == 0

    @pytest.mark.asyncio
    async def test_full_lesson_is_never_oversold(self, coordinator, store):
        seed(
            store,
            make_lesson(max_students=1, enrolled=("a",), waitlist=(("s1", START),)),
            make_student("s1"),
        )

        with pytest.raises(PreconditionFailedError):
            await coordinator.enroll_from_waitlist("lesson-1", "s1")

        lesson = _lesson(store)
        assert lesson["capacity"]["currentEnrollment"] == 1
        assert [e["studentId"] for e in active_entries(lesson)] == ["a"]
        assert [e["studentId"] for e in lesson["enrollment"]["waitlist"]] == ["s1"]
        assert store.document(student_path("s1"))["enrollments"]["theoryLessons"] == []

    @pytest.mark.asyncio
    async def test_unbounded_lesson_promotes_without_precondition(self, coordinator, store):
        seed(
            store,
            make_lesson(max_students=None, current=40, waitlist=(("s1", START),)),
            make_student("s1"),
        )

        await coordinator.enroll_from_waitlist("lesson-1", "s1")

        assert _lesson(store)["capacity"]["currentEnrollment"] == 41

    @pytest.mark.asyncio
    async def test_mirror_failure_is_reported_as_critical(self, coordinator, store):
        seed(store, make_lesson(waitlist=(("s1", START),)), make_student("s1"))
        store.fail_next("patch", "/student/", TransientStoreError("timeout"))

        with pytest.raises(TransientStoreError):
            await coordinator.enroll_from_waitlist("lesson-1", "s1")

        [(path, report)] = store.posted
        assert path == "/system/errors"
        assert report["type"] == "waitlist_promotion_mirror_failed"
        assert report["severity"] == "critical"
        assert report["context"] == {
            "lessonId": "lesson-1",
            "studentId": "s1",
            "error": "timeout",
        }
