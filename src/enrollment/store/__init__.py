"""Record store adapters: backend REST API and in-process dicts."""

from src.enrollment.store.base import RecordStore, lesson_path, student_path
from src.enrollment.store.http import HttpRecordStore
from src.enrollment.store.memory import InMemoryRecordStore

__all__ = [
    "RecordStore",
    "HttpRecordStore",
    "InMemoryRecordStore",
    "lesson_path",
    "student_path",
]
