"""Record store interface consumed by the enrollment coordinator.

The store is a generic document database reached over the backend API. Updates
use the Mongo-style vocabulary ($push, $pull, $inc, $set) with ``$[name]``
positional placeholders resolved through ``array_filters``.
"""

from abc import ABC, abstractmethod
from typing import Any

LESSON_COLLECTION = "/theory"
STUDENT_COLLECTION = "/student"


def lesson_path(lesson_id: str) -> str:
    return f"{LESSON_COLLECTION}/{lesson_id}"


def student_path(student_id: str) -> str:
    return f"{STUDENT_COLLECTION}/{student_id}"


class RecordStore(ABC):
    """Abstract async document store.

    Every call may raise a StoreError subclass. Implementations decide their
    own retry behavior; writes must not be retried blindly.
    """

    @abstractmethod
    async def get(self, path: str) -> dict[str, Any]:
        """Fetch one document.

        Raises:
            RecordNotFoundError: No document at ``path``.
        """
        ...

    @abstractmethod
    async def patch(
        self,
        path: str,
        update: dict[str, Any],
        *,
        transaction: Any = None,
        array_filters: list[dict[str, Any]] | None = None,
        precondition: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Apply an update to one document and return the updated document.

        Args:
            path: Document path, e.g. ``/theory/<id>``.
            update: Operator document (``$set``, ``$inc``, ``$push``, ``$pull``).
            transaction: Opaque handle passed through to the backend.
            array_filters: Conditions for ``$[name]`` placeholders.
            precondition: Query the stored document must match; checked
                atomically with the update.

        Raises:
            PreconditionFailedError: ``precondition`` did not match; nothing
                was written.
        """
        ...

    @abstractmethod
    async def post(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        """Create a record under ``path``."""
        ...
