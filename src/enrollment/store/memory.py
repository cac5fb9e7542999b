"""In-process record store backed by plain dicts.

Implements the same get/patch/post contract as the backend API so the
coordinator can run against it in tests and local dry runs. Documents are
deep-copied on the way in and out, so callers never share state with the store.
"""

from copy import deepcopy
from dataclasses import dataclass
from typing import Any

from src.enrollment.errors import (
    PermanentStoreError,
    PreconditionFailedError,
    RecordNotFoundError,
    StoreError,
)
from src.enrollment.logging import get_logger
from src.enrollment.store.base import RecordStore
from src.enrollment.store.updates import apply_update, matches_document

logger = get_logger(__name__)


@dataclass
class _Fault:
    method: str
    path_prefix: str
    error: StoreError


class InMemoryRecordStore(RecordStore):
    """Dict-backed RecordStore.

    Attributes:
        posted: (path, body) pairs received by ``post``, in call order.
        calls: (method, path) pairs for every call, in call order.
    """

    def __init__(self, documents: dict[str, dict[str, Any]] | None = None) -> None:
        self._documents: dict[str, dict[str, Any]] = {}
        self._faults: list[_Fault] = []
        self.posted: list[tuple[str, dict[str, Any]]] = []
        self.calls: list[tuple[str, str]] = []
        for path, document in (documents or {}).items():
            self.put(path, document)

    def put(self, path: str, document: dict[str, Any]) -> None:
        """Seed or replace a document."""
        self._documents[path] = deepcopy(document)

    def document(self, path: str) -> dict[str, Any]:
        """Return a copy of a stored document without going through ``get``."""
        if path not in self._documents:
            raise KeyError(path)
        return deepcopy(self._documents[path])

    def fail_next(self, method: str, path_prefix: str, error: StoreError) -> None:
        """Make the next matching call raise ``error`` instead of running.

        Args:
            method: "get", "patch" or "post".
            path_prefix: Fault applies to paths starting with this prefix.
            error: Exception raised once, then the fault is discarded.
        """
        self._faults.append(_Fault(method.lower(), path_prefix, error))

    def _check_fault(self, method: str, path: str) -> None:
        self.calls.append((method, path))
        for fault in self._faults:
            if fault.method == method and path.startswith(fault.path_prefix):
                self._faults.remove(fault)
                logger.debug("injected_fault", method=method, path=path)
                raise fault.error

    def _require(self, path: str) -> dict[str, Any]:
        document = self._documents.get(path)
        if document is None:
            raise RecordNotFoundError(f"Resource not found: {path}")
        return document

    async def get(self, path: str) -> dict[str, Any]:
        self._check_fault("get", path)
        return deepcopy(self._require(path))

    async def patch(
        self,
        path: str,
        update: dict[str, Any],
        *,
        transaction: Any = None,
        array_filters: list[dict[str, Any]] | None = None,
        precondition: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        self._check_fault("patch", path)
        document = self._require(path)

        if precondition and not matches_document(document, precondition):
            raise PreconditionFailedError(f"Precondition failed for {path}")

        # Apply to a copy so a bad update leaves the stored document untouched
        updated = deepcopy(document)
        try:
            apply_update(updated, update, array_filters)
        except ValueError as e:
            raise PermanentStoreError(f"Invalid update for {path}: {e}") from e
        self._documents[path] = updated
        return deepcopy(updated)

    async def post(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        self._check_fault("post", path)
        self.posted.append((path, deepcopy(body)))
        return deepcopy(body)
