"""Mongo-style partial update engine for in-process documents.

Supports the subset of the update vocabulary the enrollment workflow sends:

    $set   {"a.b": value}                  assign, creating parent objects
    $inc   {"a.b": n}                      add n (missing field counts as 0)
    $push  {"a.list": value}               append, creating the list
    $pull  {"a.list": {"k": v}}            remove every element matching all keys

Path segments of the form ``$[name]`` fan out over the list elements that
match the array filter bound to ``name``, e.g.
``array_filters=[{"elem.lessonId": "L1", "elem.status": "active"}]``.
"""

from copy import deepcopy
from typing import Any

_MISSING = object()

_COMPARATORS = {
    "$eq": lambda actual, expected: actual == expected,
    "$ne": lambda actual, expected: actual != expected,
    "$in": lambda actual, expected: actual in expected,
    "$nin": lambda actual, expected: actual not in expected,
    "$lt": lambda actual, expected: actual < expected,
    "$lte": lambda actual, expected: actual <= expected,
    "$gt": lambda actual, expected: actual > expected,
    "$gte": lambda actual, expected: actual >= expected,
}

_ORDERED = frozenset({"$lt", "$lte", "$gt", "$gte"})


def get_path(document: Any, path: str, default: Any = None) -> Any:
    """Read a dotted path from nested dicts/lists."""
    current = document
    for segment in path.split("."):
        if isinstance(current, dict) and segment in current:
            current = current[segment]
        elif isinstance(current, list) and segment.isdigit() and int(segment) < len(current):
            current = current[int(segment)]
        else:
            return default
    return current


def matches_condition(actual: Any, condition: Any) -> bool:
    """Test one value against a literal or an operator dict like {"$lt": 5}."""
    if isinstance(condition, dict) and condition and all(
        key.startswith("$") for key in condition
    ):
        for operator, expected in condition.items():
            if operator not in _COMPARATORS:
                raise ValueError(f"Unsupported query operator: {operator}")
            # Mongo semantics: a missing field never satisfies a range query
            if actual is _MISSING or actual is None:
                if operator in _ORDERED:
                    return False
                actual_value = None
            else:
                actual_value = actual
            if not _COMPARATORS[operator](actual_value, expected):
                return False
        return True
    if actual is _MISSING:
        return condition is None
    return actual == condition


def matches_document(document: Any, query: dict[str, Any]) -> bool:
    """True if every dotted path in ``query`` satisfies its condition."""
    return all(
        matches_condition(get_path(document, path, _MISSING), condition)
        for path, condition in query.items()
    )


def _group_filters(array_filters: list[dict[str, Any]] | None) -> dict[str, dict[str, Any]]:
    grouped: dict[str, dict[str, Any]] = {}
    for array_filter in array_filters or []:
        for key, condition in array_filter.items():
            identifier, _, sub_path = key.partition(".")
            grouped.setdefault(identifier, {})
            if sub_path:
                grouped[identifier][sub_path] = condition
            else:
                grouped[identifier][""] = condition
    return grouped


def _element_matches(element: Any, query: dict[str, Any]) -> bool:
    if "" in query:
        return matches_condition(element, query[""])
    return isinstance(element, dict) and matches_document(element, query)


def _resolve(
    container: Any,
    segments: list[str],
    filters: dict[str, dict[str, Any]],
    create: bool,
) -> list[tuple[Any, Any]]:
    """Return (parent, key) pairs addressed by ``segments``."""
    head, rest = segments[0], segments[1:]

    if head.startswith("$[") and head.endswith("]"):
        identifier = head[2:-1]
        if not isinstance(container, list):
            return []
        if identifier not in filters:
            raise ValueError(f"No array filter found for identifier {identifier!r}")
        indexes = [
            index
            for index, element in enumerate(container)
            if _element_matches(element, filters[identifier])
        ]
        if not rest:
            return [(container, index) for index in indexes]
        targets: list[tuple[Any, Any]] = []
        for index in indexes:
            targets.extend(_resolve(container[index], rest, filters, create))
        return targets

    if isinstance(container, list):
        if not head.isdigit() or int(head) >= len(container):
            return []
        key: Any = int(head)
    elif isinstance(container, dict):
        key = head
    else:
        return []

    if not rest:
        return [(container, key)]

    child = container[key] if (isinstance(container, list) or key in container) else _MISSING
    if child is _MISSING or child is None:
        if not create or isinstance(container, list):
            return []
        child = container[key] = {}
    return _resolve(child, rest, filters, create)


def _apply_set(parent: Any, key: Any, value: Any) -> None:
    parent[key] = deepcopy(value)


def _apply_inc(parent: Any, key: Any, value: Any) -> None:
    current = parent.get(key, 0) if isinstance(parent, dict) else parent[key]
    parent[key] = (current or 0) + value


def _apply_push(parent: Any, key: Any, value: Any) -> None:
    if isinstance(parent, dict) and parent.get(key) is None:
        parent[key] = []
    target = parent[key]
    if not isinstance(target, list):
        raise ValueError(f"Cannot $push to non-array field {key!r}")
    target.append(deepcopy(value))


def _apply_pull(parent: Any, key: Any, condition: Any) -> None:
    target = parent.get(key) if isinstance(parent, dict) else parent[key]
    if not isinstance(target, list):
        return
    if isinstance(condition, dict) and not all(k.startswith("$") for k in condition):
        keep = [
            element
            for element in target
            if not (isinstance(element, dict) and matches_document(element, condition))
        ]
    else:
        keep = [element for element in target if not matches_condition(element, condition)]
    target[:] = keep


_OPERATORS = {
    "$set": (_apply_set, True),
    "$inc": (_apply_inc, True),
    "$push": (_apply_push, True),
    "$pull": (_apply_pull, False),
}


def apply_update(
    document: dict[str, Any],
    update: dict[str, Any],
    array_filters: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    """Apply ``update`` to ``document`` in place and return it.

    Raises:
        ValueError: Unknown operator, missing array filter, or a $push onto a
            non-array field.
    """
    unknown = set(update) - set(_OPERATORS)
    if unknown:
        raise ValueError(f"Unsupported update operator(s): {', '.join(sorted(unknown))}")

    filters = _group_filters(array_filters)

    # Array filters match against the document as it was before the update
    pending = []
    for operator, fields in update.items():
        apply, create = _OPERATORS[operator]
        for path, value in fields.items():
            for parent, key in _resolve(document, path.split("."), filters, create):
                pending.append((apply, parent, key, value))

    for apply, parent, key, value in pending:
        apply(parent, key, value)
    return document
