"""
Evaluation of the adapter filter vocabulary against plain documents.

Used by the memory adapter. Query values are either a literal (equality) or
an operator dict: {"$in": [...]}, {"$nin": [...]}, {"$ne": v}, {"$gt": v},
{"$gte": v}, {"$lt": v}, {"$lte": v}. Keys may be dotted paths.
"""

import operator
from typing import Any, Callable, Dict, List, Optional, Sequence

from dataservice.core.paths import MISSING, get_path

_COMPARATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "$gt": operator.gt,
    "$gte": operator.ge,
    "$lt": operator.lt,
    "$lte": operator.le,
}

OPERATORS = {"$in", "$nin", "$ne", *_COMPARATORS}


def is_operator_dict(value: Any) -> bool:
    return isinstance(value, dict) and bool(value) and all(k in OPERATORS for k in value)


def _match_condition(actual: Any, condition: Any) -> bool:
    if not is_operator_dict(condition):
        if isinstance(actual, list) and not isinstance(condition, list):
            return condition in actual
        return actual is not MISSING and actual == condition

    for op, expected in condition.items():
        if op == "$in":
            if actual is MISSING or actual not in expected:
                return False
        elif op == "$nin":
            if actual is not MISSING and actual in expected:
                return False
        elif op == "$ne":
            if actual is not MISSING and actual == expected:
                return False
        else:
            if actual is MISSING or actual is None:
                return False
            try:
                if not _COMPARATORS[op](actual, expected):
                    return False
            except TypeError:
                return False
    return True


def match_query(doc: Dict[str, Any], query: Optional[Dict[str, Any]]) -> bool:
    """Check whether a document satisfies every condition of a query."""
    for path, condition in (query or {}).items():
        if not _match_condition(get_path(doc, path), condition):
            return False
    return True


def match_search(doc: Dict[str, Any], search: str, fields: Optional[Sequence[str]] = None) -> bool:
    """Case-insensitive substring search over the given (or all top-level) fields."""
    needle = search.lower()
    if fields:
        values = [get_path(doc, f) for f in fields]
    else:
        values = list(doc.values())
    return any(v is not MISSING and needle in str(v).lower() for v in values)


class _SortValue:
    """Orders None/missing values first and mixed types by type name."""

    __slots__ = ("value",)

    def __init__(self, value: Any):
        self.value = value

    def _key(self):
        if self.value is MISSING or self.value is None:
            return (0, "", 0)
        return (1, type(self.value).__name__, self.value)

    def __lt__(self, other: "_SortValue") -> bool:
        try:
            return self._key() < other._key()
        except TypeError:
            return str(self.value) < str(other.value)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, _SortValue) and self._key() == other._key()


def sort_documents(docs: List[Dict[str, Any]], sort: Sequence[str]) -> List[Dict[str, Any]]:
    """
    Sort documents by several fields; "-field" sorts descending.

    Applies stable sorts from the last key to the first.
    """
    result = list(docs)
    for entry in reversed(list(sort)):
        descending = entry.startswith("-")
        path = entry[1:] if descending else entry
        result.sort(key=lambda d: _SortValue(get_path(d, path)), reverse=descending)
    return result
