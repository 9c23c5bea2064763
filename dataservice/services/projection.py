"""
Field projection: inclusion, authorization and exclusion of document fields.

All paths are exact dotted paths ("author.name"); wildcards are not
supported and authorize_fields relies on that.
"""

import copy
from typing import Any, Dict, Iterable, List, Optional, Sequence

from dataservice.core.paths import MISSING, get_path, set_path, unset_path


def filter_fields(doc: Dict[str, Any], fields: Optional[Sequence[str]]) -> Dict[str, Any]:
    """
    Keep only the listed paths of a document.

    Args:
        doc: Source document (not mutated)
        fields: Dotted paths to keep; None returns doc unchanged

    Returns:
        A new document holding the paths that resolve in doc. Paths that do
        not resolve are skipped without placeholder keys.
    """
    if fields is None:
        return doc

    res: Dict[str, Any] = {}
    for path in fields:
        value = get_path(doc, path)
        if value is not MISSING:
            set_path(res, path, value)
    return res


def authorize_fields(
    asked_fields: Optional[Sequence[str]],
    allowed_fields: Optional[Sequence[str]],
) -> Optional[List[str]]:
    """
    Restrict requested fields to a server-side allow-list.

    Rules, per requested path:
        1. Exactly allowed: kept.
        2. An ancestor ("a" for "a.b.c") is allowed: the full path is kept.
        3. Allowed entries below the path ("a.x" for "a"): those entries are
           kept instead of the requested path.
        Anything else is dropped.

    Args:
        asked_fields: Paths requested by the caller
        allowed_fields: Server allow-list; empty or None means no restriction

    Returns:
        The authorized paths

    Example:
        >>> authorize_fields(["a", "b.c"], ["a", "b"])
        ['a', 'b.c']
    """
    if not allowed_fields:
        return list(asked_fields) if asked_fields is not None else asked_fields

    allowed = set(allowed_fields)
    authorized: List[str] = []
    for asked in asked_fields or []:
        if asked in allowed:
            authorized.append(asked)
            continue

        parts = asked.split(".")
        if any(".".join(parts[:i]) in allowed for i in range(len(parts) - 1, 0, -1)):
            authorized.append(asked)
            continue

        prefix = asked + "."
        authorized.extend(f for f in allowed_fields if f.startswith(prefix))
    return authorized


def exclude_fields(doc: Dict[str, Any], fields: Optional[Iterable[str]]) -> Dict[str, Any]:
    """
    Remove paths from a deep copy of a document.

    Args:
        doc: Source document (not mutated)
        fields: Dotted paths to remove; missing paths are ignored

    Returns:
        The document without the excluded paths
    """
    fields = list(fields or [])
    if not fields:
        return doc

    res = copy.deepcopy(doc)
    for path in fields:
        unset_path(res, path)
    return res
