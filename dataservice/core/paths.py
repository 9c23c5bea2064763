"""
Dotted-path access over nested documents.

Documents are trees of mappings and sequences. A path such as
"author.profile.name" or "tags.0" addresses one node in that tree; numeric
segments index into lists. These helpers back field filtering, exclusion,
population and dot-notation updates.
"""

from typing import Any, Dict, List, MutableMapping, Sequence


class _Missing:
    """Sentinel for a path that does not resolve."""

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()


def split_path(path: str) -> List[str]:
    return [segment for segment in path.split(".") if segment != ""]


def _index(segment: str, seq: Sequence) -> Any:
    if not segment.lstrip("-").isdigit():
        return MISSING
    idx = int(segment)
    if -len(seq) <= idx < len(seq):
        return idx
    return MISSING


def _step(node: Any, segment: str) -> Any:
    if isinstance(node, MutableMapping):
        return node.get(segment, MISSING)
    if isinstance(node, (list, tuple)):
        idx = _index(segment, node)
        return MISSING if idx is MISSING else node[idx]
    return MISSING


def get_path(doc: Any, path: str, default: Any = MISSING) -> Any:
    """
    Resolve a dotted path on a document.

    Args:
        doc: Root of the document tree
        path: Dotted path ("a.b.0.c")
        default: Value returned when the path does not resolve

    Returns:
        The value at the path, or default (MISSING unless given)

    Example:
        >>> get_path({"a": {"b": [1, 2]}}, "a.b.1")
        2
    """
    node = doc
    for segment in split_path(path):
        node = _step(node, segment)
        if node is MISSING:
            return default
    return node


def has_path(doc: Any, path: str) -> bool:
    return get_path(doc, path) is not MISSING


def set_path(doc: MutableMapping, path: str, value: Any) -> MutableMapping:
    """
    Set the value at a dotted path, creating intermediate dicts.

    Numeric segments index into existing lists; anything else that is not a
    mapping along the way is replaced by a new dict.

    Returns:
        The document (mutated in place)
    """
    segments = split_path(path)
    if not segments:
        return doc

    node: Any = doc
    for segment in segments[:-1]:
        child = _step(node, segment)
        if not isinstance(child, (MutableMapping, list)):
            child = {}
            if isinstance(node, list):
                idx = _index(segment, node)
                if idx is MISSING:
                    raise IndexError(f"Cannot set '{path}': invalid index '{segment}'")
                node[idx] = child
            else:
                node[segment] = child
        node = child

    last = segments[-1]
    if isinstance(node, list):
        idx = _index(last, node)
        if idx is MISSING:
            raise IndexError(f"Cannot set '{path}': invalid index '{last}'")
        node[idx] = value
    else:
        node[last] = value
    return doc


def unset_path(doc: Any, path: str) -> bool:
    """
    Delete the leaf addressed by a dotted path.

    Returns:
        True if something was removed, False if the path did not resolve
    """
    segments = split_path(path)
    if not segments:
        return False

    parent = get_path(doc, ".".join(segments[:-1])) if len(segments) > 1 else doc
    last = segments[-1]
    if isinstance(parent, MutableMapping):
        if last in parent:
            del parent[last]
            return True
        return False
    if isinstance(parent, list):
        idx = _index(last, parent)
        if idx is not MISSING:
            # Leaves a hole so later indexes keep their position
            parent[idx] = None
            return True
    return False


def flatten_dict(obj: Dict[str, Any], prefix: str = "") -> Dict[str, Any]:
    """
    Flatten nested dicts into dot-notation keys.

    Lists are kept as values; only mappings are walked. Empty mappings are
    kept as leaves so that setting a field to {} still reaches storage.

    Example:
        >>> flatten_dict({"a": {"b": 1, "c": [1, 2]}})
        {'a.b': 1, 'a.c': [1, 2]}
    """
    flat: Dict[str, Any] = {}
    for key, value in obj.items():
        full_key = f"{prefix}.{key}" if prefix else str(key)
        if isinstance(value, MutableMapping) and value:
            flat.update(flatten_dict(value, full_key))
        else:
            flat[full_key] = value
    return flat
