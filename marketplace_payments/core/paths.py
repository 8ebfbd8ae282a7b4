"""Lookup of values that different gateway versions place at different JSON paths."""
from typing import Any, Iterable, Mapping, Optional, Tuple

JsonPath = Tuple[str, ...]


def resolve_path(document: Any, path: JsonPath) -> Any:
    """Follow ``path`` through nested objects; None when any segment is missing."""
    current = document
    for segment in path:
        if not isinstance(current, Mapping):
            return None
        current = current.get(segment)
        if current is None:
            return None
    return current


def first_present(document: Any, paths: Iterable[JsonPath]) -> Optional[str]:
    """
    Return the first non-empty string found at one of ``paths``, in order.

    Non-string leaves (numbers) are rendered as strings so that numeric order
    ids still correlate with invoice numbers.
    """
    for path in paths:
        value = resolve_path(document, path)
        if isinstance(value, bool):
            continue
        if isinstance(value, (int, float)):
            value = str(value)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None
