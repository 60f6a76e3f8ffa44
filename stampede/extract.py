"""Dotted-path lookups into decoded JSON bodies (``"pr.assigned_reviewers.0"``)."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any


def extract_path(document: Any, path: str, default: Any = None) -> Any:
    """
    Walk *path* through nested mappings and sequences.

    Segments are separated by dots.  A segment addresses a mapping key,
    or, when the current value is a list, an integer index (negative
    indexes count from the end).  Any miss returns *default*; a lookup
    never raises.

    Args:
        document: Decoded JSON (dicts, lists, scalars).
        path: Dotted path, e.g. ``"pr.assigned_reviewers.0"``.
        default: Value returned when the path does not resolve.

    Returns:
        The value at *path*, or *default*.
    """
    if not path:
        return document

    current = document
    for segment in path.split("."):
        if isinstance(current, Mapping):
            if segment not in current:
                return default
            current = current[segment]
        elif isinstance(current, Sequence) and not isinstance(current, (str, bytes)):
            try:
                index = int(segment)
            except ValueError:
                return default
            if not -len(current) <= index < len(current):
                return default
            current = current[index]
        else:
            return default
    return current
