"""
Dotted-path access into nested mappings.

    get_path({"a": {"b": 5}}, "a.b")   -> 5
    get_path({"a": 1}, "a.b")          -> MISSING
    set_path(out, "user.name", "Ada")  -> out == {"user": {"name": "Ada"}}

Absence is a value (MISSING), not an exception: callers decide what a missing
field means.
"""

from __future__ import annotations

from collections.abc import Mapping, MutableMapping
from typing import Any, List


class _Missing:
    """Sentinel type for "no value at this path"."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "MISSING"

    def __reduce__(self):
        return (_Missing, ())


MISSING = _Missing()


def split_path(path: str) -> List[str]:
    """Split a dotted path into its segments."""
    return path.split(".")


def get_path(root: Any, path: str) -> Any:
    """
    Return the value at ``path`` inside ``root``, or MISSING.

    Every intermediate value must be a mapping; anything else (lists, scalars,
    None) ends the walk with MISSING. Never raises.
    """
    current = root
    for segment in split_path(path):
        if not isinstance(current, Mapping):
            return MISSING
        try:
            current = current[segment]
        except KeyError:
            return MISSING
    return current


def set_path(root: MutableMapping, path: str, value: Any) -> None:
    """
    Assign ``value`` at ``path`` inside ``root``.

    Intermediate segments that are absent or not mappings are replaced by a
    fresh dict. Only used on output records, never on source payloads.
    """
    segments = split_path(path)
    current = root
    for segment in segments[:-1]:
        child = current.get(segment)
        if not isinstance(child, MutableMapping):
            child = {}
            current[segment] = child
        current = child
    current[segments[-1]] = value


def has_path(root: Any, path: str) -> bool:
    """True if ``path`` resolves to a value (None counts as present)."""
    return get_path(root, path) is not MISSING


def flatten(record: Mapping, prefix: str = "") -> dict:
    """
    Collapse a nested record into dotted top-level keys.

        flatten({"a": {"b": 1}, "c": 2}) -> {"a.b": 1, "c": 2}

    Empty nested mappings are kept as values so no target disappears.
    """
    flat: dict = {}
    for key, value in record.items():
        dotted = f"{prefix}{key}"
        if isinstance(value, Mapping) and value:
            flat.update(flatten(value, prefix=f"{dotted}."))
        else:
            flat[dotted] = value
    return flat
