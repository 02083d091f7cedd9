"""Prioritized field extraction for loosely-shaped API documents.

API responses put the same fact under different keys depending on the
endpoint version (``owner`` vs ``owners[0].address``, ``traits`` vs
``metadata.attributes``). Extraction strategies are declared as ordered
paths and the first non-empty match wins.
"""

from __future__ import annotations

import math
from typing import Any, Callable, Optional, Sequence, Union

PathStep = Union[str, int]
FieldPath = tuple[PathStep, ...]

_MISSING = object()


def dig(obj: Any, path: Sequence[PathStep]) -> Any:
    """Follow ``path`` through nested dicts/lists. Returns ``None`` on any miss."""
    current = obj
    for step in path:
        if isinstance(step, int):
            if not isinstance(current, (list, tuple)):
                return None
            if step >= len(current) or step < -len(current):
                return None
            current = current[step]
        else:
            if not isinstance(current, dict):
                return None
            current = current.get(step, _MISSING)
            if current is _MISSING:
                return None
    return current


def _is_present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, tuple, dict)):
        return bool(value)
    return True


def first_match(
    obj: Any,
    paths: Sequence[FieldPath],
    accept: Optional[Callable[[Any], bool]] = None,
) -> Any:
    """Return the value at the first path holding an acceptable value.

    Args:
        obj: Document to search
        paths: Ordered extraction strategies
        accept: Predicate deciding whether a candidate counts as a match
            (default: not None and not empty)

    Returns:
        The matched value, or None when no path matches
    """
    predicate = accept or _is_present
    for path in paths:
        value = dig(obj, path)
        if predicate(value):
            return value
    return None


def is_finite_number(value: Any) -> bool:
    """Accept ints/floats (and numeric strings) that are finite."""
    if value is None or isinstance(value, bool):
        return False
    try:
        number = float(value)
    except (TypeError, ValueError):
        return False
    return math.isfinite(number)


OWNER_PATHS: tuple[FieldPath, ...] = (
    ("owner",),
    ("owners", 0, "address"),
    ("owners", 0, "owner_address"),
)

TRAIT_LIST_PATHS: tuple[FieldPath, ...] = (
    ("traits",),
    ("metadata", "attributes"),
    ("attributes",),
)

TRAIT_TYPE_PATHS: tuple[FieldPath, ...] = (
    ("trait_type",),
    ("traitType",),
    ("type",),
)

TRAIT_VALUE_PATHS: tuple[FieldPath, ...] = (
    ("value",),
    ("trait_value",),
)

POINTS_TOTAL_PATHS: tuple[FieldPath, ...] = (
    ("points", "total_points"),
    ("points", "totalPoints"),
    ("total_points",),
)
