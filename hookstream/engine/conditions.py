"""
Condition evaluation for conditional mappings.

A condition is ``{field, operator, value}``; ``field`` is a dotted path into the
payload. Operators: equals, not_equals, contains, greater, less, exists.
Unknown operators evaluate to False.
"""

from __future__ import annotations

import json
import logging
import math
from collections.abc import Mapping
from typing import Any, Optional

from hookstream.engine.paths import MISSING, get_path

logger = logging.getLogger("hookstream.engine.conditions")

OPERATORS = frozenset({
    "equals", "not_equals", "contains", "greater", "less", "exists",
})


def stringify(value: Any) -> str:
    """Render a payload value the way it would appear in the JSON document."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, str):
        return value
    if isinstance(value, (Mapping, list, tuple)):
        return json.dumps(value, default=str, separators=(",", ":"))
    return str(value)


def to_number(value: Any) -> Optional[float]:
    """Coerce to a float; None when the value has no numeric reading."""
    if value is None or value is MISSING:
        return None
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if math.isnan(number):
        return None
    return number


def _compare(left: Any, right: Any, operator: str) -> bool:
    a = to_number(left)
    b = to_number(right)
    if a is None or b is None:
        return False
    return a > b if operator == "greater" else a < b


def evaluate_condition(payload: Any, condition: Any) -> bool:
    """
    Evaluate ``condition`` against ``payload``.

    ``condition`` may be a Condition model or a plain dict with the same keys.
    """
    if isinstance(condition, Mapping):
        field = condition.get("field", "")
        operator = condition.get("operator")
        expected = condition.get("value")
    else:
        field = condition.field
        operator = condition.operator
        expected = condition.value

    actual = get_path(payload, field)

    if operator == "equals":
        return actual is not MISSING and actual == expected
    if operator == "not_equals":
        return actual is MISSING or actual != expected
    if operator == "contains":
        if actual is MISSING:
            return False
        return stringify(expected) in stringify(actual)
    if operator in ("greater", "less"):
        return _compare(actual, expected, operator)
    if operator == "exists":
        return actual is not MISSING and actual is not None

    logger.warning(f"Unknown condition operator '{operator}' on field '{field}'")
    return False
