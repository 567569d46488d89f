"""Condition evaluation for branching nodes.

Comparisons are case-insensitive: both sides are lower-cased before the
operator is applied. A value that was never captured (``None``) never matches,
whatever the operator. ``greater_than`` and ``less_than`` compare the leading
number of each side, so "17 years" is greater than "10".
"""

from __future__ import annotations

import logging
import re
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)

# leading number of a reply such as "17 years" or "2.5kg"
LEADING_NUMBER = re.compile(r"\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:e[+-]?\d+)?)")


def _as_number(text: str) -> Optional[float]:
    match = LEADING_NUMBER.match(text)
    return float(match.group(1)) if match else None


def _greater_than(value: str, compare: str) -> bool:
    left, right = _as_number(value), _as_number(compare)
    return left is not None and right is not None and left > right


def _less_than(value: str, compare: str) -> bool:
    left, right = _as_number(value), _as_number(compare)
    return left is not None and right is not None and left < right


OPERATORS: Dict[str, Callable[[str, str], bool]] = {
    "equals": lambda value, compare: value == compare,
    "not_equals": lambda value, compare: value != compare,
    "contains": lambda value, compare: compare in value,
    "not_contains": lambda value, compare: compare not in value,
    "starts_with": lambda value, compare: value.startswith(compare),
    "ends_with": lambda value, compare: value.endswith(compare),
    "greater_than": _greater_than,
    "less_than": _less_than,
    "is_empty": lambda value, compare: value.strip() == "",
    "is_not_empty": lambda value, compare: value.strip() != "",
}


def evaluate(value: Optional[str], operator: str, compare_value: Optional[str]) -> bool:
    """Return whether ``value`` satisfies ``operator`` against ``compare_value``."""
    if value is None:
        return False

    check = OPERATORS.get(operator)
    if check is None:
        logger.warning(f"Unknown condition operator: {operator}")
        return False

    return check(str(value).lower(), str(compare_value or "").lower())
