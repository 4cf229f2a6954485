"""
Condition evaluation.

An alert carries exactly one condition document:

    {"field": "price", "operator": "above", "value": 50000}

The field indexes into the flat data map produced by a data source.
"""

import logging
from typing import Any, Mapping, Optional

logger = logging.getLogger(__name__)

__all__ = ["ConditionEvaluator", "OPERATORS", "normalize_operator"]


# Canonical operator -> accepted spellings
OPERATORS: dict[str, tuple[str, ...]] = {
    "above": ("above", "greater_than", "greater", ">"),
    "below": ("below", "less_than", "less", "<"),
    "above_or_equal": ("greater_equal", ">="),
    "below_or_equal": ("less_equal", "<="),
    "equals": ("equals", "=", "=="),
    "not_equals": ("not_equals", "!="),
    "changes_by": ("changes_by",),
}

_ALIASES = {alias: name for name, aliases in OPERATORS.items() for alias in aliases}

# Fields a changes_by condition falls back to when its own field is not a delta
CHANGE_FIELDS = ("change_24h", "change_percent")


def normalize_operator(operator: Any) -> Optional[str]:
    """Map an operator spelling to its canonical name, or None if unknown."""
    if not isinstance(operator, str):
        return None
    return _ALIASES.get(operator.strip().lower())


def _to_number(value: Any) -> Optional[float]:
    """Coerce a value to float, or None if it is not numeric."""
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _to_bool(value: Any) -> Optional[bool]:
    """Coerce a value to bool, or None if it does not spell a boolean."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if text == "true":
            return True
        if text == "false":
            return False
    return None


def _lookup(data: Mapping[str, Any], field: str) -> tuple[bool, Any]:
    """Find a field by name, case-insensitively."""
    if field in data:
        return True, data[field]
    lowered = field.lower()
    for key, value in data.items():
        if isinstance(key, str) and key.lower() == lowered:
            return True, value
    return False, None


class ConditionEvaluator:
    """Evaluates a single condition against current data."""

    def matches(self, condition: Mapping[str, Any], data: Mapping[str, Any]) -> bool:
        """
        Check whether the condition holds for the given data.

        Missing fields, unknown operators and non-comparable values never
        raise; they simply do not match.

        Args:
            condition: {"field", "operator", "value"} document
            data: Flat key -> value map from a data source

        Returns:
            True if the condition is met
        """
        if not condition or not data:
            return False

        field = condition.get("field")
        operator = normalize_operator(condition.get("operator"))
        target = condition.get("value")

        if not isinstance(field, str) or operator is None or target is None:
            return False

        found, current = _lookup(data, field)

        if operator == "changes_by":
            return self._changes_by(field, found, current, data, target)

        if not found or current is None:
            return False

        if operator in ("equals", "not_equals"):
            equal = self._equals(current, target)
            return equal if operator == "equals" else not equal

        current_num = _to_number(current)
        target_num = _to_number(target)
        if current_num is None or target_num is None:
            return False

        if operator == "above":
            return current_num > target_num
        if operator == "below":
            return current_num < target_num
        if operator == "above_or_equal":
            return current_num >= target_num
        if operator == "below_or_equal":
            return current_num <= target_num
        return False

    def _equals(self, current: Any, target: Any) -> bool:
        """
        Compare a data value with a condition target.

        Two strings compare exactly. A bool on either side compares as a
        boolean, accepting "true"/"false" on the other. Otherwise numbers
        compare numerically and anything else falls back to exact text.
        """
        if isinstance(current, str) and isinstance(target, str):
            return current == target

        if isinstance(current, bool) or isinstance(target, bool):
            current_bool = _to_bool(current)
            target_bool = _to_bool(target)
            if current_bool is None or target_bool is None:
                return False
            return current_bool == target_bool

        current_num = _to_number(current)
        target_num = _to_number(target)
        if current_num is not None and target_num is not None:
            return current_num == target_num
        return str(current) == str(target)

    def _changes_by(
        self,
        field: str,
        found: bool,
        current: Any,
        data: Mapping[str, Any],
        target: Any,
    ) -> bool:
        """Match when the magnitude of a precomputed change reaches the target."""
        if not (found and "change" in field.lower()):
            current = None
            for change_field in CHANGE_FIELDS:
                has_field, value = _lookup(data, change_field)
                if has_field and value is not None:
                    current = value
                    break

        current_num = _to_number(current)
        target_num = _to_number(target)
        if current_num is None or target_num is None:
            return False
        return abs(current_num) >= abs(target_num)
