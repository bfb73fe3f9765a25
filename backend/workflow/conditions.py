"""Condition evaluator for trigger conditions and step guards.

A condition set is a flat mapping checked against a subject record:

    {"status": "at_risk"}          → subject["status"] == "at_risk"
    {"inquiry_score_gt": 70}       → subject["inquiry_score"] > 70
    {"application.status": "draft"} → subject["application"]["status"] == "draft"

Only equality and numeric greater-than exist. Every key must hold. An empty
or absent set is vacuously true; a missing field fails its condition.
Evaluation never raises.
"""

from dataclasses import dataclass
from numbers import Number
from typing import Any, Mapping, Optional, Union

_MISSING = object()
_GT_SUFFIX = "_gt"


def resolve_field(record: Any, path: str) -> Any:
    """Read a dotted field path from nested mappings, or ``_MISSING``."""
    current = record
    for part in path.split("."):
        if isinstance(current, Mapping) and part in current:
            current = current[part]
        else:
            return _MISSING
    return current


def _is_number(value: Any) -> bool:
    return isinstance(value, Number) and not isinstance(value, bool)


@dataclass(frozen=True)
class Equals:
    field: str
    expected: Any

    def matches(self, subject: Mapping) -> bool:
        actual = resolve_field(subject, self.field)
        if actual is _MISSING:
            return False
        return actual == self.expected


@dataclass(frozen=True)
class GreaterThan:
    field: str
    threshold: Any

    def matches(self, subject: Mapping) -> bool:
        actual = resolve_field(subject, self.field)
        if actual is _MISSING or not _is_number(actual) or not _is_number(self.threshold):
            return False
        return actual > self.threshold


Condition = Union[Equals, GreaterThan]


def parse_conditions(conditions: Optional[Mapping]) -> list[Condition]:
    """Turn a stored condition mapping into typed conditions."""
    parsed: list[Condition] = []
    for key, expected in (conditions or {}).items():
        if key.endswith(_GT_SUFFIX) and len(key) > len(_GT_SUFFIX):
            parsed.append(GreaterThan(field=key[: -len(_GT_SUFFIX)], threshold=expected))
        else:
            parsed.append(Equals(field=key, expected=expected))
    return parsed


def evaluate(conditions: Optional[Mapping], subject: Optional[Mapping]) -> bool:
    """Check every condition against ``subject``.

    Args:
        conditions: Flat condition mapping (None/empty means "always")
        subject: Record or event payload to check

    Returns:
        True if every condition holds
    """
    if not conditions:
        return True
    if not isinstance(conditions, Mapping):
        return False
    subject = subject if isinstance(subject, Mapping) else {}
    return all(c.matches(subject) for c in parse_conditions(conditions))
