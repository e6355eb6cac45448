from __future__ import annotations

import json
from typing import Any, List

from ..core.errors import Issue, IssueCode, create_issue
from ..core.schemas import ElementRule
from ..core.value import is_absent, is_mapping, is_sequence, json_equal, thaw
from .paths import display_path


def _codings(value: Any) -> List[Any]:
    coding = value.get("coding") if is_mapping(value) else None
    return list(coding) if is_sequence(coding) else []


def codeable_concept_matches(value: Any, pattern: Any) -> bool:
    """Every pattern coding must occur (same system and code) among the instance codings."""
    if not is_mapping(value) or not is_mapping(pattern):
        return False
    instance_codings = _codings(value)
    for wanted in _codings(pattern):
        if not any(
            is_mapping(c) and c.get("system") == wanted.get("system") and c.get("code") == wanted.get("code")
            for c in instance_codings
        ):
            return False
    if "text" in pattern and not json_equal(value.get("text"), pattern["text"]):
        return False
    return True


def partial_match(value: Any, pattern: Any) -> bool:
    """True if every field present in ``pattern`` is present and equal in ``value``.

    Lists match when each pattern item is partially matched by some instance item.
    """
    if is_mapping(pattern):
        return is_mapping(value) and all(
            key in value and partial_match(value[key], expected) for key, expected in pattern.items()
        )
    if is_sequence(pattern):
        return is_sequence(value) and all(
            any(partial_match(item, expected) for item in value) for expected in pattern
        )
    return json_equal(value, pattern)


def matches_pattern(value: Any, kind: str, pattern: Any) -> bool:
    if kind == "CodeableConcept":
        return codeable_concept_matches(value, pattern)
    return partial_match(value, pattern)


def _render(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(thaw(value), sort_keys=True)


def check(path: str, value: Any, rule: ElementRule) -> List[Issue]:
    if is_absent(value):
        return []

    issues: List[Issue] = []
    where = display_path(path)

    for fixed in rule.fixed_by_kind.values():
        if not json_equal(value, fixed):
            issues.append(create_issue(
                IssueCode.FIXED_VALUE_MISMATCH,
                where,
                f"Expected fixed value '{_render(fixed)}', got '{_render(value)}'",
            ))

    for kind, pattern in rule.pattern_by_kind.items():
        if not matches_pattern(value, kind, pattern):
            issues.append(create_issue(
                IssueCode.PATTERN_MISMATCH,
                where,
                f"Value does not match required pattern{kind} for {path}",
            ))

    return issues
