from __future__ import annotations

from typing import Any, List

from ..core.errors import Issue, IssueCode, create_issue
from ..core.schemas import ElementRule
from ..core.value import is_absent, is_sequence
from .paths import display_path


def check(path: str, value: Any, rule: ElementRule) -> List[Issue]:
    """Occurrence checks for the whole value of one element (list, scalar or absent).

    Absence of an optional element yields nothing here; the walker does not
    descend into absent elements.
    """
    where = display_path(path)

    if is_absent(value):
        if rule.min > 0:
            return [create_issue(
                IssueCode.REQUIRED_ELEMENT_MISSING,
                where,
                f"Required element '{path}' is missing (min cardinality: {rule.min})",
            )]
        return []

    max_count = rule.max_count

    if is_sequence(value):
        issues: List[Issue] = []
        if len(value) < rule.min:
            issues.append(create_issue(
                IssueCode.REQUIRED_ELEMENT_MISSING,
                where,
                f"Element '{path}' has {len(value)} items, minimum required: {rule.min}",
            ))
        if max_count is not None and len(value) > max_count:
            issues.append(create_issue(
                IssueCode.CARDINALITY_EXCEEDED,
                where,
                f"Element '{path}' has {len(value)} items, maximum allowed: {max_count}",
            ))
        return issues

    if max_count is not None and max_count < 1:
        return [create_issue(
            IssueCode.ELEMENT_NOT_ALLOWED,
            where,
            f"Element '{path}' should not be present (max cardinality: {rule.max})",
        )]
    return []
