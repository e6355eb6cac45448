"""
Slice assignment and slice cardinality for repeating elements.

Each item of a sliced element is assigned to the first slice whose
discriminating values it carries. Discriminating values are the
``pattern*``/``fixed*`` values of the slice's rules, restricted to the
declared discriminator paths when the base element names them.
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional, Sequence, Tuple

from ..core.errors import Issue, IssueCode, create_issue
from ..core.profile_index import SliceDefinition
from ..core.schemas import ElementRule
from ..core.value import collect_path, is_mapping, json_equal
from .paths import display_path
from .patterns import matches_pattern

logger = logging.getLogger(__name__)

# (relative path, kind, value, is_fixed)
Discriminator = Tuple[str, str, Any, bool]


def _rule_values(rule: ElementRule, relative: str) -> List[Discriminator]:
    values: List[Discriminator] = [(relative, kind, v, False) for kind, v in rule.pattern_by_kind.items()]
    values.extend((relative, kind, v, True) for kind, v in rule.fixed_by_kind.items())
    return values


def discriminators(base_rule: Optional[ElementRule], definition: SliceDefinition) -> List[Discriminator]:
    base = definition.base_path
    declared = [d.path for d in base_rule.slicing.discriminator] if base_rule is not None and base_rule.slicing else []

    found: List[Discriminator] = []
    if declared:
        for d_path in declared:
            if d_path == "$this":
                found.extend(_rule_values(definition.rule, "$this"))
                continue
            rule = definition.children.get(f"{base}.{d_path}")
            if rule is not None:
                found.extend(_rule_values(rule, d_path))
        return found

    found.extend(_rule_values(definition.rule, "$this"))
    for child_path, rule in definition.children.items():
        found.extend(_rule_values(rule, child_path[len(base) + 1:]))
    return found


def item_matches(item: Any, checks: Sequence[Discriminator]) -> bool:
    for relative, kind, expected, is_fixed in checks:
        candidates = [item] if relative == "$this" else collect_path(item, relative)
        if is_fixed:
            ok = any(json_equal(c, expected) for c in candidates)
        else:
            ok = any(matches_pattern(c, kind, expected) for c in candidates)
        if not ok:
            return False
    return True


def describe(checks: Sequence[Discriminator]) -> str:
    parts: List[str] = []
    for relative, kind, expected, _ in checks:
        codings = expected.get("coding") if is_mapping(expected) else None
        if codings:
            codes = ", ".join(f"{c.get('system', '')}|{c.get('code', '')}" for c in codings if is_mapping(c))
            parts.append(f"{relative} {codes}")
        else:
            parts.append(f"{relative} = {expected!r}")
    return "; ".join(parts)


def assign(
    path: str,
    items: Sequence[Any],
    base_rule: Optional[ElementRule],
    definitions: Sequence[SliceDefinition],
) -> Tuple[List[Issue], List[Optional[SliceDefinition]]]:
    """Assign items to slices and check each slice's own cardinality.

    Returns the issues plus, per item, the slice it belongs to (or None).
    """
    where = display_path(path)
    issues: List[Issue] = []
    checks = [(definition, discriminators(base_rule, definition)) for definition in definitions]

    assignment: List[Optional[SliceDefinition]] = []
    for item in items:
        owner = next(
            (definition for definition, found in checks if found and item_matches(item, found)),
            None,
        )
        assignment.append(owner)

    for definition, found in checks:
        if not found:
            logger.debug(f"Slice {definition.name} of {path} has no discriminating values, not enforced")
            continue
        count = sum(1 for owner in assignment if owner is definition)
        rule = definition.rule
        if count < rule.min:
            issues.append(create_issue(
                IssueCode.SLICE_CARDINALITY,
                where,
                f"Slice '{definition.name}' of {path} requires at least {rule.min} item(s) "
                f"matching {describe(found)}, found {count}",
            ))
        if rule.max_count is not None and count > rule.max_count:
            issues.append(create_issue(
                IssueCode.SLICE_CARDINALITY,
                where,
                f"Slice '{definition.name}' of {path} allows at most {rule.max_count} item(s), found {count}",
            ))

    if base_rule is not None and base_rule.slicing is not None and base_rule.slicing.rules == "closed":
        for position, owner in enumerate(assignment):
            if owner is None:
                issues.append(create_issue(
                    IssueCode.SLICE_NOT_MATCHED,
                    where,
                    f"Item {position} of {path} does not match any slice and slicing is closed",
                ))

    return issues, assignment
