"""
Top-down walk of an instance document along its profile's element rules.

Every element that has a rule gets its checks in a fixed order
(cardinality, datatype, constraints, pattern/fixed, terminology), none of
them short-circuiting the others. The walk then descends into the child
rules of every present item; absent elements are not descended into.
"""

from __future__ import annotations

import logging
from typing import Any, List, Mapping, Optional

from ..core.exceptions import ValidatorError
from ..core.profile_index import SliceDefinition
from ..core.schemas import ElementRule
from ..core.value import MISSING, as_items, is_absent, is_mapping, resolve_choice
from . import binding, cardinality, constraints, datatype, patterns, slicing
from .context import ValidationContext

logger = logging.getLogger(__name__)


async def walk(
    path: str,
    value: Any,
    ctx: ValidationContext,
    depth: int = 0,
    rules: Optional[Mapping[str, ElementRule]] = None,
) -> None:
    """Validate ``value`` against the rule at ``path`` and recurse into its children.

    ``rules`` is the path-to-rule view in effect; inside a slice it is the
    base rules overlaid with the slice's own.
    """
    rules = ctx.index.path_to_rule if rules is None else rules
    rule = rules.get(path)
    if rule is None:
        return
    if depth > ctx.max_depth:
        raise ValidatorError(f"Maximum walk depth {ctx.max_depth} exceeded at {path}")

    ctx.report(cardinality.check(path, value, rule))
    ctx.report(datatype.check(path, value, rule))

    items = as_items(value)
    owners: List[Optional[SliceDefinition]] = [None] * len(items)
    definitions = ctx.index.slices_for(path)
    if definitions:
        slice_issues, owners = slicing.assign(path, items, rule, definitions)
        ctx.report(slice_issues)

    for item, owner in zip(items or [MISSING], owners or [None]):
        await _check_item(path, item, rule, ctx)

        if is_absent(item) or not is_mapping(item):
            continue

        item_rules = ctx.rules_for_slice(owner) if owner is not None else rules
        for child in ctx.index.child_rules(path, item_rules):
            _, child_value = resolve_choice(item, child.name, child.type_codes)
            await walk(child.path, child_value, ctx, depth + 1, item_rules)


async def _check_item(path: str, item: Any, rule: ElementRule, ctx: ValidationContext) -> None:
    # absent elements have no instance to evaluate
    if not is_absent(item):
        ctx.report(constraints.check(path, item, rule, ctx.evaluator))
    ctx.report(patterns.check(path, item, rule))
    ctx.report(await binding.check(path, item, rule, ctx.resolver))
