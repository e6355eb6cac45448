from __future__ import annotations

import logging
from typing import Any, List, Optional

from ..core.errors import Issue, IssueCode, Severity, create_issue
from ..core.schemas import ElementRule
from ..core.terminology import TerminologyResolver
from ..core.value import is_absent, is_mapping, is_sequence
from .paths import display_path

logger = logging.getLogger(__name__)


def instance_code(value: Any) -> Optional[str]:
    """The code a bound value carries: a plain string, or the first coding's code."""
    if isinstance(value, str):
        return value
    if is_mapping(value):
        coding = value.get("coding")
        if is_sequence(coding) and coding and is_mapping(coding[0]):
            code = coding[0].get("code")
            return code if isinstance(code, str) else None
        code = value.get("code")
        if isinstance(code, str):
            return code
    return None


async def check(path: str, value: Any, rule: ElementRule, resolver: TerminologyResolver) -> List[Issue]:
    """Value-set membership for bound elements.

    An unavailable or failing resolver yields no issue.
    """
    if not rule.binding_value_set or is_absent(value):
        return []

    code = instance_code(value)
    if code is None:
        return []

    try:
        concepts = await resolver.lookup(rule.binding_value_set)
    except Exception as e:
        logger.warning(f"Terminology lookup for {rule.binding_value_set} failed, binding on {path} not checked: {e}")
        return []

    if concepts is None:
        logger.debug(f"Value set {rule.binding_value_set} unavailable, binding on {path} not checked")
        return []

    if any(concept.code == code for concept in concepts):
        return []

    allowed = ", ".join(concept.label() for concept in concepts)
    severity = Severity.ERROR if rule.binding_strength in (None, "required") else Severity.WARNING
    return [create_issue(
        IssueCode.BINDING_VIOLATION,
        display_path(path),
        f"Value '{code}' not allowed, possible values are: {allowed}",
        severity=severity,
    )]
