"""
Invariant evaluation for element constraints.

Constraint expressions are FHIRPath. ``ConstraintEvaluator`` is the seam:
``FhirPathEvaluator`` hands the expression to ``fhirpathpy``, while
``SimpleExpressionEvaluator`` is an offline fallback that only knows
``exists()``, ``empty()``, ``length()`` comparisons and ``$this is Type``,
joined with ``and``/``or``. Both evaluate relative to the element value,
which acts as ``$this``.
"""

from __future__ import annotations

import logging
import re
from typing import Any, List, Optional, Protocol

import fhirpathpy

from ..core.errors import Issue, IssueCode, Severity, create_issue
from ..core.exceptions import ConstraintEvaluationError
from ..core.schemas import ElementRule
from ..core.value import as_items, is_absent, is_mapping, thaw
from .datatype import matches_type
from .paths import display_path

logger = logging.getLogger(__name__)


class ConstraintEvaluator(Protocol):
    def evaluate(self, expression: str, value: Any, path: str) -> bool: ...


_SUBJECT = r"(?:(?P<subject>\$?this|[A-Za-z_]\w*(?:\.[A-Za-z_]\w*)*)\.)?"
_EXISTENCE = re.compile(rf"^{_SUBJECT}(?P<function>exists|empty)\(\)$")
_LENGTH = re.compile(rf"^{_SUBJECT}length\(\)\s*(?P<op>>=|<=|!=|=|>|<)\s*(?P<number>\d+)$")
_TYPE_TEST = re.compile(r"^\$?this\s+is\s+(?:[A-Za-z]+\.)?(?P<type>[A-Za-z]+)$")
_OR = re.compile(r"\s+or\s+")
_AND = re.compile(r"\s+and\s+")

# bare ``this`` (not ``$this``, not a member or string) is read by fhirpathpy as a property
_BARE_THIS = re.compile(r"(?<![\w$%.'])this\b")

_COMPARATORS = {
    "=": lambda a, b: a == b,
    "!=": lambda a, b: a != b,
    ">": lambda a, b: a > b,
    ">=": lambda a, b: a >= b,
    "<": lambda a, b: a < b,
    "<=": lambda a, b: a <= b,
}


def _focus(value: Any, subject: Optional[str]) -> List[Any]:
    items = as_items(value)
    if subject is None or subject in ("$this", "this"):
        return items
    for name in subject.split("."):
        items = [child for item in items if is_mapping(item) for child in as_items(item.get(name))]
    return items


def _term(term: str, value: Any) -> bool:
    match = _EXISTENCE.match(term)
    if match:
        present = len(_focus(value, match.group("subject"))) > 0
        return present if match.group("function") == "exists" else not present

    match = _LENGTH.match(term)
    if match:
        items = _focus(value, match.group("subject"))
        if not items:
            return False
        if len(items) > 1 or not isinstance(items[0], str):
            raise ConstraintEvaluationError(f"length() needs a single string in {term!r}")
        return _COMPARATORS[match.group("op")](len(items[0]), int(match.group("number")))

    match = _TYPE_TEST.match(term)
    if match:
        items = as_items(value)
        return len(items) == 1 and matches_type(items[0], match.group("type"))

    raise ConstraintEvaluationError(f"Unsupported expression {term!r}")


class SimpleExpressionEvaluator:
    """Offline fallback for the handful of expression forms profiles lean on most."""

    def evaluate(self, expression: str, value: Any, path: str) -> bool:
        return any(
            all(_term(term.strip(), value) for term in _AND.split(alternative))
            for alternative in _OR.split(expression.strip())
        )


class FhirPathEvaluator:
    """Full FHIRPath through fhirpathpy, rooted at the element value."""

    def evaluate(self, expression: str, value: Any, path: str) -> bool:
        expression = _BARE_THIS.sub("$this", expression)
        try:
            resource = [] if is_absent(value) else thaw(value)
            result = fhirpathpy.evaluate(resource, expression, {})
        except Exception as e:
            raise ConstraintEvaluationError(f"fhirpathpy failed on {expression!r}: {e}") from e
        return result == [True]


def build_evaluator(engine: str) -> ConstraintEvaluator:
    if engine == "simple":
        return SimpleExpressionEvaluator()
    return FhirPathEvaluator()


def check(path: str, value: Any, rule: ElementRule, evaluator: ConstraintEvaluator) -> List[Issue]:
    """Evaluate every constraint of ``rule``; evaluator failures become warnings."""
    issues: List[Issue] = []
    where = display_path(path)
    for constraint in rule.constraints:
        try:
            holds = evaluator.evaluate(constraint.expression, value, path)
        except Exception as e:
            logger.debug(f"Constraint {constraint.key} on {path} not evaluated: {e}")
            issues.append(create_issue(
                IssueCode.CONSTRAINT_WARNING,
                where,
                f"Could not evaluate constraint {constraint.key}: {e}",
                severity=Severity.WARNING,
                constraint_key=constraint.key,
            ))
            continue

        if not holds:
            issues.append(create_issue(
                IssueCode.CONSTRAINT_VIOLATION,
                where,
                constraint.human_message or f"Constraint {constraint.key} failed: {constraint.expression}",
                severity=Severity.ERROR if constraint.severity == "error" else Severity.WARNING,
                constraint_key=constraint.key,
            ))
    return issues
