from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Mapping

from ..core.errors import Issue, Severity
from ..core.profile_index import ProfileIndex, SliceDefinition
from ..core.schemas import ElementRule
from ..core.terminology import TerminologyResolver

if TYPE_CHECKING:
    from .constraints import ConstraintEvaluator


@dataclass
class ValidationContext:
    """
    Everything one validation call needs, created at the top of the call.

    Holds the per-call index and the issue accumulators. Never stored on
    the validator, so concurrent calls share nothing mutable.
    """

    index: ProfileIndex
    document: Any
    resolver: TerminologyResolver
    evaluator: "ConstraintEvaluator"
    max_depth: int = 64
    errors: List[Issue] = field(default_factory=list)
    warnings: List[Issue] = field(default_factory=list)
    _slice_rules: Dict[str, Mapping[str, ElementRule]] = field(default_factory=dict, repr=False)

    @property
    def resource_type(self) -> str:
        return self.index.root_path

    def report(self, issues: List[Issue]) -> None:
        for issue in issues:
            if issue.severity == Severity.ERROR:
                self.errors.append(issue)
            else:
                self.warnings.append(issue)

    def rules_for_slice(self, definition: SliceDefinition) -> Mapping[str, ElementRule]:
        rules = self._slice_rules.get(definition.rule.id)
        if rules is None:
            rules = self._slice_rules[definition.rule.id] = self.index.rules_for_slice(definition)
        return rules
