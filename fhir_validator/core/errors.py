"""
Issue taxonomy for the FHIR profile validator.

Every finding of a validation call is an ``Issue`` carrying one of the
``IssueCode`` values below. Issues are accumulated into a
``ValidationResult``; the result renders as a FHIR OperationOutcome for
callers building outward-facing error reports.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


class IssueCode(str, Enum):
    """
    Structured issue codes.

    The first group short-circuits a validation call, everything else is
    accumulated while the document is walked.
    """

    # Fatal, pre-walk
    MISSING_RESOURCE_TYPE = "MissingResourceType"
    UNKNOWN_RESOURCE_TYPE = "UnknownResourceType"
    PROFILE_NOT_FOUND = "ProfileNotFound"
    MALFORMED_PROFILE = "MalformedProfile"
    RESOURCE_TYPE_MISMATCH = "ResourceTypeMismatch"

    # Document level
    PROFILE_NOT_DECLARED = "ProfileNotDeclared"
    UNEXPECTED_PROPERTY = "UnexpectedProperty"

    # Element level
    REQUIRED_ELEMENT_MISSING = "RequiredElementMissing"
    CARDINALITY_EXCEEDED = "CardinalityExceeded"
    ELEMENT_NOT_ALLOWED = "ElementNotAllowed"
    TYPE_MISMATCH = "TypeMismatch"
    PATTERN_MISMATCH = "PatternMismatch"
    FIXED_VALUE_MISMATCH = "FixedValueMismatch"
    CONSTRAINT_VIOLATION = "ConstraintViolation"
    CONSTRAINT_WARNING = "ConstraintWarning"
    BINDING_VIOLATION = "BindingViolation"
    SLICE_CARDINALITY = "SliceCardinality"
    SLICE_NOT_MATCHED = "SliceNotMatched"

    INTERNAL_VALIDATION_ERROR = "InternalValidationError"


FATAL_CODES = frozenset({
    IssueCode.MISSING_RESOURCE_TYPE,
    IssueCode.UNKNOWN_RESOURCE_TYPE,
    IssueCode.PROFILE_NOT_FOUND,
    IssueCode.MALFORMED_PROFILE,
    IssueCode.RESOURCE_TYPE_MISMATCH,
})

# OperationOutcome issue-type for each code
_FHIR_ISSUE_TYPES: Dict[IssueCode, str] = {
    IssueCode.MISSING_RESOURCE_TYPE: "required",
    IssueCode.UNKNOWN_RESOURCE_TYPE: "not-supported",
    IssueCode.PROFILE_NOT_FOUND: "not-found",
    IssueCode.MALFORMED_PROFILE: "exception",
    IssueCode.RESOURCE_TYPE_MISMATCH: "invalid",
    IssueCode.PROFILE_NOT_DECLARED: "invalid",
    IssueCode.UNEXPECTED_PROPERTY: "structure",
    IssueCode.REQUIRED_ELEMENT_MISSING: "required",
    IssueCode.CARDINALITY_EXCEEDED: "structure",
    IssueCode.ELEMENT_NOT_ALLOWED: "structure",
    IssueCode.TYPE_MISMATCH: "value",
    IssueCode.PATTERN_MISMATCH: "value",
    IssueCode.FIXED_VALUE_MISMATCH: "value",
    IssueCode.CONSTRAINT_VIOLATION: "invariant",
    IssueCode.CONSTRAINT_WARNING: "informational",
    IssueCode.BINDING_VIOLATION: "code-invalid",
    IssueCode.SLICE_CARDINALITY: "structure",
    IssueCode.SLICE_NOT_MATCHED: "structure",
    IssueCode.INTERNAL_VALIDATION_ERROR: "exception",
}


class Issue(BaseModel):
    """A single, path-addressed validation finding."""

    model_config = ConfigDict(populate_by_name=True, frozen=True, use_enum_values=False)

    path: str
    severity: Severity
    message: str
    code: IssueCode
    constraint_key: Optional[str] = Field(default=None, alias="constraintKey")

    def to_fhir_issue(self) -> Dict[str, Any]:
        """Convert to FHIR OperationOutcome.issue format."""
        issue: Dict[str, Any] = {
            "severity": self.severity.value,
            "code": _FHIR_ISSUE_TYPES.get(self.code, "invalid"),
            "diagnostics": f"[{self.code.value}] {self.message}",
            "expression": [self.path],
        }
        if self.constraint_key:
            issue["diagnostics"] += f" (constraint {self.constraint_key})"
        return issue

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ValidationResult(BaseModel):
    """Outcome of one validation call."""

    model_config = ConfigDict(populate_by_name=True)

    errors: List[Issue] = Field(default_factory=list)
    warnings: List[Issue] = Field(default_factory=list)

    @computed_field(alias="isValid")  # type: ignore[misc]
    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    @property
    def issues(self) -> List[Issue]:
        return [*self.errors, *self.warnings]

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    def to_operation_outcome(self) -> Dict[str, Any]:
        """Convert to a FHIR OperationOutcome resource."""
        issues = [issue.to_fhir_issue() for issue in self.issues]
        if not issues:
            issues = [{
                "severity": "information",
                "code": "informational",
                "diagnostics": "All OK",
            }]
        return {"resourceType": "OperationOutcome", "issue": issues}


def create_issue(
    code: IssueCode,
    path: str,
    message: str,
    severity: Severity = Severity.ERROR,
    constraint_key: Optional[str] = None,
) -> Issue:
    return Issue(
        path=path,
        severity=severity,
        message=message,
        code=code,
        constraint_key=constraint_key,
    )


def fatal_result(code: IssueCode, path: str, message: str) -> ValidationResult:
    """Result for the pre-walk checks that stop a validation call."""
    return ValidationResult(errors=[create_issue(code, path, message)])
