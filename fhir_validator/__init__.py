"""
Profile-driven structural validation of FHIR resources.

Documents are validated against StructureDefinition profiles: cardinality,
datatypes, pattern/fixed values, invariants, slices and value-set bindings.
"""

from .core.errors import Issue, IssueCode, Severity, ValidationResult
from .core.exceptions import ResourceValidationError, ValidatorError
from .validation.validator import Validator

__all__ = [
    "Issue",
    "IssueCode",
    "ResourceValidationError",
    "Severity",
    "ValidationResult",
    "Validator",
    "ValidatorError",
]
