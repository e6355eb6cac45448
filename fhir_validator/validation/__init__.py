# Validation pipeline: per-element checkers, the document walker and the validator
from .constraints import ConstraintEvaluator, FhirPathEvaluator, SimpleExpressionEvaluator
from .validator import Validator

__all__ = ["ConstraintEvaluator", "FhirPathEvaluator", "SimpleExpressionEvaluator", "Validator"]
