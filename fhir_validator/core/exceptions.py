from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .errors import ValidationResult


class ValidatorError(Exception):
    pass


class MalformedProfileError(ValidatorError):
    pass


class ProfileStoreError(ValidatorError):
    pass


class TerminologyUnavailable(ValidatorError):
    pass


class ConstraintEvaluationError(ValidatorError):
    pass


class ResourceValidationError(ValidatorError):
    def __init__(self, detail: str, result: "ValidationResult"):
        super().__init__(detail)
        self.detail = detail
        self.result = result

    @property
    def issues(self) -> list[dict]:
        return [issue.to_dict() for issue in self.result.issues]
