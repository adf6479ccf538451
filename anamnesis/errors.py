"""Exception types raised (or recovered from) by the intake form engine."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence


class IntakeError(Exception):
    """Base class for intake form errors."""


class SchemaError(IntakeError):
    """A form template references something it should not.

    Schema problems are reported while building the dependency graph and are
    logged, not raised, so that a malformed rule only hides the item it guards.
    """

    def __init__(self, message: str, *, question_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.question_id = question_id


@dataclass(frozen=True)
class FieldError:
    """A single visible field that failed validation."""

    field_id: str
    label: str
    message: str


class ValidationError(IntakeError):
    """One or more visible required fields are missing or malformed."""

    def __init__(self, errors: Sequence[FieldError]) -> None:
        self.errors: List[FieldError] = list(errors)
        labels = ", ".join(error.label for error in self.errors) or "no fields"
        super().__init__(f"Please answer all required questions: {labels}.")

    @property
    def first_field_id(self) -> Optional[str]:
        return self.errors[0].field_id if self.errors else None


class SubmissionError(IntakeError):
    """The persistence collaborator rejected or failed a submission."""

    def __init__(self, message: str, *, code: str = "submission_failed", retryable: bool = True) -> None:
        super().__init__(message)
        self.code = code
        self.retryable = retryable


class FormattingAmbiguityError(IntakeError):
    """An answer value has a shape the formatter cannot classify."""


__all__ = [
    "FieldError",
    "FormattingAmbiguityError",
    "IntakeError",
    "SchemaError",
    "SubmissionError",
    "ValidationError",
]
