"""Conditional multi-step patient intake forms."""

from .errors import (  # noqa: F401
    FieldError,
    FormattingAmbiguityError,
    IntakeError,
    SchemaError,
    SubmissionError,
    ValidationError,
)
from .schema import FormTemplate, template_from_payload  # noqa: F401
from .session import FormSession, SessionState  # noqa: F401
