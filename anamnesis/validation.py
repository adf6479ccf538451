"""Required-field derivation and per-type validation of visible fields."""

from __future__ import annotations

import math
from typing import TYPE_CHECKING, Any, Iterable, List, Mapping, Optional

from anamnesis.errors import FieldError
from anamnesis.schema import NUMBER_TYPE, SINGLE_CHOICE_TYPES, TEXT_TYPES, Question
from anamnesis.schema_defaults import (
    CONFIRM_MESSAGE,
    NUMBER_FIELD_MESSAGE,
    REQUIRED_FIELD_MESSAGE,
    SELECT_ONE_MESSAGE,
)

if TYPE_CHECKING:  # pragma: no cover - import cycle only matters for typing
    from anamnesis.visibility import VisibleField, VisibleTree


def build_required_field_set(visible_tree: "VisibleTree") -> frozenset:
    """Return the ids of visible fields that must be answered."""

    return frozenset(
        item.field_id
        for item in visible_tree.iter_fields()
        if item.required and item.question.is_answerable
    )


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def is_numeric(value: Any) -> bool:
    """Return ``True`` for a number or a non-empty numeric string."""

    if _is_number(value):
        return not math.isnan(value)
    if isinstance(value, str) and value.strip():
        try:
            return not math.isnan(float(value.strip().replace(",", ".")))
        except ValueError:
            return False
    return False


def _is_filled_text(value: Any) -> bool:
    return isinstance(value, str) and value.strip() != ""


def required_value_error(question: Question, value: Any) -> Optional[str]:
    """Return the error message for a required ``value``, or ``None`` if valid."""

    if question.is_boolean:
        return None if value is True else CONFIRM_MESSAGE

    if question.is_multi_choice:
        if isinstance(value, (list, tuple)) and any(_is_filled_text(item) for item in value):
            return None
        return SELECT_ONE_MESSAGE

    if question.type == NUMBER_TYPE:
        if value is None or value == "":
            return REQUIRED_FIELD_MESSAGE
        return None if is_numeric(value) else NUMBER_FIELD_MESSAGE

    if question.type in TEXT_TYPES or question.type in SINGLE_CHOICE_TYPES:
        return None if _is_filled_text(value) else REQUIRED_FIELD_MESSAGE

    if value is None or value == "" or value == []:
        return REQUIRED_FIELD_MESSAGE
    return None


def validate_fields(
    visible_tree: "VisibleTree",
    answers: Mapping[str, Any],
    field_ids: Optional[Iterable[str]] = None,
    required: Optional[frozenset] = None,
) -> List[FieldError]:
    """Validate visible required fields, in form order.

    ``field_ids`` narrows validation to a subset (one step). Hidden fields are
    never validated, whatever ``field_ids`` contains.
    """

    if required is None:
        required = build_required_field_set(visible_tree)
    scope = set(field_ids) if field_ids is not None else None

    errors: List[FieldError] = []
    for item in visible_tree.iter_fields():
        if item.field_id not in required:
            continue
        if scope is not None and item.field_id not in scope:
            continue
        message = required_value_error(item.question, answers.get(item.field_id))
        if message:
            errors.append(FieldError(field_id=item.field_id, label=item.label, message=message))
    return errors


def is_value_appropriate(visible_field: "VisibleField", value: Any) -> bool:
    """Return ``False`` if ``value`` cannot belong to ``visible_field``.

    Empty values are always appropriate. Used by the form page to drop a value
    left behind by another question before pre-filling a widget.
    """

    if value is None or value == "" or value == []:
        return True

    question = visible_field.question
    options = question.option_values
    if question.type in SINGLE_CHOICE_TYPES and options:
        return isinstance(value, str) and value in options
    if question.is_multi_choice:
        return isinstance(value, (list, tuple)) and all(item in options for item in value)
    if question.is_boolean:
        return isinstance(value, bool)
    if question.type == NUMBER_TYPE:
        return is_numeric(value)
    return True
