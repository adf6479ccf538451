"""Helpers for readable question identifiers and runtime follow-up ids."""

from __future__ import annotations

import re
from typing import Any, Dict, Iterable, List, Optional, Tuple

RUNTIME_ID_SEPARATOR = "_for_"
MAX_QUESTION_ID_LENGTH = 50

_FOLDED_CHARACTERS = {"å": "a", "ä": "a", "ö": "o", "é": "e", "ü": "u"}
_VALID_ID = re.compile(r"^[a-z][a-z0-9_]*$", re.IGNORECASE)


def text_to_id(text: Any) -> str:
    """Convert a label or option value to a lowercase identifier."""

    value = str(text or "").lower().strip()
    for source, target in _FOLDED_CHARACTERS.items():
        value = value.replace(source, target)
    value = re.sub(r"\s+", "_", value)
    value = re.sub(r"[^a-z0-9_]", "", value)
    value = re.sub(r"_+", "_", value).strip("_")
    if value and value[0].isdigit():
        value = f"q_{value}"
    return value or "question"


def runtime_id(parent_id: str, parent_value: Any, template_id: str) -> str:
    """Return the id of a follow-up instance.

    The id only depends on its inputs so the same follow-up keeps its answer
    across re-evaluations. ``parent_id`` is part of the signature because a
    follow-up belongs to exactly one parent; collisions between parents are
    reported by :mod:`anamnesis.dependencies`.
    """

    return f"{template_id}{RUNTIME_ID_SEPARATOR}{text_to_id(parent_value)}"


def split_runtime_id(field_id: str) -> Optional[Tuple[str, str]]:
    """Return ``(template_id, value_slug)`` for a runtime id, else ``None``."""

    if RUNTIME_ID_SEPARATOR not in field_id:
        return None
    template_id, _, value_slug = field_id.partition(RUNTIME_ID_SEPARATOR)
    if not template_id or not value_slug:
        return None
    return template_id, value_slug


def _iter_question_ids(sections: Iterable[Dict[str, Any]]) -> Iterable[str]:
    for section in sections:
        if not isinstance(section, dict):
            continue
        for question in section.get("questions") or []:
            if isinstance(question, dict) and isinstance(question.get("id"), str):
                yield question["id"]


def is_id_unique(
    question_id: str,
    payload: Dict[str, Any],
    exclude_question_id: Optional[str] = None,
) -> bool:
    """Return ``True`` if no other question in ``payload`` uses ``question_id``."""

    for existing in _iter_question_ids(payload.get("sections") or []):
        if existing == question_id and existing != exclude_question_id:
            return False
    return True


def generate_unique_question_id(
    label: str,
    payload: Dict[str, Any],
    exclude_question_id: Optional[str] = None,
) -> str:
    """Derive an id from ``label``, adding ``_2``, ``_3`` ... on conflicts."""

    base_id = text_to_id(label)
    if is_id_unique(base_id, payload, exclude_question_id):
        return base_id

    counter = 2
    candidate = f"{base_id}_{counter}"
    while not is_id_unique(candidate, payload, exclude_question_id) and counter < 100:
        counter += 1
        candidate = f"{base_id}_{counter}"
    return candidate


def validate_question_id(question_id: str) -> List[str]:
    """Return a list of problems with ``question_id`` (empty when valid)."""

    errors: List[str] = []
    if not question_id or not question_id.strip():
        errors.append("ID cannot be empty")
        return errors
    if len(question_id) > MAX_QUESTION_ID_LENGTH:
        errors.append(f"ID cannot be longer than {MAX_QUESTION_ID_LENGTH} characters")
    if not _VALID_ID.match(question_id):
        errors.append("ID must start with a letter and only contain letters, digits and underscores")
    if "__" in question_id:
        errors.append("ID cannot contain consecutive underscores")
    if RUNTIME_ID_SEPARATOR in question_id:
        errors.append(f"ID cannot contain '{RUNTIME_ID_SEPARATOR}'")
    return errors
