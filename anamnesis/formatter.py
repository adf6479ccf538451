"""Turn the flat answer map into an ordered, human-readable document.

The document follows template order, not the order in which fields were
filled in, so formatting the same answers twice gives identical text. The
text is what the summarisation service receives and its digest is used as the
summary cache key.
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple

from anamnesis.errors import FormattingAmbiguityError
from anamnesis.schema import FormTemplate, Question
from anamnesis.schema_defaults import (
    DEFAULT_DOCUMENT_HEADING,
    EMPTY_DOCUMENT_TEXT,
    FOLLOWUP_LINE_PREFIX,
    NO_ANSWER_TEXT,
    OPTICIAN_MODE,
)
from anamnesis.visibility import VisibleTree

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AnswerLine:
    field_id: str
    label: str
    value: str
    answer: Any = None
    parent_id: Optional[str] = None
    parent_value: Optional[str] = None

    @property
    def is_followup(self) -> bool:
        return self.parent_id is not None


@dataclass(frozen=True)
class AnswerSection:
    title: str
    lines: Tuple[AnswerLine, ...] = ()


@dataclass(frozen=True)
class OrderedAnswerDocument:
    title: str
    sections: Tuple[AnswerSection, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.sections

    def to_text(self, heading: str = DEFAULT_DOCUMENT_HEADING) -> str:
        """Render the document as the plain text sent for summarisation."""

        output = [heading]
        if self.is_empty:
            output.append("")
            output.append(EMPTY_DOCUMENT_TEXT)
            return "\n".join(output)

        for section in self.sections:
            output.append("")
            output.append(f"-- {section.title} --")
            for line in section.lines:
                prefix = FOLLOWUP_LINE_PREFIX if line.is_followup else ""
                output.append(f"{prefix}{line.label}: {line.value}")
        return "\n".join(output) + "\n"

    def to_payload(self) -> Dict[str, Any]:
        """Return the ``answeredSections`` structure stored with an entry."""

        return {
            "formTitle": self.title,
            "answeredSections": [
                {
                    "section_title": section.title,
                    "responses": [{"id": line.field_id, "answer": line.answer} for line in section.lines],
                }
                for section in self.sections
            ],
        }

    def digest(self) -> str:
        return hashlib.sha256(self.to_text().encode("utf-8")).hexdigest()


def _format_number(value: float) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _format_item(item: Any) -> str:
    if isinstance(item, Mapping):
        if "value" in item:
            return str(item["value"])
        return json.dumps(item, sort_keys=True, ensure_ascii=False, default=str)
    if isinstance(item, (int, float)) and not isinstance(item, bool):
        return _format_number(item)
    return str(item)


def _classify(value: Any) -> str:
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, bool):
        return str(value)
    if isinstance(value, (int, float)):
        return _format_number(value)
    if isinstance(value, (list, tuple)):
        items = [_format_item(item) for item in value if item is not None]
        return ", ".join(item for item in items if item)
    if isinstance(value, Mapping):
        return _format_item(value)
    raise FormattingAmbiguityError(f"Cannot classify answer of type {type(value).__name__}")


def format_value(value: Any) -> str:
    """Format one answer value for display; never raises."""

    if value is None:
        return NO_ANSWER_TEXT
    try:
        text = _classify(value)
    except FormattingAmbiguityError as exc:
        logger.debug("%s; falling back to str()", exc)
        text = str(value)
    return text or NO_ANSWER_TEXT


def is_answered(value: Any) -> bool:
    """Return ``True`` unless ``value`` is missing or empty.

    ``False`` and ``0`` are answers.
    """

    if value is None:
        return False
    if isinstance(value, str):
        return value.strip() != ""
    if isinstance(value, (list, tuple, dict)):
        return len(value) > 0
    return True


def _excluded_from_summary(question: Question) -> bool:
    return question.show_in_mode == OPTICIAN_MODE


def format_answers(
    template: FormTemplate,
    answers: Mapping[str, Any],
    visible_tree: VisibleTree,
) -> OrderedAnswerDocument:
    """Build the ordered answer document for the visible, answered fields.

    Optician-only questions stay in the raw answers but are left out here.
    Answered follow-ups are listed right under their parent, labelled with the
    parent label and the option that triggered them.
    """

    sections: List[AnswerSection] = []
    for section_index, section in enumerate(template.sections):
        if not any(visible.index == section_index for visible in visible_tree.sections):
            continue

        lines: List[AnswerLine] = []
        for question in section.questions:
            if question.is_followup_template or _excluded_from_summary(question):
                continue
            if not visible_tree.is_visible(question.id):
                continue

            value = answers.get(question.id)
            if is_answered(value):
                lines.append(
                    AnswerLine(
                        field_id=question.id,
                        label=question.label,
                        value=format_value(value),
                        answer=value,
                    )
                )

            for followup in visible_tree.followups_for(question.id):
                if _excluded_from_summary(followup.question):
                    continue
                followup_value = answers.get(followup.field_id)
                if not is_answered(followup_value):
                    continue
                lines.append(
                    AnswerLine(
                        field_id=followup.field_id,
                        label=f"{question.label} ({followup.parent_value})",
                        value=format_value(followup_value),
                        answer=followup_value,
                        parent_id=question.id,
                        parent_value=followup.parent_value,
                    )
                )

        if lines:
            sections.append(AnswerSection(title=section.title, lines=tuple(lines)))

    return OrderedAnswerDocument(title=template.title, sections=tuple(sections))
