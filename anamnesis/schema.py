"""Form template data model and tolerant parsing from stored JSON payloads."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

from anamnesis.schema_defaults import ALL_MODES, DEFAULT_PAGE_TITLE

TEXT_TYPES = frozenset({"text", "textarea", "email", "tel", "url", "date"})
SINGLE_CHOICE_TYPES = frozenset({"radio", "dropdown", "select"})
CHECKBOX_TYPE = "checkbox"
NUMBER_TYPE = "number"
INFO_TYPE = "info"
KNOWN_TYPES = TEXT_TYPES | SINGLE_CHOICE_TYPES | {CHECKBOX_TYPE, NUMBER_TYPE, INFO_TYPE}

# Abstract type names used in documentation and by older templates.
TYPE_ALIASES = {
    "short-text": "text",
    "long-text": "textarea",
    "single-choice": "radio",
    "multi-choice": CHECKBOX_TYPE,
    "select": "dropdown",
}


def _ensure_mapping(value: Any) -> Dict[str, Any]:
    """Return ``value`` if it is a mapping, otherwise an empty dict."""

    return dict(value) if isinstance(value, Mapping) else {}


def _ensure_list(value: Any) -> List[Any]:
    """Return ``value`` if it is a list, otherwise an empty list."""

    return list(value) if isinstance(value, (list, tuple)) else []


def _clean_text(value: Any) -> str:
    if isinstance(value, str):
        return value.strip()
    if value is None:
        return ""
    return str(value).strip()


@dataclass(frozen=True)
class Option:
    value: str
    triggers_followups: Optional[bool] = None


@dataclass(frozen=True)
class AdvancedCondition:
    """One entry of a section's ``show_if.conditions`` list."""

    type: str
    question_id: Optional[str] = None
    values: Tuple[Any, ...] = ()
    section_index: Optional[int] = None
    any_value: Tuple[Any, ...] = ()
    target_section_index: Optional[int] = None
    operator: Optional[str] = None
    threshold: Optional[float] = None


@dataclass(frozen=True)
class Condition:
    """A ``show_if`` rule.

    ``equals`` holds a scalar or a tuple of acceptable values; ``has_equals``
    distinguishes an explicit ``None`` from an absent key. Section rules may
    instead carry a list of :class:`AdvancedCondition` combined with ``logic``.
    """

    question_id: Optional[str] = None
    equals: Any = None
    has_equals: bool = False
    contains: Any = None
    has_contains: bool = False
    conditions: Tuple[AdvancedCondition, ...] = ()
    logic: str = "or"

    @property
    def is_advanced(self) -> bool:
        return bool(self.conditions)

    def referenced_question_ids(self) -> List[str]:
        ids: List[str] = []
        if self.question_id:
            ids.append(self.question_id)
        for condition in self.conditions:
            if condition.type == "answer" and condition.question_id:
                ids.append(condition.question_id)
        return ids


@dataclass(frozen=True)
class QuestionScoring:
    enabled: bool = False
    min_value: float = 0
    max_value: float = 0
    flag_threshold: Optional[float] = None
    warning_message: Optional[str] = None


@dataclass(frozen=True)
class Question:
    id: str
    label: str
    type: str = "text"
    options: Tuple[Option, ...] = ()
    required: bool = False
    show_if: Optional[Condition] = None
    show_in_mode: Optional[str] = None
    followup_question_ids: Tuple[str, ...] = ()
    is_followup_template: bool = False
    placeholder: Optional[str] = None
    help_text: Optional[str] = None
    scoring: Optional[QuestionScoring] = None

    @property
    def option_values(self) -> List[str]:
        return [option.value for option in self.options]

    @property
    def is_boolean(self) -> bool:
        """A checkbox without options is a single yes/no tick box."""

        return self.type == CHECKBOX_TYPE and not self.options

    @property
    def is_multi_choice(self) -> bool:
        return self.type == CHECKBOX_TYPE and bool(self.options)

    @property
    def is_answerable(self) -> bool:
        return self.type != INFO_TYPE

    def trigger_values(self) -> List[str]:
        """Return option values that materialise this question's follow-ups."""

        flagged = [option for option in self.options if option.triggers_followups is not None]
        if not flagged:
            return self.option_values
        return [option.value for option in self.options if option.triggers_followups]

    def visible_in_mode(self, mode: str) -> bool:
        if not self.show_in_mode or self.show_in_mode == ALL_MODES:
            return True
        return self.show_in_mode == mode


@dataclass(frozen=True)
class Section:
    title: str
    questions: Tuple[Question, ...] = ()
    show_if: Optional[Condition] = None


@dataclass(frozen=True)
class ScoringConfig:
    enabled: bool = False
    total_threshold: Optional[float] = None
    show_score_to_patient: bool = False
    threshold_message: Optional[str] = None
    disable_ai_summary: bool = False


@dataclass(frozen=True)
class FollowupTemplate:
    """A follow-up question template bound to its parent and trigger value."""

    question: Question
    parent_id: str
    trigger_value: str

    @property
    def template_id(self) -> str:
        return self.question.id


@dataclass(frozen=True)
class FormTemplate:
    title: str
    sections: Tuple[Section, ...] = ()
    scoring_config: Optional[ScoringConfig] = None
    _questions_by_id: Dict[str, Question] = field(
        default_factory=dict, init=False, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        index: Dict[str, Question] = {}
        for section in self.sections:
            for question in section.questions:
                index.setdefault(question.id, question)
        object.__setattr__(self, "_questions_by_id", index)

    def iter_questions(self) -> Iterator[Tuple[int, Section, Question]]:
        """Yield ``(section_index, section, question)`` in document order."""

        for section_index, section in enumerate(self.sections):
            for question in section.questions:
                yield section_index, section, question

    def question(self, question_id: str) -> Optional[Question]:
        return self._questions_by_id.get(question_id)

    def has_question(self, question_id: str) -> bool:
        return question_id in self._questions_by_id

    def followup_templates(self, parent: Question) -> List[FollowupTemplate]:
        """Return the follow-up templates of ``parent`` for every trigger value."""

        templates: List[FollowupTemplate] = []
        for value in parent.trigger_values():
            for followup_id in parent.followup_question_ids:
                question = self._questions_by_id.get(followup_id)
                if question is None or not question.is_followup_template:
                    continue
                templates.append(
                    FollowupTemplate(question=question, parent_id=parent.id, trigger_value=value)
                )
        return templates


def _parse_values(value: Any) -> Tuple[Any, ...]:
    if isinstance(value, (list, tuple)):
        return tuple(value)
    if value is None:
        return ()
    return (value,)


def _parse_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    try:
        return int(str(value))
    except (TypeError, ValueError):
        return None


def _parse_float(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _parse_advanced_condition(payload: Any) -> Optional[AdvancedCondition]:
    data = _ensure_mapping(payload)
    condition_type = _clean_text(data.get("type"))
    if not condition_type:
        return None
    question_id = _clean_text(data.get("question_id")) or None
    return AdvancedCondition(
        type=condition_type,
        question_id=question_id,
        values=_parse_values(data.get("values")),
        section_index=_parse_int(data.get("section_index")),
        any_value=_parse_values(data.get("any_value")),
        target_section_index=_parse_int(data.get("target_section_index")),
        operator=_clean_text(data.get("operator")) or None,
        threshold=_parse_float(data.get("threshold")),
    )


def parse_condition(payload: Any) -> Optional[Condition]:
    """Parse a ``show_if`` payload; empty or malformed rules mean "always"."""

    data = _ensure_mapping(payload)
    if not data:
        return None

    conditions = tuple(
        condition
        for condition in (_parse_advanced_condition(item) for item in _ensure_list(data.get("conditions")))
        if condition is not None
    )
    logic = _clean_text(data.get("logic")).lower() or "or"
    question_id = _clean_text(data.get("question")) or None
    if question_id is None and not conditions:
        return None

    equals = data.get("equals")
    if isinstance(equals, list):
        equals = tuple(equals)
    return Condition(
        question_id=question_id,
        equals=equals,
        has_equals="equals" in data,
        contains=data.get("contains"),
        has_contains="contains" in data and data.get("contains") is not None,
        conditions=conditions,
        logic=logic if logic in {"or", "and"} else "or",
    )


def _parse_option(value: Any) -> Optional[Option]:
    if isinstance(value, Mapping):
        text = _clean_text(value.get("value"))
        if not text:
            return None
        triggers = value.get("triggers_followups")
        return Option(value=text, triggers_followups=bool(triggers) if triggers is not None else None)
    text = _clean_text(value)
    return Option(value=text) if text else None


def _parse_scoring(payload: Any) -> Optional[QuestionScoring]:
    data = _ensure_mapping(payload)
    if not data:
        return None
    return QuestionScoring(
        enabled=bool(data.get("enabled")),
        min_value=_parse_float(data.get("min_value")) or 0,
        max_value=_parse_float(data.get("max_value")) or 0,
        flag_threshold=_parse_float(data.get("flag_threshold")),
        warning_message=_clean_text(data.get("warning_message")) or None,
    )


def parse_question(payload: Any) -> Optional[Question]:
    """Parse one question; entries without an id are skipped."""

    data = _ensure_mapping(payload)
    question_id = _clean_text(data.get("id") or data.get("key"))
    if not question_id:
        return None

    question_type = _clean_text(data.get("type")).lower() or "text"
    question_type = TYPE_ALIASES.get(question_type, question_type)
    options = tuple(
        option for option in (_parse_option(item) for item in _ensure_list(data.get("options"))) if option
    )
    followup_ids = tuple(
        _clean_text(item) for item in _ensure_list(data.get("followup_question_ids")) if _clean_text(item)
    )
    return Question(
        id=question_id,
        label=_clean_text(data.get("label")) or question_id,
        type=question_type,
        options=options,
        required=bool(data.get("required")) and question_type != INFO_TYPE,
        show_if=parse_condition(data.get("show_if")),
        show_in_mode=_clean_text(data.get("show_in_mode")) or None,
        followup_question_ids=followup_ids,
        is_followup_template=bool(data.get("is_followup_template")),
        placeholder=_clean_text(data.get("placeholder")) or None,
        help_text=_clean_text(data.get("help_text") or data.get("help")) or None,
        scoring=_parse_scoring(data.get("scoring")),
    )


def parse_section(payload: Any, index: int = 0) -> Section:
    data = _ensure_mapping(payload)
    title = _clean_text(data.get("section_title") or data.get("title")) or f"Section {index + 1}"
    questions = tuple(
        question for question in (parse_question(item) for item in _ensure_list(data.get("questions"))) if question
    )
    return Section(title=title, questions=questions, show_if=parse_condition(data.get("show_if")))


def _parse_scoring_config(payload: Any) -> Optional[ScoringConfig]:
    data = _ensure_mapping(payload)
    if not data:
        return None
    return ScoringConfig(
        enabled=bool(data.get("enabled")),
        total_threshold=_parse_float(data.get("total_threshold")),
        show_score_to_patient=bool(data.get("show_score_to_patient")),
        threshold_message=_clean_text(data.get("threshold_message")) or None,
        disable_ai_summary=bool(data.get("disable_ai_summary")),
    )


def template_from_payload(payload: Any, *, default_title: str = DEFAULT_PAGE_TITLE) -> FormTemplate:
    """Build a :class:`FormTemplate` from a stored JSON payload.

    Accepts the bare template (``{"title", "sections"}``) as well as a form
    record wrapping it under ``schema``.
    """

    data = _ensure_mapping(payload)
    if "sections" not in data and isinstance(data.get("schema"), Mapping):
        wrapper_title = _clean_text(data.get("title"))
        data = _ensure_mapping(data.get("schema"))
        data.setdefault("title", wrapper_title)

    sections = tuple(
        parse_section(section, index) for index, section in enumerate(_ensure_list(data.get("sections")))
    )
    return FormTemplate(
        title=_clean_text(data.get("title")) or default_title,
        sections=sections,
        scoring_config=_parse_scoring_config(data.get("scoring_config")),
    )
