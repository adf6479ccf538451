"""Derive the visible sections and fields of a form from its answers."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Hashable, Iterator, List, Mapping, Optional, Tuple

from anamnesis.conditions import answer_matches, evaluate
from anamnesis.dependencies import DependencyGraph, section_node
from anamnesis.question_ids import runtime_id
from anamnesis.schema import FollowupTemplate, FormTemplate, Question, Section
from anamnesis.schema_defaults import DEFAULT_SECTIONS_PER_STEP, PATIENT_MODE
from anamnesis.steps import Step, partition
from anamnesis.validation import build_required_field_set

logger = logging.getLogger(__name__)

OPTION_PLACEHOLDER = "{option}"


@dataclass(frozen=True)
class VisibleField:
    """A question or materialised follow-up instance shown in this pass."""

    field_id: str
    question: Question
    label: str
    section_index: int
    parent_id: Optional[str] = None
    parent_value: Optional[str] = None

    @property
    def is_followup(self) -> bool:
        return self.parent_id is not None

    @property
    def template_id(self) -> str:
        return self.question.id

    @property
    def type(self) -> str:
        return self.question.type

    @property
    def required(self) -> bool:
        return self.question.required


@dataclass(frozen=True)
class VisibleSection:
    index: int
    title: str
    fields: Tuple[VisibleField, ...] = ()


@dataclass(frozen=True)
class VisibleTree:
    """Render-ready snapshot of the visible form for one set of answers."""

    sections: Tuple[VisibleSection, ...] = ()
    mode: str = PATIENT_MODE
    sections_per_step: int = DEFAULT_SECTIONS_PER_STEP
    _fields: Dict[str, VisibleField] = field(default_factory=dict, init=False, repr=False, compare=False)
    _steps: Tuple[Step, ...] = field(default=(), init=False, repr=False, compare=False)
    _followups: Dict[str, List[VisibleField]] = field(default_factory=dict, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        index = {item.field_id: item for section in self.sections for item in section.fields}
        object.__setattr__(self, "_fields", index)
        followups: Dict[str, List[VisibleField]] = {}
        for item in self.iter_fields():
            if item.parent_id is not None:
                followups.setdefault(item.parent_id, []).append(item)
        object.__setattr__(self, "_followups", followups)
        object.__setattr__(self, "_steps", tuple(partition(self.sections, self.sections_per_step)))

    @property
    def steps(self) -> Tuple[Step, ...]:
        return self._steps

    @property
    def step_count(self) -> int:
        return len(self._steps)

    @property
    def visible_field_ids(self) -> List[str]:
        return [item.field_id for item in self.iter_fields()]

    def iter_fields(self) -> Iterator[VisibleField]:
        for section in self.sections:
            yield from section.fields

    def get_field(self, field_id: str) -> Optional[VisibleField]:
        return self._fields.get(field_id)

    def is_visible(self, field_id: str) -> bool:
        return field_id in self._fields

    def followups_for(self, parent_id: str) -> List[VisibleField]:
        return list(self._followups.get(parent_id, ()))

    def step_of(self, field_id: str) -> Optional[int]:
        for step in self._steps:
            if field_id in step.field_ids:
                return step.index
        return None


def _followup_field(followup: FollowupTemplate, section_index: int) -> VisibleField:
    question = followup.question
    return VisibleField(
        field_id=runtime_id(followup.parent_id, followup.trigger_value, question.id),
        question=question,
        label=question.label.replace(OPTION_PLACEHOLDER, followup.trigger_value),
        section_index=section_index,
        parent_id=followup.parent_id,
        parent_value=followup.trigger_value,
    )


def _question_visible(
    node: str,
    question: Question,
    template: FormTemplate,
    answers: Mapping[str, Any],
    mode: str,
    graph: DependencyGraph,
) -> bool:
    if not question.visible_in_mode(mode):
        return False
    if graph.has_dangling_reference(node):
        return False
    return evaluate(question.show_if, answers, template)


def _resolve_section(
    section_index: int,
    section: Section,
    template: FormTemplate,
    answers: Mapping[str, Any],
    mode: str,
    graph: DependencyGraph,
) -> VisibleSection:
    fields: List[VisibleField] = []
    for question in section.questions:
        if question.is_followup_template:
            continue
        if not _question_visible(question.id, question, template, answers, mode, graph):
            continue
        fields.append(
            VisibleField(field_id=question.id, question=question, label=question.label, section_index=section_index)
        )
        if not question.followup_question_ids or question.id not in answers:
            continue
        parent_answer = answers[question.id]
        if parent_answer is None:
            continue
        for followup in template.followup_templates(question):
            if not answer_matches(parent_answer, followup.trigger_value):
                continue
            if not _question_visible(followup.template_id, followup.question, template, answers, mode, graph):
                continue
            fields.append(_followup_field(followup, section_index))
    return VisibleSection(index=section_index, title=section.title, fields=tuple(fields))


def resolve(
    template: FormTemplate,
    answers: Mapping[str, Any],
    mode: str = PATIENT_MODE,
    graph: Optional[DependencyGraph] = None,
    *,
    sections_per_step: int = DEFAULT_SECTIONS_PER_STEP,
) -> VisibleTree:
    """Return the visible sections and fields of ``template`` for ``answers``.

    Sections and questions keep template order. Follow-up instances are placed
    right after their parent question. Rules that reference unknown questions
    hide the item they guard.
    """

    if graph is None:
        graph = DependencyGraph.build(template)

    sections: List[VisibleSection] = []
    for section_index, section in enumerate(template.sections):
        node = section_node(section_index)
        if graph.has_dangling_reference(node):
            continue
        if not evaluate(section.show_if, answers, template):
            continue
        sections.append(_resolve_section(section_index, section, template, answers, mode, graph))

    return VisibleTree(sections=tuple(sections), mode=mode, sections_per_step=sections_per_step)


def _freeze(value: Any) -> Hashable:
    """Return a hashable, type-preserving key for an answer value."""

    if isinstance(value, (list, tuple)):
        return ("list", tuple(_freeze(item) for item in value))
    if isinstance(value, Mapping):
        return ("map", tuple(sorted((str(key), _freeze(item)) for key, item in value.items())))
    try:
        hash(value)
    except TypeError:
        return ("repr", repr(value))
    return (type(value).__name__, value)


_MISSING = ("missing",)


class VisibilityPipeline:
    """Memoised ``answers -> VisibleTree -> required fields`` pipeline.

    Only answers to questions referenced by a rule (or owning follow-ups) can
    change visibility, so the cache key is built from those answers alone. The
    live answer mapping is passed in on every call.
    """

    def __init__(
        self,
        template: FormTemplate,
        *,
        mode: str = PATIENT_MODE,
        sections_per_step: int = DEFAULT_SECTIONS_PER_STEP,
        graph: Optional[DependencyGraph] = None,
    ) -> None:
        self.template = template
        self.mode = mode
        self.sections_per_step = sections_per_step
        self.graph = graph or DependencyGraph.build(template)
        self._relevant_ids = tuple(sorted(self.graph.relevant_ids))
        self._key: Optional[Tuple[Hashable, ...]] = None
        self._tree: Optional[VisibleTree] = None
        self._required: Optional[frozenset] = None
        self.evaluations = 0

    def _cache_key(self, answers: Mapping[str, Any]) -> Tuple[Hashable, ...]:
        frozen = tuple(
            (question_id, _freeze(answers[question_id]) if question_id in answers else _MISSING)
            for question_id in self._relevant_ids
        )
        return (self.mode, frozen)

    def tree(self, answers: Mapping[str, Any]) -> VisibleTree:
        key = self._cache_key(answers)
        if self._tree is None or key != self._key:
            self._tree = resolve(
                self.template,
                answers,
                self.mode,
                self.graph,
                sections_per_step=self.sections_per_step,
            )
            self._required = None
            self._key = key
            self.evaluations += 1
            logger.debug("Recomputed visible tree (%d fields)", len(self._tree.visible_field_ids))
        return self._tree

    def required_fields(self, answers: Mapping[str, Any]) -> frozenset:
        tree = self.tree(answers)
        if self._required is None:
            self._required = build_required_field_set(tree)
        return self._required
