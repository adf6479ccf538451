"""Dependency graph of ``show_if`` references and follow-up links.

The graph is built once per template. It records which questions each rule
depends on, reports schema problems (dangling, forward or circular
references, broken follow-up links) and tells the visibility pipeline which
answers can change what is shown.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Optional, Set, Tuple

from anamnesis.errors import SchemaError
from anamnesis.question_ids import runtime_id
from anamnesis.schema import Condition, FormTemplate

logger = logging.getLogger(__name__)

# Node keys: questions use their id, sections use ``"section:<index>"``.
SECTION_PREFIX = "section:"


def section_node(index: int) -> str:
    return f"{SECTION_PREFIX}{index}"


@dataclass
class DependencyGraph:
    """Explicit adjacency structure for a template's conditional logic."""

    order: Dict[str, int] = field(default_factory=dict)
    depends_on: Dict[str, Tuple[str, ...]] = field(default_factory=dict)
    dependents: Dict[str, Set[str]] = field(default_factory=dict)
    dangling: Set[str] = field(default_factory=set)
    relevant_ids: FrozenSet[str] = frozenset()
    issues: List[SchemaError] = field(default_factory=list)

    @classmethod
    def build(cls, template: FormTemplate, *, log: bool = True) -> "DependencyGraph":
        graph = cls()
        graph._index(template)
        graph._link(template)
        graph._check_followups(template)
        graph._check_cycles()
        if log:
            for issue in graph.issues:
                logger.warning("Form template '%s': %s", template.title, issue)
        return graph

    def has_dangling_reference(self, node: str) -> bool:
        """Return ``True`` if the rule guarding ``node`` points at nothing."""

        return node in self.dangling

    def dependents_of(self, question_id: str) -> Set[str]:
        return set(self.dependents.get(question_id, set()))

    def _report(self, message: str, question_id: Optional[str] = None) -> None:
        self.issues.append(SchemaError(message, question_id=question_id))

    def _index(self, template: FormTemplate) -> None:
        position = 0
        for section_index, section in enumerate(template.sections):
            self.order[section_node(section_index)] = position
            position += 1
            for question in section.questions:
                if question.id in self.order:
                    self._report(f"duplicate question id '{question.id}'", question.id)
                    continue
                self.order[question.id] = position
                position += 1

    def _add_rule(self, node: str, condition: Optional[Condition], template: FormTemplate) -> Set[str]:
        if condition is None:
            return set()

        targets = condition.referenced_question_ids()
        for advanced in condition.conditions:
            for index in (advanced.section_index, advanced.target_section_index):
                if index is None:
                    continue
                if 0 <= index < len(template.sections):
                    targets.extend(question.id for question in template.sections[index].questions)
                else:
                    self._report(f"'{node}' references missing section index {index}", node)

        self.depends_on[node] = tuple(targets)
        relevant: Set[str] = set()
        for target in targets:
            if not template.has_question(target):
                self.dangling.add(node)
                self._report(f"'{node}' depends on unknown question '{target}'", node)
                continue
            relevant.add(target)
            self.dependents.setdefault(target, set()).add(node)
            if self.order.get(target, -1) >= self.order.get(node, 0):
                self._report(f"'{node}' depends on '{target}' which comes later in the form", node)
        return relevant

    def _link(self, template: FormTemplate) -> None:
        relevant: Set[str] = set()
        for section_index, section in enumerate(template.sections):
            relevant |= self._add_rule(section_node(section_index), section.show_if, template)
            for question in section.questions:
                relevant |= self._add_rule(question.id, question.show_if, template)
                if question.followup_question_ids:
                    relevant.add(question.id)
        self.relevant_ids = frozenset(relevant)

    def _check_followups(self, template: FormTemplate) -> None:
        owners: Dict[str, str] = {}
        for _, _, parent in template.iter_questions():
            if not parent.followup_question_ids:
                continue
            for followup_id in parent.followup_question_ids:
                followup = template.question(followup_id)
                if followup is None:
                    self._report(f"'{parent.id}' lists unknown follow-up '{followup_id}'", parent.id)
                    continue
                if not followup.is_followup_template:
                    self._report(
                        f"'{parent.id}' lists '{followup_id}' which is not a follow-up template",
                        parent.id,
                    )
                    continue
                owner = owners.setdefault(followup_id, parent.id)
                if owner != parent.id:
                    self._report(
                        f"follow-up '{followup_id}' is shared by '{owner}' and '{parent.id}'",
                        followup_id,
                    )
                self.dependents.setdefault(parent.id, set()).add(followup_id)

            seen: Dict[str, str] = {}
            for value in parent.trigger_values():
                key = runtime_id(parent.id, value, "")
                if key in seen and seen[key] != value:
                    self._report(
                        f"options '{seen[key]}' and '{value}' of '{parent.id}' map to the same follow-up id",
                        parent.id,
                    )
                seen.setdefault(key, value)

    def _check_cycles(self) -> None:
        visiting: Set[str] = set()
        done: Set[str] = set()
        reported: Set[FrozenSet[str]] = set()

        def visit(node: str, path: List[str]) -> None:
            if node in done:
                return
            if node in visiting:
                cycle = path[path.index(node):]
                key = frozenset(cycle)
                if key not in reported:
                    reported.add(key)
                    self._report("circular show_if reference: " + " -> ".join(cycle + [node]), node)
                return
            visiting.add(node)
            path.append(node)
            for target in self.depends_on.get(node, ()):
                visit(target, path)
            path.pop()
            visiting.discard(node)
            done.add(node)

        for node in list(self.depends_on):
            visit(node, [])
