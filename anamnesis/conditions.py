"""Evaluate ``show_if`` conditions against the current answers."""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Optional

from anamnesis.schema import AdvancedCondition, Condition, FormTemplate
from anamnesis.scoring import section_score

logger = logging.getLogger(__name__)

_SCORE_OPERATORS = {
    "less_than": lambda score, threshold: score < threshold,
    "greater_than": lambda score, threshold: score > threshold,
    "equals": lambda score, threshold: score == threshold,
}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def strict_equals(actual: Any, expected: Any) -> bool:
    """Compare two answer values without coercing between types.

    ``"1"`` does not equal ``1`` and ``True`` does not equal ``1``. Lists are
    never equal to anything, since a multi-choice answer has no scalar value.
    """

    if isinstance(actual, (list, tuple, dict)) or isinstance(expected, (list, tuple, dict)):
        return False
    if isinstance(actual, bool) or isinstance(expected, bool):
        return isinstance(actual, bool) and isinstance(expected, bool) and actual is expected
    if _is_number(actual) and _is_number(expected):
        return actual == expected
    if type(actual) is not type(expected):
        return False
    return actual == expected


def is_member(actual: Any, expected_values: Iterable[Any]) -> bool:
    return any(strict_equals(actual, expected) for expected in expected_values)


def answer_matches(answer: Any, value: Any) -> bool:
    """Return ``True`` if ``answer`` is ``value`` or, for lists, contains it."""

    if isinstance(answer, (list, tuple)):
        return is_member(value, answer)
    return strict_equals(answer, value)


def _has_answer(answers: Mapping[str, Any], question_id: str) -> bool:
    return question_id in answers and answers[question_id] is not None


def _eval_simple(condition: Condition, answers: Mapping[str, Any]) -> bool:
    question_id = condition.question_id
    if not question_id or not _has_answer(answers, question_id):
        return False

    value = answers[question_id]

    if condition.has_contains:
        return answer_matches(value, condition.contains)

    if condition.has_equals:
        expected = condition.equals
        if isinstance(expected, tuple):
            return is_member(value, expected)
        return strict_equals(value, expected)

    if isinstance(value, (list, tuple, str)):
        return len(value) > 0
    return bool(value)


def _eval_advanced(
    condition: AdvancedCondition,
    answers: Mapping[str, Any],
    template: Optional[FormTemplate],
) -> bool:
    if condition.type == "answer":
        if not condition.question_id or not _has_answer(answers, condition.question_id):
            return False
        value = answers[condition.question_id]
        return any(answer_matches(value, expected) for expected in condition.values)

    if condition.type == "any_answer":
        if template is None or condition.section_index is None:
            return False
        if not 0 <= condition.section_index < len(template.sections):
            return False
        for question in template.sections[condition.section_index].questions:
            if not _has_answer(answers, question.id):
                continue
            value = answers[question.id]
            if any(answer_matches(value, expected) for expected in condition.any_value):
                return True
        return False

    if condition.type == "section_score":
        if template is None or condition.target_section_index is None or condition.threshold is None:
            return False
        compare = _SCORE_OPERATORS.get(condition.operator or "")
        if compare is None:
            logger.warning("Unsupported section score operator: %s", condition.operator)
            return False
        score = section_score(template, condition.target_section_index, answers)
        if score is None:
            return False
        return compare(score, condition.threshold)

    logger.warning("Unsupported condition type: %s", condition.type)
    return False


def evaluate(
    condition: Optional[Condition],
    answers: Mapping[str, Any],
    template: Optional[FormTemplate] = None,
) -> bool:
    """Return ``True`` when ``condition`` is satisfied by ``answers``.

    A missing condition is always satisfied. A condition on a question that
    has not been answered yet is never satisfied. ``template`` is only needed
    for section-level rules that look at other sections.
    """

    if condition is None:
        return True

    if condition.is_advanced:
        results = (_eval_advanced(item, answers, template) for item in condition.conditions)
        if condition.logic == "and":
            return all(results)
        return any(results)

    return _eval_simple(condition, answers)
