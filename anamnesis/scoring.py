"""Score calculation for scoring-enabled forms (CISS and similar)."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from anamnesis.schema import FormTemplate, Question

_SCORE_PATTERN = re.compile(r"\((\d+)\)")


@dataclass(frozen=True)
class FlaggedQuestion:
    question_id: str
    label: str
    score: float
    warning_message: Optional[str] = None


@dataclass(frozen=True)
class ScoringResult:
    total_score: float
    max_possible_score: float
    percentage: int
    threshold_exceeded: bool
    flagged_questions: List[FlaggedQuestion] = field(default_factory=list)

    def to_payload(self) -> Dict[str, Any]:
        """Return the structure stored alongside a submitted entry."""

        return {
            "total_score": self.total_score,
            "max_possible_score": self.max_possible_score,
            "percentage": self.percentage,
            "threshold_exceeded": self.threshold_exceeded,
            "flagged_questions": [
                {
                    "question_id": flagged.question_id,
                    "label": flagged.label,
                    "score": flagged.score,
                    **({"warning_message": flagged.warning_message} if flagged.warning_message else {}),
                }
                for flagged in self.flagged_questions
            ],
        }


def answer_score(answer: Any) -> float:
    """Extract the score carried by an answer.

    Choice answers encode their score as ``"Label (3)"``; numeric answers are
    used as-is. Anything else scores zero.
    """

    if isinstance(answer, bool):
        return 0
    if isinstance(answer, (int, float)):
        return answer
    if isinstance(answer, str):
        match = _SCORE_PATTERN.search(answer)
        if match:
            return int(match.group(1))
    return 0


def _is_scored(question: Question) -> bool:
    return question.scoring is not None and question.scoring.enabled


def section_score(template: FormTemplate, section_index: int, answers: Mapping[str, Any]) -> Optional[float]:
    """Return the summed score of one section, or ``None`` if out of range."""

    if section_index < 0 or section_index >= len(template.sections):
        return None
    total: float = 0
    for question in template.sections[section_index].questions:
        if not _is_scored(question):
            continue
        value = answers.get(question.id)
        if value is None or value == "":
            continue
        total += answer_score(value)
    return total


def calculate_score(template: FormTemplate, answers: Mapping[str, Any]) -> Optional[ScoringResult]:
    """Calculate the form score, or ``None`` when scoring is disabled."""

    config = template.scoring_config
    if config is None or not config.enabled:
        return None

    total_score: float = 0
    max_possible_score: float = 0
    flagged: List[FlaggedQuestion] = []

    for _, _, question in template.iter_questions():
        if not _is_scored(question):
            continue
        scoring = question.scoring
        max_possible_score += scoring.max_value

        value = answers.get(question.id)
        if value is None or value == "":
            continue
        score = answer_score(value)
        total_score += score

        if scoring.flag_threshold is not None and score >= scoring.flag_threshold:
            flagged.append(
                FlaggedQuestion(
                    question_id=question.id,
                    label=question.label,
                    score=score,
                    warning_message=scoring.warning_message,
                )
            )

    percentage = round(total_score / max_possible_score * 100) if max_possible_score > 0 else 0
    threshold_exceeded = (
        config.total_threshold is not None and total_score >= config.total_threshold
    )
    return ScoringResult(
        total_score=total_score,
        max_possible_score=max_possible_score,
        percentage=int(percentage),
        threshold_exceeded=threshold_exceeded,
        flagged_questions=flagged,
    )
