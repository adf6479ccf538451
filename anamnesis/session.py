"""The form session: answers, current step and the submission lifecycle.

``FormSession`` owns the answer map. Everything else (visibility, required
fields, steps, the formatted document) is derived from the live answers each
time it is asked for, through a memoised :class:`VisibilityPipeline`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple

from anamnesis.autosave import DraftAutoSaver
from anamnesis.dependencies import DependencyGraph
from anamnesis.errors import FieldError, SubmissionError, ValidationError
from anamnesis.formatter import OrderedAnswerDocument, format_answers
from anamnesis.schema import FormTemplate
from anamnesis.schema_defaults import DEFAULT_SECTIONS_PER_STEP, PATIENT_MODE
from anamnesis.scoring import ScoringResult, calculate_score
from anamnesis.steps import Step, progress_percent, step_field_ids
from anamnesis.submission import Persistence, SubmissionResult
from anamnesis.tracking import NullTracker, SessionTracker, SubmissionOutcome
from anamnesis.validation import validate_fields
from anamnesis.visibility import VisibilityPipeline, VisibleTree

logger = logging.getLogger(__name__)

SUBMISSION_FAILED_CODE = "submission_failed"


class SessionState(str, Enum):
    EDITING = "editing"
    SUBMITTING = "submitting"
    SUBMITTED = "submitted"


@dataclass(frozen=True)
class SubmissionAttempt:
    """A validated submission waiting for the persistence outcome."""

    number: int
    document: OrderedAnswerDocument
    answers: Mapping[str, Any]
    scoring: Optional[ScoringResult] = None


class FormSession:
    """Multi-step patient form session.

    Commands return ``True`` when they caused a transition. Rejected
    navigation leaves the session unchanged apart from the reported errors.
    """

    def __init__(
        self,
        template: FormTemplate,
        *,
        mode: str = PATIENT_MODE,
        sections_per_step: int = DEFAULT_SECTIONS_PER_STEP,
        answers: Optional[Mapping[str, Any]] = None,
        tracker: Optional[SessionTracker] = None,
        autosaver: Optional[DraftAutoSaver] = None,
        graph: Optional[DependencyGraph] = None,
    ) -> None:
        self.template = template
        self.pipeline = VisibilityPipeline(
            template,
            mode=mode,
            sections_per_step=sections_per_step,
            graph=graph,
        )
        self.tracker: SessionTracker = tracker or NullTracker()
        self.autosaver = autosaver
        self._answers: Dict[str, Any] = dict(answers or {})
        self.state = SessionState.EDITING
        self.step_index = 0
        self._completed_keys: Set[Tuple[int, ...]] = set()
        self.errors: List[FieldError] = []
        self.focus_field: Optional[str] = None
        self.submission_error: Optional[str] = None
        self.submission_error_code: Optional[str] = None
        self.submission_attempt = 0
        self.entry_id: Optional[str] = None

    # Derived views -----------------------------------------------------

    @property
    def mode(self) -> str:
        return self.pipeline.mode

    @property
    def answers(self) -> Mapping[str, Any]:
        return MappingProxyType(self._answers)

    @property
    def visible_tree(self) -> VisibleTree:
        return self.pipeline.tree(self._answers)

    @property
    def required_fields(self) -> frozenset:
        return self.pipeline.required_fields(self._answers)

    @property
    def steps(self) -> List[Step]:
        return list(self.visible_tree.steps)

    @property
    def step_count(self) -> int:
        return self.visible_tree.step_count

    @property
    def current_step(self) -> Optional[Step]:
        steps = self.visible_tree.steps
        if 0 <= self.step_index < len(steps):
            return steps[self.step_index]
        return None

    @property
    def completed_steps(self) -> Set[int]:
        """Indices of the current steps that passed validation."""

        return {step.index for step in self.visible_tree.steps if step.key in self._completed_keys}

    @property
    def is_first_step(self) -> bool:
        return self.step_index == 0

    @property
    def is_last_step(self) -> bool:
        return self.step_index >= self.step_count - 1

    @property
    def progress(self) -> int:
        if self.state is SessionState.SUBMITTED:
            return 100
        return progress_percent(self.step_index, self.step_count)

    @property
    def scoring(self) -> Optional[ScoringResult]:
        return calculate_score(self.template, self._answers)

    def error_for(self, field_id: str) -> Optional[str]:
        for error in self.errors:
            if error.field_id == field_id:
                return error.message
        return None

    def format_document(self) -> OrderedAnswerDocument:
        return format_answers(self.template, self._answers, self.visible_tree)

    # Commands -----------------------------------------------------------

    def update_answer(self, field_id: str, value: Any) -> bool:
        """Store ``value`` for ``field_id``.

        Answers of fields that become hidden are kept. An edit while a
        submission is in flight returns the session to editing and makes
        the pending outcome stale.
        """

        if self.state is SessionState.SUBMITTED:
            logger.warning("Ignoring edit of '%s' after the form was submitted", field_id)
            return False

        if self.state is SessionState.SUBMITTING:
            self.submission_attempt += 1
            self.state = SessionState.EDITING
            logger.info("Edit during submission; attempt %d superseded", self.submission_attempt - 1)

        self._answers[field_id] = value
        self.errors = [error for error in self.errors if error.field_id != field_id]
        if self.focus_field == field_id:
            self.focus_field = None
        self._clamp_step()
        self._notify_autosave()
        return True

    def request_next(self) -> bool:
        if self.state is not SessionState.EDITING:
            return False
        if self.is_last_step:
            return False

        tree = self.visible_tree
        errors = validate_fields(
            tree,
            self._answers,
            field_ids=step_field_ids(tree.steps, self.step_index),
            required=self.required_fields,
        )
        if errors:
            self._reject(errors)
            return False

        self._completed_keys.add(tree.steps[self.step_index].key)
        self._move_to(self.step_index + 1)
        return True

    def request_previous(self) -> bool:
        if self.state is not SessionState.EDITING or self.step_index == 0:
            return False
        self._move_to(self.step_index - 1)
        return True

    def go_to_step(self, target: int) -> bool:
        """Jump to ``target`` when it is behind us or every step strictly between is completed."""

        if self.state is not SessionState.EDITING:
            return False
        if not 0 <= target < self.step_count or target == self.step_index:
            return False
        if target > self.step_index:
            completed = self.completed_steps
            if not all(index in completed for index in range(self.step_index + 1, target)):
                return False
        self._move_to(target)
        return True

    def request_submit(self) -> Optional[SubmissionAttempt]:
        """Validate every visible field and start a submission attempt.

        Returns ``None`` when the session is not on its last editing step.
        Raises :class:`ValidationError` when a visible required field is not
        answered; the session then moves to the step holding the first one.
        """

        if self.state is not SessionState.EDITING or not self.is_last_step:
            return None

        tree = self.visible_tree
        errors = validate_fields(tree, self._answers, required=self.required_fields)
        if errors:
            target = tree.step_of(errors[0].field_id)
            if target is not None and target != self.step_index:
                self._move_to(target)
            self._reject(errors)
            raise ValidationError(errors)

        self.submission_attempt += 1
        self.state = SessionState.SUBMITTING
        self.submission_error = None
        self.submission_error_code = None
        return SubmissionAttempt(
            number=self.submission_attempt,
            document=self.format_document(),
            answers=dict(self._answers),
            scoring=self.scoring,
        )

    def complete_submission(self, attempt: int, result: SubmissionResult) -> bool:
        """Apply the persistence outcome of ``attempt``; stale outcomes are ignored."""

        if self.state is not SessionState.SUBMITTING or attempt != self.submission_attempt:
            logger.info("Ignoring outcome of stale submission attempt %d", attempt)
            return False

        if result.ok:
            self.state = SessionState.SUBMITTED
            self.entry_id = result.entry_id
            self._completed_keys.update(step.key for step in self.visible_tree.steps)
        else:
            self.state = SessionState.EDITING
            self.step_index = max(self.step_count - 1, 0)
            self.submission_error = result.error or "Submission failed"
            self.submission_error_code = result.code

        self._notify_outcome(
            SubmissionOutcome(ok=result.ok, entry_id=result.entry_id, error=result.error, code=result.code)
        )
        return True

    def submit(self, persistence: Persistence, access_token: str) -> SubmissionResult:
        """Run a whole submission against ``persistence``.

        Raises :class:`ValidationError` if the form is not complete. Errors
        raised by the persistence collaborator are turned into a failed
        result and leave the session editable.
        """

        attempt = self.request_submit()
        if attempt is None:
            return SubmissionResult.failure("The form can only be submitted from its last step", code="not_ready")

        try:
            result = persistence.submit(
                access_token,
                attempt.answers,
                attempt.document,
                scoring=attempt.scoring,
            )
        except SubmissionError as exc:
            logger.warning("Submission attempt %d failed: %s", attempt.number, exc)
            result = SubmissionResult.failure(str(exc), code=exc.code)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Submission attempt %d failed unexpectedly", attempt.number, exc_info=True)
            result = SubmissionResult.failure(str(exc) or type(exc).__name__, code=SUBMISSION_FAILED_CODE)

        self.complete_submission(attempt.number, result)
        return result

    # Internals ----------------------------------------------------------

    def _reject(self, errors: List[FieldError]) -> None:
        self.errors = errors
        self.focus_field = errors[0].field_id

    def _move_to(self, index: int) -> None:
        self.step_index = index
        self.errors = []
        self.focus_field = None
        step = self.current_step
        self._notify_step_change(index, step.first_field_id if step else "")

    def _clamp_step(self) -> None:
        count = self.step_count
        if self.step_index >= count and count > 0:
            logger.debug("Step %d no longer exists; moving to step %d", self.step_index, count - 1)
            self.step_index = count - 1
        elif count == 0:
            self.step_index = 0

    def _notify_step_change(self, index: int, first_field_id: str) -> None:
        try:
            self.tracker.on_step_change(index, first_field_id, self.progress)
        except Exception:  # noqa: BLE001
            logger.warning("Session tracker failed on step change", exc_info=True)

    def _notify_outcome(self, outcome: SubmissionOutcome) -> None:
        try:
            self.tracker.on_submission_outcome(outcome)
        except Exception:  # noqa: BLE001
            logger.warning("Session tracker failed on submission outcome", exc_info=True)

    def _notify_autosave(self) -> None:
        if self.autosaver is None:
            return
        try:
            self.autosaver.notify(self._answers)
        except Exception:  # noqa: BLE001
            logger.warning("Draft auto-save notification failed", exc_info=True)
