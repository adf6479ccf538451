"""Tests for the form session state machine."""

from __future__ import annotations

import pytest

from anamnesis.autosave import DraftAutoSaver
from anamnesis.errors import SubmissionError, ValidationError
from anamnesis.schema import template_from_payload
from anamnesis.session import FormSession, SessionState
from anamnesis.submission import SubmissionResult


def _template():
    return template_from_payload(
        {
            "title": "Eye exam",
            "sections": [
                {
                    "section_title": "About you",
                    "questions": [{"id": "fullName", "label": "Full name", "required": True}],
                },
                {
                    "section_title": "Visit",
                    "questions": [
                        {
                            "id": "reason",
                            "label": "Reason",
                            "type": "radio",
                            "options": ["checkup", "problems"],
                            "required": True,
                        },
                        {
                            "id": "details",
                            "label": "Details",
                            "type": "textarea",
                            "required": True,
                            "show_if": {"question": "reason", "equals": "problems"},
                        },
                    ],
                },
                {
                    "section_title": "Consent",
                    "questions": [{"id": "consent", "label": "I agree", "type": "checkbox", "required": True}],
                },
            ],
        }
    )


class RecordingTracker:
    def __init__(self):
        self.steps = []
        self.outcomes = []

    def on_step_change(self, step_index, first_field_id, progress):
        self.steps.append((step_index, first_field_id, progress))

    def on_submission_outcome(self, outcome):
        self.outcomes.append(outcome)


class RecordingPersistence:
    def __init__(self, result=None, on_submit=None):
        self.result = result or SubmissionResult.success("entry-1")
        self.on_submit = on_submit
        self.calls = []

    def submit(self, access_token, answers, document, *, scoring=None):
        self.calls.append({"token": access_token, "answers": dict(answers), "document": document})
        if self.on_submit is not None:
            self.on_submit()
        return self.result


def _completed_session(**kwargs):
    session = FormSession(_template(), **kwargs)
    session.update_answer("fullName", "Ann")
    assert session.request_next()
    session.update_answer("reason", "checkup")
    assert session.request_next()
    session.update_answer("consent", True)
    return session


def test_next_only_validates_the_current_step():
    """A missing answer on a later step does not block advancing."""

    session = FormSession(_template())
    session.update_answer("fullName", "Ann")

    assert session.request_next() is True
    assert session.step_index == 1
    assert session.completed_steps == {0}
    assert session.errors == []


def test_next_is_blocked_by_invalid_fields_on_the_step():
    """Field errors are reported and the first invalid field gets focus."""

    session = FormSession(_template())

    assert session.request_next() is False
    assert session.step_index == 0
    assert [error.field_id for error in session.errors] == ["fullName"]
    assert session.focus_field == "fullName"
    assert session.error_for("fullName") == "This field is required"


def test_editing_a_field_clears_its_error():
    """Correcting input removes the inline error for that field."""

    session = FormSession(_template())
    session.request_next()

    session.update_answer("fullName", "Ann")

    assert session.errors == []
    assert session.focus_field is None


def test_newly_visible_required_field_is_enforced():
    """``details`` appears with ``problems`` and must then be filled in."""

    session = FormSession(_template())
    session.update_answer("fullName", "Ann")
    session.request_next()
    session.update_answer("reason", "problems")

    assert session.request_next() is False
    assert session.focus_field == "details"

    session.update_answer("details", "Blurry vision")
    assert session.request_next() is True


def test_previous_does_not_validate():
    """Going back is always allowed, except from the first step."""

    session = FormSession(_template())
    assert session.request_previous() is False

    session.update_answer("fullName", "Ann")
    session.request_next()
    assert session.request_previous() is True
    assert session.step_index == 0


def test_next_on_last_step_is_a_no_op():
    """The last step submits instead of advancing."""

    session = _completed_session()

    assert session.is_last_step is True
    assert session.request_next() is False
    assert session.step_index == 2


def test_go_to_step_rules():
    """Jumps go backwards freely and forwards only across completed steps."""

    fresh = FormSession(_template())
    assert fresh.go_to_step(2) is False
    assert fresh.go_to_step(7) is False

    session = _completed_session()
    assert session.go_to_step(0) is True
    assert session.step_index == 0
    assert session.go_to_step(2) is True
    assert session.step_index == 2
    assert session.go_to_step(2) is False


def test_go_to_step_only_checks_steps_strictly_between():
    """The current step itself need not be completed to jump past it."""

    session = FormSession(_template())
    assert session.go_to_step(1) is True
    session.update_answer("reason", "checkup")
    assert session.request_next() is True
    assert session.go_to_step(0) is True
    assert session.completed_steps == {1}

    assert session.go_to_step(2) is True
    assert session.step_index == 2


def test_completed_steps_follow_sections_when_steps_are_renumbered():
    """A section appearing earlier does not inherit a completed index."""

    template = template_from_payload(
        {
            "sections": [
                {
                    "section_title": "A",
                    "questions": [{"id": "a", "label": "A", "type": "radio", "options": ["Yes", "No"], "required": True}],
                },
                {
                    "section_title": "Extra",
                    "show_if": {"question": "a", "equals": "Yes"},
                    "questions": [{"id": "x", "label": "X", "required": True}],
                },
                {"section_title": "B", "questions": [{"id": "b", "label": "B"}]},
                {"section_title": "C", "questions": [{"id": "c", "label": "C"}]},
            ]
        }
    )
    session = FormSession(template)
    session.update_answer("a", "No")
    assert session.request_next() is True
    assert session.request_next() is True
    assert session.completed_steps == {0, 1}

    assert session.go_to_step(0) is True
    session.update_answer("a", "Yes")

    assert [step.title for step in session.steps] == ["A", "Extra", "B", "C"]
    assert session.completed_steps == {0, 2}
    assert session.go_to_step(2) is False
    assert session.go_to_step(3) is False
    assert session.step_index == 0


def test_step_changes_are_reported_to_the_tracker():
    """Every successful navigation emits step, first field and progress."""

    tracker = RecordingTracker()
    session = FormSession(_template(), tracker=tracker)
    session.update_answer("fullName", "Ann")
    session.request_next()
    session.request_previous()

    assert tracker.steps == [(1, "reason", 33), (0, "fullName", 0)]


def test_submit_rejects_empty_required_field():
    """``fullName`` is required and visible, so the submit is rejected on it."""

    template = template_from_payload(
        {
            "sections": [
                {
                    "section_title": "Visit",
                    "questions": [
                        {"id": "fullName", "label": "Full name", "required": True},
                        {"id": "reason", "label": "Reason"},
                    ],
                }
            ]
        }
    )
    session = FormSession(template, answers={"fullName": "", "reason": "checkup"})
    persistence = RecordingPersistence()

    with pytest.raises(ValidationError) as excinfo:
        session.submit(persistence, "token")

    assert excinfo.value.first_field_id == "fullName"
    assert session.state is SessionState.EDITING
    assert persistence.calls == []


def test_submit_rejection_moves_to_the_first_invalid_step():
    """The session jumps to the step holding the first invalid field."""

    session = _completed_session()
    session.update_answer("fullName", "")

    with pytest.raises(ValidationError):
        session.request_submit()

    assert session.step_index == 0
    assert session.focus_field == "fullName"
    assert session.state is SessionState.EDITING


def test_successful_submission():
    """A valid form is formatted, handed off and marked as submitted."""

    tracker = RecordingTracker()
    session = _completed_session(tracker=tracker)
    persistence = RecordingPersistence()

    result = session.submit(persistence, "token-123")

    assert result.ok is True
    assert session.state is SessionState.SUBMITTED
    assert session.entry_id == "entry-1"
    assert session.progress == 100
    call = persistence.calls[0]
    assert call["token"] == "token-123"
    assert call["answers"] == {"fullName": "Ann", "reason": "checkup", "consent": True}
    assert "Full name: Ann" in call["document"].to_text()
    assert tracker.outcomes[-1].ok is True


def test_failed_submission_is_retryable():
    """A rejected submission returns to the last step with answers intact."""

    tracker = RecordingTracker()
    session = _completed_session(tracker=tracker)
    failing = RecordingPersistence(SubmissionResult.failure("Token expired", code="invalid_token"))

    result = session.submit(failing, "token")

    assert result.ok is False
    assert session.state is SessionState.EDITING
    assert session.step_index == 2
    assert session.submission_error == "Token expired"
    assert session.submission_error_code == "invalid_token"
    assert session.answers["fullName"] == "Ann"
    assert tracker.outcomes[-1].code == "invalid_token"

    assert session.submit(RecordingPersistence(), "token").ok is True
    assert session.state is SessionState.SUBMITTED
    assert session.submission_error is None


def test_persistence_errors_become_failed_results():
    """A raised ``SubmissionError`` leaves the session editable."""

    class Broken:
        def submit(self, access_token, answers, document, *, scoring=None):
            raise SubmissionError("timeout", code="network_error")

    session = _completed_session()

    result = session.submit(Broken(), "token")

    assert result.ok is False
    assert result.code == "network_error"
    assert session.state is SessionState.EDITING
    assert session.submission_error == "timeout"


def test_unexpected_persistence_exception_leaves_session_retryable(caplog):
    """Any exception from the collaborator settles the attempt as a failure."""

    class Disconnected:
        def submit(self, access_token, answers, document, *, scoring=None):
            raise ConnectionError("socket closed")

    tracker = RecordingTracker()
    session = _completed_session(tracker=tracker)

    with caplog.at_level("WARNING"):
        result = session.submit(Disconnected(), "token")

    assert result.ok is False
    assert result.code == "submission_failed"
    assert session.state is SessionState.EDITING
    assert session.step_index == session.step_count - 1
    assert session.submission_error == "socket closed"
    assert tracker.outcomes[-1].ok is False
    assert "failed unexpectedly" in caplog.text

    assert session.submit(RecordingPersistence(), "token").ok is True
    assert session.state is SessionState.SUBMITTED


def test_edit_during_submission_makes_the_outcome_stale():
    """A late success must not mark an edited form as submitted."""

    session = _completed_session()
    persistence = RecordingPersistence(on_submit=lambda: session.update_answer("fullName", "Anna"))

    result = session.submit(persistence, "token")

    assert result.ok is True
    assert session.state is SessionState.EDITING
    assert session.entry_id is None
    assert session.answers["fullName"] == "Anna"


def test_stale_attempt_number_is_ignored():
    """Only the latest attempt may complete the submission."""

    session = _completed_session()
    attempt = session.request_submit()
    session.update_answer("consent", True)

    assert session.complete_submission(attempt.number, SubmissionResult.success("late")) is False
    assert session.state is SessionState.EDITING
    assert session.submission_attempt == attempt.number + 1


def test_submit_is_only_possible_from_the_last_step():
    """Submitting from an earlier step does nothing."""

    session = FormSession(_template(), answers={"fullName": "Ann"})

    assert session.request_submit() is None
    result = session.submit(RecordingPersistence(), "token")
    assert result.ok is False
    assert result.code == "not_ready"


def test_edits_after_submission_are_ignored(caplog):
    """A submitted session no longer changes."""

    session = _completed_session()
    session.submit(RecordingPersistence(), "token")

    with caplog.at_level("WARNING"):
        assert session.update_answer("fullName", "Bob") is False

    assert session.answers["fullName"] == "Ann"
    assert "after the form was submitted" in caplog.text


def test_hidden_answers_are_kept():
    """Changing a parent away from the trigger value orphans, not deletes."""

    session = FormSession(_template())
    session.update_answer("reason", "problems")
    session.update_answer("details", "Blurry vision")
    session.update_answer("reason", "checkup")

    assert session.visible_tree.is_visible("details") is False
    assert session.answers["details"] == "Blurry vision"
    assert "Blurry vision" not in session.format_document().to_text()


def test_answers_are_read_only():
    """The answer map can only change through ``update_answer``."""

    session = FormSession(_template())

    with pytest.raises(TypeError):
        session.answers["fullName"] = "Ann"  # type: ignore[index]


def test_step_index_is_clamped_when_steps_disappear():
    """Hiding later sections moves the session back onto an existing step."""

    template = template_from_payload(
        {
            "sections": [
                {"section_title": "Start", "questions": [{"id": "a", "label": "A", "type": "radio", "options": ["Yes", "No"]}]},
                {"section_title": "More", "show_if": {"question": "a", "equals": "Yes"}, "questions": [{"id": "b", "label": "B"}]},
                {"section_title": "Even more", "show_if": {"question": "a", "equals": "Yes"}, "questions": [{"id": "c", "label": "C"}]},
            ]
        }
    )
    session = FormSession(template, answers={"a": "Yes"})
    session.request_next()
    session.request_next()
    assert session.step_index == 2

    session.update_answer("a", "No")

    assert session.step_count == 1
    assert session.step_index == 0
    assert session.completed_steps == {0}


def test_side_channel_failures_do_not_block(caplog):
    """Tracker and auto-save errors are logged and swallowed."""

    class ExplodingTracker:
        def on_step_change(self, step_index, first_field_id, progress):
            raise RuntimeError("tracking down")

        def on_submission_outcome(self, outcome):
            raise RuntimeError("tracking down")

    class ExplodingSaver:
        def notify(self, answers):
            raise RuntimeError("disk full")

    session = FormSession(_template(), tracker=ExplodingTracker(), autosaver=ExplodingSaver())

    with caplog.at_level("WARNING"):
        assert session.update_answer("fullName", "Ann") is True
        assert session.request_next() is True

    assert session.step_index == 1
    assert "Session tracker failed" in caplog.text
    assert "auto-save" in caplog.text


def test_answer_changes_notify_the_autosaver():
    """Every accepted edit hands the latest answers to the draft saver."""

    saved = []
    autosaver = DraftAutoSaver(lambda token, answers: saved.append(dict(answers)), "token", interval=0)
    session = FormSession(_template(), autosaver=autosaver)

    session.update_answer("fullName", "Ann")
    assert autosaver.has_pending is True
    assert autosaver.flush() is True

    assert saved == [{"fullName": "Ann"}]


def test_scoring_is_none_without_scoring_config():
    """Forms that do not score report no result."""

    assert FormSession(_template()).scoring is None
