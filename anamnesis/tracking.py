"""Session tracking side channel for step changes and submission outcomes."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Protocol

import requests

logger = logging.getLogger(__name__)

FORM_LOADED = "form_loaded"
SECTION_CHANGED = "section_changed"
SUBMISSION_ATTEMPT = "submission_attempt"
SUBMISSION_SUCCESS = "submission_success"
SUBMISSION_ERROR = "submission_error"


@dataclass(frozen=True)
class SubmissionOutcome:
    """What the session reports once a submission attempt is settled."""

    ok: bool
    entry_id: Optional[str] = None
    error: Optional[str] = None
    code: Optional[str] = None


class SessionTracker(Protocol):
    def on_step_change(self, step_index: int, first_field_id: str, progress: int) -> None:
        ...

    def on_submission_outcome(self, outcome: SubmissionOutcome) -> None:
        ...


class NullTracker:
    """Tracker used when no backend is configured."""

    def on_step_change(self, step_index: int, first_field_id: str, progress: int) -> None:
        return None

    def on_submission_outcome(self, outcome: SubmissionOutcome) -> None:
        return None


@dataclass
class BackendSessionTracker:
    """Write session events as rows through ``log_row``.

    ``log_row`` is usually ``SupabaseBackend.log_session_event``. Logging
    failures are swallowed so tracking never interrupts the patient.
    """

    log_row: Callable[[Dict[str, Any]], None]
    token: Optional[str] = None
    entry_id: Optional[str] = None
    session_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    failures: List[str] = field(default_factory=list, repr=False)

    def log_event(
        self,
        event_type: str,
        event_data: Optional[Dict[str, Any]] = None,
        *,
        error_message: Optional[str] = None,
        error_type: Optional[str] = None,
    ) -> None:
        data = dict(event_data or {})
        row = {
            "session_id": self.session_id,
            "entry_id": self.entry_id,
            "token": self.token,
            "event_type": event_type,
            "event_data": data,
            "current_section_index": data.get("current_section_index"),
            "current_question_id": data.get("current_question_id"),
            "form_progress_percent": data.get("form_progress_percent"),
            "error_message": error_message,
            "error_type": error_type,
        }
        try:
            self.log_row(row)
        except (requests.RequestException, OSError, ValueError) as exc:
            self.failures.append(event_type)
            logger.debug("Failed to log form event %s: %s", event_type, exc)

    def form_loaded(self) -> None:
        self.log_event(FORM_LOADED, {"timestamp": datetime.now(timezone.utc).isoformat()})

    def on_step_change(self, step_index: int, first_field_id: str, progress: int) -> None:
        self.log_event(
            SECTION_CHANGED,
            {
                "current_section_index": step_index,
                "current_question_id": first_field_id or "unknown",
                "form_progress_percent": progress,
            },
        )

    def on_submission_attempt(self, progress: int) -> None:
        self.log_event(SUBMISSION_ATTEMPT, {"form_progress_percent": progress})

    def on_submission_outcome(self, outcome: SubmissionOutcome) -> None:
        if outcome.ok:
            if outcome.entry_id:
                self.entry_id = outcome.entry_id
            self.log_event(SUBMISSION_SUCCESS, {"form_progress_percent": 100})
        else:
            self.log_event(
                SUBMISSION_ERROR,
                error_message=outcome.error,
                error_type=outcome.code,
            )
