"""Submission payloads and the persistence collaborator interface."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Protocol

from anamnesis.formatter import OrderedAnswerDocument
from anamnesis.scoring import ScoringResult

PAYLOAD_VERSION = "2.0"


@dataclass(frozen=True)
class SubmissionResult:
    """Outcome reported by a persistence collaborator."""

    ok: bool
    entry_id: Optional[str] = None
    error: Optional[str] = None
    code: Optional[str] = None

    @classmethod
    def success(cls, entry_id: Optional[str] = None) -> "SubmissionResult":
        return cls(ok=True, entry_id=entry_id)

    @classmethod
    def failure(cls, error: str, code: str = "submission_failed") -> "SubmissionResult":
        return cls(ok=False, error=error, code=code)


class Persistence(Protocol):
    """Stores a submitted answer map together with its formatted document."""

    def submit(
        self,
        access_token: str,
        answers: Mapping[str, Any],
        document: OrderedAnswerDocument,
        *,
        scoring: Optional[ScoringResult] = None,
    ) -> SubmissionResult:
        ...


def build_submission_payload(
    answers: Mapping[str, Any],
    document: OrderedAnswerDocument,
    *,
    form_id: str = "",
    scoring: Optional[ScoringResult] = None,
    submitted_at: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Return the JSON body persisted for a submission.

    Raw answers are kept in full, including optician-only fields and orphaned
    follow-up answers; the formatted document only carries what was shown.
    """

    timestamp = (submitted_at or datetime.now(timezone.utc)).isoformat()
    formatted = document.to_payload()
    formatted["submissionTimestamp"] = timestamp

    payload: Dict[str, Any] = {
        "formattedAnswers": formatted,
        "rawAnswers": dict(answers),
        "formattedText": document.to_text(),
        "metadata": {
            "formTemplateId": form_id,
            "submittedAt": timestamp,
            "version": PAYLOAD_VERSION,
            "documentDigest": document.digest(),
        },
    }
    if scoring is not None:
        payload["scoringResult"] = scoring.to_payload()
    return payload
