"""Utilities for interacting with the hosted backend's REST and edge-function APIs."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

import requests

from anamnesis.errors import SubmissionError
from anamnesis.formatter import OrderedAnswerDocument
from anamnesis.scoring import ScoringResult
from anamnesis.submission import SubmissionResult, build_submission_payload

logger = logging.getLogger(__name__)

SUBMIT_FUNCTION = "submit-form"
SAVE_DRAFT_FUNCTION = "save-draft"
SESSION_LOG_TABLE = "form_session_logs"
FORMS_TABLE = "anamnes_forms"


def _token_excerpt(token: str) -> str:
    return f"{token[:6]}..." if token else "missing"


@dataclass
class SupabaseBackend:
    """REST wrapper for form templates, submissions, drafts and session logs."""

    url: str
    anon_key: str
    functions_url: Optional[str] = None
    form_id: str = ""
    timeout: float = 10

    def _headers(self) -> Dict[str, str]:
        """Build request headers for the backend API."""

        return {
            "apikey": self.anon_key,
            "Authorization": f"Bearer {self.anon_key}",
            "Content-Type": "application/json",
        }

    def _function_url(self, name: str) -> str:
        base = self.functions_url or f"{self.url.rstrip('/')}/functions/v1"
        return f"{base.rstrip('/')}/{name}"

    def _table_url(self, table: str) -> str:
        return f"{self.url.rstrip('/')}/rest/v1/{table}"

    def invoke_function(self, name: str, body: Dict[str, Any]) -> Dict[str, Any]:
        """Call an edge function and return its JSON body.

        Error responses raise ``requests.HTTPError`` after logging the error
        message the function returned.
        """

        response = requests.post(
            self._function_url(name),
            headers=self._headers(),
            json=body,
            timeout=self.timeout,
        )
        if response.status_code >= 400:
            logger.warning("Edge function %s failed with %s: %s", name, response.status_code, response.text[:200])
        response.raise_for_status()
        if not response.content:
            return {}
        payload = response.json()
        return payload if isinstance(payload, dict) else {"data": payload}

    def fetch_form_template(self, form_id: str) -> Dict[str, Any]:
        """Read a stored form template payload by its id."""

        response = requests.get(
            self._table_url(FORMS_TABLE),
            headers=self._headers(),
            params={"id": f"eq.{form_id}", "select": "id,title,schema"},
            timeout=self.timeout,
        )
        response.raise_for_status()
        rows: List[Dict[str, Any]] = response.json()
        if not rows:
            raise ValueError(f"Form template not found: {form_id}")
        return rows[0]

    def submit(
        self,
        access_token: str,
        answers: Mapping[str, Any],
        document: OrderedAnswerDocument,
        *,
        scoring: Optional[ScoringResult] = None,
        form_id: str = "",
    ) -> SubmissionResult:
        """Send a completed form to the ``submit-form`` edge function."""

        payload = build_submission_payload(answers, document, form_id=form_id or self.form_id, scoring=scoring)
        body = {
            "token": access_token,
            "answers": payload,
            "formData": {"formattedRawData": payload["formattedText"]},
        }
        logger.info("Submitting form for token %s", _token_excerpt(access_token))

        try:
            result = self.invoke_function(SUBMIT_FUNCTION, body)
        except requests.HTTPError as exc:
            message, code = _error_details(exc.response)
            return SubmissionResult.failure(message, code=code)
        except requests.RequestException as exc:
            raise SubmissionError(f"Submission request failed: {exc}", code="network_error") from exc

        if result.get("error"):
            return SubmissionResult.failure(str(result["error"]), code=str(result.get("code") or "rejected"))

        entry_id = result.get("entry_id") or result.get("entryId") or result.get("id")
        return SubmissionResult.success(str(entry_id) if entry_id else None)

    def save_draft(self, access_token: str, answers: Mapping[str, Any]) -> None:
        """Store in-progress answers through the ``save-draft`` edge function."""

        self.invoke_function(SAVE_DRAFT_FUNCTION, {"token": access_token, "formData": dict(answers)})

    def log_session_event(self, row: Dict[str, Any]) -> None:
        """Insert a row into the form session log table."""

        headers = self._headers()
        headers["Prefer"] = "return=minimal"
        response = requests.post(
            self._table_url(SESSION_LOG_TABLE),
            headers=headers,
            json=row,
            timeout=self.timeout,
        )
        response.raise_for_status()


def _error_details(response: Optional[requests.Response]) -> tuple[str, str]:
    """Return ``(message, code)`` from an edge function error response."""

    if response is None:
        return "Submission failed", "submission_failed"
    try:
        payload = response.json()
    except ValueError:
        payload = {}
    if not isinstance(payload, dict):
        payload = {}
    message = payload.get("error") or payload.get("message") or f"HTTP {response.status_code}"
    code = payload.get("code") or ("invalid_token" if response.status_code == 404 else "submission_failed")
    return str(message), str(code)
