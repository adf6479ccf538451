"""Tests for the hosted backend REST wrapper."""

from __future__ import annotations

import json

import pytest
import requests

from anamnesis import supabase_backend
from anamnesis.errors import SubmissionError
from anamnesis.formatter import OrderedAnswerDocument
from anamnesis.scoring import ScoringResult
from anamnesis.supabase_backend import SupabaseBackend


class DummyResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload
        self.content = b"" if payload is None else json.dumps(payload).encode("utf-8")
        self.text = self.content.decode("utf-8")

    def json(self):
        if self._payload is None:
            raise ValueError("no body")
        return self._payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error", response=self)


def _backend():
    return SupabaseBackend(url="https://db.example", anon_key="anon", form_id="eye_exam")


def _document():
    return OrderedAnswerDocument(title="Eye exam")


def test_submit_posts_to_submit_function(monkeypatch):
    """The submission body carries the token, payload and formatted text."""

    captured = {}

    def fake_post(url, headers, json, timeout):
        captured.update({"url": url, "headers": headers, "json": json, "timeout": timeout})
        return DummyResponse(payload={"entry_id": "entry-1"})

    monkeypatch.setattr(supabase_backend.requests, "post", fake_post)

    scoring = ScoringResult(total_score=3, max_possible_score=7, percentage=43, threshold_exceeded=False)
    result = _backend().submit("tok", {"fullName": "Ann"}, _document(), scoring=scoring)

    assert result.ok is True
    assert result.entry_id == "entry-1"
    assert captured["url"] == "https://db.example/functions/v1/submit-form"
    assert captured["headers"]["apikey"] == "anon"
    assert captured["headers"]["Authorization"] == "Bearer anon"
    body = captured["json"]
    assert body["token"] == "tok"
    assert body["answers"]["rawAnswers"] == {"fullName": "Ann"}
    assert body["answers"]["metadata"]["formTemplateId"] == "eye_exam"
    assert body["answers"]["scoringResult"]["total_score"] == 3
    assert body["formData"]["formattedRawData"] == body["answers"]["formattedText"]


def test_custom_functions_url(monkeypatch):
    """A configured functions URL replaces the default one."""

    urls = []
    monkeypatch.setattr(
        supabase_backend.requests,
        "post",
        lambda url, headers, json, timeout: urls.append(url) or DummyResponse(payload={"id": 5}),
    )

    backend = SupabaseBackend(url="https://db.example", anon_key="anon", functions_url="https://fn.example/")
    result = backend.submit("tok", {}, _document())

    assert urls == ["https://fn.example/submit-form"]
    assert result.entry_id == "5"


def test_http_error_becomes_failed_result(monkeypatch):
    """Function errors are reported with their message and code."""

    monkeypatch.setattr(
        supabase_backend.requests,
        "post",
        lambda url, headers, json, timeout: DummyResponse(404, {"error": "Token not found"}),
    )

    result = _backend().submit("tok", {}, _document())

    assert result.ok is False
    assert result.error == "Token not found"
    assert result.code == "invalid_token"


def test_error_in_body_becomes_failed_result(monkeypatch):
    """A 200 response carrying an error is still a failure."""

    monkeypatch.setattr(
        supabase_backend.requests,
        "post",
        lambda url, headers, json, timeout: DummyResponse(payload={"error": "Already submitted", "code": "duplicate"}),
    )

    result = _backend().submit("tok", {}, _document())

    assert (result.ok, result.error, result.code) == (False, "Already submitted", "duplicate")


def test_network_error_raises_submission_error(monkeypatch):
    """Connection problems surface as retryable ``SubmissionError``."""

    def offline(url, headers, json, timeout):
        raise requests.ConnectionError("offline")

    monkeypatch.setattr(supabase_backend.requests, "post", offline)

    with pytest.raises(SubmissionError) as excinfo:
        _backend().submit("tok", {}, _document())

    assert excinfo.value.code == "network_error"
    assert excinfo.value.retryable is True


def test_fetch_form_template(monkeypatch):
    """Templates are read from the forms table by id."""

    captured = {}

    def fake_get(url, headers, params, timeout):
        captured.update({"url": url, "params": params})
        return DummyResponse(payload=[{"id": "eye_exam", "title": "Eye exam", "schema": {"sections": []}}])

    monkeypatch.setattr(supabase_backend.requests, "get", fake_get)

    row = _backend().fetch_form_template("eye_exam")

    assert row["title"] == "Eye exam"
    assert captured["url"] == "https://db.example/rest/v1/anamnes_forms"
    assert captured["params"]["id"] == "eq.eye_exam"


def test_fetch_missing_form_template_raises(monkeypatch):
    """An empty result means the template does not exist."""

    monkeypatch.setattr(supabase_backend.requests, "get", lambda url, headers, params, timeout: DummyResponse(payload=[]))

    with pytest.raises(ValueError):
        _backend().fetch_form_template("missing")


def test_save_draft_and_session_log(monkeypatch):
    """Drafts go to the save-draft function and log rows to the log table."""

    calls = []

    def fake_post(url, headers, json, timeout):
        calls.append((url, headers, json))
        return DummyResponse(201)

    monkeypatch.setattr(supabase_backend.requests, "post", fake_post)

    backend = _backend()
    backend.save_draft("tok", {"fullName": "Ann"})
    backend.log_session_event({"event_type": "form_loaded"})

    assert calls[0][0] == "https://db.example/functions/v1/save-draft"
    assert calls[0][2] == {"token": "tok", "formData": {"fullName": "Ann"}}
    assert calls[1][0] == "https://db.example/rest/v1/form_session_logs"
    assert calls[1][1]["Prefer"] == "return=minimal"
