"""Tests for the home screen table helpers."""

from __future__ import annotations

import importlib
import json


def test_submission_rows_sorted_newest_first(tmp_path):
    """Rows expose id, time, form, status and score with newest first."""

    home = importlib.import_module("Home")
    (tmp_path / "a.json").write_text(
        json.dumps(
            {
                "id": "a",
                "submitted_at": "2024-01-01T10:00:00Z",
                "form_title": "Eye exam",
                "status": "pending",
                "answers": {"formattedText": "EYE EXAM", "scoringResult": {"total_score": 4}},
            }
        ),
        encoding="utf-8",
    )
    (tmp_path / "b.json").write_text(
        json.dumps({"id": "b", "submitted_at": "2024-03-01T10:00:00Z", "form_id": "eye_exam"}),
        encoding="utf-8",
    )

    rows = home.submission_rows(tmp_path)

    assert [row["Submission ID"] for row in rows] == ["b", "a"]
    assert rows[0]["Form"] == "eye_exam"
    assert rows[0]["Score"] is None
    assert rows[1]["Score"] == 4
    assert rows[1]["_text"] == "EYE EXAM"
    assert home._strip_private_keys(rows)[1] == {
        "Submission ID": "a",
        "Submitted at": "2024-01-01T10:00:00+00:00",
        "Form": "Eye exam",
        "Status": "pending",
        "Score": 4,
    }


def test_template_rows_count_questions(tmp_path, monkeypatch):
    """Follow-up templates are not counted as standalone questions."""

    home = importlib.import_module("Home")
    form_dir = tmp_path / "form_templates" / "eye_exam"
    form_dir.mkdir(parents=True)
    (form_dir / "form_template.json").write_text(
        json.dumps(
            {
                "title": "Eye exam",
                "sections": [
                    {
                        "section_title": "Glasses",
                        "questions": [
                            {
                                "id": "use",
                                "label": "Use",
                                "type": "checkbox",
                                "options": [{"value": "Reading", "triggers_followups": True}],
                                "followup_question_ids": ["problems"],
                            },
                            {"id": "problems", "label": "Problems while {option}?", "is_followup_template": True},
                            {"id": "notes", "label": "Notes"},
                        ],
                    }
                ],
            }
        ),
        encoding="utf-8",
    )
    monkeypatch.chdir(tmp_path)

    rows = home.template_rows()

    assert rows == [
        {"Form": "eye_exam", "Title": "Eye exam", "Sections": 1, "Questions": 2, "Scored": "No"}
    ]
