"""Tests for parsing stored form templates."""

from __future__ import annotations

import json
from pathlib import Path

from anamnesis.schema import CHECKBOX_TYPE, template_from_payload

SAMPLE_TEMPLATE = Path(__file__).resolve().parents[1] / "form_templates" / "eye_exam" / "form_template.json"


def test_template_from_payload_parses_sections_and_questions():
    """The stored JSON shape is turned into typed objects."""

    template = template_from_payload(
        {
            "title": "Intake",
            "sections": [
                {
                    "section_title": "Visit",
                    "questions": [
                        {
                            "id": "reason",
                            "label": "Reason",
                            "type": "radio",
                            "options": ["checkup", {"value": "problems", "triggers_followups": True}],
                            "required": True,
                            "followup_question_ids": ["details"],
                        },
                        {"id": "details", "label": "Details", "is_followup_template": True},
                        {"label": "No id, skipped"},
                    ],
                }
            ],
        }
    )

    assert template.title == "Intake"
    assert [question.id for _, _, question in template.iter_questions()] == ["reason", "details"]
    reason = template.question("reason")
    assert reason.option_values == ["checkup", "problems"]
    assert reason.trigger_values() == ["problems"]
    assert reason.required is True
    assert [item.trigger_value for item in template.followup_templates(reason)] == ["problems"]


def test_type_aliases_and_checkbox_kinds():
    """Abstract type names map to stored ones; checkboxes are boolean or multi."""

    template = template_from_payload(
        {
            "sections": [
                {
                    "questions": [
                        {"id": "a", "type": "short-text"},
                        {"id": "b", "type": "multi-choice", "options": ["x"]},
                        {"id": "c", "type": "checkbox"},
                        {"id": "d", "type": "info", "required": True},
                    ]
                }
            ]
        }
    )

    assert template.question("a").type == "text"
    assert template.question("b").type == CHECKBOX_TYPE
    assert template.question("b").is_multi_choice is True
    assert template.question("c").is_boolean is True
    assert template.question("d").required is False
    assert template.sections[0].title == "Section 1"


def test_wrapped_form_record_is_unwrapped():
    """A stored form row keeps its template under ``schema``."""

    template = template_from_payload({"id": "f1", "title": "Row title", "schema": {"sections": []}})

    assert template.title == "Row title"
    assert template.sections == ()


def test_malformed_payloads_degrade_gracefully():
    """Unexpected shapes become empty templates instead of raising."""

    template = template_from_payload(["not", "a", "mapping"], default_title="Fallback")

    assert template.title == "Fallback"
    assert template.sections == ()


def test_sample_template_parses():
    """The bundled eye examination template is well formed."""

    with SAMPLE_TEMPLATE.open("r", encoding="utf-8") as handle:
        template = template_from_payload(json.load(handle))

    assert template.title == "Eye examination intake"
    assert template.scoring_config.enabled is True
    assert template.question("glassesUse").trigger_values() == ["Reading", "Driving"]
