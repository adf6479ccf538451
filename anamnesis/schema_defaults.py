"""Default values shared between the form engine and the Streamlit pages."""

from __future__ import annotations

from typing import List

PATIENT_MODE = "patient"
OPTICIAN_MODE = "optician"
ALL_MODES = "all"

DEFAULT_PAGE_TITLE = "Patient intake"
DEFAULT_DOCUMENT_HEADING = "Patient intake information:"
NO_ANSWER_TEXT = "No answer"
EMPTY_DOCUMENT_TEXT = "No information available"
FOLLOWUP_LINE_PREFIX = "  └─ "
DEFAULT_INTRO_HEADING = "👋 Welcome!"
DEFAULT_INTRO_PARAGRAPHS: tuple[str, ...] = (
    "Please answer the questions below before your visit.",
    "Questions may appear or disappear automatically depending on your responses.",
)
DEFAULT_NEXT_LABEL = "Next"
DEFAULT_PREVIOUS_LABEL = "Previous"
DEFAULT_SUBMIT_LABEL = "Submit form"
DEFAULT_SUBMIT_SUCCESS_MESSAGE = "Thank you! Your answers have been sent."
DEFAULT_SUBMIT_FAILURE_MESSAGE = (
    "Your answers could not be sent. Nothing has been lost, please try again."
)
REQUIRED_FIELD_MESSAGE = "This field is required"
NUMBER_FIELD_MESSAGE = "Must be a number"
SELECT_ONE_MESSAGE = "Select at least one option"
CONFIRM_MESSAGE = "This box must be checked"
DEFAULT_AUTOSAVE_INTERVAL = 20.0
DEFAULT_SECTIONS_PER_STEP = 1


def intro_paragraphs_list() -> List[str]:
    """Return a mutable list of the default introduction paragraphs."""

    return list(DEFAULT_INTRO_PARAGRAPHS)
