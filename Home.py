"""Streamlit home screen listing intake forms and locally stored submissions."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import pandas as pd
import streamlit as st

from anamnesis.template_store import load_local_templates
from anamnesis.submission_storage import (
    SUBMISSIONS_DIR,
    delete_submission_files,
    load_submission_records,
)

DEFAULT_TABLE_COLUMNS = ("Submission ID", "Submitted at", "Form", "Status")
HOME_SELECTED_SUBMISSION_KEY = "home_selected_submission_id"
FORM_PAGE = "pages/01_Patient_Form.py"


def _parse_timestamp(value: Any) -> tuple[str, float]:
    """Return a normalised timestamp string and sort key."""

    if isinstance(value, str) and value:
        text = value.strip()
        if text:
            try:
                dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
            except ValueError:
                return text, 0.0
            return dt.isoformat(), dt.timestamp()
    return "", 0.0


def template_rows() -> List[Dict[str, Any]]:
    """Return one table row per local form template."""

    rows: List[Dict[str, Any]] = []
    for form_key, template in load_local_templates().items():
        questions = [question for _, _, question in template.iter_questions() if not question.is_followup_template]
        rows.append(
            {
                "Form": form_key,
                "Title": template.title,
                "Sections": len(template.sections),
                "Questions": len(questions),
                "Scored": "Yes" if template.scoring_config and template.scoring_config.enabled else "No",
            }
        )
    return rows


def submission_rows(directory: Path = SUBMISSIONS_DIR) -> List[Dict[str, Any]]:
    """Return table rows for the submissions stored in ``directory``."""

    rows: List[Dict[str, Any]] = []
    for payload in load_submission_records(directory):
        timestamp, sort_key = _parse_timestamp(payload.get("submitted_at"))
        answers = payload.get("answers") if isinstance(payload.get("answers"), dict) else {}
        scoring = answers.get("scoringResult") if isinstance(answers.get("scoringResult"), dict) else None
        rows.append(
            {
                "Submission ID": str(payload.get("id", "")),
                "Submitted at": timestamp,
                "Form": payload.get("form_title") or payload.get("form_id", ""),
                "Status": payload.get("status", ""),
                "Score": scoring.get("total_score") if scoring else None,
                "_sort_key": sort_key,
                "_text": answers.get("formattedText", ""),
            }
        )
    return sorted(rows, key=lambda item: item["_sort_key"], reverse=True)


def _strip_private_keys(records: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Remove helper keys (prefixed with ``_``) from the table rows."""

    return [{key: value for key, value in record.items() if not key.startswith("_")} for record in records]


def _open_form(form_key: str) -> None:
    st.query_params["form"] = form_key
    st.switch_page(FORM_PAGE)


def main() -> None:
    """Render the home screen."""

    st.set_page_config(page_title="Patient intake", page_icon="🏠")
    st.title("Patient intake")
    st.caption("Open an intake form or review what has been submitted on this machine.")

    templates = template_rows()
    submissions = submission_rows()

    metric_col1, metric_col2, metric_col3 = st.columns(3)
    metric_col1.metric("Forms", len(templates) or "0")
    metric_col2.metric("Submissions", len(submissions) or "0")
    metric_col3.metric("Most recent submission", submissions[0]["Submitted at"] if submissions else "—")

    st.markdown("#### Forms")
    if not templates:
        st.info("No forms found. Add form_templates/<form_key>/form_template.json to get started.")
    else:
        st.dataframe(pd.DataFrame(templates), hide_index=True, width="stretch")
        form_keys = [row["Form"] for row in templates]
        selected_form = st.selectbox("Form to open", options=form_keys)
        if st.button("Open form", type="primary"):
            _open_form(selected_form)

    st.markdown("#### Submissions")
    if not submissions:
        st.info("No submissions stored locally yet.")
        return

    table_df = pd.DataFrame(_strip_private_keys(submissions))
    table_df.insert(0, "Select", False)
    selected_id: Optional[str] = st.session_state.get(HOME_SELECTED_SUBMISSION_KEY)
    if selected_id:
        table_df.loc[table_df["Submission ID"] == selected_id, "Select"] = True

    edited_df = st.data_editor(
        table_df,
        hide_index=True,
        width="stretch",
        num_rows="fixed",
        key="home_submissions_table",
        disabled=[column for column in table_df.columns if column != "Select"],
        column_config={
            "Select": st.column_config.CheckboxColumn("Select", help="Choose a submission to review."),
        },
    )

    selected_rows = edited_df.loc[edited_df["Select"].astype(bool)] if not edited_df.empty else edited_df
    if selected_rows.empty:
        return
    if len(selected_rows) > 1:
        st.warning("Select only one submission at a time.")
        return

    candidate_id = str(selected_rows.iloc[0]["Submission ID"])
    st.session_state[HOME_SELECTED_SUBMISSION_KEY] = candidate_id
    record = next((row for row in submissions if row["Submission ID"] == candidate_id), None)
    if record is not None:
        with st.expander("Formatted answers", expanded=True):
            st.text(record["_text"] or "No formatted answers stored.")

    if st.button("Delete submission"):
        removed, failed = delete_submission_files(candidate_id, SUBMISSIONS_DIR)
        if failed:
            st.error(f"Could not delete: {', '.join(path.name for path in failed)}")
        elif removed:
            st.session_state.pop(HOME_SELECTED_SUBMISSION_KEY, None)
            st.success(f"Deleted submission `{candidate_id}`.")
            st.rerun()


if __name__ == "__main__":
    main()
