"""Streamlit page that walks a patient through an intake form step by step."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Dict, List, Optional

import streamlit as st

from anamnesis.autosave import DraftAutoSaver
from anamnesis.errors import ValidationError
from anamnesis.schema import NUMBER_TYPE, SINGLE_CHOICE_TYPES, FormTemplate
from anamnesis.schema_defaults import (
    DEFAULT_AUTOSAVE_INTERVAL,
    DEFAULT_INTRO_HEADING,
    DEFAULT_NEXT_LABEL,
    DEFAULT_PAGE_TITLE,
    DEFAULT_PREVIOUS_LABEL,
    DEFAULT_SECTIONS_PER_STEP,
    DEFAULT_SUBMIT_FAILURE_MESSAGE,
    DEFAULT_SUBMIT_LABEL,
    DEFAULT_SUBMIT_SUCCESS_MESSAGE,
    OPTICIAN_MODE,
    PATIENT_MODE,
    intro_paragraphs_list,
)
from anamnesis.session import FormSession, SessionState
from anamnesis.submission import Persistence
from anamnesis.submission_storage import LocalSubmissionStore
from anamnesis.supabase_backend import SupabaseBackend
from anamnesis.template_store import (
    TemplateSource,
    UrlTemplateSource,
    available_template_keys,
    load_template,
)
from anamnesis.tracking import BackendSessionTracker, NullTracker
from anamnesis.validation import is_value_appropriate
from anamnesis.visibility import VisibleField

SESSION_STATE_KEY = "patient_form_session"
SESSION_FORM_KEY = "patient_form_session_key"
FORM_QUERY_PARAM = "form"
TOKEN_QUERY_PARAM = "token"
MODE_QUERY_PARAM = "mode"
UNSELECTED_LABEL = "— Select an option —"


def _secrets_dict(name: str) -> Dict[str, Any]:
    """Return a mapping stored under ``name`` in Streamlit secrets."""

    try:
        value = st.secrets.get(name, {})  # type: ignore[arg-type]
    except FileNotFoundError:
        return {}
    if isinstance(value, Mapping):
        return dict(value)
    return {}


def _flat_secret(name: str, default: Any = None) -> Any:
    try:
        return st.secrets.get(name, default)
    except FileNotFoundError:
        return default


def _supabase_settings() -> Dict[str, Any]:
    """Return backend configuration from secrets in a normalised structure."""

    secrets = _secrets_dict("supabase")
    url = secrets.get("url")
    anon_key = secrets.get("anon_key")
    functions_url = secrets.get("functions_url")
    form_id = secrets.get("form_id")
    templates_url = secrets.get("templates_url")
    autosave_interval = secrets.get("autosave_interval", DEFAULT_AUTOSAVE_INTERVAL)
    sections_per_step = secrets.get("sections_per_step", DEFAULT_SECTIONS_PER_STEP)

    if not (url and anon_key):
        url = _flat_secret("supabase_url", url)
        anon_key = _flat_secret("supabase_anon_key", anon_key)
        functions_url = _flat_secret("supabase_functions_url", functions_url)
        form_id = _flat_secret("supabase_form_id", form_id)
    if not templates_url:
        templates_url = _flat_secret("form_templates_url", templates_url)

    try:
        autosave_interval = float(autosave_interval)
    except (TypeError, ValueError):
        autosave_interval = DEFAULT_AUTOSAVE_INTERVAL
    try:
        sections_per_step = max(1, int(sections_per_step))
    except (TypeError, ValueError):
        sections_per_step = DEFAULT_SECTIONS_PER_STEP

    settings: Dict[str, Any] = {
        "form_id": form_id,
        "templates_url": templates_url,
        "autosave_interval": autosave_interval,
        "sections_per_step": sections_per_step,
    }
    if url and anon_key:
        settings.update({"url": url, "anon_key": anon_key, "functions_url": functions_url})
    return settings


def _get_query_param(name: str) -> Optional[str]:
    """Return the first query parameter value if present."""

    params = st.query_params
    values = params.get(name)
    if not values:
        return None
    if isinstance(values, list):
        return next((str(value) for value in values if value is not None), None)
    return str(values)


def _build_backend(settings: Mapping[str, Any], form_key: str) -> Optional[SupabaseBackend]:
    if not (settings.get("url") and settings.get("anon_key")):
        return None
    return SupabaseBackend(
        url=settings["url"],
        anon_key=settings["anon_key"],
        functions_url=settings.get("functions_url"),
        form_id=form_key,
    )


def _template_source(
    settings: Mapping[str, Any], backend: Optional[SupabaseBackend]
) -> Optional[TemplateSource]:
    if backend is not None:
        return backend
    if settings.get("templates_url"):
        return UrlTemplateSource(str(settings["templates_url"]))
    return None


def _resolve_form_key(settings: Mapping[str, Any]) -> Optional[str]:
    form_key = _get_query_param(FORM_QUERY_PARAM) or settings.get("form_id")
    if form_key:
        return str(form_key)
    local_keys = available_template_keys()
    if len(local_keys) == 1:
        return local_keys[0]
    if local_keys:
        return st.selectbox("Form", options=local_keys, help="Choose which form to fill in.")
    return None


def _resolve_mode() -> str:
    mode = _get_query_param(MODE_QUERY_PARAM)
    return OPTICIAN_MODE if mode == OPTICIAN_MODE else PATIENT_MODE


def start_session(
    template: FormTemplate,
    *,
    token: str,
    mode: str,
    settings: Mapping[str, Any],
    backend: Optional[SupabaseBackend],
    store: LocalSubmissionStore,
) -> FormSession:
    """Create a session wired to the configured tracker and draft saver."""

    if backend is not None:
        tracker: Any = BackendSessionTracker(log_row=backend.log_session_event, token=token or None)
        saver = backend.save_draft
        initial_answers: Dict[str, Any] = {}
    else:
        tracker = NullTracker()
        saver = store.save_draft
        initial_answers = store.load_draft(token) if token else {}

    autosaver = DraftAutoSaver(saver, token, interval=settings.get("autosave_interval", DEFAULT_AUTOSAVE_INTERVAL))
    session = FormSession(
        template,
        mode=mode,
        sections_per_step=settings.get("sections_per_step", DEFAULT_SECTIONS_PER_STEP),
        answers=initial_answers,
        tracker=tracker,
        autosaver=autosaver,
    )
    if isinstance(tracker, BackendSessionTracker):
        tracker.form_loaded()
    return session


def _number_value(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str) and value.strip():
        try:
            return float(value.strip().replace(",", "."))
        except ValueError:
            return None
    return None


def _store_answer(session: FormSession, field_id: str, value: Any) -> None:
    """Forward a widget value to the session when it changed."""

    current = session.answers.get(field_id)
    if field_id not in session.answers and (value is None or value is False or value == "" or value == []):
        return
    if type(current) is type(value) and current == value:
        return
    session.update_answer(field_id, value)


def render_field(session: FormSession, form_key: str, visible_field: VisibleField) -> None:
    """Render the widget for one visible field and store its value."""

    question = visible_field.question
    field_id = visible_field.field_id
    widget_key = f"{form_key}_field_{field_id}"
    label = f"{visible_field.label}{' *' if visible_field.required else ''}"
    stored = session.answers.get(field_id)
    current = stored if is_value_appropriate(visible_field, stored) else None
    container = st.container()

    if question.type == "info":
        container.info(visible_field.label)
        return

    if question.is_boolean:
        value: Any = container.checkbox(label, value=current is True, key=widget_key, help=question.help_text)
    elif question.is_multi_choice:
        value = container.multiselect(
            label,
            options=question.option_values,
            default=list(current or []),
            key=widget_key,
            help=question.help_text,
        )
    elif question.type in SINGLE_CHOICE_TYPES:
        options = question.option_values
        if not options:
            container.warning(f"Question '{question.id}' has no options configured.")
            return
        index = options.index(current) if current in options else None
        if question.type == "radio":
            value = container.radio(label, options, index=index, key=widget_key, help=question.help_text)
        else:
            value = container.selectbox(
                label,
                options,
                index=index,
                key=widget_key,
                placeholder=UNSELECTED_LABEL,
                help=question.help_text,
            )
    elif question.type == NUMBER_TYPE:
        value = container.number_input(
            label,
            value=_number_value(current),
            key=widget_key,
            placeholder=question.placeholder,
            help=question.help_text,
        )
    elif question.type == "textarea":
        value = container.text_area(
            label,
            value="" if current is None else str(current),
            key=widget_key,
            placeholder=question.placeholder,
            help=question.help_text,
        )
    else:
        value = container.text_input(
            label,
            value="" if current is None else str(current),
            key=widget_key,
            placeholder=question.placeholder,
            help=question.help_text,
        )

    _store_answer(session, field_id, value)

    message = session.error_for(field_id)
    if message:
        container.error(message)


def render_step_navigation(session: FormSession) -> None:
    """Render the step list in the sidebar."""

    st.sidebar.markdown("### Steps")
    for step in session.steps:
        marker = "✅ " if step.index in session.completed_steps else ""
        current = step.index == session.step_index
        if st.sidebar.button(
            f"{marker}{step.index + 1}. {step.title}",
            key=f"step_nav_{step.index}",
            disabled=current,
        ):
            if session.go_to_step(step.index):
                st.rerun()


def render_submitted(session: FormSession) -> None:
    st.success(DEFAULT_SUBMIT_SUCCESS_MESSAGE)
    if session.entry_id:
        st.caption(f"Reference: `{session.entry_id}`")
    scoring = session.scoring
    config = session.template.scoring_config
    if scoring is not None and config is not None and config.show_score_to_patient:
        st.metric("Score", f"{scoring.total_score:g} / {scoring.max_possible_score:g}")
        if scoring.threshold_exceeded and config.threshold_message:
            st.warning(config.threshold_message)
    with st.expander("Your answers", expanded=False):
        st.text(session.format_document().to_text())


def handle_submit(session: FormSession, persistence: Persistence, token: str) -> None:
    """Submit the session and report the outcome on the page."""

    if isinstance(session.tracker, BackendSessionTracker):
        session.tracker.on_submission_attempt(session.progress)
    try:
        result = session.submit(persistence, token)
    except ValidationError as exc:
        st.error("Please answer all required questions before submitting.")
        st.markdown("\n".join(f"- {error.label}" for error in exc.errors))
        return
    if result.ok:
        st.rerun()
    else:
        st.error(f"{DEFAULT_SUBMIT_FAILURE_MESSAGE} ({result.error})")


def main() -> None:
    """Render the patient form page."""

    st.set_page_config(page_title=DEFAULT_PAGE_TITLE, page_icon="👁️")
    settings = _supabase_settings()
    form_key = _resolve_form_key(settings)
    if not form_key:
        st.error("No form configured. Add form_templates/<form_key>/form_template.json or set supabase.form_id.")
        return

    token = _get_query_param(TOKEN_QUERY_PARAM) or ""
    backend = _build_backend(settings, form_key)
    store = LocalSubmissionStore(form_id=form_key)

    session: Optional[FormSession] = st.session_state.get(SESSION_STATE_KEY)
    if session is None or st.session_state.get(SESSION_FORM_KEY) != form_key:
        template = load_template(form_key, source=_template_source(settings, backend))
        if template is None:
            st.error(f"Form template '{form_key}' could not be loaded.")
            return
        session = start_session(
            template,
            token=token,
            mode=_resolve_mode(),
            settings=settings,
            backend=backend,
            store=store,
        )
        st.session_state[SESSION_STATE_KEY] = session
        st.session_state[SESSION_FORM_KEY] = form_key

    st.title(session.template.title)

    if session.state is SessionState.SUBMITTED:
        render_submitted(session)
        return

    if session.step_index == 0 and not session.completed_steps:
        st.subheader(DEFAULT_INTRO_HEADING)
        for paragraph in intro_paragraphs_list():
            st.write(paragraph)

    step = session.current_step
    if step is None:
        st.info("This form has no questions to answer.")
        return

    render_step_navigation(session)
    st.progress(session.progress, text=f"Step {step.index + 1} of {session.step_count}")

    if session.submission_error:
        st.error(f"{DEFAULT_SUBMIT_FAILURE_MESSAGE} ({session.submission_error})")
    if session.focus_field:
        focus = session.visible_tree.get_field(session.focus_field)
        if focus is not None:
            st.warning(f"Please check: {focus.label}")

    before: List[str] = session.visible_tree.visible_field_ids
    for section in step.sections:
        st.header(section.title)
        for visible_field in section.fields:
            render_field(session, form_key, visible_field)
    if session.visible_tree.visible_field_ids != before:
        st.rerun()

    previous_col, next_col = st.columns(2)
    if not session.is_first_step and previous_col.button(DEFAULT_PREVIOUS_LABEL):
        session.request_previous()
        st.rerun()
    if session.is_last_step:
        persistence: Persistence = backend if backend is not None else store
        if next_col.button(DEFAULT_SUBMIT_LABEL, type="primary"):
            handle_submit(session, persistence, token)
    elif next_col.button(DEFAULT_NEXT_LABEL, type="primary"):
        session.request_next()
        st.rerun()

    if session.autosaver is not None:
        session.autosaver.flush()


if __name__ == "__main__":
    main()
