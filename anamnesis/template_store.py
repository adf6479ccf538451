"""Helpers for finding and loading form template files."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Protocol, Tuple

import requests

from anamnesis.schema import FormTemplate, template_from_payload

logger = logging.getLogger(__name__)

TEMPLATE_FILENAME = "form_template.json"
TEMPLATES_ROOT = Path("form_templates")


class TemplateSource(Protocol):
    def fetch_form_template(self, form_id: str) -> Dict[str, Any]:
        ...


def discover_local_templates(root: Path = TEMPLATES_ROOT) -> Dict[str, Path]:
    """Return a mapping of ``form_key -> path`` for local template files."""

    templates: Dict[str, Path] = {}
    if root.exists():
        for entry in sorted(root.iterdir()):
            if not entry.is_dir():
                continue
            template_path = entry / TEMPLATE_FILENAME
            if template_path.exists():
                templates[entry.name] = template_path
    return templates


def load_local_payloads(root: Path = TEMPLATES_ROOT) -> Tuple[Dict[str, Dict[str, Any]], Dict[str, Path]]:
    """Load raw template payloads and the files they came from.

    Unreadable files are skipped with a warning.
    """

    payloads: Dict[str, Dict[str, Any]] = {}
    sources: Dict[str, Path] = {}
    for form_key, path in discover_local_templates(root).items():
        try:
            with path.open("r", encoding="utf-8") as handle:
                payload = json.load(handle)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Skipping unreadable form template %s: %s", path, exc)
            continue
        if not isinstance(payload, dict):
            logger.warning("Skipping form template %s: expected a JSON object", path)
            continue
        payloads[form_key] = payload
        sources[form_key] = path
    return payloads, sources


def templates_from_payloads(payloads: Mapping[str, Dict[str, Any]]) -> Dict[str, FormTemplate]:
    """Parse already-loaded payloads into ``FormTemplate`` objects."""

    return {key: template_from_payload(value, default_title=key) for key, value in payloads.items()}


def load_local_templates(root: Path = TEMPLATES_ROOT) -> Dict[str, FormTemplate]:
    payloads, _ = load_local_payloads(root)
    return templates_from_payloads(payloads)


def available_template_keys(root: Path = TEMPLATES_ROOT) -> List[str]:
    """Return the list of known local template identifiers."""

    return list(discover_local_templates(root).keys())


def resolve_remote_template_path(base_path: str, form_key: str) -> str:
    """Return the remote path for ``form_key`` using ``base_path`` template."""

    if "{form_key}" in base_path:
        return base_path.format(form_key=form_key)
    if "{form}" in base_path:
        return base_path.format(form=form_key)
    if base_path.endswith(".json"):
        return base_path
    return f"{base_path.rstrip('/')}/{form_key}/{TEMPLATE_FILENAME}"


class UrlTemplateSource:
    """Fetch template JSON over HTTP from a ``{form_key}`` URL template."""

    def __init__(self, base_url: str, *, timeout: float = 10) -> None:
        self.base_url = base_url
        self.timeout = timeout

    def fetch_form_template(self, form_id: str) -> Dict[str, Any]:
        url = resolve_remote_template_path(self.base_url, form_id)
        response = requests.get(url, timeout=self.timeout)
        response.raise_for_status()
        payload = response.json()
        if not isinstance(payload, dict):
            raise ValueError(f"Form template at {url} is not a JSON object")
        return payload


def load_template(
    form_key: str,
    *,
    source: Optional[TemplateSource] = None,
    root: Path = TEMPLATES_ROOT,
) -> Optional[FormTemplate]:
    """Load ``form_key`` from ``source`` first, then from the local templates.

    Returns ``None`` when neither has the template.
    """

    if source is not None:
        try:
            payload = source.fetch_form_template(form_key)
        except (requests.RequestException, ValueError) as exc:
            logger.warning("Could not fetch form template %s remotely: %s", form_key, exc)
        else:
            return template_from_payload(payload, default_title=form_key)

    payloads, _ = load_local_payloads(root)
    if form_key in payloads:
        return template_from_payload(payloads[form_key], default_title=form_key)
    return None
