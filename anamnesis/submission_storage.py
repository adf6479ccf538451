"""Local JSON file storage for submitted intake forms."""

from __future__ import annotations

import hashlib
import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from anamnesis.errors import SubmissionError
from anamnesis.formatter import OrderedAnswerDocument
from anamnesis.scoring import ScoringResult
from anamnesis.submission import SubmissionResult, build_submission_payload

logger = logging.getLogger(__name__)

SUBMISSIONS_DIR = Path("submissions")
DRAFTS_SUBDIR = "drafts"


def _new_entry_id() -> str:
    return uuid.uuid4().hex


@dataclass
class LocalSubmissionStore:
    """Persist submissions as ``<directory>/<entry_id>.json`` files.

    Used when no hosted backend is configured, and by the home page to list
    what has been submitted on this machine.
    """

    directory: Path = SUBMISSIONS_DIR
    form_id: str = ""
    id_factory: Callable[[], str] = field(default=_new_entry_id, repr=False)

    def submit(
        self,
        access_token: str,
        answers: Mapping[str, Any],
        document: OrderedAnswerDocument,
        *,
        scoring: Optional[ScoringResult] = None,
    ) -> SubmissionResult:
        """Write a submission file and return its entry id."""

        entry_id = self.id_factory()
        payload = build_submission_payload(answers, document, form_id=self.form_id, scoring=scoring)
        record = {
            "id": entry_id,
            "form_id": self.form_id,
            "form_title": document.title,
            "status": "pending",
            "access_token": access_token or None,
            "submitted_at": payload["metadata"]["submittedAt"],
            "answers": payload,
        }
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            path = self.directory / f"{entry_id}.json"
            with path.open("w", encoding="utf-8") as handle:
                json.dump(record, handle, indent=2, ensure_ascii=False)
        except (OSError, TypeError) as exc:
            raise SubmissionError(f"Could not store submission: {exc}", code="storage_error") from exc
        logger.info("Stored submission %s in %s", entry_id, self.directory)
        return SubmissionResult.success(entry_id)

    @property
    def drafts_directory(self) -> Path:
        return self.directory / DRAFTS_SUBDIR

    def draft_path(self, access_token: str) -> Path:
        """Return the draft file for ``access_token``; the token never becomes part of the path."""

        digest = hashlib.sha256((access_token or "").encode("utf-8")).hexdigest()
        return self.drafts_directory / f"{digest}.json"

    def save_draft(self, access_token: str, answers: Mapping[str, Any]) -> None:
        """Overwrite the draft file kept for ``access_token``."""

        path = self.draft_path(access_token)
        path.parent.mkdir(parents=True, exist_ok=True)
        record = {
            "token": access_token,
            "saved_at": datetime.now(timezone.utc).isoformat(),
            "answers": dict(answers),
        }
        with path.open("w", encoding="utf-8") as handle:
            json.dump(record, handle, indent=2, ensure_ascii=False)

    def load_draft(self, access_token: str) -> Dict[str, Any]:
        """Return the saved draft answers for ``access_token`` (empty if none)."""

        path = self.draft_path(access_token)
        if not path.exists():
            return {}
        try:
            with path.open("r", encoding="utf-8") as handle:
                payload = json.load(handle)
        except (OSError, json.JSONDecodeError):
            logger.warning("Ignoring unreadable draft file %s", path)
            return {}
        answers = payload.get("answers") if isinstance(payload, dict) else None
        return answers if isinstance(answers, dict) else {}

    def list_submissions(self) -> List[Dict[str, Any]]:
        """Return stored submission records, newest first."""

        return load_submission_records(self.directory)

    def delete(self, entry_id: str) -> Tuple[List[Path], List[Path]]:
        return delete_submission_files(entry_id, self.directory)


def load_submission_records(directory: Path) -> List[Dict[str, Any]]:
    """Load every ``*.json`` submission in ``directory``, newest first."""

    if not directory.exists():
        return []

    records: List[Dict[str, Any]] = []
    for candidate in sorted(directory.glob("*.json")):
        try:
            with candidate.open("r", encoding="utf-8") as handle:
                payload = json.load(handle)
        except (OSError, json.JSONDecodeError):
            logger.warning("Skipping invalid submission file: %s", candidate.name)
            continue
        if not isinstance(payload, dict):
            continue
        payload.setdefault("id", candidate.stem)
        records.append(payload)
    return sorted(records, key=lambda item: str(item.get("submitted_at") or ""), reverse=True)


def delete_submission_files(
    entry_id: str,
    directory: Path,
    *,
    skip_paths: Sequence[Path] | None = None,
) -> Tuple[List[Path], List[Path]]:
    """Delete files in ``directory`` belonging to ``entry_id``.

    Parameters
    ----------
    entry_id:
        The identifier of the submitted entry.
    directory:
        The directory where submission JSON files are stored.
    skip_paths:
        Optional paths that should not be deleted.

    Returns
    -------
    Tuple[List[Path], List[Path]]
        The paths that were removed and the ones that could not be deleted
        because of an ``OSError``.
    """

    normalized_id = str(entry_id or "").strip()
    if not normalized_id or not directory.exists():
        return [], []

    skipped = {Path(item).resolve() for item in skip_paths or ()}
    removed: List[Path] = []
    failed: List[Path] = []

    for candidate in directory.glob("*.json"):
        if candidate.resolve() in skipped:
            continue

        matches = candidate.stem == normalized_id
        if not matches:
            try:
                with candidate.open("r", encoding="utf-8") as handle:
                    payload = json.load(handle)
            except (OSError, json.JSONDecodeError):
                continue
            matches = isinstance(payload, dict) and str(payload.get("id") or "").strip() == normalized_id

        if not matches:
            continue

        try:
            candidate.unlink()
        except OSError:
            failed.append(candidate)
        else:
            removed.append(candidate)

    return removed, failed


__all__ = [
    "DRAFTS_SUBDIR",
    "LocalSubmissionStore",
    "SUBMISSIONS_DIR",
    "delete_submission_files",
    "load_submission_records",
]
