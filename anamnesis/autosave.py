"""Debounced draft saving for in-progress answers."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Mapping, Optional

import requests

from anamnesis.schema_defaults import DEFAULT_AUTOSAVE_INTERVAL

logger = logging.getLogger(__name__)

DraftSaver = Callable[[str, Mapping[str, Any]], None]


class DraftAutoSaver:
    """Keep the latest answer snapshot and save it at most once per interval.

    ``notify`` only records the snapshot; the page calls ``flush`` on each
    rerun and saving happens when the interval has elapsed since the last
    save. A failed save keeps the snapshot pending for the next flush.
    """

    def __init__(
        self,
        saver: DraftSaver,
        token: Optional[str],
        *,
        interval: float = DEFAULT_AUTOSAVE_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.saver = saver
        self.token = token
        self.interval = max(0.0, float(interval))
        self.clock = clock
        self._pending: Optional[Dict[str, Any]] = None
        self._last_saved_at: Optional[float] = None
        self.last_error: Optional[str] = None
        self.save_count = 0

    @property
    def enabled(self) -> bool:
        return bool(self.token)

    @property
    def has_pending(self) -> bool:
        return self._pending is not None

    def notify(self, answers: Mapping[str, Any]) -> None:
        if not self.enabled:
            return
        self._pending = dict(answers)

    def is_due(self) -> bool:
        if self._last_saved_at is None:
            return True
        return self.clock() - self._last_saved_at >= self.interval

    def flush(self, force: bool = False) -> bool:
        """Save the pending snapshot if due; return ``True`` when it was saved."""

        if not self.enabled or self._pending is None:
            return False
        if not force and not self.is_due():
            return False

        snapshot = self._pending
        try:
            self.saver(self.token or "", snapshot)
        except (requests.RequestException, OSError, ValueError, TypeError) as exc:
            self.last_error = str(exc)
            logger.warning("Draft auto-save failed: %s", exc)
            return False

        if self._pending is snapshot:
            self._pending = None
        self._last_saved_at = self.clock()
        self.last_error = None
        self.save_count += 1
        logger.debug("Saved draft with %d answers", len(snapshot))
        return True
