"""Disk-backed evaluation history keyed by conversation identity (thread-safe, atomic)."""
from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from content.types import Evaluation
from utils.io import atomic_write_json, read_json

HISTORY_MAX = 50

EvaluationData = Union[Evaluation, Dict[str, Any]]


def _now_ms() -> int:
    return int(time.time() * 1000)


def _as_dict(evaluation: EvaluationData) -> Dict[str, Any]:
    if isinstance(evaluation, Evaluation):
        return evaluation.model_dump()
    return dict(evaluation)


@dataclass
class Lookup:
    analysis: Dict[str, Any]
    from_cache: bool


# -----------------------------
# HistoryStore
# -----------------------------
class HistoryStore:
    """Most recent evaluation per conversation, capped at ``max_entries``.

    Layout of the JSON file::

        {
          "entries": {"<thread id>": {"analysis": {...}, "timestamp": <ms>}},
          "pending": {"thread_id": "<thread id>", "analysis": {...}} | null
        }

    ``pending`` holds the result of a keyboard-shortcut run until the popup
    for that same conversation picks it up.
    """

    def __init__(
        self,
        path: str | Path,
        *,
        max_entries: int = HISTORY_MAX,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self.path = Path(path)
        self.max_entries = max(1, int(max_entries))
        self._clock = clock
        self._lock = threading.RLock()

    # --------- persistence ----------
    def _load(self) -> Dict[str, Any]:
        data = read_json(self.path, default=None)
        if not isinstance(data, dict):
            data = {}
        entries = data.get("entries")
        return {
            "entries": entries if isinstance(entries, dict) else {},
            "pending": data.get("pending") if isinstance(data.get("pending"), dict) else None,
        }

    def _save(self, data: Dict[str, Any]) -> None:
        atomic_write_json(self.path, data)

    # --------- entries ----------
    def save(self, thread_id: str, evaluation: EvaluationData) -> None:
        """Record ``evaluation`` for ``thread_id`` and trim to the newest entries."""
        with self._lock:
            data = self._load()
            entries = data["entries"]
            entries[thread_id] = {"analysis": _as_dict(evaluation), "timestamp": self._clock()}
            newest = sorted(entries.items(), key=lambda kv: kv[1].get("timestamp", 0), reverse=True)
            data["entries"] = dict(newest[: self.max_entries])
            self._save(data)

    def get(self, thread_id: str) -> Optional[Dict[str, Any]]:
        entry = self._load()["entries"].get(thread_id)
        if isinstance(entry, dict) and isinstance(entry.get("analysis"), dict):
            return entry["analysis"]
        return None

    def entries(self) -> Dict[str, Dict[str, Any]]:
        """All entries, newest first."""
        return self._load()["entries"]

    def thread_ids(self) -> List[str]:
        return list(self.entries())

    def clear(self) -> None:
        with self._lock:
            self._save({"entries": {}, "pending": None})

    # --------- shortcut hand-off ----------
    def set_pending(self, thread_id: str, evaluation: EvaluationData) -> None:
        with self._lock:
            data = self._load()
            data["pending"] = {"thread_id": thread_id, "analysis": _as_dict(evaluation)}
            self._save(data)

    def pop_pending(self, thread_id: str) -> Optional[Dict[str, Any]]:
        """Return and clear the pending result if it belongs to ``thread_id``."""
        with self._lock:
            data = self._load()
            pending = data["pending"]
            if not pending or pending.get("thread_id") != thread_id:
                return None
            data["pending"] = None
            self._save(data)
            return pending.get("analysis")

    def lookup(self, thread_id: str) -> Optional[Lookup]:
        """What the popup shows on open: a fresh shortcut result, else the cached one."""
        pending = self.pop_pending(thread_id)
        if pending is not None:
            return Lookup(analysis=pending, from_cache=False)
        cached = self.get(thread_id)
        if cached is not None:
            return Lookup(analysis=cached, from_cache=True)
        return None
