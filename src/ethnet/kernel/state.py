from __future__ import annotations

import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional

from pydantic import ValidationError

from ..contracts.v1 import ProcessRecord, RunState
from ..util.fs import atomic_write_json, read_json


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def load_run_state(path: Path) -> Optional[RunState]:
    doc = read_json(path)
    if not doc:
        return None
    try:
        return RunState.model_validate(doc)
    except ValidationError:
        return None


class RunStateWriter:
    """Keeps `run.json` in sync with what this run has started."""

    def __init__(self, path: Path, state: RunState) -> None:
        self.path = path
        self._lock = threading.Lock()
        self._state = state
        if not self._state.started_at:
            self._state.started_at = utc_now_iso()

    def update(self, **fields) -> None:
        with self._lock:
            for k, v in fields.items():
                setattr(self._state, k, v)
            self._flush()

    def set_processes(self, records: Iterable[ProcessRecord]) -> None:
        with self._lock:
            self._state.processes = list(records)
            self._flush()

    def _flush(self) -> None:
        self._state.updated_at = utc_now_iso()
        atomic_write_json(self.path, self._state.model_dump())
