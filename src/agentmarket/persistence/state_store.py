"""State store — JSON snapshot of the ledger for restart recovery.

The event log is the audit trail; the state store is the fast path back
to current state. Writes go to a temporary file that is then renamed
over the snapshot, so a crash never leaves a half-written file behind.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Optional


class StateStore:
    """Persists and loads a ledger snapshot as a single JSON document."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def save(self, snapshot: dict[str, Any]) -> None:
        """Atomically replace the stored snapshot. Raises OSError on failure."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        with tmp.open("w", encoding="utf-8") as f:
            json.dump(snapshot, f, sort_keys=True, ensure_ascii=False)
        os.replace(tmp, self._path)

    def load(self) -> Optional[dict[str, Any]]:
        """Return the stored snapshot, or None if nothing was saved yet."""
        if not self._path.exists():
            return None
        with self._path.open("r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"{self._path}: snapshot must be a JSON object")
        return data
