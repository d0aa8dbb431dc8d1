# SPDX-License-Identifier: BSD-2-Clause
# Copyright (c) deftio llc

"""Fire-and-forget action history for the sandbox lifecycle.

All I/O is synchronous filesystem writes; one JSONL line per action.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pathlib import Path

HISTORY_FILENAME = "history.jsonl"


class ActionLogger:
    """Appends lifecycle actions to ``<state_dir>/history.jsonl``."""

    def __init__(self, state_dir: Path, *, enabled: bool = True) -> None:
        self._state_dir = state_dir
        self._history_path = state_dir / HISTORY_FILENAME
        self._enabled = enabled

    @property
    def enabled(self) -> bool:
        """Whether logging is active."""
        return self._enabled

    @property
    def history_path(self) -> Path:
        return self._history_path

    def log(self, action: str, status: str = "ok", **fields: object) -> None:
        """Record one action with its outcome and any extra fields."""
        entry: dict[str, object] = {
            "action": action,
            "status": status,
            "timestamp": datetime.now(tz=timezone.utc).isoformat(),
        }
        entry.update(fields)
        self.append_history(entry)

    def append_history(self, entry: dict[str, object]) -> None:
        """Append one JSONL line to ``history.jsonl``."""
        if not self._enabled:
            return
        self._state_dir.mkdir(parents=True, exist_ok=True)
        with self._history_path.open("a") as f:
            f.write(json.dumps(entry, default=str) + "\n")


def read_history(state_dir: Path) -> list[dict[str, object]]:
    """Read all history entries, skipping blank or corrupt lines."""
    history = state_dir / HISTORY_FILENAME
    if not history.is_file():
        return []
    entries: list[dict[str, object]] = []
    for raw in history.read_text().splitlines():
        stripped = raw.strip()
        if not stripped:
            continue
        try:
            entry = json.loads(stripped)
        except json.JSONDecodeError:
            continue
        if isinstance(entry, dict):
            entries.append(entry)
    return entries
