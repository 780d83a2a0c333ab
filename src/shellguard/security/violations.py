"""
Append-only violation log.

Keeps the newest ``max_entries`` records in memory and, optionally, in a
JSONL file that is rewritten (rotated) once it grows past the cap.
"""

from __future__ import annotations

import json
import logging
import os
import threading
import time
from collections import deque
from pathlib import Path

from shellguard._types import Severity, ViolationHook, ViolationRecord

logger = logging.getLogger(__name__)

MAX_VIOLATIONS = 1000


class ViolationLog:
    """
    Thread-safe, capped record of rejected commands.

    Example:
        >>> log = ViolationLog(path="~/.shellguard/violations.jsonl")
        >>> log.record("shutdown -r now", "System shutdown or reboot", Severity.CRITICAL)
    """

    def __init__(self, path: Path | str | None = None, *, max_entries: int = MAX_VIOLATIONS) -> None:
        self._path = Path(path).expanduser() if path else None
        self._max_entries = max_entries
        self._records: deque[ViolationRecord] = deque(maxlen=max_entries)
        self._subscribers: list[ViolationHook] = []
        self._lock = threading.Lock()
        self._lines_on_disk = 0

        if self._path is not None:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._load()

    @property
    def path(self) -> Path | None:
        return self._path

    def record(self, command: str, reason: str, severity: Severity) -> ViolationRecord:
        """Append a violation, notify subscribers and return the record."""
        entry = ViolationRecord(command=command, reason=reason, severity=severity, timestamp=time.time())

        with self._lock:
            self._records.append(entry)
            if self._path is not None:
                self._append_to_disk(entry)
            subscribers = list(self._subscribers)

        if severity is Severity.CRITICAL:
            logger.error(f"CRITICAL VIOLATION: {reason} (command: {command!r})")
        else:
            logger.warning(f"Violation [{severity.value}]: {reason} (command: {command!r})")

        for callback in subscribers:
            callback(entry)
        return entry

    def records(self) -> list[ViolationRecord]:
        """Return a copy of the retained records, oldest first."""
        with self._lock:
            return list(self._records)

    def clear(self) -> None:
        """Drop all records, in memory and on disk."""
        with self._lock:
            self._records.clear()
            if self._path is not None and self._path.exists():
                self._path.write_text("", encoding="utf-8")
            self._lines_on_disk = 0

    def subscribe(self, callback: ViolationHook) -> None:
        """Register a callback invoked with every new record."""
        with self._lock:
            self._subscribers.append(callback)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def _load(self) -> None:
        assert self._path is not None
        if not self._path.exists():
            return
        lines = self._path.read_text(encoding="utf-8").splitlines()
        for lineno, line in enumerate(lines, start=1):
            if not line.strip():
                continue
            try:
                self._records.append(ViolationRecord.from_dict(json.loads(line)))
            except (ValueError, KeyError, TypeError) as exc:
                logger.warning(f"Skipping malformed violation entry {self._path}:{lineno}: {exc}")
        self._lines_on_disk = len(lines)

    def _append_to_disk(self, entry: ViolationRecord) -> None:
        assert self._path is not None
        if self._lines_on_disk >= self._max_entries:
            self._rotate()
            return
        with self._path.open("a", encoding="utf-8") as fh:
            fh.write(json.dumps(entry.to_dict()) + "\n")
        self._lines_on_disk += 1

    def _rotate(self) -> None:
        # Rewrites the file from the in-memory deque, which already holds the newest entries.
        assert self._path is not None
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        with tmp.open("w", encoding="utf-8") as fh:
            for entry in self._records:
                fh.write(json.dumps(entry.to_dict()) + "\n")
        os.replace(tmp, self._path)
        self._lines_on_disk = len(self._records)
        logger.debug(f"Rotated violation log {self._path} to {self._lines_on_disk} entries")
