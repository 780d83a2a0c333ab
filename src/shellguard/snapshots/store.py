"""
Transactional snapshot store.

Captures the pre-command state of every path a command may touch, persists it
as one JSON file per snapshot for crash recovery, and restores it on request.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import stat
import sys
import tempfile
import threading
import time
import uuid
from dataclasses import replace
from pathlib import Path
from typing import Iterable

from shellguard._types import (
    EntryKind,
    RetentionPolicy,
    RollbackResult,
    Snapshot,
    SnapshotDiff,
    SnapshotEntry,
    SnapshotStatus,
)
from shellguard.errors import SnapshotError, SnapshotNotFound
from shellguard.snapshots.paths import PathCandidate, extract_candidates

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 5


class SnapshotStore:
    """
    Capture, persist, restore and prune filesystem snapshots.

    Capture is safe to call concurrently for different commands. Restore
    assumes a single writer per snapshot id.

    Example:
        >>> store = SnapshotStore("~/.shellguard/snapshots")
        >>> snap = store.capture("rm -rf ./build", "/proj")
        >>> ...  # run the command
        >>> result = store.restore(snap.id)
    """

    def __init__(
        self,
        directory: Path | str,
        *,
        retention: RetentionPolicy | None = None,
        max_depth: int = DEFAULT_MAX_DEPTH,
    ) -> None:
        """
        Initialize the store and load snapshots left on disk.

        Args:
            directory: Where snapshot files live. Created if missing.
            retention: Max count / max age. Defaults to 50 snapshots, 24h.
            max_depth: How deep recursive-delete targets are enumerated.

        Raises:
            SnapshotError: If the directory cannot be created.
        """
        self._dir = Path(directory).expanduser().resolve()
        self._retention = retention or RetentionPolicy()
        self._max_depth = max_depth
        self._snapshots: dict[str, Snapshot] = {}
        self._lock = threading.Lock()

        try:
            self._dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise SnapshotError(f"Cannot create snapshot directory {self._dir}: {exc}") from exc

        self._load()

    @property
    def directory(self) -> Path:
        return self._dir

    @property
    def retention(self) -> RetentionPolicy:
        return self._retention

    # --- Capture ---

    def capture(
        self,
        command: str,
        cwd: Path | str,
        explicit_paths: Iterable[str | PathCandidate] = (),
        *,
        discover: bool = True,
        restores: str | None = None,
        max_depth: int | None = None,
    ) -> Snapshot:
        """
        Record the current state of every path the command may affect.

        Args:
            command: Command text the snapshot is taken for.
            cwd: Working directory the command will run in.
            explicit_paths: Paths the caller knows will be touched. A
                ``PathCandidate`` with ``recursive=True`` also captures the
                directory's descendants.
            discover: Also mine the command text for paths.
            restores: Set on pre-restore backups to the id being restored.
                That snapshot is exempt from the prune pass that follows.
            max_depth: Overrides the store's enumeration depth for this capture.

        Returns:
            The persisted Snapshot.

        Raises:
            SnapshotError: If the snapshot cannot be written to disk.
        """
        cwd = os.path.abspath(os.path.expanduser(str(cwd)))
        candidates = [
            PathCandidate(_absolute(p.path, cwd), p.recursive)
            if isinstance(p, PathCandidate)
            else PathCandidate(_absolute(p, cwd))
            for p in explicit_paths
        ]
        depth_limit = self._max_depth if max_depth is None else max_depth
        if discover:
            candidates.extend(extract_candidates(command, cwd))

        entries: dict[str, SnapshotEntry] = {}
        skipped: list[str] = []
        for candidate in candidates:
            self._capture_path(candidate.path, entries, skipped)
            if candidate.recursive:
                self._capture_tree(candidate.path, entries, skipped, 1, depth_limit)

        snapshot = Snapshot(
            id=f"snap-{uuid.uuid4().hex[:16]}",
            command=command,
            cwd=cwd,
            created_at=time.time(),
            entries=tuple(entries.values()),
            skipped=tuple(skipped),
            restores=restores,
        )
        self._persist(snapshot)
        with self._lock:
            self._snapshots[snapshot.id] = snapshot

        logger.info(f"Captured {snapshot.id}: {len(snapshot.entries)} entries for {command!r}")
        if skipped:
            logger.warning(f"{snapshot.id}: could not capture {len(skipped)} path(s): {skipped}")

        self.prune(keep=[snapshot.id] if restores is None else [snapshot.id, restores])
        return snapshot

    def _capture_path(self, path: str, entries: dict[str, SnapshotEntry], skipped: list[str]) -> None:
        if path in entries or path in skipped:
            return
        try:
            st = os.lstat(path)
        except FileNotFoundError:
            entries[path] = SnapshotEntry(path, EntryKind.ABSENT)
            return
        except NotADirectoryError:
            # A parent component is a file, so the path cannot exist
            entries[path] = SnapshotEntry(path, EntryKind.ABSENT)
            return
        except OSError as exc:
            logger.debug(f"lstat failed for {path}: {exc}")
            skipped.append(path)
            return

        mode = stat.S_IMODE(st.st_mode)
        try:
            if stat.S_ISLNK(st.st_mode):
                entries[path] = SnapshotEntry(path, EntryKind.SYMLINK, target=os.readlink(path))
            elif stat.S_ISDIR(st.st_mode):
                entries[path] = SnapshotEntry(path, EntryKind.DIRECTORY, mode=mode)
            elif stat.S_ISREG(st.st_mode):
                with open(path, "rb") as fh:
                    entries[path] = SnapshotEntry(path, EntryKind.FILE, content=fh.read(), mode=mode)
            else:
                # Devices, FIFOs, sockets: reading could block or never end
                skipped.append(path)
        except OSError as exc:
            logger.debug(f"Cannot read {path}: {exc}")
            skipped.append(path)

    def _capture_tree(
        self,
        root: str,
        entries: dict[str, SnapshotEntry],
        skipped: list[str],
        depth: int,
        max_depth: int,
    ) -> None:
        if depth > max_depth:
            return
        entry = entries.get(root)
        if entry is None or entry.kind is not EntryKind.DIRECTORY:
            return
        try:
            names = sorted(os.listdir(root))
        except OSError as exc:
            logger.debug(f"Cannot list {root}: {exc}")
            skipped.append(root)
            return
        for name in names:
            child = os.path.join(root, name)
            self._capture_path(child, entries, skipped)
            self._capture_tree(child, entries, skipped, depth + 1, max_depth)

    # --- Restore ---

    def restore(self, snapshot_id: str) -> RollbackResult:
        """
        Reapply a snapshot over the current filesystem.

        A backup snapshot of the paths about to be overwritten is captured
        first, so the restore can itself be undone. Per-entry failures are
        collected and do not stop the remaining entries.

        Args:
            snapshot_id: Id returned by ``capture``.

        Returns:
            RollbackResult with the restored count and any per-entry errors.

        Raises:
            SnapshotNotFound: If the id is unknown.
            SnapshotError: If the backup snapshot cannot be taken.
        """
        snapshot = self.get(snapshot_id)
        # Entries that are not directories replace whatever is there now,
        # so a directory in their place is backed up with all its contents.
        targets = [
            PathCandidate(
                entry.path,
                recursive=entry.kind is not EntryKind.DIRECTORY
                and os.path.isdir(entry.path)
                and not os.path.islink(entry.path),
            )
            for entry in snapshot.entries
        ]
        backup = self.capture(
            f"pre-restore backup of {snapshot_id}",
            snapshot.cwd,
            targets,
            discover=False,
            restores=snapshot_id,
            max_depth=sys.maxsize,
        )

        logger.info(f"Restoring {snapshot_id} ({len(snapshot.entries)} entries), backup {backup.id}")
        restored = 0
        errors: list[str] = []
        directory_modes: list[tuple[str, int]] = []

        for entry in snapshot.entries:
            try:
                _apply_entry(entry)
            except OSError as exc:
                errors.append(f"{entry.path}: {exc}")
                continue
            restored += 1
            if entry.kind is EntryKind.DIRECTORY and entry.mode is not None:
                directory_modes.append((entry.path, entry.mode))

        # Deepest first, so a read-only parent does not block its children.
        for path, mode in sorted(directory_modes, key=lambda item: item[0].count(os.sep), reverse=True):
            try:
                os.chmod(path, mode)
            except OSError as exc:
                errors.append(f"{path}: {exc}")

        with self._lock:
            current = self._snapshots.get(snapshot_id)
            if current is not None:
                current = replace(current, status=SnapshotStatus.ROLLED_BACK)
                self._snapshots[snapshot_id] = current
        if current is not None:
            try:
                self._persist(current)
            except SnapshotError as exc:
                errors.append(str(exc))

        result = RollbackResult(
            snapshot_id=snapshot_id,
            success=not errors,
            restored_count=restored,
            errors=tuple(errors),
            backup_id=backup.id,
        )
        if errors:
            logger.warning(f"Partial restore of {snapshot_id}: {len(errors)} error(s)")
        else:
            logger.info(f"Restored {snapshot_id}: {restored} entries")
        return result

    # --- Change detection ---

    def diff(self, snapshot_id: str) -> SnapshotDiff:
        """
        Compare a snapshot's entries with the current filesystem.

        Only the recorded paths are examined: ``added`` are paths that were
        absent and now exist, ``removed`` existed and are gone, ``modified``
        changed kind, content, permissions or link target.
        """
        snapshot = self.get(snapshot_id)
        added: list[str] = []
        modified: list[str] = []
        removed: list[str] = []

        for entry in snapshot.entries:
            current: dict[str, SnapshotEntry] = {}
            skipped: list[str] = []
            self._capture_path(entry.path, current, skipped)
            now = current.get(entry.path)
            if now is None:
                modified.append(entry.path)
            elif entry.kind is EntryKind.ABSENT and now.kind is not EntryKind.ABSENT:
                added.append(entry.path)
            elif entry.kind is not EntryKind.ABSENT and now.kind is EntryKind.ABSENT:
                removed.append(entry.path)
            elif now != entry:
                modified.append(entry.path)

        return SnapshotDiff(added=tuple(added), modified=tuple(modified), removed=tuple(removed))

    # --- Retention ---

    def prune(self, *, keep: Iterable[str] = ()) -> list[str]:
        """
        Delete snapshots beyond the retention policy, oldest first.

        Args:
            keep: Ids that must survive this pass (the one just captured, and
                the one a backup was taken for). They count toward
                ``max_count`` before any other snapshot.

        Returns:
            Ids of the pruned snapshots.
        """
        cutoff = time.time() - self._retention.max_age
        with self._lock:
            ordered = sorted(self._snapshots.values(), key=lambda s: s.created_at, reverse=True)
            kept = set(keep)
            survivors = sum(1 for snapshot in ordered if snapshot.id in kept)
            doomed: list[str] = []
            for snapshot in ordered:
                if snapshot.id in kept:
                    continue
                if snapshot.created_at < cutoff or survivors >= self._retention.max_count:
                    doomed.append(snapshot.id)
                else:
                    survivors += 1
            for snapshot_id in doomed:
                del self._snapshots[snapshot_id]

        for snapshot_id in doomed:
            try:
                self._file_for(snapshot_id).unlink(missing_ok=True)
            except OSError as exc:
                logger.warning(f"Could not delete snapshot file for {snapshot_id}: {exc}")
        if doomed:
            logger.debug(f"Pruned {len(doomed)} snapshot(s): {doomed}")
        return doomed

    # --- Queries ---

    def get(self, snapshot_id: str) -> Snapshot:
        """Return a snapshot by id, raising SnapshotNotFound if unknown."""
        with self._lock:
            snapshot = self._snapshots.get(snapshot_id)
        if snapshot is None:
            raise SnapshotNotFound(snapshot_id)
        return snapshot

    def list(self) -> list[Snapshot]:
        """All retained snapshots, newest first."""
        with self._lock:
            return sorted(self._snapshots.values(), key=lambda s: s.created_at, reverse=True)

    def __len__(self) -> int:
        with self._lock:
            return len(self._snapshots)

    def __contains__(self, snapshot_id: object) -> bool:
        with self._lock:
            return snapshot_id in self._snapshots

    # --- Persistence ---

    def _file_for(self, snapshot_id: str) -> Path:
        return self._dir / f"{snapshot_id}.json"

    def _persist(self, snapshot: Snapshot) -> None:
        target = self._file_for(snapshot.id)
        try:
            fd, tmp = tempfile.mkstemp(dir=self._dir, prefix=f".{snapshot.id}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    json.dump(snapshot.to_dict(), fh)
                    fh.flush()
                    os.fsync(fh.fileno())
                os.replace(tmp, target)
            except BaseException:
                Path(tmp).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise SnapshotError(f"Cannot persist snapshot {snapshot.id} to {target}: {exc}") from exc

    def _load(self) -> None:
        for path in sorted(self._dir.glob("snap-*.json")):
            try:
                snapshot = Snapshot.from_dict(json.loads(path.read_text(encoding="utf-8")))
            except (OSError, ValueError, KeyError, TypeError) as exc:
                logger.warning(f"Ignoring unreadable snapshot file {path}: {exc}")
                continue
            self._snapshots[snapshot.id] = snapshot
        if self._snapshots:
            logger.info(f"Loaded {len(self._snapshots)} snapshot(s) from {self._dir}")
            self.prune()


def _absolute(path: str, cwd: str) -> str:
    path = os.path.expanduser(path)
    if not os.path.isabs(path):
        path = os.path.join(cwd, path)
    return os.path.normpath(path)


def _remove(path: str) -> None:
    if os.path.isdir(path) and not os.path.islink(path):
        shutil.rmtree(path)
    else:
        os.unlink(path)


def _apply_entry(entry: SnapshotEntry) -> None:
    path = entry.path
    exists = os.path.lexists(path)

    if entry.kind is EntryKind.ABSENT:
        if exists:
            _remove(path)
        return

    if entry.kind is EntryKind.DIRECTORY:
        if exists and (os.path.islink(path) or not os.path.isdir(path)):
            _remove(path)
        # Writable while children are restored; the recorded mode is applied afterwards.
        os.makedirs(path, mode=0o700, exist_ok=True)
        os.chmod(path, stat.S_IMODE(os.stat(path).st_mode) | stat.S_IRWXU)
        return

    if exists:
        # Unlinking first also replaces read-only files
        _remove(path)
    os.makedirs(os.path.dirname(path), exist_ok=True)

    if entry.kind is EntryKind.SYMLINK:
        os.symlink(entry.target or "", path)
        return

    with open(path, "wb") as fh:
        fh.write(entry.content or b"")
    if entry.mode is not None:
        os.chmod(path, entry.mode)
