"""Tests for SnapshotStore capture, restore, diff and retention."""

from __future__ import annotations

import json
import os
import shutil
import stat
import time
from pathlib import Path

import pytest

from shellguard import (
    RetentionPolicy,
    SnapshotError,
    SnapshotNotFound,
    SnapshotStatus,
    SnapshotStore,
)
from shellguard._types import EntryKind


def make_build(root: Path) -> Path:
    build = root / "build"
    (build / "b").mkdir(parents=True)
    (build / "a.txt").write_text("alpha")
    (build / "b" / "c.txt").write_text("charlie")
    return build


class TestCapture:
    """Tests for capturing pre-command state."""

    def test_recursive_delete_scenario(self, store: SnapshotStore, workdir: Path) -> None:
        """rm -rf ./build records the directory and every descendant."""
        make_build(workdir)
        snap = store.capture("rm -rf ./build", workdir)

        kinds = {entry.path: entry.kind for entry in snap.entries}
        assert kinds == {
            str(workdir / "build"): EntryKind.DIRECTORY,
            str(workdir / "build" / "a.txt"): EntryKind.FILE,
            str(workdir / "build" / "b"): EntryKind.DIRECTORY,
            str(workdir / "build" / "b" / "c.txt"): EntryKind.FILE,
        }
        assert snap.entries[0].path == str(workdir / "build")
        assert snap.status is SnapshotStatus.CAPTURED

    def test_missing_path_is_recorded_absent(self, store: SnapshotStore, workdir: Path) -> None:
        snap = store.capture("touch new.txt", workdir)
        assert [(e.path, e.kind) for e in snap.entries] == [(str(workdir / "new.txt"), EntryKind.ABSENT)]

    def test_file_content_and_mode(self, store: SnapshotStore, workdir: Path) -> None:
        target = workdir / "script.sh"
        target.write_bytes(b"#!/bin/sh\necho hi\n")
        target.chmod(0o750)
        snap = store.capture("rm script.sh", workdir)
        entry = snap.entries[0]
        assert entry.kind is EntryKind.FILE
        assert entry.content == b"#!/bin/sh\necho hi\n"
        assert entry.mode == 0o750

    def test_explicit_paths_come_first(self, store: SnapshotStore, workdir: Path) -> None:
        snap = store.capture("touch a.txt", workdir, ["config.json"])
        assert snap.paths == [str(workdir / "config.json"), str(workdir / "a.txt")]

    def test_symlink_is_recorded_not_followed(self, store: SnapshotStore, workdir: Path) -> None:
        (workdir / "link").symlink_to(workdir / "test.txt")
        snap = store.capture("rm link", workdir)
        entry = snap.entries[0]
        assert entry.kind is EntryKind.SYMLINK
        assert entry.target == str(workdir / "test.txt")

    def test_depth_bound(self, temp_dir: Path, workdir: Path) -> None:
        store = SnapshotStore(temp_dir / "shallow", max_depth=1)
        make_build(workdir)
        snap = store.capture("rm -rf build", workdir)
        assert str(workdir / "build" / "b" / "c.txt") not in snap.paths
        assert str(workdir / "build" / "b") in snap.paths

    def test_unique_ids(self, store: SnapshotStore, workdir: Path) -> None:
        ids = {store.capture("touch x", workdir).id for _ in range(10)}
        assert len(ids) == 10

    def test_persisted_as_json(self, store: SnapshotStore, workdir: Path) -> None:
        snap = store.capture("rm test.txt", workdir)
        data = json.loads((store.directory / f"{snap.id}.json").read_text())
        assert data["id"] == snap.id
        assert data["command"] == "rm test.txt"
        assert data["cwd"] == str(workdir)

    def test_unwritable_directory_raises(self, temp_dir: Path) -> None:
        blocker = temp_dir / "file"
        blocker.write_text("")
        with pytest.raises(SnapshotError):
            SnapshotStore(blocker / "snapshots")


class TestRestore:
    """Tests for rolling back."""

    def test_recursive_delete_round_trip(self, store: SnapshotStore, workdir: Path) -> None:
        build = make_build(workdir)
        snap = store.capture("rm -rf ./build", workdir)
        shutil.rmtree(build)

        result = store.restore(snap.id)

        assert result.success
        assert result.restored_count == 4
        assert (build / "a.txt").read_text() == "alpha"
        assert (build / "b" / "c.txt").read_text() == "charlie"
        assert store.get(snap.id).status is SnapshotStatus.ROLLED_BACK

    def test_restores_content_and_permissions(self, store: SnapshotStore, workdir: Path) -> None:
        target = workdir / "test.txt"
        target.chmod(0o640)
        snap = store.capture("sed -i s/hello/bye/ test.txt", workdir)
        target.write_text("bye world")
        target.chmod(0o400)

        assert store.restore(snap.id).success
        assert target.read_text() == "hello world"
        assert stat.S_IMODE(target.stat().st_mode) == 0o640

    def test_restores_directory_permissions(self, store: SnapshotStore, workdir: Path) -> None:
        secret = workdir / "secret"
        secret.mkdir(mode=0o700)
        os.chmod(secret, 0o700)
        snap = store.capture("rm -rf secret", workdir)
        shutil.rmtree(secret)

        assert store.restore(snap.id).success
        assert stat.S_IMODE(secret.stat().st_mode) == 0o700

    def test_absent_paths_are_removed(self, store: SnapshotStore, workdir: Path) -> None:
        snap = store.capture("mkdir -p out && touch out.txt", workdir)
        (workdir / "out").mkdir()
        (workdir / "out" / "nested").write_text("x")
        (workdir / "out.txt").write_text("x")

        assert store.restore(snap.id).success
        assert not (workdir / "out").exists()
        assert not (workdir / "out.txt").exists()

    def test_restore_replaces_file_with_directory(self, store: SnapshotStore, workdir: Path) -> None:
        make_build(workdir)
        snap = store.capture("rm -rf build", workdir)
        shutil.rmtree(workdir / "build")
        (workdir / "build").write_text("now a file")

        assert store.restore(snap.id).success
        assert (workdir / "build").is_dir()

    def test_restore_creates_backup(self, store: SnapshotStore, workdir: Path) -> None:
        """A restore is itself undoable."""
        target = workdir / "test.txt"
        snap = store.capture("rm test.txt", workdir)
        target.write_text("edited")

        result = store.restore(snap.id)
        assert result.backup_id is not None
        backup = store.get(result.backup_id)
        assert backup.restores == snap.id
        assert backup.entries[0].content == b"edited"

        store.restore(result.backup_id)
        assert target.read_text() == "edited"

    def test_restore_of_absent_directory_is_reversible(self, store: SnapshotStore, workdir: Path) -> None:
        """Removing a directory created after capture keeps its contents in the backup."""
        snap = store.capture("mkdir out", workdir)
        (workdir / "out" / "nested").mkdir(parents=True)
        (workdir / "out" / "precious.txt").write_text("keep me")
        (workdir / "out" / "nested" / "deep.txt").write_text("deep")

        result = store.restore(snap.id)
        assert result.success
        assert not (workdir / "out").exists()
        backup = store.get(result.backup_id)
        assert str(workdir / "out" / "precious.txt") in backup.paths

        assert store.restore(result.backup_id).success
        assert (workdir / "out" / "precious.txt").read_text() == "keep me"
        assert (workdir / "out" / "nested" / "deep.txt").read_text() == "deep"

    def test_backup_of_directory_tree_is_not_depth_bounded(self, temp_dir: Path, workdir: Path) -> None:
        """A pre-restore backup captures a whole directory tree regardless of max_depth."""
        store = SnapshotStore(temp_dir / "shallow", max_depth=1)
        snap = store.capture("rm report", workdir, ["report"])
        deep = workdir / "report" / "a" / "b"
        deep.mkdir(parents=True)
        (deep / "c.txt").write_text("charlie")

        result = store.restore(snap.id)
        assert not (workdir / "report").exists()
        assert store.restore(result.backup_id).success
        assert (deep / "c.txt").read_text() == "charlie"

    def test_immediate_round_trip_preserves_bytes_and_modes(self, store: SnapshotStore, workdir: Path) -> None:
        """Capture then restore with no change in between is the identity."""
        tree = workdir / "tree"
        (tree / "bin").mkdir(parents=True)
        files = {
            tree / "README": (b"readme\n", 0o644),
            tree / "bin" / "run": (b"#!/bin/sh\nexit 0\n", 0o755),
            tree / "secret.key": (bytes(range(256)), 0o600),
            tree / "locked.txt": (b"", 0o400),
        }
        for path, (data, mode) in files.items():
            path.write_bytes(data)
            path.chmod(mode)
        (tree / "bin").chmod(0o750)

        snap = store.capture("rm -rf tree", workdir)
        assert store.restore(snap.id).success

        for path, (data, mode) in files.items():
            assert path.read_bytes() == data
            assert stat.S_IMODE(path.stat().st_mode) == mode
        assert stat.S_IMODE((tree / "bin").stat().st_mode) == 0o750
        assert store.diff(snap.id).unchanged

    def test_unknown_id(self, store: SnapshotStore) -> None:
        with pytest.raises(SnapshotNotFound) as exc_info:
            store.restore("snap-missing")
        assert exc_info.value.snapshot_id == "snap-missing"
        assert isinstance(exc_info.value, KeyError)

    @pytest.mark.skipif(os.geteuid() == 0, reason="root ignores directory permissions")
    def test_partial_failure_continues(self, store: SnapshotStore, workdir: Path) -> None:
        locked = workdir / "locked"
        locked.mkdir()
        (locked / "inner.txt").write_text("inner")
        snap = store.capture("rm locked/inner.txt test.txt", workdir)
        (workdir / "test.txt").unlink()
        (locked / "inner.txt").write_text("changed")
        locked.chmod(0o500)
        try:
            result = store.restore(snap.id)
        finally:
            locked.chmod(0o700)

        assert not result.success
        assert result.restored_count == 1
        assert len(result.errors) == 1
        assert str(locked / "inner.txt") in result.errors[0]
        assert (workdir / "test.txt").read_text() == "hello world"


class TestDiff:
    def test_reports_changes(self, store: SnapshotStore, workdir: Path) -> None:
        (workdir / "gone.txt").write_text("bye")
        snap = store.capture("touch test.txt gone.txt new.txt", workdir)
        (workdir / "test.txt").write_text("changed")
        (workdir / "gone.txt").unlink()
        (workdir / "new.txt").write_text("new")

        diff = store.diff(snap.id)
        assert diff.modified == (str(workdir / "test.txt"),)
        assert diff.removed == (str(workdir / "gone.txt"),)
        assert diff.added == (str(workdir / "new.txt"),)
        assert not diff.unchanged

    def test_unchanged(self, store: SnapshotStore, workdir: Path) -> None:
        snap = store.capture("cat test.txt > copy.txt", workdir)
        assert store.diff(snap.id).unchanged


class TestRetention:
    """Tests for pruning and reload."""

    def test_max_count(self, temp_dir: Path, workdir: Path) -> None:
        store = SnapshotStore(temp_dir / "snaps", retention=RetentionPolicy(max_count=3))
        ids = [store.capture(f"touch f{i}", workdir).id for i in range(5)]
        assert len(store) == 3
        assert ids[-1] in store
        assert ids[0] not in store
        assert not (store.directory / f"{ids[0]}.json").exists()

    def test_max_age(self, temp_dir: Path, workdir: Path) -> None:
        store = SnapshotStore(temp_dir / "snaps", retention=RetentionPolicy(max_age=60))
        old = store.capture("touch old", workdir)
        path = store.directory / f"{old.id}.json"
        data = json.loads(path.read_text())
        data["created_at"] = time.time() - 3600
        path.write_text(json.dumps(data))

        reloaded = SnapshotStore(temp_dir / "snaps", retention=RetentionPolicy(max_age=60))
        assert old.id not in reloaded
        assert not path.exists()

    def test_restore_keeps_restored_snapshot(self, temp_dir: Path, workdir: Path) -> None:
        """A pre-restore backup never evicts the snapshot being restored."""
        store = SnapshotStore(temp_dir / "snaps", retention=RetentionPolicy(max_count=2))
        first = store.capture("touch a", workdir)
        second = store.capture("touch b", workdir)

        result = store.restore(first.id)

        assert first.id in store
        assert result.backup_id in store
        assert second.id not in store
        assert store.get(first.id).status is SnapshotStatus.ROLLED_BACK
        assert store.restore(first.id).success

    def test_newest_snapshot_survives(self, temp_dir: Path, workdir: Path) -> None:
        store = SnapshotStore(temp_dir / "snaps", retention=RetentionPolicy(max_count=1))
        first = store.capture("touch a", workdir)
        second = store.capture("touch b", workdir)
        assert second.id in store
        assert first.id not in store

    def test_invalid_policy(self) -> None:
        with pytest.raises(ValueError):
            RetentionPolicy(max_count=0)

    def test_reload_after_restart(self, temp_dir: Path, workdir: Path) -> None:
        make_build(workdir)
        store = SnapshotStore(temp_dir / "snaps")
        snap = store.capture("rm -rf build", workdir)
        shutil.rmtree(workdir / "build")

        reloaded = SnapshotStore(temp_dir / "snaps")
        assert reloaded.get(snap.id) == snap
        assert reloaded.restore(snap.id).success
        assert (workdir / "build" / "b" / "c.txt").read_text() == "charlie"

    def test_corrupt_files_are_ignored(self, temp_dir: Path) -> None:
        directory = temp_dir / "snaps"
        directory.mkdir()
        (directory / "snap-broken.json").write_text("{not json")
        assert len(SnapshotStore(directory)) == 0

    def test_list_newest_first(self, store: SnapshotStore, workdir: Path) -> None:
        first = store.capture("touch a", workdir)
        second = store.capture("touch b", workdir)
        assert [s.id for s in store.list()][:2] == [second.id, first.id]
