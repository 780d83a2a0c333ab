"""Filesystem snapshots for rolling back command effects."""

from shellguard.snapshots.paths import PathCandidate, extract_candidates
from shellguard.snapshots.store import SnapshotStore

__all__ = ["PathCandidate", "SnapshotStore", "extract_candidates"]
