# MIT License
# Copyright (c) 2025 Hashborn

"""
Ledger Snapshot System

Creates and restores compressed, hash-verified ledger snapshots keyed by
ledger sequence.
"""

from .snapshot_manager import SnapshotManager
from .types import Snapshot, SnapshotMetadata

__all__ = ["SnapshotManager", "Snapshot", "SnapshotMetadata"]
