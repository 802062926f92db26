# MIT License
# Copyright (c) 2025 Hashborn

import gzip
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .types import Snapshot, SnapshotMetadata
from ..core.state import LedgerState
from protocol.config.params import CURRENT_NETWORK
from protocol.types.ledger import GlobalLedger, ParticipantState

logger = logging.getLogger(__name__)


class SnapshotManager:
    """
    Writes, lists, verifies and restores ledger snapshots.

    Each snapshot is a pair of files keyed by ledger sequence:
        ledger_<sequence>.json.gz     gzip'd Snapshot
        ledger_<sequence>.meta.json   SnapshotMetadata
    Both are written to a temp file first and renamed into place, so a
    crash never leaves a half-written snapshot behind.
    """

    def __init__(self, snapshots_dir: str = "snapshots"):
        self.root = Path(snapshots_dir)
        self.root.mkdir(parents=True, exist_ok=True)

    def _paths(self, sequence: int) -> Tuple[Path, Path]:
        return self.root / f"ledger_{sequence}.json.gz", self.root / f"ledger_{sequence}.meta.json"

    @staticmethod
    def _replace(path: Path, data: bytes, compress: bool = False):
        tmp = path.with_name(path.name + ".tmp")
        if compress:
            with gzip.open(tmp, 'wb', compresslevel=6) as f:
                f.write(data)
        else:
            tmp.write_bytes(data)
        os.replace(tmp, path)

    def create_snapshot(self, state: LedgerState, network_id: Optional[str] = None) -> SnapshotMetadata:
        """
        Snapshot the committed state.

        Args:
            state: Root LedgerState (participants are read through its DB overlay)
            network_id: Defaults to the current network

        Returns:
            The metadata written alongside the snapshot
        """
        ledger = state.ledger
        participants = state.all_participants()

        snapshot = Snapshot(
            network_id=network_id or CURRENT_NETWORK.network_id,
            sequence=ledger.sequence,
            created_at=datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
            ledger=ledger.model_dump_json(),
            participants={p.owner: p.model_dump_json() for p in participants},
        )
        snapshot.content_hash = snapshot.calculate_hash()

        raw = snapshot.model_dump_json().encode()
        data_path, meta_path = self._paths(ledger.sequence)
        self._replace(data_path, raw, compress=True)

        metadata = SnapshotMetadata(
            network_id=snapshot.network_id,
            sequence=ledger.sequence,
            strategy=ledger.strategy.value,
            created_at=snapshot.created_at,
            participants_count=len(participants),
            total_mining_power=ledger.total_mining_power,
            total_unclaimed=dict(ledger.total_unclaimed),
            state_root=state.compute_state_root(),
            content_hash=snapshot.content_hash,
            compressed_size=data_path.stat().st_size,
            uncompressed_size=len(raw),
        )
        self._replace(meta_path, metadata.model_dump_json(indent=2).encode())

        logger.info(
            f"Snapshot at sequence {ledger.sequence}: {len(participants)} participant(s), "
            f"{metadata.compressed_size / 1024:.2f} KB on disk ({len(raw) / 1024:.2f} KB raw)"
        )
        return metadata

    def load_snapshot(self, sequence: int) -> Snapshot:
        """
        Read and verify the snapshot taken at `sequence`.

        Raises:
            FileNotFoundError: No snapshot at that sequence
            ValueError: Content hash does not match
        """
        data_path, _ = self._paths(sequence)
        if not data_path.exists():
            raise FileNotFoundError(f"No snapshot at sequence {sequence} in {self.root}")

        with gzip.open(data_path, 'rb') as f:
            snapshot = Snapshot.model_validate_json(f.read())

        if not snapshot.verify_hash():
            raise ValueError(f"Snapshot at sequence {sequence} is corrupt (content hash mismatch)")
        logger.debug(f"Verified snapshot at sequence {sequence}")
        return snapshot

    def apply_snapshot(self, snapshot: Snapshot, state: LedgerState, extra: Optional[Dict[str, str]] = None):
        """
        Replace `state` with the snapshot's ledger and participants.

        The snapshot is audited on a detached copy first; nothing is replaced
        if it does not conserve mining power and unclaimed value. The stored
        records are rewritten in one transaction together with `extra`.

        Raises:
            ValueError: The snapshot fails the audit
        """
        ledger = GlobalLedger.model_validate_json(snapshot.ledger)
        participants = [ParticipantState.model_validate_json(raw) for raw in snapshot.participants.values()]

        candidate = LedgerState(ledger=ledger, participants={p.owner: p for p in participants})
        violations = candidate.audit()
        if violations:
            raise ValueError(f"Snapshot at sequence {snapshot.sequence} is inconsistent: {violations}")

        state.replace(ledger, participants, extra=extra)
        logger.info(f"Restored ledger to sequence {ledger.sequence} ({len(participants)} participant(s))")

    def list_snapshots(self) -> List[SnapshotMetadata]:
        """Metadata of every readable snapshot, newest first."""
        found = []
        for meta_path in self.root.glob("ledger_*.meta.json"):
            try:
                found.append(SnapshotMetadata.model_validate_json(meta_path.read_bytes()))
            except (OSError, ValueError) as e:
                logger.warning(f"Skipping unreadable snapshot metadata {meta_path.name}: {e}")
        return sorted(found, key=lambda m: m.sequence, reverse=True)

    def get_latest_snapshot_sequence(self) -> Optional[int]:
        snapshots = self.list_snapshots()
        return snapshots[0].sequence if snapshots else None

    def delete_snapshot(self, sequence: int):
        for path in self._paths(sequence):
            if path.exists():
                path.unlink()
        logger.debug(f"Deleted snapshot at sequence {sequence}")

    def cleanup_old_snapshots(self, keep_count: int = 10):
        """Keeps the `keep_count` newest snapshots and deletes the rest."""
        stale = self.list_snapshots()[keep_count:]
        for meta in stale:
            self.delete_snapshot(meta.sequence)
        if stale:
            logger.info(f"Pruned {len(stale)} old snapshot(s)")
