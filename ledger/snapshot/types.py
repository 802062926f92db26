# MIT License
# Copyright (c) 2025 Hashborn

"""
Snapshot file formats.

A snapshot is the full ledger at one sequence: the GlobalLedger record and
every ParticipantState, each kept as its own JSON string so the content hash
is stable regardless of how the container is re-serialized.
"""

from pydantic import BaseModel, Field
from typing import Dict, Optional

from protocol.crypto.hash import sha256_hex, canonical_json

SNAPSHOT_FORMAT = "minepool-snapshot/1"


class SnapshotMetadata(BaseModel):
    """Sidecar summary written next to each snapshot, read without decompressing it."""
    format: str = SNAPSHOT_FORMAT
    network_id: str
    sequence: int
    strategy: str
    created_at: str                                  # UTC, ISO 8601
    participants_count: int
    total_mining_power: int
    total_unclaimed: Dict[str, int] = Field(default_factory=dict)
    state_root: str                                  # Merkle root of ledger + participants
    content_hash: str
    compressed_size: int
    uncompressed_size: int


class Snapshot(BaseModel):
    format: str = SNAPSHOT_FORMAT
    network_id: str
    sequence: int
    created_at: str

    ledger: str                                      # GlobalLedger JSON
    participants: Dict[str, str] = Field(default_factory=dict)   # owner -> ParticipantState JSON

    content_hash: Optional[str] = None

    def calculate_hash(self) -> str:
        """SHA-256 over the canonical JSON of every field except content_hash."""
        return sha256_hex(canonical_json(self.model_dump(exclude={"content_hash"})))

    def verify_hash(self) -> bool:
        return self.content_hash is not None and self.calculate_hash() == self.content_hash
