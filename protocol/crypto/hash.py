import hashlib
import json
from typing import Any, List

EMPTY_ROOT = b'\x00' * 32


def sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def canonical_json(data: Any) -> bytes:
    """Sorted-key, whitespace-free JSON used for every hash in the ledger."""
    return json.dumps(data, sort_keys=True, separators=(",", ":")).encode("utf-8")


def merkle_root(leaves: List[bytes]) -> bytes:
    """
    Binary Merkle root over leaf digests.

    An odd node at any level is paired with itself. No leaves gives EMPTY_ROOT.
    """
    if not leaves:
        return EMPTY_ROOT

    level = list(leaves)
    while len(level) > 1:
        if len(level) % 2:
            level.append(level[-1])
        level = [sha256(level[i] + level[i + 1]) for i in range(0, len(level), 2)]
    return level[0]
