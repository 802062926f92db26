# MIT License
# Copyright (c) 2025 Hashborn

from typing import Dict, Optional, List, Iterable
import logging

from protocol.types.ledger import GlobalLedger, ParticipantState
from protocol.types.common import ErrorCode, LedgerError
from protocol.crypto.hash import sha256, canonical_json, merkle_root
from ..storage.db import StorageDB

logger = logging.getLogger(__name__)

LEDGER_KEY = "ledger"
PARTICIPANT_PREFIX = "part:"


class LedgerState:
    """
    Global ledger plus a cache of participant records over StorageDB.

    fork() returns a child view that copies the ledger and copies participants
    lazily on first access. A child is thrown away on failure or merged back
    with commit(); the parent never sees a half-applied action.
    """

    def __init__(self, db: Optional[StorageDB] = None, ledger: GlobalLedger = None,
                 participants: Dict[str, ParticipantState] = None, parent: 'LedgerState' = None):
        self.db = db
        self.ledger: GlobalLedger = ledger if ledger is not None else GlobalLedger()
        # Cache for modified/accessed participants: id -> ParticipantState
        self._participants: Dict[str, ParticipantState] = participants if participants is not None else {}
        self._parent = parent
        self._dirty: set = set()

    @classmethod
    def empty(cls) -> 'LedgerState':
        """In-memory state with no backing store."""
        return cls(db=None)

    @classmethod
    def load(cls, db: StorageDB) -> 'LedgerState':
        state = cls(db=db)
        raw = db.get_state(LEDGER_KEY)
        if raw:
            state.ledger = GlobalLedger.model_validate_json(raw)
            logger.info(f"Loaded ledger at sequence {state.ledger.sequence}")
        return state

    # --- Copy-on-write ---

    def fork(self) -> 'LedgerState':
        return LedgerState(db=self.db, ledger=self.ledger.model_copy(deep=True), parent=self)

    def commit(self) -> None:
        """Merges this fork's ledger and touched participants into the parent."""
        if self._parent is None:
            raise RuntimeError("commit() called on a root state")
        parent = self._parent
        parent.ledger = self.ledger
        for owner in self._dirty:
            parent._participants[owner] = self._participants[owner]
            parent._dirty.add(owner)

    # --- Participants ---

    def _lookup(self, owner: str) -> Optional[ParticipantState]:
        if owner in self._participants:
            return self._participants[owner]
        if self._parent is not None:
            found = self._parent._lookup(owner)
            if found is None:
                return None
            # Private copy so edits never leak into the parent before commit
            copy = found.model_copy(deep=True)
            self._participants[owner] = copy
            return copy
        if self.db is not None:
            raw_json = self.db.get_state(f"{PARTICIPANT_PREFIX}{owner}")
            if raw_json:
                part = ParticipantState.model_validate_json(raw_json)
                self._participants[owner] = part
                return part
        return None

    def get_participant(self, owner: str) -> Optional[ParticipantState]:
        return self._lookup(owner)

    def require_participant(self, owner: str) -> ParticipantState:
        part = self._lookup(owner)
        if part is None:
            raise LedgerError(ErrorCode.NOT_INITIALIZED, f"Participant {owner} is not initialized", participant=owner)
        return part

    def has_participant(self, owner: str) -> bool:
        return self._lookup(owner) is not None

    def set_participant(self, participant: ParticipantState) -> None:
        """Updates participant in local cache."""
        self._participants[participant.owner] = participant
        self._dirty.add(participant.owner)

    def all_participants(self) -> List[ParticipantState]:
        """Loads all participants from DB + cache overlay."""
        final: Dict[str, ParticipantState] = {}
        if self._parent is not None:
            for part in self._parent.all_participants():
                final[part.owner] = part
        elif self.db is not None:
            for k, v in self.db.get_state_by_prefix(PARTICIPANT_PREFIX).items():
                owner = k[len(PARTICIPANT_PREFIX):]
                final[owner] = ParticipantState.model_validate_json(v)

        # Overlay cache
        for owner, part in self._participants.items():
            final[owner] = part

        return [final[k] for k in sorted(final)]

    # --- Persistence ---

    def persist(self, extra: Dict[str, str] = None) -> None:
        """Writes the ledger, every modified participant and any `extra` keys to DB in one transaction."""
        if self.db is None:
            return
        items = {LEDGER_KEY: self.ledger.model_dump_json()}
        items.update(extra or {})
        for owner in self._dirty:
            items[f"{PARTICIPANT_PREFIX}{owner}"] = self._participants[owner].model_dump_json()
        self.db.set_state_many(items)
        logger.debug(f"Persisted ledger at sequence {self.ledger.sequence} ({len(self._dirty)} participant(s))")
        self._dirty.clear()

    def replace(self, ledger: GlobalLedger, participants: Iterable[ParticipantState],
                extra: Dict[str, str] = None) -> None:
        """
        Swaps in a full state (snapshot restore).

        The DB is rewritten in one transaction, ledger, participants and
        `extra` keys together, before memory changes. If the write fails
        both are left as they were.
        """
        participants = {part.owner: part for part in participants}
        if self.db is not None:
            items = {LEDGER_KEY: ledger.model_dump_json()}
            items.update(extra or {})
            for owner, part in participants.items():
                items[f"{PARTICIPANT_PREFIX}{owner}"] = part.model_dump_json()
            self.db.replace_all(items)
        self.ledger = ledger
        self._participants = participants
        self._dirty = set()

    # --- Audit ---

    def audit(self, vault_balances: Dict[str, int] = None) -> List[str]:
        """
        Full conservation check over every participant.

        Returns a list of violations; empty means the state is consistent.
        """
        violations = []
        participants = self.all_participants()

        power_sum = sum(p.mining_power for p in participants)
        if power_sum != self.ledger.total_mining_power:
            violations.append(
                f"total_mining_power {self.ledger.total_mining_power} != sum of participants {power_sum}"
            )

        assets = set(self.ledger.total_unclaimed)
        for p in participants:
            assets.update(p.accrued_yield)
        for asset in sorted(assets):
            owed = sum(p.owed(asset) for p in participants)
            recorded = self.ledger.unclaimed(asset)
            if owed != recorded:
                violations.append(f"total_unclaimed[{asset}] {recorded} != sum of accrued_yield {owed}")
            if vault_balances is not None and recorded > vault_balances.get(asset, 0):
                violations.append(
                    f"total_unclaimed[{asset}] {recorded} exceeds vault balance {vault_balances.get(asset, 0)}"
                )

        for p in participants:
            if p.referrer == p.owner:
                violations.append(f"participant {p.owner} refers itself")

        return violations

    def compute_state_root(self) -> str:
        """Merkle root over the ledger leaf and sorted participant leaves."""
        leaves = [sha256(canonical_json(self.ledger.model_dump(mode="json")))]
        for part in self.all_participants():
            leaves.append(sha256(canonical_json(part.model_dump(mode="json"))))
        return merkle_root(leaves).hex()
