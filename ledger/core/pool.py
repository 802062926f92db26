# MIT License
# Copyright (c) 2025 Hashborn

from typing import Callable, Optional, Dict
import json
import logging
import threading
import time

from protocol.config.params import CURRENT_NETWORK, NetworkConfig
from protocol.types.action import Action
from protocol.types.common import ActionType
from protocol.types.settlement import ActionResult
from ..storage.db import StorageDB
from ..snapshot import SnapshotManager
from .engine import PoolEngine
from .state import LedgerState
from .vault import InMemoryVault

logger = logging.getLogger(__name__)

VAULT_KEY = "vault_balances"


class MiningPool:
    """
    Reference host around the engine.

    Stamps each action with the host clock, applies it with the vault as the
    custody executor, persists the ledger and journals the settlements. The
    engine commits only after custody succeeds, so an action either lands
    completely or not at all.

    `clock` returns unix seconds and defaults to the system clock.
    """

    def __init__(self, db_path: str, config: NetworkConfig = None,
                 snapshots_dir: Optional[str] = None, snapshot_interval: int = 0,
                 clock: Optional[Callable[[], int]] = None):
        self.config = config or CURRENT_NETWORK
        self.clock = clock or (lambda: int(time.time()))
        self.economics = self.config.economics
        self.db = StorageDB(db_path)
        self._lock = threading.RLock()

        self.vault = InMemoryVault(self._load_vault_balances())
        self.state = LedgerState.load(self.db)
        self.engine = PoolEngine(self.state, self.vault, self.economics, executor=self.vault)

        self.snapshot_manager = SnapshotManager(snapshots_dir) if snapshots_dir else None
        self.snapshot_interval = snapshot_interval

        if self.state.ledger.initialized:
            logger.info(f"Pool loaded at sequence {self.state.ledger.sequence} ({self.state.ledger.strategy.value})")
        else:
            logger.info("Pool is empty (waiting for Initialize)")

    @property
    def initialized(self) -> bool:
        return self.state.ledger.initialized

    def _load_vault_balances(self) -> Dict[str, int]:
        raw = self.db.get_state(VAULT_KEY)
        return {k: int(v) for k, v in json.loads(raw).items()} if raw else {}

    def _vault_json(self) -> str:
        return json.dumps(self.vault.balances, sort_keys=True)

    def initialize_genesis(self) -> Optional[ActionResult]:
        """Initializes an empty pool from the network config. No-op if already initialized."""
        if self.initialized:
            return None
        return self.submit(Action(
            action_type=ActionType.INITIALIZE,
            caller=self.config.authority,
            timestamp=self.clock(),
            payload={
                "seed_amount": self.config.genesis_seed,
                "dev_wallet": self.config.dev_wallet,
                "strategy": self.economics.strategy.value,
            },
        ))

    def submit(self, action: Action) -> ActionResult:
        """
        Applies an action end to end.

        The action's timestamp is replaced with the host clock; a client
        supplied value is never trusted.

        Raises:
            LedgerError: the engine rejected the action
            ValueError: custody refused the settlements
        """
        with self._lock:
            stamped = action.model_copy(update={"timestamp": self.clock()})
            result = self.engine.apply(stamped)

            self.state.persist(extra={VAULT_KEY: self._vault_json()})
            self.db.append_settlements(
                result.sequence,
                result.action_hash,
                [ins.model_dump_json() for ins in result.settlements],
            )
            self._maybe_snapshot()
            return result

    def _maybe_snapshot(self):
        if not self.snapshot_manager or self.snapshot_interval <= 0:
            return
        if self.state.ledger.sequence % self.snapshot_interval != 0:
            return
        try:
            self.snapshot_manager.create_snapshot(self.state, network_id=self.config.network_id)
            self.snapshot_manager.cleanup_old_snapshots()
        except OSError as e:
            logger.error(f"Failed to write snapshot at sequence {self.state.ledger.sequence}: {e}")

    def restore_snapshot(self, sequence: int):
        with self._lock:
            snapshot = self.snapshot_manager.load_snapshot(sequence)
            self.snapshot_manager.apply_snapshot(snapshot, self.state, extra={VAULT_KEY: self._vault_json()})
            logger.info(f"Pool restored to sequence {sequence}")

    def close(self):
        self.db.close()
