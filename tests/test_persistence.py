import gzip
import json
import os
import shutil
import sqlite3
from unittest import mock

import pytest

from ledger.core.pool import MiningPool, VAULT_KEY
from ledger.core.state import LedgerState
from ledger.snapshot import SnapshotManager, Snapshot
from ledger.storage.db import StorageDB
from protocol.config.params import NETWORKS
from protocol.types.action import Action
from protocol.types.common import ActionType, ErrorCode, LedgerError
from protocol.types.ledger import GlobalLedger, ParticipantState

SOL = 1_000_000_000
TEST_DB_DIR = "./test_pool_db"
AUTHORITY = NETWORKS["devnet"].authority


def _action(action_type, caller, **fields):
    # The pool stamps its own clock over the timestamp
    return Action(action_type=action_type, caller=caller, timestamp=0, **fields)


@pytest.fixture
def pool_dir():
    if os.path.exists(TEST_DB_DIR):
        shutil.rmtree(TEST_DB_DIR)
    os.makedirs(TEST_DB_DIR)
    yield TEST_DB_DIR
    if os.path.exists(TEST_DB_DIR):
        shutil.rmtree(TEST_DB_DIR)


@pytest.fixture
def pool(pool_dir, clock):
    p = MiningPool(
        db_path=os.path.join(pool_dir, "ledger.db"),
        config=NETWORKS["devnet"],
        snapshots_dir=os.path.join(pool_dir, "snapshots"),
        snapshot_interval=2,
        clock=clock,
    )
    p.initialize_genesis()
    yield p
    p.close()


def test_storage_db(tmp_path):
    db = StorageDB(str(tmp_path / "state.db"))
    db.set_state("ledger", "{}")
    db.set_state_many({"part:alice": "a", "part:bob": "b", "other": "x"})

    assert db.get_state("ledger") == "{}"
    assert db.get_state("missing") is None
    assert db.get_state_by_prefix("part:") == {"part:alice": "a", "part:bob": "b"}

    db.append_settlements(1, "h1", ["s1", "s2"])
    db.append_settlements(2, "h2", [])
    db.append_settlements(3, "h3", ["s3"])
    assert db.get_settlements() == [(1, "h1", "s1"), (1, "h1", "s2"), (3, "h3", "s3")]
    assert db.get_settlements(since_sequence=2) == [(3, "h3", "s3")]
    assert db.get_settlements(limit=1) == [(1, "h1", "s1")]

    db.replace_all({"ledger": "new"})
    assert db.get_state("ledger") == "new"
    assert db.get_state_by_prefix("part:") == {}
    db.close()


def test_replace_all_rolls_back_on_failure(tmp_path):
    db = StorageDB(str(tmp_path / "state.db"))
    db.set_state_many({"ledger": "old", "part:alice": "a"})

    # The second row cannot be bound, after the DELETE already ran
    with pytest.raises(sqlite3.Error):
        db.replace_all({"ledger": "new", "part:bob": object()})

    assert db.get_state("ledger") == "old"
    assert db.get_state_by_prefix("part:") == {"part:alice": "a"}
    db.close()


def test_state_fork_and_commit():
    root = LedgerState.empty()
    root.set_participant(ParticipantState(owner="alice", mining_power=10))

    fork = root.fork()
    alice = fork.get_participant("alice")
    alice.mining_power = 99
    fork.set_participant(alice)
    fork.ledger.sequence = 5

    # Nothing leaks before commit
    assert root.get_participant("alice").mining_power == 10
    assert root.ledger.sequence == 0

    fork.commit()
    assert root.get_participant("alice").mining_power == 99
    assert root.ledger.sequence == 5


def test_genesis(pool):
    ledger = pool.state.ledger
    assert pool.initialized
    assert ledger.authority == AUTHORITY
    assert ledger.dev_wallet == NETWORKS["devnet"].dev_wallet
    assert ledger.sequence == 1
    # Second call is a no-op
    assert pool.initialize_genesis() is None


def test_pool_survives_restart(pool_dir, clock):
    db_path = os.path.join(pool_dir, "ledger.db")
    pool = MiningPool(db_path=db_path, config=NETWORKS["devnet"], clock=clock)
    pool.initialize_genesis()
    pool.submit(_action(ActionType.INIT_PARTICIPANT, "alice"))
    pool.submit(_action(ActionType.BUY, "alice", amount=SOL))
    root = pool.state.compute_state_root()
    pool.close()

    reopened = MiningPool(db_path=db_path, config=NETWORKS["devnet"])
    assert reopened.state.ledger.sequence == 3
    assert reopened.state.get_participant("alice").mining_power == 900
    assert reopened.vault.balance("SOL") == SOL
    assert reopened.state.compute_state_root() == root
    assert json.loads(reopened.db.get_state(VAULT_KEY)) == {"SOL": SOL}
    reopened.close()


def test_settlement_journal(pool):
    pool.submit(_action(ActionType.INIT_PARTICIPANT, "alice"))
    result = pool.submit(_action(ActionType.BUY, "alice", amount=SOL))

    rows = pool.db.get_settlements(since_sequence=result.sequence)
    assert len(rows) == 1
    sequence, action_hash, data = rows[0]
    assert sequence == result.sequence
    assert action_hash == result.action_hash
    assert json.loads(data)["kind"] == "deposit"


def test_rejected_action_not_persisted(pool):
    with pytest.raises(LedgerError) as exc:
        pool.submit(_action(ActionType.BUY, "nobody", amount=SOL))
    assert exc.value.code == ErrorCode.NOT_INITIALIZED
    assert pool.state.ledger.sequence == 1
    assert pool.db.get_settlements() == []


def test_custody_failure_reverts(pool):
    pool.submit(_action(ActionType.INIT_PARTICIPANT, "alice"))

    with mock.patch.object(pool.vault, "execute", side_effect=ValueError("custody offline")):
        with pytest.raises(ValueError):
            pool.submit(_action(ActionType.BUY, "alice", amount=SOL))

    assert pool.state.ledger.sequence == 2
    assert pool.state.get_participant("alice").mining_power == 0
    assert pool.state.ledger.total_mining_power == 0
    assert pool.vault.balance("SOL") == 0

    assert pool.db.get_settlements() == []
    assert json.loads(pool.db.get_state(VAULT_KEY)) == {}

    # The pool keeps working
    result = pool.submit(_action(ActionType.BUY, "alice", amount=SOL))
    assert result.sequence == 3


def test_pool_stamps_its_own_clock(pool, clock):
    clock.advance(500)
    pool.submit(Action(action_type=ActionType.INIT_PARTICIPANT, caller="alice", timestamp=10**12))

    assert pool.state.get_participant("alice").last_update_timestamp == 1500
    assert pool.state.ledger.created_at == 1000


def test_periodic_snapshots_and_restore(pool):
    pool.submit(_action(ActionType.INIT_PARTICIPANT, "alice"))     # seq 2, snapshot
    pool.submit(_action(ActionType.BUY, "alice", amount=SOL))      # seq 3
    pool.submit(_action(ActionType.INIT_PARTICIPANT, "bob"))       # seq 4, snapshot

    snapshots = pool.snapshot_manager.list_snapshots()
    assert [s.sequence for s in snapshots] == [4, 2]
    assert snapshots[0].participants_count == 2
    assert snapshots[0].total_mining_power == 900
    assert pool.snapshot_manager.get_latest_snapshot_sequence() == 4

    pool.restore_snapshot(2)
    assert pool.state.ledger.sequence == 2
    assert pool.state.get_participant("alice").mining_power == 0
    assert pool.state.get_participant("bob") is None
    # Vault balances are custody facts and are kept as they are
    assert json.loads(pool.db.get_state(VAULT_KEY)) == {"SOL": SOL}


def test_failed_restore_keeps_state(pool):
    pool.submit(_action(ActionType.INIT_PARTICIPANT, "alice"))     # seq 2, snapshot
    pool.submit(_action(ActionType.BUY, "alice", amount=SOL))      # seq 3
    root = pool.state.compute_state_root()

    with mock.patch.object(pool.db, "replace_all", side_effect=sqlite3.OperationalError("disk I/O error")):
        with pytest.raises(sqlite3.OperationalError):
            pool.restore_snapshot(2)

    assert pool.state.ledger.sequence == 3
    assert pool.state.compute_state_root() == root
    assert GlobalLedger.model_validate_json(pool.db.get_state("ledger")).sequence == 3
    assert pool.db.get_state("part:alice") is not None


def test_snapshot_hash_verification(tmp_path):
    manager = SnapshotManager(str(tmp_path / "snapshots"))
    state = LedgerState(ledger=GlobalLedger(initialized=True, sequence=7, total_mining_power=10))
    state.set_participant(ParticipantState(owner="alice", mining_power=10))

    meta = manager.create_snapshot(state, network_id="devnet")
    assert meta.state_root == state.compute_state_root()
    snapshot = manager.load_snapshot(7)
    assert snapshot.verify_hash()

    # Tamper with the stored file
    path = tmp_path / "snapshots" / "ledger_7.json.gz"
    with gzip.open(path, "rb") as f:
        data = json.loads(f.read())
    data["participants"]["alice"] = ParticipantState(owner="alice", mining_power=10_000).model_dump_json()
    with gzip.open(path, "wb") as f:
        f.write(json.dumps(data).encode())

    with pytest.raises(ValueError):
        manager.load_snapshot(7)
    with pytest.raises(FileNotFoundError):
        manager.load_snapshot(8)


def test_inconsistent_snapshot_rejected(tmp_path):
    ledger = GlobalLedger(initialized=True, sequence=3, total_mining_power=50)
    snapshot = Snapshot(network_id="devnet", sequence=3, created_at="2025-01-01T00:00:00Z",
                        ledger=ledger.model_dump_json(), participants={})
    snapshot.content_hash = snapshot.calculate_hash()

    target = LedgerState.empty()
    with pytest.raises(ValueError):
        SnapshotManager(str(tmp_path)).apply_snapshot(snapshot, target)
    assert target.ledger.sequence == 0


def test_cleanup_keeps_latest(tmp_path):
    manager = SnapshotManager(str(tmp_path / "snapshots"))
    for seq in range(1, 6):
        manager.create_snapshot(LedgerState(ledger=GlobalLedger(sequence=seq)), network_id="devnet")
    manager.cleanup_old_snapshots(keep_count=2)
    assert [s.sequence for s in manager.list_snapshots()] == [5, 4]
