from unittest import mock

import pytest

from ledger.observability.metrics import metrics_registry, update_metrics
from protocol.types.common import ActionType, LedgerError

SOL = 1_000_000_000


def _sample(name, **labels):
    return metrics_registry.get_sample_value(name, labels) or 0.0


def test_applied_and_rejected_counters(ratio_pool):
    applied = _sample("minepool_actions_total", action_type="BUY", status="applied")
    rejected = _sample("minepool_actions_total", action_type="COMPOUND", status="rejected")
    invalid = _sample("minepool_action_errors_total", code="InvalidAmount")
    deposits = _sample("minepool_settled_amount_total", asset="SOL", kind="deposit")

    ratio_pool.join("alice")
    ratio_pool.buy("alice", SOL)
    with pytest.raises(LedgerError):
        ratio_pool.act(ActionType.COMPOUND, "alice", 1001)

    assert _sample("minepool_actions_total", action_type="BUY", status="applied") == applied + 1
    assert _sample("minepool_actions_total", action_type="COMPOUND", status="rejected") == rejected + 1
    assert _sample("minepool_action_errors_total", code="InvalidAmount") == invalid + 1
    assert _sample("minepool_settled_amount_total", asset="SOL", kind="deposit") == deposits + SOL


def test_ledger_gauges(ratio_pool):
    ratio_pool.join("alice")
    ratio_pool.join("bob")
    ratio_pool.buy("alice", SOL)

    assert _sample("minepool_total_mining_power") == 900
    assert _sample("minepool_ledger_sequence") == ratio_pool.ledger.sequence

    update_metrics(ratio_pool.state)
    assert _sample("minepool_participants_total") == 2


def test_custody_failure_counts_as_rejected(ratio_pool):
    ratio_pool.join("alice")
    ratio_pool.engine.executor = ratio_pool.vault
    applied = _sample("minepool_actions_total", action_type="BUY", status="applied")
    rejected = _sample("minepool_actions_total", action_type="BUY", status="rejected")
    custody = _sample("minepool_action_errors_total", code="CustodyFailed")

    with mock.patch.object(ratio_pool.vault, "execute", side_effect=ValueError("custody offline")):
        with pytest.raises(ValueError):
            ratio_pool.buy("alice", SOL)

    assert _sample("minepool_actions_total", action_type="BUY", status="applied") == applied
    assert _sample("minepool_actions_total", action_type="BUY", status="rejected") == rejected + 1
    assert _sample("minepool_action_errors_total", code="CustodyFailed") == custody + 1
    assert ratio_pool.ledger.total_mining_power == 0
