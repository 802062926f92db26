from unittest import mock

import requests

from cli.keeper import AutoCompounder


def _response(payload):
    resp = mock.Mock()
    resp.json.return_value = payload
    resp.raise_for_status.return_value = None
    return resp


def _keeper(pending_hash, hash_per_unit_power=86_400, min_hash=86_400):
    session = mock.Mock()
    session.get.return_value = _response({
        "owner": "alice",
        "timestamp": 5000,
        "pending_hash": pending_hash,
        "hash_per_unit_power": hash_per_unit_power,
    })
    session.post.return_value = _response({"sequence": 9, "compounded": 2})
    keeper = AutoCompounder("http://node:8000/", "alice", interval=1, min_hash=min_hash, session=session)
    return keeper, session


def test_skips_below_threshold():
    keeper, session = _keeper(pending_hash=86_399)
    assert keeper.run_once(now=5000) is None
    session.post.assert_not_called()
    assert keeper.compounds == 0


def test_threshold_is_at_least_one_unit():
    # min_hash below the unit cost would only produce failed compounds
    keeper, session = _keeper(pending_hash=50_000, min_hash=10)
    assert keeper.run_once(now=5000) is None
    session.post.assert_not_called()


def test_compounds_when_ready():
    keeper, session = _keeper(pending_hash=2 * 86_400)
    result = keeper.run_once(now=5000)

    assert result == {"sequence": 9, "compounded": 2}
    assert keeper.compounds == 1
    session.get.assert_called_once_with(
        "http://node:8000/participants/alice/pending", params={"now": 5000}, timeout=10.0,
    )
    session.post.assert_called_once_with(
        "http://node:8000/actions",
        json={"action_type": "COMPOUND", "caller": "alice", "timestamp": 5000},
        timeout=10.0,
    )


def test_failed_round_is_counted():
    keeper, session = _keeper(pending_hash=2 * 86_400)
    session.get.side_effect = requests.ConnectionError("node down")

    assert keeper.run_once(now=5000) is None
    assert keeper.failures == 1

    # Rejected compound (HTTP 400) is a failure too
    session.get.side_effect = None
    session.post.return_value.raise_for_status.side_effect = requests.HTTPError("400")
    assert keeper.run_once(now=5001) is None
    assert keeper.failures == 2
    assert keeper.compounds == 0


def test_stop_ends_loop():
    keeper, session = _keeper(pending_hash=0)

    def pending_then_stop(*args, **kwargs):
        keeper.stop()
        return _response({"pending_hash": 0})

    session.get.side_effect = pending_then_stop
    keeper.run_forever(install_signals=False)
    assert session.get.call_count == 1
