# MIT License
# Copyright (c) 2025 Hashborn

import argparse
import sys
import json
import logging
import os
import time
from decimal import Decimal, InvalidOperation

import requests

from .keeper import AutoCompounder
from protocol.config.params import get_network, NETWORK_ENV_VAR

DEFAULT_NODE = "http://localhost:8000"

logger = logging.getLogger(__name__)


def get_node_url(args):
    return args.node or os.environ.get("MINEPOOL_NODE", DEFAULT_NODE)


def to_units(amount: str, decimals: int) -> int:
    """'1.5' with 9 decimals -> 1_500_000_000. Rejects sub-unit precision."""
    try:
        value = Decimal(amount) * (Decimal(10) ** decimals)
    except InvalidOperation:
        raise ValueError(f"Invalid amount: {amount}")
    if value != value.to_integral_value():
        raise ValueError(f"{amount} has more than {decimals} decimal places")
    return int(value)


def _print_response(resp):
    if resp.status_code != 200:
        print(f"Error: {resp.text}")
        sys.exit(1)
    print(json.dumps(resp.json(), indent=2))


# --- Serve ---
def cmd_serve(args):
    from ledger.core.pool import MiningPool
    from ledger.rpc.api import start_rpc_server

    network = get_network(args.network)
    if not args.log_level:
        logging.getLogger().setLevel(network.log_level)

    db_dir = os.path.dirname(os.path.abspath(network.db_path))
    os.makedirs(db_dir, exist_ok=True)

    pool = MiningPool(
        db_path=network.db_path,
        config=network,
        snapshots_dir=network.snapshots_dir if args.snapshot_interval else None,
        snapshot_interval=args.snapshot_interval,
    )
    if not args.no_genesis:
        pool.initialize_genesis()

    host = args.host or network.rpc_host
    port = args.port or network.rpc_port
    logger.info(f"Serving {network.network_id} ({network.pool} pool) on {host}:{port}")
    try:
        start_rpc_server(pool, host=host, port=port)
    finally:
        pool.close()


# --- Query Commands ---
def cmd_query_status(args):
    url = get_node_url(args)
    try:
        _print_response(requests.get(f"{url}/status", timeout=10))
    except requests.RequestException as e:
        print(f"Connection error: {e}")
        sys.exit(1)


def cmd_query_ledger(args):
    url = get_node_url(args)
    try:
        _print_response(requests.get(f"{url}/ledger", timeout=10))
    except requests.RequestException as e:
        print(f"Connection error: {e}")
        sys.exit(1)


def cmd_query_participant(args):
    url = get_node_url(args)
    try:
        _print_response(requests.get(f"{url}/participants/{args.owner}", timeout=10))
        if args.pending:
            _print_response(requests.get(f"{url}/participants/{args.owner}/pending", timeout=10))
    except requests.RequestException as e:
        print(f"Connection error: {e}")
        sys.exit(1)


# --- Action Commands ---
def submit_action(url, action: dict):
    try:
        resp = requests.post(f"{url}/actions", json=action, timeout=10)
    except requests.RequestException as e:
        print(f"Connection error: {e}")
        sys.exit(1)

    if resp.status_code == 200:
        res = resp.json()
        print(f"Success! seq={res['sequence']} action={res['action_hash'][:16]}...")
        for ins in res.get("settlements", []):
            print(f"  {ins['kind']:<8} {ins['amount']:>20} {ins['asset']:<6} {ins['source']} -> {ins['destination']}")
        if res.get("minted"):
            print(f"  minted: {res['minted']} (fee {res['fee_units']})")
        if res.get("compounded"):
            print(f"  compounded: {res['compounded']}")
        if res.get("referral_bonus"):
            print(f"  referral bonus: {res['referral_bonus']}")
        return res

    try:
        detail = resp.json().get("detail")
    except ValueError:
        detail = resp.text
    print(f"Rejected: {detail}")
    sys.exit(1)


def _action(args, action_type: str, **fields) -> dict:
    action = {
        "action_type": action_type,
        "caller": args.caller,
        "timestamp": int(time.time()),
    }
    action.update({k: v for k, v in fields.items() if v is not None})
    return action


def cmd_act(args):
    url = get_node_url(args)
    economics = get_network(args.network).economics
    sub = args.subcommand

    try:
        if sub == "init":
            payload = {"seed_amount": to_units(args.seed, economics.asset_decimals[economics.primary_asset])}
            if args.dev_wallet:
                payload["dev_wallet"] = args.dev_wallet
            if args.strategy:
                payload["strategy"] = args.strategy
            action = _action(args, "INITIALIZE", payload=payload)
        elif sub == "join":
            action = _action(args, "INIT_PARTICIPANT")
        elif sub == "buy":
            asset = args.asset or economics.primary_asset
            if asset not in economics.asset_decimals:
                raise ValueError(f"Unknown asset {asset}; expected one of {list(economics.assets)}")
            action = _action(args, "BUY", amount=to_units(args.amount, economics.asset_decimals[asset]),
                             asset=asset, referrer=args.referrer)
        elif sub == "compound":
            action = _action(args, "COMPOUND")
        elif sub == "claim":
            action = _action(args, "CLAIM")
        elif sub == "sell":
            action = _action(args, "SELL")
        elif sub == "admin-update":
            action = _action(args, "ADMIN_UPDATE", payload=json.loads(args.payload))
        elif sub == "admin-reset":
            action = _action(args, "ADMIN_RESET", participant=args.target)
        elif sub == "admin-drain":
            asset = args.asset or economics.primary_asset
            action = _action(args, "ADMIN_DRAIN", asset=asset,
                             amount=to_units(args.amount, economics.asset_decimals[asset]))
        else:
            print(f"Unknown action {sub}")
            sys.exit(1)
    except (ValueError, KeyError) as e:
        print(f"Error: {e}")
        sys.exit(1)

    submit_action(url, action)


# --- Keeper ---
def cmd_keeper(args):
    network = get_network(args.network)
    keeper = AutoCompounder(
        node_url=get_node_url(args),
        participant=args.caller,
        interval=args.interval or network.keeper_interval_sec,
        min_hash=args.min_hash or network.economics.min_hash_to_compound,
    )
    keeper.run_forever()


def main():
    parser = argparse.ArgumentParser(prog="minepool", description="Minepool ledger CLI")
    parser.add_argument("--node", help=f"RPC URL (default: {DEFAULT_NODE})")
    parser.add_argument("--network", help=f"devnet | testnet | mainnet (default: ${NETWORK_ENV_VAR} or devnet)")
    parser.add_argument("--log-level", help="Logging level (default: INFO, or the network's level for serve)")

    subparsers = parser.add_subparsers(dest="command", help="Sub-commands")

    # serve
    p_serve = subparsers.add_parser("serve", help="Run the pool RPC server")
    p_serve.add_argument("--host", help="RPC host (default from network config)")
    p_serve.add_argument("--port", type=int, help="RPC port (default from network config)")
    p_serve.add_argument("--no-genesis", action="store_true", help="Do not auto-initialize an empty pool")
    p_serve.add_argument("--snapshot-interval", type=int, default=0, help="Snapshot every N actions (0 = off)")

    # query
    p_query = subparsers.add_parser("query", help="Query pool state")
    sp_query = p_query.add_subparsers(dest="subcommand")
    sp_query.add_parser("status", help="Pool status")
    sp_query.add_parser("ledger", help="Global ledger")
    pq_part = sp_query.add_parser("participant", help="Participant state")
    pq_part.add_argument("owner", help="Participant id")
    pq_part.add_argument("--pending", action="store_true", help="Also show pending hash and earnings")

    # act
    p_act = subparsers.add_parser("act", help="Submit actions")
    p_act.add_argument("--as", dest="caller", required=True, help="Caller identity")
    sp_act = p_act.add_subparsers(dest="subcommand")

    pa_init = sp_act.add_parser("init", help="Initialize the pool (caller becomes authority)")
    pa_init.add_argument("seed", help="Seed amount in whole units")
    pa_init.add_argument("--dev-wallet", help="Fee recipient (default: caller)")
    pa_init.add_argument("--strategy", choices=["ratio", "bonding_curve", "usd_normalized"])

    sp_act.add_parser("join", help="Create the caller's participant record")

    pa_buy = sp_act.add_parser("buy", help="Deposit and buy mining power")
    pa_buy.add_argument("amount", help="Amount in whole units")
    pa_buy.add_argument("--asset", help="Asset (default: pool primary asset)")
    pa_buy.add_argument("--referrer", help="Referrer identity")

    sp_act.add_parser("compound", help="Convert accrued hash into mining power")
    sp_act.add_parser("claim", help="Claim earnings")
    sp_act.add_parser("sell", help="Sell accrued hash (bonding curve pools)")

    pa_upd = sp_act.add_parser("admin-update", help="Update pricing params / fees (authority)")
    pa_upd.add_argument("payload", help='JSON, e.g. \'{"params": {"usd_prices": {"SOL": 150000000}}}\'')

    pa_reset = sp_act.add_parser("admin-reset", help="Zero a participant (authority)")
    pa_reset.add_argument("target", help="Participant id")

    pa_drain = sp_act.add_parser("admin-drain", help="Withdraw unowed vault balance (authority)")
    pa_drain.add_argument("amount", help="Amount in whole units")
    pa_drain.add_argument("--asset", help="Asset (default: pool primary asset)")

    # keeper
    p_keeper = subparsers.add_parser("keeper", help="Run the auto-compound keeper")
    p_keeper.add_argument("--as", dest="caller", required=True, help="Participant to compound for")
    p_keeper.add_argument("--interval", type=int, help="Seconds between rounds (default from network config)")
    p_keeper.add_argument("--min-hash", type=int, help="Minimum pending hash to compound (default from pool config)")

    args = parser.parse_args()

    logging.basicConfig(
        level=(args.log_level or "INFO").upper(),
        format='%(asctime)s %(levelname)s: %(message)s',
        datefmt='%H:%M:%S'
    )

    if args.command == "serve":
        cmd_serve(args)
    elif args.command == "query":
        if args.subcommand == "status": cmd_query_status(args)
        elif args.subcommand == "ledger": cmd_query_ledger(args)
        elif args.subcommand == "participant": cmd_query_participant(args)
        else: p_query.print_help()
    elif args.command == "act":
        if args.subcommand: cmd_act(args)
        else: p_act.print_help()
    elif args.command == "keeper":
        cmd_keeper(args)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
