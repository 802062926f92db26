# MIT License
# Copyright (c) 2025 Hashborn

import os
from typing import Dict
from .economic_model import EconomicConfig, PRESETS

NETWORK_ENV_VAR = "MINEPOOL_NETWORK"


class NetworkConfig:
    def __init__(self,
                 network_id: str,
                 pool: str,
                 authority: str,
                 dev_wallet: str,
                 db_path: str = "./.minepool/ledger.db",
                 snapshots_dir: str = "./.minepool/snapshots",
                 rpc_host: str = "127.0.0.1",
                 rpc_port: int = 8000,
                 log_level: str = "INFO",
                 # Seed used by the reference host when it initializes a fresh ledger
                 genesis_seed: int = 108_000_000_000,
                 # Keeper
                 keeper_interval_sec: int = 60):
        self.network_id = network_id
        self.pool = pool
        self.authority = authority
        self.dev_wallet = dev_wallet
        self.db_path = db_path
        self.snapshots_dir = snapshots_dir
        self.rpc_host = rpc_host
        self.rpc_port = rpc_port
        self.log_level = log_level
        self.genesis_seed = genesis_seed
        self.keeper_interval_sec = keeper_interval_sec

    @property
    def economics(self) -> EconomicConfig:
        try:
            return PRESETS[self.pool]
        except KeyError:
            raise ValueError(f"Unknown pool preset {self.pool!r}; expected one of {sorted(PRESETS)}")


NETWORKS: Dict[str, NetworkConfig] = {
    "devnet": NetworkConfig(
        network_id="devnet",
        pool="ratio",
        authority="authority-devnet",
        dev_wallet="dev-devnet",
        log_level="DEBUG",
    ),
    "testnet": NetworkConfig(
        network_id="testnet",
        pool="bonding_curve",
        authority="authority-testnet",
        dev_wallet="dev-testnet",
        db_path="./.minepool-testnet/ledger.db",
        snapshots_dir="./.minepool-testnet/snapshots",
    ),
    "mainnet": NetworkConfig(
        network_id="mainnet",
        pool="usd_normalized",
        authority="authority-mainnet",
        dev_wallet="dev-mainnet",
        db_path="./.minepool-mainnet/ledger.db",
        snapshots_dir="./.minepool-mainnet/snapshots",
        rpc_host="0.0.0.0",
        log_level="WARNING",
    ),
}


def get_network(network_id: str = None) -> NetworkConfig:
    """Resolves a network by id, falling back to $MINEPOOL_NETWORK and then devnet."""
    name = network_id or os.environ.get(NETWORK_ENV_VAR, "devnet")
    if name not in NETWORKS:
        raise ValueError(f"Unknown network {name!r}; expected one of {sorted(NETWORKS)}")
    return NETWORKS[name]


CURRENT_NETWORK = get_network()
