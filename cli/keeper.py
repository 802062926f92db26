# MIT License
# Copyright (c) 2025 Hashborn

"""
Auto-Compound Keeper

Polls the pool RPC every `interval` seconds and submits a Compound for the
participant once its pending hash reaches `min_hash`. A failed round is
logged and the keeper keeps going; SIGINT / SIGTERM stop it cleanly.
"""

import logging
import signal
import threading
import time
from typing import Optional

import requests

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SEC = 60
DEFAULT_MIN_HASH = 86_400


class AutoCompounder:
    def __init__(self, node_url: str, participant: str,
                 interval: int = DEFAULT_INTERVAL_SEC,
                 min_hash: int = DEFAULT_MIN_HASH,
                 session: Optional[requests.Session] = None,
                 timeout: float = 10.0):
        self.node_url = node_url.rstrip("/")
        self.participant = participant
        self.interval = interval
        self.min_hash = min_hash
        self.session = session or requests.Session()
        self.timeout = timeout
        self._stop = threading.Event()

        self.compounds = 0
        self.failures = 0

    def pending(self, now: int) -> dict:
        resp = self.session.get(
            f"{self.node_url}/participants/{self.participant}/pending",
            params={"now": now},
            timeout=self.timeout,
        )
        resp.raise_for_status()
        return resp.json()

    def compound(self, now: int) -> dict:
        resp = self.session.post(
            f"{self.node_url}/actions",
            json={
                "action_type": "COMPOUND",
                "caller": self.participant,
                "timestamp": now,
            },
            timeout=self.timeout,
        )
        resp.raise_for_status()
        return resp.json()

    def run_once(self, now: Optional[int] = None) -> Optional[dict]:
        """
        One keeper round.

        Returns the ActionResult JSON if a compound was submitted, else None.
        """
        now = now if now is not None else int(time.time())
        try:
            info = self.pending(now)
            pending_hash = int(info["pending_hash"])
            threshold = max(self.min_hash, int(info.get("hash_per_unit_power", 1)))
            if pending_hash < threshold:
                logger.info(f"Pending hash {pending_hash:,} below {threshold:,}, skipping")
                return None

            result = self.compound(now)
            self.compounds += 1
            logger.info(f"Compounded {pending_hash:,} hash into {result.get('compounded', 0)} unit(s) "
                        f"(seq={result.get('sequence')})")
            return result
        except (requests.RequestException, KeyError, ValueError) as e:
            # Keep running even if one round fails
            self.failures += 1
            logger.error(f"Error during compound: {e}")
            return None

    def stop(self, *_):
        logger.info("Shutting down auto-compounder...")
        self._stop.set()

    def run_forever(self, install_signals: bool = True):
        if install_signals:
            signal.signal(signal.SIGINT, self.stop)
            signal.signal(signal.SIGTERM, self.stop)

        logger.info(f"Auto-compound keeper started for {self.participant} "
                    f"(interval={self.interval}s, min_hash={self.min_hash:,})")

        # Immediate first check
        while not self._stop.is_set():
            self.run_once()
            self._stop.wait(self.interval)

        logger.info(f"Keeper stopped after {self.compounds} compound(s), {self.failures} failure(s)")
