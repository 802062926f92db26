"""
Custody collaborator interfaces.

The engine only ever reads vault balances and emits settlement
instructions; moving value is the host's job. InMemoryVault implements both
sides for tests and the reference RPC host.
"""
from typing import Dict, Iterable, List
import logging
import threading

from protocol.types.common import SettlementKind
from protocol.types.settlement import SettlementInstruction, vault_address

logger = logging.getLogger(__name__)


class VaultObserver:
    """Read accessor for custody balances."""

    def balance(self, asset: str) -> int:
        raise NotImplementedError

    def observe(self, assets: Iterable[str]) -> Dict[str, int]:
        """Reads every asset once so an action sees a consistent view."""
        return {asset: int(self.balance(asset)) for asset in assets}


class CustodyExecutor:
    """Executes settlement instructions emitted by the engine."""

    def execute(self, instructions: List[SettlementInstruction]) -> None:
        raise NotImplementedError


class InMemoryVault(VaultObserver, CustodyExecutor):
    """
    Vault balances plus a record of what every recipient has received.

    Callers funding a deposit are not tracked; their side of a DEPOSIT is
    assumed to have been debited by the host.
    """

    def __init__(self, balances: Dict[str, int] = None):
        self.balances: Dict[str, int] = dict(balances or {})
        self.received: Dict[str, Dict[str, int]] = {}
        self.executed: List[SettlementInstruction] = []
        self._lock = threading.Lock()

    def balance(self, asset: str) -> int:
        with self._lock:
            return self.balances.get(asset, 0)

    def fund(self, asset: str, amount: int) -> None:
        """Inflow that does not come from a participant (e.g. protocol revenue)."""
        if amount < 0:
            raise ValueError("amount must be non-negative")
        with self._lock:
            self.balances[asset] = self.balances.get(asset, 0) + amount

    def received_by(self, recipient: str, asset: str) -> int:
        with self._lock:
            return self.received.get(recipient, {}).get(asset, 0)

    def execute(self, instructions: List[SettlementInstruction]) -> None:
        with self._lock:
            # Validate everything first so a bad batch moves nothing
            pending = dict(self.balances)
            for ins in instructions:
                vault = vault_address(ins.asset)
                if ins.destination == vault:
                    pending[ins.asset] = pending.get(ins.asset, 0) + ins.amount
                elif ins.source == vault:
                    available = pending.get(ins.asset, 0)
                    if available < ins.amount:
                        raise ValueError(
                            f"Vault {ins.asset} cannot cover {ins.kind.value} of {ins.amount} (has {available})"
                        )
                    pending[ins.asset] = available - ins.amount
                else:
                    raise ValueError(f"Instruction does not touch vault {vault}: {ins}")

            self.balances = pending
            for ins in instructions:
                if ins.kind != SettlementKind.DEPOSIT:
                    bucket = self.received.setdefault(ins.destination, {})
                    bucket[ins.asset] = bucket.get(ins.asset, 0) + ins.amount
                self.executed.append(ins)
                logger.debug(f"Executed {ins.kind.value} {ins.amount} {ins.asset}: {ins.source} -> {ins.destination}")
