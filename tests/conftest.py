import pytest

from ledger.core.engine import PoolEngine
from ledger.core.events import EventBus
from ledger.core.state import LedgerState
from ledger.core.vault import InMemoryVault
from protocol.config.economic_model import RATIO_POOL, BONDING_CURVE_POOL, USD_POOL
from protocol.types.action import Action
from protocol.types.common import ActionType

AUTHORITY = "admin"


class Harness:
    """Engine over an in-memory state and vault; settlements are executed like a host would."""

    def __init__(self, config):
        self.config = config
        self.bus = EventBus()
        self.vault = InMemoryVault()
        self.state = LedgerState.empty()
        self.engine = PoolEngine(self.state, self.vault, config, bus=self.bus)

    @property
    def ledger(self):
        return self.engine.state.ledger

    def participant(self, owner):
        return self.engine.state.get_participant(owner)

    def act(self, action_type: ActionType, caller: str, timestamp: int, **fields):
        result = self.engine.apply(Action(action_type=action_type, caller=caller, timestamp=timestamp, **fields))
        if self.engine.executor is None:
            self.vault.execute(result.settlements)
        return result

    def initialize(self, seed: int = 1_000_000, timestamp: int = 1000, **payload):
        payload.setdefault("seed_amount", seed)
        return self.act(ActionType.INITIALIZE, AUTHORITY, timestamp, payload=payload)

    def join(self, owner: str, timestamp: int = 1000):
        return self.act(ActionType.INIT_PARTICIPANT, owner, timestamp)

    def buy(self, owner: str, amount: int, timestamp: int = 1000, **fields):
        return self.act(ActionType.BUY, owner, timestamp, amount=amount, **fields)


class ManualClock:
    """Host clock for MiningPool that only moves when a test says so."""

    def __init__(self, now: int = 1000):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int):
        self.now += seconds


@pytest.fixture
def ratio_pool():
    h = Harness(RATIO_POOL)
    h.initialize()
    return h


@pytest.fixture
def curve_pool():
    h = Harness(BONDING_CURVE_POOL)
    h.initialize()
    return h


@pytest.fixture
def usd_pool():
    h = Harness(USD_POOL)
    h.initialize()
    return h


@pytest.fixture
def harness():
    """Factory for an uninitialized harness over any economic config."""
    return Harness


@pytest.fixture
def clock():
    return ManualClock()
