# MIT License
# Copyright (c) 2025 Hashborn

"""
Pool Engine

Single entry point that applies Actions to the ledger.

Flow for every action:
1. Gate: initialized, authority for admin actions, sane amount/timestamp
2. Read one balance per configured asset from the vault observer
3. Fork the state and run the handler for the action type on the fork
4. Check the post-state (unclaimed never exceeds what the vault will hold)
5. Hand the settlements to the custody executor, if one is attached
6. Commit the fork, bump the sequence, emit events and metrics

A LedgerError at any step, or a custody failure, leaves the committed state
untouched and nothing is reported as applied. Without an executor the
returned ActionResult carries the settlement instructions for the caller to
execute.
"""

import logging
import threading
import time
from typing import Callable, Dict, Optional, Tuple

from protocol.config.economic_model import EconomicConfig, ECONOMIC_CONFIG
from protocol.math.fixed_point import checked_add, checked_sub, to_i64, to_u64
from protocol.types.action import Action
from protocol.types.common import (
    ADMIN_ACTIONS, ActionType, BonusTarget, ErrorCode, LedgerError, PricingStrategy, SettlementKind,
)
from protocol.types.ledger import GlobalLedger, ParticipantState, PricingParams
from protocol.types.settlement import ActionResult, SettlementInstruction, vault_address
from . import accrual, pricing, referral, settlement
from ..observability.metrics import record_action, record_rejection, update_ledger_gauges
from .events import EventBus, event_bus, ACTION_APPLIED, ACTION_REJECTED, SETTLEMENT
from .state import LedgerState
from .vault import CustodyExecutor, VaultObserver

logger = logging.getLogger(__name__)

# Keys AdminUpdate accepts outside of `params`
_ADMIN_LEDGER_FIELDS = ('protocol_fee_bps', 'referral_bonus_bps', 'strategy', 'dev_wallet')

# Actions that operate on a participant record the caller must own
_OWNER_ACTIONS = (
    ActionType.INIT_PARTICIPANT, ActionType.BUY, ActionType.COMPOUND, ActionType.CLAIM, ActionType.SELL,
)

CUSTODY_FAILED = "CustodyFailed"


class PoolEngine:
    """
    Deterministic state-transition engine for a mining pool.

    All actions are serialized by a re-entrant lock, so shared counters
    (total_mining_power, total_unclaimed) have a single writer.
    """

    def __init__(self, state: LedgerState, vault: VaultObserver,
                 config: EconomicConfig = None, bus: EventBus = None,
                 executor: Optional[CustodyExecutor] = None):
        self.state = state
        self.vault = vault
        self.executor = executor
        self.config = config or ECONOMIC_CONFIG
        self.config.validate()
        self.bus = bus or event_bus
        self._lock = threading.RLock()

        self._handlers: Dict[ActionType, Callable] = {
            ActionType.INITIALIZE: self._initialize,
            ActionType.INIT_PARTICIPANT: self._init_participant,
            ActionType.BUY: self._buy,
            ActionType.COMPOUND: self._compound,
            ActionType.CLAIM: self._claim,
            ActionType.SELL: self._sell,
            ActionType.ADMIN_UPDATE: self._admin_update,
            ActionType.ADMIN_RESET: self._admin_reset,
            ActionType.ADMIN_DRAIN: self._admin_drain,
        }

    @property
    def ledger(self) -> GlobalLedger:
        return self.state.ledger

    # ═══════════════════════════════════════════════════════
    # ENTRY POINT
    # ═══════════════════════════════════════════════════════

    def apply(self, action: Action) -> ActionResult:
        """
        Applies one action atomically.

        Raises:
            LedgerError: the action was rejected and nothing changed
            ValueError: the custody executor refused the settlements; nothing changed
        """
        with self._lock:
            started = time.perf_counter()
            try:
                fork, result = self._apply_locked(action)
            except LedgerError as e:
                logger.warning(f"Rejected {action.action_type.value} from {action.caller}: {e}")
                self._record(lambda: record_rejection(action, e.code.value))
                self.bus.emit(ACTION_REJECTED, action=action, error=e)
                raise

            if self.executor is not None:
                try:
                    self.executor.execute(result.settlements)
                except ValueError as e:
                    logger.error(f"Custody failed for {action.action_type.value} {result.action_hash[:16]}: {e}")
                    self._record(lambda: record_rejection(action, CUSTODY_FAILED))
                    self.bus.emit(ACTION_REJECTED, action=action, error=e)
                    raise
            fork.commit()

            logger.info(
                f"Applied {action.action_type.value} for {result.participant} "
                f"(seq={result.sequence}, settlements={len(result.settlements)})"
            )
            duration = time.perf_counter() - started
            self._record(lambda: record_action(action, result, duration))
            self._record(lambda: update_ledger_gauges(self.state.ledger))

            self.bus.emit(ACTION_APPLIED, action=action, result=result)
            for ins in result.settlements:
                self.bus.emit(SETTLEMENT, instruction=ins, sequence=result.sequence)
            return result

    def _apply_locked(self, action: Action) -> Tuple[LedgerState, ActionResult]:
        """Runs the action on a fork. The caller commits the fork."""
        ledger = self.state.ledger
        if action.action_type != ActionType.INITIALIZE and not ledger.initialized:
            raise LedgerError(ErrorCode.NOT_INITIALIZED, "Ledger is not initialized")
        if action.action_type in ADMIN_ACTIONS and action.caller != ledger.authority:
            raise LedgerError(ErrorCode.UNAUTHORIZED, f"{action.caller} is not the authority", caller=action.caller)
        if (action.action_type in _OWNER_ACTIONS and action.target != action.caller
                and action.caller != ledger.authority):
            raise LedgerError(ErrorCode.UNAUTHORIZED, f"{action.caller} cannot act for {action.target}",
                              caller=action.caller, participant=action.target)
        if action.amount < 0:
            raise LedgerError(ErrorCode.INVALID_AMOUNT, "Amount cannot be negative", amount=action.amount)
        to_u64(action.amount)
        to_i64(action.timestamp)

        handler = self._handlers.get(action.action_type)
        if handler is None:
            raise LedgerError(ErrorCode.UNSUPPORTED_ACTION, f"No handler for {action.action_type}")

        balances = self.vault.observe(self.config.assets)
        fork = self.state.fork()
        result = ActionResult(
            action_hash=action.hash(),
            action_type=action.action_type,
            participant=action.target,
        )

        handler(fork, action, balances, result)

        self._check_post_state(fork.ledger, balances, result)
        fork.ledger.sequence = checked_add(fork.ledger.sequence, 1)
        result.sequence = fork.ledger.sequence
        return fork, result

    def _check_post_state(self, ledger: GlobalLedger, balances: Dict[str, int], result: ActionResult) -> None:
        """Unclaimed value must stay covered by the vault once settlements execute."""
        for asset in self.config.assets:
            after = checked_add(balances.get(asset, 0), result.total_in(asset), bits=128)
            out = result.total_out(asset)
            if out > after:
                raise LedgerError(ErrorCode.INSUFFICIENT_FUNDS, f"Settlements exceed vault {asset}",
                                  asset=asset, balance=after, outflow=out)
            after -= out
            if ledger.unclaimed(asset) > after:
                raise LedgerError(
                    ErrorCode.INSUFFICIENT_FUNDS,
                    f"Unclaimed {ledger.unclaimed(asset)} {asset} would exceed vault balance {after}",
                    asset=asset, unclaimed=ledger.unclaimed(asset), balance=after,
                )

    def _record(self, update: Callable[[], None]) -> None:
        # Metric failures never affect an action
        try:
            update()
        except Exception as e:
            logger.debug(f"Failed to update metrics: {e}")

    def _resolve_asset(self, action: Action) -> str:
        asset = action.asset or self.config.primary_asset
        if asset not in self.config.asset_decimals:
            raise LedgerError(ErrorCode.INVALID_AMOUNT, f"Asset {asset} is not configured for this pool", asset=asset)
        return asset

    # ═══════════════════════════════════════════════════════
    # HANDLERS
    # ═══════════════════════════════════════════════════════

    def _initialize(self, fork: LedgerState, action: Action, balances: Dict[str, int], result: ActionResult):
        if fork.ledger.initialized:
            raise LedgerError(ErrorCode.ALREADY_INITIALIZED, "Ledger is already initialized")

        payload = action.payload
        seed = payload.get('seed_amount', action.amount)
        if not isinstance(seed, int) or isinstance(seed, bool) or seed <= 0:
            raise LedgerError(ErrorCode.INVALID_SEED_AMOUNT, f"Seed amount must be a positive integer, got {seed!r}")
        to_u64(seed)

        strategy = _parse_strategy(payload.get('strategy', self.config.strategy))
        params = _merge_params(self.config.default_params(), payload.get('params', {}))

        ledger = GlobalLedger(
            initialized=True,
            authority=action.caller,
            dev_wallet=payload.get('dev_wallet') or action.caller,
            strategy=strategy,
            total_unclaimed={asset: 0 for asset in self.config.assets},
            params=params,
            protocol_fee_bps=_parse_rate(payload.get('protocol_fee_bps', self.config.protocol_fee_bps),
                                         'protocol_fee_bps', self.config),
            referral_bonus_bps=_parse_rate(payload.get('referral_bonus_bps', self.config.referral_bonus_bps),
                                           'referral_bonus_bps', self.config),
            sequence=fork.ledger.sequence,
            created_at=action.timestamp,
        )
        fork.ledger = ledger

        if strategy == PricingStrategy.BONDING_CURVE:
            ledger.curve_supply = seed
        elif strategy == PricingStrategy.USD_NORMALIZED:
            # Explicit seed path: the dev wallet holds the first power so later buys can be priced
            dev = fork.get_participant(ledger.dev_wallet) or ParticipantState(
                owner=ledger.dev_wallet, last_update_timestamp=action.timestamp,
            )
            dev.mining_power = checked_add(dev.mining_power, seed)
            ledger.total_mining_power = checked_add(ledger.total_mining_power, seed)
            fork.set_participant(dev)
            result.minted = seed

        result.participant = ledger.dev_wallet
        logger.info(f"Initialized {strategy.value} pool (authority={ledger.authority}, dev={ledger.dev_wallet}, seed={seed})")

    def _init_participant(self, fork: LedgerState, action: Action, balances: Dict[str, int], result: ActionResult):
        owner = action.target
        if fork.has_participant(owner):
            raise LedgerError(ErrorCode.ALREADY_INITIALIZED, f"Participant {owner} already exists", participant=owner)
        fork.set_participant(ParticipantState(owner=owner, last_update_timestamp=action.timestamp))

    def _buy(self, fork: LedgerState, action: Action, balances: Dict[str, int], result: ActionResult):
        ledger = fork.ledger
        asset = self._resolve_asset(action)
        if ledger.strategy != PricingStrategy.USD_NORMALIZED and asset != self.config.primary_asset:
            raise LedgerError(ErrorCode.INVALID_AMOUNT,
                              f"{ledger.strategy.value} pools only accept {self.config.primary_asset}", asset=asset)
        if action.amount == 0:
            raise LedgerError(ErrorCode.INVALID_AMOUNT, "Deposit must be positive")

        buyer = fork.require_participant(action.target)
        referral.bind_referrer(buyer, action.referrer)

        minted = pricing.price_deposit(ledger.strategy, action.amount, asset, ledger, balances, self.config)
        credited, fee_units = pricing.apply_protocol_fee(minted, ledger, self.config)

        # Settle hash at the old power before it changes
        accrual.accrue(buyer, ledger.params, action.timestamp)
        buyer.mining_power = checked_add(buyer.mining_power, credited)
        ledger.total_mining_power = checked_add(ledger.total_mining_power, credited)
        fork.set_participant(buyer)

        result.minted = credited
        result.fee_units = fee_units
        result.referral_bonus = referral.propagate_bonus(
            fork, buyer.referrer, credited, BonusTarget.MINING_POWER, self.config,
        )
        result.settlements.append(SettlementInstruction(
            kind=SettlementKind.DEPOSIT, asset=asset, source=action.caller,
            destination=vault_address(asset), amount=action.amount,
        ))
        logger.debug(f"{buyer.owner} bought {credited} power for {action.amount} {asset} (fee {fee_units})")

    def _compound(self, fork: LedgerState, action: Action, balances: Dict[str, int], result: ActionResult):
        participant = fork.require_participant(action.target)
        new_units, bonus = accrual.compound(fork, participant, self.config, action.timestamp)
        fork.set_participant(participant)
        result.compounded = new_units
        result.referral_bonus = bonus

    def _claim(self, fork: LedgerState, action: Action, balances: Dict[str, int], result: ActionResult):
        participant = fork.require_participant(action.target)
        accrued, instructions = settlement.claim(participant, fork.ledger, balances, self.config, action.timestamp)
        fork.set_participant(participant)
        result.accrued = accrued
        result.settlements.extend(instructions)

    def _sell(self, fork: LedgerState, action: Action, balances: Dict[str, int], result: ActionResult):
        participant = fork.require_participant(action.target)
        _, instructions = settlement.sell(participant, fork.ledger, balances, self.config, action.timestamp)
        fork.set_participant(participant)
        result.settlements.extend(instructions)

    def _admin_update(self, fork: LedgerState, action: Action, balances: Dict[str, int], result: ActionResult):
        ledger = fork.ledger
        payload = action.payload
        unknown = set(payload) - set(_ADMIN_LEDGER_FIELDS) - {'params'}
        if unknown:
            raise LedgerError(ErrorCode.INVALID_AMOUNT, f"Unknown update fields: {sorted(unknown)}")

        if 'params' in payload:
            ledger.params = _merge_params(ledger.params, payload['params'])
        if 'protocol_fee_bps' in payload:
            ledger.protocol_fee_bps = _parse_rate(payload['protocol_fee_bps'], 'protocol_fee_bps', self.config)
        if 'referral_bonus_bps' in payload:
            ledger.referral_bonus_bps = _parse_rate(payload['referral_bonus_bps'], 'referral_bonus_bps', self.config)
        if 'strategy' in payload:
            ledger.strategy = _parse_strategy(payload['strategy'])
        if payload.get('dev_wallet'):
            ledger.dev_wallet = payload['dev_wallet']

        result.participant = None
        logger.info(f"Authority updated {sorted(payload)}")

    def _admin_reset(self, fork: LedgerState, action: Action, balances: Dict[str, int], result: ActionResult):
        ledger = fork.ledger
        target = action.participant
        if not target:
            raise LedgerError(ErrorCode.INVALID_AMOUNT, "AdminReset needs a target participant")
        participant = fork.require_participant(target)

        ledger.total_mining_power = checked_sub(ledger.total_mining_power, participant.mining_power)
        for asset, owed in participant.accrued_yield.items():
            if owed:
                ledger.total_unclaimed[asset] = checked_sub(ledger.unclaimed(asset), owed)

        participant.mining_power = 0
        participant.accrued_hash = 0
        participant.accrued_yield = {}
        participant.last_update_timestamp = max(participant.last_update_timestamp, action.timestamp)
        fork.set_participant(participant)
        logger.warning(f"Authority reset participant {target}")

    def _admin_drain(self, fork: LedgerState, action: Action, balances: Dict[str, int], result: ActionResult):
        asset = self._resolve_asset(action)
        result.participant = None
        result.settlements.extend(settlement.drain(fork.ledger, asset, action.amount, balances))

    # ═══════════════════════════════════════════════════════
    # READ-ONLY PREVIEWS
    # ═══════════════════════════════════════════════════════

    def pending_hash(self, owner: str, now: int) -> int:
        """Hash a Compound or Sell at `now` would consume."""
        with self._lock:
            participant = self.state.require_participant(owner)
            return accrual.pending_hash(participant, self.state.ledger.params, now)

    def pending_earnings(self, owner: str, now: int) -> Dict[str, int]:
        """Gross amount per asset a Claim at `now` would settle, before fee."""
        with self._lock:
            ledger = self.state.ledger
            participant = self.state.require_participant(owner)
            balances = self.vault.observe(self.config.assets)
            dt = accrual.elapsed_seconds(participant, ledger.params, now)
            pending = {}
            for asset in self.config.assets:
                mineable = settlement.mineable_balance(ledger, asset, balances.get(asset, 0))
                earned = accrual.compute_earnings(participant.mining_power, ledger.total_mining_power,
                                                  mineable, dt, ledger.params, self.config)
                pending[asset] = participant.owed(asset) + earned
            return pending


def _parse_strategy(value) -> PricingStrategy:
    try:
        return PricingStrategy(value)
    except ValueError:
        raise LedgerError(ErrorCode.UNSUPPORTED_ACTION, f"Unknown pricing strategy {value!r}")


def _parse_rate(value, name: str, config: EconomicConfig) -> int:
    if not isinstance(value, int) or isinstance(value, bool) or not 0 <= value <= config.fee_denominator:
        raise LedgerError(ErrorCode.INVALID_AMOUNT, f"{name} must be an integer in 0..{config.fee_denominator}",
                          field=name, value=value)
    return value


def _merge_params(current: PricingParams, overrides: Optional[dict]) -> PricingParams:
    """Returns `current` with `overrides` applied; usd_prices are merged per asset."""
    if not overrides:
        return current.model_copy(deep=True)
    if not isinstance(overrides, dict):
        raise LedgerError(ErrorCode.INVALID_AMOUNT, "params must be an object")
    unknown = set(overrides) - set(PricingParams.model_fields)
    if unknown:
        raise LedgerError(ErrorCode.INVALID_AMOUNT, f"Unknown pricing params: {sorted(unknown)}")

    data = current.model_dump()
    for key, value in overrides.items():
        if key == 'usd_prices':
            if not isinstance(value, dict):
                raise LedgerError(ErrorCode.INVALID_AMOUNT, "usd_prices must be an object")
            data['usd_prices'] = {**data['usd_prices'], **value}
        else:
            data[key] = value

    try:
        params = PricingParams.model_validate(data)
    except ValueError as e:
        raise LedgerError(ErrorCode.INVALID_AMOUNT, f"Invalid pricing params: {e}")

    for name in ('base_rate', 'virtual_floor', 'psn', 'psnh', 'curve_virtual_offset',
                 'distribution_constant', 'hash_per_unit_power'):
        value = getattr(params, name)
        if value < 0:
            raise LedgerError(ErrorCode.INVALID_AMOUNT, f"{name} cannot be negative", field=name)
        to_u64(value)
    if params.hash_per_unit_power == 0 or params.psnh == 0 or params.distribution_constant == 0:
        raise LedgerError(ErrorCode.DIVISION_BY_ZERO, "hash_per_unit_power, psnh and distribution_constant must be non-zero")
    if not 0 <= params.daily_pool_percentage <= 100:
        raise LedgerError(ErrorCode.INVALID_AMOUNT, "daily_pool_percentage must be 0..100")
    if any(price < 0 for price in params.usd_prices.values()):
        raise LedgerError(ErrorCode.INVALID_AMOUNT, "USD prices cannot be negative")
    if params.max_accrual_window is not None and params.max_accrual_window < 0:
        raise LedgerError(ErrorCode.INVALID_AMOUNT, "max_accrual_window cannot be negative")
    return params
