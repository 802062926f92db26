# MIT License
# Copyright (c) 2025 Hashborn

"""
Claim & Settlement Engine

Claim:
1. Accrue new earnings per asset from the mineable balance
   (vault_balance - total_unclaimed) and book them as unclaimed.
2. Settle the participant's entire unclaimed balance per asset:
   fee = unclaimed * protocol_fee_bps / fee_denominator, payout = unclaimed - fee.
3. Assets owing nothing are skipped; a claim with nothing to settle fails.

Sell (bonding curve) prices accrued hash against the curve and settles the
proceeds the same way. Drain withdraws only value nobody is owed.
"""

import logging
from typing import Dict, List, Tuple

from protocol.config.economic_model import EconomicConfig
from protocol.math.fixed_point import checked_add, checked_sub, split_amount
from protocol.types.common import ErrorCode, LedgerError, PricingStrategy, SettlementKind
from protocol.types.ledger import GlobalLedger, ParticipantState
from protocol.types.settlement import SettlementInstruction, vault_address
from .accrual import accrue, advance_watermark, compute_earnings, elapsed_seconds
from .pricing import calculate_sell

logger = logging.getLogger(__name__)


def mineable_balance(ledger: GlobalLedger, asset: str, vault_balance: int) -> int:
    """Vault value not already owed to someone."""
    unclaimed = ledger.unclaimed(asset)
    if unclaimed > vault_balance:
        raise LedgerError(
            ErrorCode.INSUFFICIENT_FUNDS,
            f"Vault {asset} holds {vault_balance} but {unclaimed} is owed",
            asset=asset, balance=vault_balance, unclaimed=unclaimed,
        )
    return vault_balance - unclaimed


def payout_instructions(asset: str, recipient: str, dev_wallet: str,
                        payout: int, fee: int) -> List[SettlementInstruction]:
    """Payout and fee legs out of the asset's vault; zero legs are omitted."""
    vault = vault_address(asset)
    instructions = []
    if payout > 0:
        instructions.append(SettlementInstruction(
            kind=SettlementKind.PAYOUT, asset=asset, source=vault, destination=recipient, amount=payout,
        ))
    if fee > 0:
        instructions.append(SettlementInstruction(
            kind=SettlementKind.FEE, asset=asset, source=vault, destination=dev_wallet, amount=fee,
        ))
    return instructions


def _credit_lifetime(participant: ParticipantState, asset: str, amount: int) -> None:
    participant.lifetime_claimed[asset] = checked_add(participant.lifetime_claimed.get(asset, 0), amount)


def accrue_earnings(participant: ParticipantState, ledger: GlobalLedger,
                    vault_balances: Dict[str, int], config: EconomicConfig, now: int) -> Dict[str, int]:
    """Books new earnings as unclaimed for every asset and advances the watermark."""
    dt = elapsed_seconds(participant, ledger.params, now)
    accrued = {}
    for asset in config.assets:
        mineable = mineable_balance(ledger, asset, vault_balances.get(asset, 0))
        earned = compute_earnings(participant.mining_power, ledger.total_mining_power, mineable, dt,
                                  ledger.params, config)
        if earned:
            participant.accrued_yield[asset] = checked_add(participant.owed(asset), earned)
            ledger.total_unclaimed[asset] = checked_add(ledger.unclaimed(asset), earned)
        accrued[asset] = earned
    advance_watermark(participant, now)
    return accrued


def settle_unclaimed(participant: ParticipantState, ledger: GlobalLedger,
                     vault_balances: Dict[str, int], config: EconomicConfig) -> List[SettlementInstruction]:
    """Pays out everything the participant is owed, per asset."""
    instructions = []
    settled = 0
    for asset in config.assets:
        owed = participant.owed(asset)
        if owed == 0:
            continue

        balance = vault_balances.get(asset, 0)
        if balance < owed:
            raise LedgerError(
                ErrorCode.INSUFFICIENT_FUNDS,
                f"Vault {asset} holds {balance}, cannot settle {owed}",
                asset=asset, balance=balance, owed=owed,
            )

        payout, fee = split_amount(owed, ledger.protocol_fee_bps, config.fee_denominator)
        participant.accrued_yield[asset] = 0
        ledger.total_unclaimed[asset] = checked_sub(ledger.unclaimed(asset), owed)
        _credit_lifetime(participant, asset, payout)

        instructions.extend(payout_instructions(asset, participant.owner, ledger.dev_wallet, payout, fee))
        settled += 1
        logger.info(f"Settled {owed} {asset} for {participant.owner}: payout={payout} fee={fee}")

    if settled == 0:
        raise LedgerError(ErrorCode.INVALID_AMOUNT, f"Nothing to claim for {participant.owner}",
                          participant=participant.owner)
    return instructions


def claim(participant: ParticipantState, ledger: GlobalLedger, vault_balances: Dict[str, int],
          config: EconomicConfig, now: int) -> Tuple[Dict[str, int], List[SettlementInstruction]]:
    """
    Accrues then settles the participant's earnings.

    Returns:
        (new earnings per asset, settlement instructions)
    """
    accrued = accrue_earnings(participant, ledger, vault_balances, config, now)
    return accrued, settle_unclaimed(participant, ledger, vault_balances, config)


def sell(participant: ParticipantState, ledger: GlobalLedger, vault_balances: Dict[str, int],
         config: EconomicConfig, now: int) -> Tuple[int, List[SettlementInstruction]]:
    """
    Sells all accrued hash back into the bonding curve.

    Returns:
        (gross value, settlement instructions)
    """
    if ledger.strategy != PricingStrategy.BONDING_CURVE:
        raise LedgerError(ErrorCode.UNSUPPORTED_ACTION, f"Sell is not available on {ledger.strategy.value} pools")

    accrue(participant, ledger.params, now)
    hash_amount = participant.accrued_hash
    if hash_amount == 0:
        raise LedgerError(ErrorCode.INVALID_AMOUNT, f"{participant.owner} has no hash to sell")

    asset = config.primary_asset
    mineable = mineable_balance(ledger, asset, vault_balances.get(asset, 0))
    value = calculate_sell(hash_amount, ledger, mineable)
    if value == 0:
        raise LedgerError(ErrorCode.INVALID_AMOUNT, f"{hash_amount} hash is worth nothing at current supply",
                          accrued_hash=hash_amount)
    if value > mineable:
        raise LedgerError(ErrorCode.INSUFFICIENT_FUNDS, f"Sale of {value} exceeds mineable {mineable}",
                          asset=asset, value=value, mineable=mineable)

    participant.accrued_hash = 0
    ledger.curve_supply = checked_add(ledger.curve_supply, hash_amount)

    payout, fee = split_amount(value, ledger.protocol_fee_bps, config.fee_denominator)
    _credit_lifetime(participant, asset, payout)
    logger.info(f"{participant.owner} sold {hash_amount} hash for {value} {asset}: payout={payout} fee={fee}")
    return value, payout_instructions(asset, participant.owner, ledger.dev_wallet, payout, fee)


def drain(ledger: GlobalLedger, asset: str, amount: int, vault_balances: Dict[str, int]) -> List[SettlementInstruction]:
    """Authority withdrawal limited to the vault's unowed balance."""
    if amount <= 0:
        raise LedgerError(ErrorCode.INVALID_AMOUNT, "Drain amount must be positive", amount=amount)
    available = mineable_balance(ledger, asset, vault_balances.get(asset, 0))
    if amount > available:
        raise LedgerError(
            ErrorCode.INSUFFICIENT_FUNDS,
            f"Cannot drain {amount} {asset}, only {available} is unowed",
            asset=asset, amount=amount, available=available,
        )
    logger.warning(f"Draining {amount} {asset} to authority {ledger.authority}")
    return [SettlementInstruction(
        kind=SettlementKind.DRAIN, asset=asset, source=vault_address(asset),
        destination=ledger.authority, amount=amount,
    )]
