# MIT License
# Copyright (c) 2025 Hashborn

"""
Accrual & Compounding Engine

One watermark per participant drives two kinds of accrual:
- hash:     mining_power * Δt, consumed by Buy, Compound and Sell
- earnings: a pro-rata slice of the daily pool, consumed by Claim

Δt = max(now - watermark, 0), capped at max_accrual_window when set. The
watermark never moves backwards.
"""

import logging
from typing import Tuple

from protocol.config.economic_model import EconomicConfig, PERCENT
from protocol.math.fixed_point import checked_add, checked_mul, checked_div, mul_div, to_i64, to_u64
from protocol.types.common import BonusTarget, ErrorCode, LedgerError, PricingStrategy
from protocol.types.ledger import ParticipantState, PricingParams
from .referral import propagate_bonus

logger = logging.getLogger(__name__)


def elapsed_seconds(participant: ParticipantState, params: PricingParams, now: int) -> int:
    """Accruable seconds since the participant's watermark."""
    to_i64(now)
    dt = now - participant.last_update_timestamp
    if dt < 0:
        # Clock skew: accrue nothing rather than fail
        logger.debug(f"Clock behind watermark for {participant.owner} by {-dt}s")
        return 0
    if params.max_accrual_window is not None and dt > params.max_accrual_window:
        dt = params.max_accrual_window
    return to_u64(dt)


def advance_watermark(participant: ParticipantState, now: int) -> None:
    if now > participant.last_update_timestamp:
        participant.last_update_timestamp = now


def pending_hash(participant: ParticipantState, params: PricingParams, now: int) -> int:
    """Hash the participant would hold after accruing at `now` (no mutation)."""
    dt = elapsed_seconds(participant, params, now)
    return checked_add(participant.accrued_hash, checked_mul(participant.mining_power, dt))


def accrue(participant: ParticipantState, params: PricingParams, now: int) -> int:
    """Adds mining_power * Δt to accrued_hash and advances the watermark. Returns the delta."""
    dt = elapsed_seconds(participant, params, now)
    delta = checked_mul(participant.mining_power, dt)
    participant.accrued_hash = checked_add(participant.accrued_hash, delta)
    advance_watermark(participant, now)
    return delta


def compute_earnings(mining_power: int, total_mining_power: int, mineable: int, dt: int,
                     params: PricingParams, config: EconomicConfig) -> int:
    """
    Participant's share of the daily pool over `dt` seconds.

    daily_pool = mineable * daily_pool_percentage / 100
    share      = mining_power * share_scale / total_mining_power
    earnings   = daily_pool * share * dt / (share_scale * seconds_per_day)

    The product is formed at 128 bits and divided once, then clamped to the
    mineable balance.
    """
    if total_mining_power == 0 or mining_power == 0 or dt == 0 or mineable == 0:
        return 0

    daily_pool = mul_div(mineable, params.daily_pool_percentage, PERCENT)
    share = mul_div(mining_power, config.share_scale, total_mining_power)
    numerator = checked_mul(checked_mul(daily_pool, share, bits=128), dt, bits=128)
    denominator = checked_mul(config.share_scale, config.seconds_per_day, bits=128)
    earnings = to_u64(checked_div(numerator, denominator))
    return min(earnings, mineable)


def compound(state, participant: ParticipantState, config: EconomicConfig, now: int) -> Tuple[int, int]:
    """
    Converts all accrued hash into mining power, fee free.

    Returns (new_units, referral_bonus). Fails with InvalidAmount when the
    hash does not buy a whole unit.
    """
    ledger = state.ledger
    params = ledger.params

    accrue(participant, params, now)
    total_hash = participant.accrued_hash
    new_units = checked_div(total_hash, params.hash_per_unit_power)
    if new_units == 0:
        raise LedgerError(
            ErrorCode.INVALID_AMOUNT,
            f"{total_hash} hash is below one unit ({params.hash_per_unit_power})",
            accrued_hash=total_hash,
        )

    # Bonus comes out of the same hash pool, before the floor divide
    bonus = 0
    if config.compound_referral_enabled:
        bonus = propagate_bonus(state, participant.referrer, total_hash, BonusTarget.HASH, config)

    participant.mining_power = checked_add(participant.mining_power, new_units)
    participant.accrued_hash = 0
    ledger.total_mining_power = checked_add(ledger.total_mining_power, new_units)

    if ledger.strategy == PricingStrategy.BONDING_CURVE and config.curve_compound_divisor:
        ledger.curve_supply = checked_add(ledger.curve_supply, total_hash // config.curve_compound_divisor)

    logger.debug(f"{participant.owner} compounded {total_hash} hash into {new_units} unit(s)")
    return new_units, bonus
