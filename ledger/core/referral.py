# MIT License
# Copyright (c) 2025 Hashborn

"""
Referral Ledger

A participant binds one referrer, once. Qualifying actions then mint a bonus
of `base * referral_bonus_bps / fee_denominator` (5/100 = base/20) to the
referrer, either as mining power (Buy) or as hash (Compound).
"""

import logging
from typing import Optional

from protocol.config.economic_model import EconomicConfig
from protocol.math.fixed_point import checked_add, percent_of
from protocol.types.common import BonusTarget, ErrorCode, LedgerError
from protocol.types.ledger import GlobalLedger, ParticipantState

logger = logging.getLogger(__name__)


def bind_referrer(participant: ParticipantState, candidate: Optional[str]) -> bool:
    """
    Binds `candidate` as the participant's referrer.

    Returns True if a new binding was made. An existing binding is never
    replaced; self-referral is rejected.
    """
    if not candidate:
        return False
    if candidate == participant.owner:
        raise LedgerError(ErrorCode.SELF_REFERRAL, f"{participant.owner} cannot refer itself", participant=participant.owner)
    if participant.referrer is not None:
        if participant.referrer != candidate:
            logger.debug(f"{participant.owner} already referred by {participant.referrer}, ignoring {candidate}")
        return False
    participant.referrer = candidate
    logger.info(f"Bound referrer {candidate} to {participant.owner}")
    return True


def referral_bonus(base_amount: int, ledger: GlobalLedger, config: EconomicConfig) -> int:
    return percent_of(base_amount, ledger.referral_bonus_bps, config.fee_denominator)


def propagate_bonus(state, referrer: Optional[str], base_amount: int,
                    target: BonusTarget, config: EconomicConfig) -> int:
    """
    Credits the referral bonus for `base_amount` to `referrer`.

    A missing or uninitialized referrer is skipped; the primary action still
    succeeds. Returns the bonus actually credited.
    """
    if referrer is None:
        return 0

    ref = state.get_participant(referrer)
    if ref is None:
        logger.debug(f"Referrer {referrer} not initialized, skipping bonus")
        return 0

    ledger = state.ledger
    bonus = referral_bonus(base_amount, ledger, config)
    if bonus == 0:
        return 0

    if target == BonusTarget.MINING_POWER:
        ref.mining_power = checked_add(ref.mining_power, bonus)
        ledger.total_mining_power = checked_add(ledger.total_mining_power, bonus)
    else:
        ref.accrued_hash = checked_add(ref.accrued_hash, bonus)

    state.set_participant(ref)
    logger.debug(f"Referral bonus {bonus} ({target.value}) to {referrer}")
    return bonus
