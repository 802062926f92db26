# MIT License
# Copyright (c) 2025 Hashborn

"""
Pricing Engine

Converts a deposit into mining power under the ledger's pricing strategy.

Strategies (selected by GlobalLedger.strategy, dispatched through a table):
- ratio:          deposit * base_rate * 100 / (virtual_floor + vault_balance)
- bonding_curve:  deposit * curve_supply * psn / ((vault_balance + offset) * psnh)
- usd_normalized: deposit_usd * total_mining_power / (tvl_usd * distribution_constant)

Vault balances are always the observations taken before the deposit lands.
The protocol fee is a supply-side tax on minted units; it never moves custody.
"""

import logging
from typing import Callable, Dict, Tuple

from protocol.config.economic_model import EconomicConfig, PERCENT
from protocol.math.fixed_point import checked_add, checked_mul, checked_div, to_u64, split_amount
from protocol.types.common import ErrorCode, LedgerError, PricingStrategy
from protocol.types.ledger import GlobalLedger, PricingParams

logger = logging.getLogger(__name__)


def _price_ratio(deposit: int, asset: str, ledger: GlobalLedger,
                 vault_balances: Dict[str, int], config: EconomicConfig) -> int:
    params = ledger.params
    denominator = checked_add(params.virtual_floor, vault_balances.get(asset, 0), bits=128)
    numerator = checked_mul(checked_mul(deposit, params.base_rate, bits=128), PERCENT, bits=128)
    return to_u64(checked_div(numerator, denominator))


def _price_bonding_curve(deposit: int, asset: str, ledger: GlobalLedger,
                         vault_balances: Dict[str, int], config: EconomicConfig) -> int:
    params = ledger.params
    curve_reserve = checked_add(vault_balances.get(asset, 0), params.curve_virtual_offset, bits=128)
    numerator = checked_mul(checked_mul(deposit, ledger.curve_supply, bits=128), params.psn, bits=128)
    denominator = checked_mul(curve_reserve, params.psnh, bits=128)
    return to_u64(checked_div(numerator, denominator))


def _price_usd_normalized(deposit: int, asset: str, ledger: GlobalLedger,
                          vault_balances: Dict[str, int], config: EconomicConfig) -> int:
    params = ledger.params
    # Every configured asset needs a price, not just the deposited one
    for configured in config.assets:
        if params.usd_prices.get(configured, 0) == 0:
            raise LedgerError(ErrorCode.PRICE_NOT_SET, f"No USD price for {configured}", asset=configured)

    deposit_usd = usd_value(deposit, asset, params, config)
    tvl_usd = 0
    for configured in config.assets:
        tvl_usd = checked_add(tvl_usd, usd_value(vault_balances.get(configured, 0), configured, params, config), bits=128)

    if ledger.total_mining_power == 0 or tvl_usd == 0:
        # Bootstrap: nothing to price against until Initialize seeds power
        logger.info(f"USD pool has no power or TVL yet (power={ledger.total_mining_power}, tvl_usd={tvl_usd}), minting 0")
        return 0

    numerator = checked_mul(deposit_usd, ledger.total_mining_power, bits=128)
    denominator = checked_mul(tvl_usd, params.distribution_constant, bits=128)
    return to_u64(checked_div(numerator, denominator))


_STRATEGIES: Dict[PricingStrategy, Callable[..., int]] = {
    PricingStrategy.RATIO: _price_ratio,
    PricingStrategy.BONDING_CURVE: _price_bonding_curve,
    PricingStrategy.USD_NORMALIZED: _price_usd_normalized,
}


def usd_value(amount: int, asset: str, params: PricingParams, config: EconomicConfig) -> int:
    """amount * usd_price / 10^decimals, in micro-dollars."""
    if asset not in config.asset_decimals:
        raise LedgerError(ErrorCode.INVALID_AMOUNT, f"Asset {asset} is not configured for this pool", asset=asset)
    price = params.usd_prices.get(asset, 0)
    if price == 0:
        raise LedgerError(ErrorCode.PRICE_NOT_SET, f"No USD price for {asset}", asset=asset)
    return to_u64(checked_div(checked_mul(amount, price, bits=128), 10 ** config.asset_decimals[asset]))


def price_deposit(strategy: PricingStrategy, deposit_value: int, asset: str, ledger: GlobalLedger,
                  vault_balances: Dict[str, int], config: EconomicConfig) -> int:
    """
    Mining power minted for a deposit, before the protocol fee.

    Args:
        strategy: Pricing strategy of the ledger
        deposit_value: Deposit in the smallest unit of `asset`
        asset: Deposited asset
        ledger: Global ledger (params, curve supply, total power)
        vault_balances: Pre-deposit vault observations per asset
        config: Economic config (assets and decimals)

    Returns:
        Minted units before fee
    """
    if deposit_value <= 0:
        raise LedgerError(ErrorCode.INVALID_AMOUNT, "Deposit must be positive", amount=deposit_value)
    try:
        pricer = _STRATEGIES[strategy]
    except KeyError:
        raise LedgerError(ErrorCode.UNSUPPORTED_ACTION, f"Unknown pricing strategy {strategy}")
    return pricer(deposit_value, asset, ledger, vault_balances, config)


def apply_protocol_fee(minted: int, ledger: GlobalLedger, config: EconomicConfig) -> Tuple[int, int]:
    """Returns (credited, fee) with credited + fee == minted."""
    return split_amount(minted, ledger.protocol_fee_bps, config.fee_denominator)


def calculate_trade(rt: int, rs: int, bs: int, params: PricingParams) -> int:
    """
    Constant-product trade: psn * bs / (psnh + (psn * rs + psnh * rt) / rt).

    Used to price hash sold back into the curve (rt = hash, rs = curve_supply,
    bs = mineable vault balance).
    """
    inner = checked_div(
        checked_add(checked_mul(params.psn, rs, bits=128), checked_mul(params.psnh, rt, bits=128), bits=128),
        rt,
    )
    return to_u64(checked_div(checked_mul(params.psn, bs, bits=128), checked_add(params.psnh, inner, bits=128)))


def calculate_sell(hash_amount: int, ledger: GlobalLedger, mineable: int) -> int:
    """Vault value paid for `hash_amount` of hash at the current curve supply."""
    return calculate_trade(hash_amount, ledger.curve_supply, mineable, ledger.params)

