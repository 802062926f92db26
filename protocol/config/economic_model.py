# MIT License
# Copyright (c) 2025 Hashborn

"""
Minepool Economic Model
Single source of truth for all economic parameters.

Three pool presets share one engine:
- RATIO_POOL: mining power priced against a single vault's TVL
- BONDING_CURVE_POOL: constant-product curve over a virtual supply, with Sell
- USD_POOL: multi-asset, everything normalized to USD via oracle prices

Remainders from integer division always stay in the vault.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from ..types.common import PricingStrategy
from ..types.ledger import PricingParams

SECONDS_PER_DAY = 86_400
SHARE_SCALE = 1_000_000          # Fixed-point scale for a participant's pool share
PERCENT = 100
PRICE_DECIMALS = 6               # USD prices are micro-dollars per whole unit


@dataclass
class EconomicConfig:
    """Economic parameters for a pool."""

    name: str
    strategy: PricingStrategy

    # ═══════════════════════════════════════════════════════
    # ASSETS
    # ═══════════════════════════════════════════════════════
    asset_decimals: Dict[str, int]      # Asset -> smallest-unit decimals
    primary_asset: str                  # Default asset for Buy / Sell

    # ═══════════════════════════════════════════════════════
    # PRICING (copied into GlobalLedger.params at Initialize)
    # ═══════════════════════════════════════════════════════
    base_rate: int = 1000
    virtual_floor: int = 100_000_000_000
    psn: int = 10_000
    psnh: int = 5_000
    curve_virtual_offset: int = 0
    distribution_constant: int = 1
    usd_prices: Dict[str, int] = field(default_factory=dict)

    # ═══════════════════════════════════════════════════════
    # DISTRIBUTION & ACCRUAL
    # ═══════════════════════════════════════════════════════
    daily_pool_percentage: int = 10     # % of mineable TVL per day
    hash_per_unit_power: int = 86_400   # Hash needed for 1 unit of power
    max_accrual_window: Optional[int] = None
    seconds_per_day: int = SECONDS_PER_DAY
    share_scale: int = SHARE_SCALE

    # ═══════════════════════════════════════════════════════
    # FEES & REFERRALS
    # ═══════════════════════════════════════════════════════
    protocol_fee_bps: int = 10          # Over fee_denominator
    referral_bonus_bps: int = 5         # 5/100 = base/20
    fee_denominator: int = PERCENT
    compound_referral_enabled: bool = False   # Referrer earns hash on Compound

    # Bonding curve: Compound feeds total_hash / divisor back into curve_supply
    curve_compound_divisor: Optional[int] = None

    # ═══════════════════════════════════════════════════════
    # KEEPER
    # ═══════════════════════════════════════════════════════
    min_hash_to_compound: int = 86_400

    # ═══════════════════════════════════════════════════════
    # HELPER METHODS
    # ═══════════════════════════════════════════════════════

    @property
    def assets(self) -> Tuple[str, ...]:
        """Configured assets in a stable order."""
        return tuple(sorted(self.asset_decimals))

    def default_params(self) -> PricingParams:
        """Pricing parameters a fresh ledger starts with."""
        return PricingParams(
            base_rate=self.base_rate,
            virtual_floor=self.virtual_floor,
            daily_pool_percentage=self.daily_pool_percentage,
            psn=self.psn,
            psnh=self.psnh,
            curve_virtual_offset=self.curve_virtual_offset,
            distribution_constant=self.distribution_constant,
            usd_prices=dict(self.usd_prices),
            hash_per_unit_power=self.hash_per_unit_power,
            max_accrual_window=self.max_accrual_window,
        )

    def validate(self) -> None:
        if self.primary_asset not in self.asset_decimals:
            raise ValueError(f"primary_asset {self.primary_asset!r} not in asset_decimals")
        if not 0 <= self.protocol_fee_bps <= self.fee_denominator:
            raise ValueError("protocol_fee_bps must be within fee_denominator")
        if not 0 <= self.referral_bonus_bps <= self.fee_denominator:
            raise ValueError("referral_bonus_bps must be within fee_denominator")
        if not 0 <= self.daily_pool_percentage <= PERCENT:
            raise ValueError("daily_pool_percentage must be 0..100")
        if self.hash_per_unit_power <= 0 or self.psnh <= 0 or self.seconds_per_day <= 0:
            raise ValueError("hash_per_unit_power, psnh and seconds_per_day must be positive")


# ═══════════════════════════════════════════════════════════════════════════
# RATIO POOL
# ═══════════════════════════════════════════════════════════════════════════
RATIO_POOL = EconomicConfig(
    name="ratio",
    strategy=PricingStrategy.RATIO,
    asset_decimals={"SOL": 9},
    primary_asset="SOL",

    base_rate=1000,                             # 1000 units per SOL at TVL=0
    virtual_floor=100_000_000_000,              # 100 SOL in lamports

    daily_pool_percentage=10,                   # 10% of TVL per day
    hash_per_unit_power=86_400,                 # 1 day of hash = 1 unit

    protocol_fee_bps=10,                        # 10%
    referral_bonus_bps=5,                       # 5%
)


# ═══════════════════════════════════════════════════════════════════════════
# BONDING CURVE POOL
# ═══════════════════════════════════════════════════════════════════════════
BONDING_CURVE_POOL = EconomicConfig(
    name="bonding_curve",
    strategy=PricingStrategy.BONDING_CURVE,
    asset_decimals={"SOL": 9},
    primary_asset="SOL",

    psn=10_000,
    psnh=5_000,
    curve_virtual_offset=1_000_000_000,         # 1 SOL virtual reserve

    daily_pool_percentage=10,
    hash_per_unit_power=86_400,
    max_accrual_window=86_400,                  # Backlog capped at one unit's cost

    protocol_fee_bps=5,                         # 5%
    referral_bonus_bps=5,
    compound_referral_enabled=True,
    curve_compound_divisor=5,                   # 20% of compounded hash returns to the curve
)


# ═══════════════════════════════════════════════════════════════════════════
# USD-NORMALIZED MULTI-ASSET POOL
# ═══════════════════════════════════════════════════════════════════════════
USD_POOL = EconomicConfig(
    name="usd_normalized",
    strategy=PricingStrategy.USD_NORMALIZED,
    asset_decimals={"SOL": 9, "USDC": 6},
    primary_asset="SOL",

    distribution_constant=1,
    usd_prices={},                              # Must be set by the authority before Buy

    daily_pool_percentage=10,
    hash_per_unit_power=86_400,

    protocol_fee_bps=10,
    referral_bonus_bps=5,
)


PRESETS: Dict[str, EconomicConfig] = {
    cfg.name: cfg for cfg in (RATIO_POOL, BONDING_CURVE_POOL, USD_POOL)
}


# ═══════════════════════════════════════════════════════════════════════════
# CURRENT POOL (selected at runtime)
# ═══════════════════════════════════════════════════════════════════════════
ECONOMIC_CONFIG = RATIO_POOL  # Default to the ratio pool, can be changed via CLI/config
