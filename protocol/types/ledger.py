# MIT License
# Copyright (c) 2025 Hashborn

from pydantic import BaseModel, Field
from typing import Dict, Optional
from .common import PricingStrategy


class PricingParams(BaseModel):
    """Authority-mutable pricing scalars. Read-only to pricing and claims."""

    # Ratio strategy
    base_rate: int = 1000                   # Mining power per unit at empty vault
    virtual_floor: int = 100_000_000_000    # Added to vault balance in the denominator

    # Claim pool
    daily_pool_percentage: int = 10         # % of mineable balance distributed per day

    # Bonding curve
    psn: int = 10_000
    psnh: int = 5_000
    curve_virtual_offset: int = 0           # Added to vault balance to damp early price impact

    # USD-normalized strategy
    distribution_constant: int = 1
    usd_prices: Dict[str, int] = Field(default_factory=dict)  # asset -> USD (price_decimals) per whole unit

    # Accrual
    hash_per_unit_power: int = 86_400       # 1 day of hash buys 1 unit of power
    max_accrual_window: Optional[int] = None  # Seconds; None = uncapped


class GlobalLedger(BaseModel):
    initialized: bool = False
    authority: str = ""
    dev_wallet: str = ""                    # Receives protocol fees
    strategy: PricingStrategy = PricingStrategy.RATIO

    total_mining_power: int = 0
    total_unclaimed: Dict[str, int] = Field(default_factory=dict)  # Owed but not yet settled, per asset
    curve_supply: int = 0                   # Virtual supply for the bonding curve

    params: PricingParams = Field(default_factory=PricingParams)
    protocol_fee_bps: int = 10
    referral_bonus_bps: int = 5

    sequence: int = 0                       # Committed actions
    created_at: int = 0

    def unclaimed(self, asset: str) -> int:
        return self.total_unclaimed.get(asset, 0)


class ParticipantState(BaseModel):
    owner: str
    mining_power: int = 0
    accrued_hash: int = 0                   # Pending compound/sell
    accrued_yield: Dict[str, int] = Field(default_factory=dict)  # Pending claim, per asset
    last_update_timestamp: int = 0
    referrer: Optional[str] = None          # Bound at most once
    lifetime_claimed: Dict[str, int] = Field(default_factory=dict)

    def owed(self, asset: str) -> int:
        return self.accrued_yield.get(asset, 0)
