# MIT License
# Copyright (c) 2025 Hashborn

from enum import Enum


class ActionType(str, Enum):
    INITIALIZE = "INITIALIZE"
    INIT_PARTICIPANT = "INIT_PARTICIPANT"
    BUY = "BUY"
    COMPOUND = "COMPOUND"
    CLAIM = "CLAIM"
    SELL = "SELL"                   # Bonding-curve pools only

    # Authority actions
    ADMIN_UPDATE = "ADMIN_UPDATE"   # Prices, curve params, fees
    ADMIN_RESET = "ADMIN_RESET"     # Zero a participant
    ADMIN_DRAIN = "ADMIN_DRAIN"     # Withdraw unowed vault balance


ADMIN_ACTIONS = frozenset({
    ActionType.ADMIN_UPDATE,
    ActionType.ADMIN_RESET,
    ActionType.ADMIN_DRAIN,
})


class PricingStrategy(str, Enum):
    RATIO = "ratio"
    BONDING_CURVE = "bonding_curve"
    USD_NORMALIZED = "usd_normalized"


class BonusTarget(str, Enum):
    MINING_POWER = "mining_power"
    HASH = "hash"


class SettlementKind(str, Enum):
    DEPOSIT = "deposit"
    PAYOUT = "payout"
    FEE = "fee"
    DRAIN = "drain"


class ErrorCode(str, Enum):
    NOT_INITIALIZED = "NotInitialized"
    ALREADY_INITIALIZED = "AlreadyInitialized"
    INVALID_AMOUNT = "InvalidAmount"
    INVALID_SEED_AMOUNT = "InvalidSeedAmount"
    OVERFLOW = "Overflow"
    DIVISION_BY_ZERO = "DivisionByZero"
    SELF_REFERRAL = "SelfReferral"
    INSUFFICIENT_FUNDS = "InsufficientFunds"
    PRICE_NOT_SET = "PriceNotSet"
    UNAUTHORIZED = "Unauthorized"
    UNSUPPORTED_ACTION = "UnsupportedAction"


class ProtocolError(Exception):
    pass


class LedgerError(ProtocolError):
    """
    Raised by every engine operation that rejects an action.

    The engine never commits partial state, so catching this means
    nothing changed.
    """

    def __init__(self, code: ErrorCode, message: str = "", **details):
        self.code = code
        self.message = message or code.value
        self.details = details
        super().__init__(f"{code.value}: {self.message}")

    def to_dict(self) -> dict:
        return {
            "code": self.code.value,
            "message": self.message,
            "details": self.details,
        }
