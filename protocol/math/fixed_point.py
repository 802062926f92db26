# MIT License
# Copyright (c) 2025 Hashborn

"""
Checked integer arithmetic.

Every stored quantity is an unsigned 64-bit integer in the asset's smallest
unit. Python ints never overflow on their own, so each helper enforces the
declared width explicitly and raises LedgerError(Overflow) when a result
would not fit. Intermediate products (amount * rate * scale) are done at
128 bits and narrowed once at the end.
"""

from ..types.common import ErrorCode, LedgerError

U64_MAX = 2**64 - 1
U128_MAX = 2**128 - 1
I64_MIN = -(2**63)
I64_MAX = 2**63 - 1

_WIDTH_MAX = {64: U64_MAX, 128: U128_MAX}


def _limit(bits: int) -> int:
    try:
        return _WIDTH_MAX[bits]
    except KeyError:
        raise ValueError(f"Unsupported width: {bits}")


def _require_int(value, name: str) -> int:
    # bool is an int subclass; it is never a valid amount
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{name} must be int, got {type(value).__name__}")
    return value


def to_u64(value: int) -> int:
    """Narrows a wide value to u64, failing if magnitude would be lost."""
    _require_int(value, "value")
    if value < 0 or value > U64_MAX:
        raise LedgerError(ErrorCode.OVERFLOW, f"{value} does not fit in u64")
    return value


def to_i64(value: int) -> int:
    _require_int(value, "value")
    if value < I64_MIN or value > I64_MAX:
        raise LedgerError(ErrorCode.OVERFLOW, f"{value} does not fit in i64")
    return value


def checked_add(a: int, b: int, bits: int = 64) -> int:
    result = _require_int(a, "a") + _require_int(b, "b")
    if a < 0 or b < 0 or result > _limit(bits):
        raise LedgerError(ErrorCode.OVERFLOW, f"{a} + {b} overflows u{bits}")
    return result


def checked_sub(a: int, b: int) -> int:
    result = _require_int(a, "a") - _require_int(b, "b")
    if b < 0 or result < 0:
        raise LedgerError(ErrorCode.OVERFLOW, f"{a} - {b} underflows")
    return result


def checked_mul(a: int, b: int, bits: int = 64) -> int:
    result = _require_int(a, "a") * _require_int(b, "b")
    if a < 0 or b < 0 or result > _limit(bits):
        raise LedgerError(ErrorCode.OVERFLOW, f"{a} * {b} overflows u{bits}")
    return result


def checked_div(a: int, b: int) -> int:
    _require_int(a, "a")
    _require_int(b, "b")
    if b == 0:
        raise LedgerError(ErrorCode.DIVISION_BY_ZERO, f"{a} / 0")
    if a < 0 or b < 0:
        raise LedgerError(ErrorCode.OVERFLOW, f"negative operand in {a} / {b}")
    return a // b


def mul_div(a: int, b: int, denominator: int) -> int:
    """floor(a * b / denominator) with a 128-bit intermediate, narrowed to u64."""
    return to_u64(checked_div(checked_mul(a, b, bits=128), denominator))


def percent_of(amount: int, rate: int, denominator: int) -> int:
    """Share of `amount` at `rate / denominator`, floor rounded."""
    return mul_div(amount, rate, denominator)


def split_amount(amount: int, rate: int, denominator: int):
    """
    Splits `amount` into (net, cut) with cut = amount * rate / denominator.

    net + cut == amount exactly; the truncated remainder stays with net.
    """
    cut = percent_of(amount, rate, denominator)
    return checked_sub(amount, cut), cut
