import pytest

from protocol.math.fixed_point import (
    U64_MAX, U128_MAX, I64_MAX, I64_MIN,
    to_u64, to_i64, checked_add, checked_sub, checked_mul, checked_div, mul_div, split_amount,
)
from protocol.types.common import ErrorCode, LedgerError


def test_u64_boundaries():
    assert to_u64(0) == 0
    assert to_u64(U64_MAX) == U64_MAX

    with pytest.raises(LedgerError) as exc:
        to_u64(U64_MAX + 1)
    assert exc.value.code == ErrorCode.OVERFLOW

    with pytest.raises(LedgerError):
        to_u64(-1)


def test_i64_boundaries():
    assert to_i64(I64_MIN) == I64_MIN
    assert to_i64(I64_MAX) == I64_MAX
    with pytest.raises(LedgerError):
        to_i64(I64_MAX + 1)


def test_bool_is_not_an_amount():
    with pytest.raises(TypeError):
        to_u64(True)
    with pytest.raises(TypeError):
        checked_add(1, 1.5)


def test_checked_add_and_sub():
    assert checked_add(U64_MAX - 1, 1) == U64_MAX
    with pytest.raises(LedgerError):
        checked_add(U64_MAX, 1)
    # Wider accumulator
    assert checked_add(U64_MAX, 1, bits=128) == U64_MAX + 1

    assert checked_sub(10, 10) == 0
    with pytest.raises(LedgerError):
        checked_sub(1, 2)


def test_checked_mul_widths():
    with pytest.raises(LedgerError):
        checked_mul(2**32, 2**32)
    assert checked_mul(2**32, 2**32, bits=128) == 2**64
    with pytest.raises(LedgerError):
        checked_mul(U128_MAX, 2, bits=128)
    with pytest.raises(ValueError):
        checked_mul(1, 1, bits=32)


def test_checked_div_by_zero():
    assert checked_div(7, 2) == 3
    with pytest.raises(LedgerError) as exc:
        checked_div(1, 0)
    assert exc.value.code == ErrorCode.DIVISION_BY_ZERO


def test_mul_div_uses_wide_intermediate():
    # a * b overflows u64 but the quotient fits
    assert mul_div(U64_MAX, 1000, 1000) == U64_MAX
    with pytest.raises(LedgerError):
        mul_div(U64_MAX, 2, 1)


def test_split_amount_conserves_total():
    net, cut = split_amount(1000, 10, 100)
    assert (net, cut) == (900, 100)

    # Remainder stays with net
    net, cut = split_amount(19, 5, 100)
    assert cut == 0
    assert net == 19

    net, cut = split_amount(1999, 5, 100)
    assert cut == 99
    assert net + cut == 1999
