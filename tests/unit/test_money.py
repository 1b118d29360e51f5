"""Unit tests for the Money value type"""

import pytest
from decimal import Decimal
from billing_gateway.domain.money import Money
from billing_gateway.domain.exceptions import InvalidMoneyValueError, ValidationError


def test_of_rounds_half_up_to_cents():
    """Test two-decimal quantization with half-up rounding"""
    assert Money.of("10.005").amount == Decimal("10.01")
    assert Money.of("10.004").amount == Decimal("10.00")
    assert Money.of(7).amount == Decimal("7.00")


def test_of_uses_float_repr():
    """Test 0.1 + 0.2 style floats land on the expected cent"""
    assert Money.of(0.1) == Money.of("0.10")
    assert Money.of(19.99) == Money.of("19.99")


def test_of_rejects_negative():
    with pytest.raises(InvalidMoneyValueError):
        Money.of("-0.01")


@pytest.mark.parametrize("value", ["abc", "", None, True, float("nan"), float("inf"), [1]])
def test_of_rejects_non_amounts(value):
    """Test malformed input is a validation error, never a crash"""
    with pytest.raises(ValidationError):
        Money.of(value)


def test_arithmetic_allows_negative_intermediates():
    """Test subtract may go below zero for difference computations"""
    diff = Money.of("10.00").subtract(Money.of("12.50"))
    assert diff.is_negative()
    assert str(diff) == "-2.50"
    assert Money.of("1.10").add(Money.of("2.20")) == Money.of("3.30")


def test_sum_and_cents():
    total = Money.sum([Money.of("0.10"), Money.of("0.20"), Money.of("0.30")])
    assert total == Money.of("0.60")
    assert total.cents == 60
    assert Money.sum([]) == Money.ZERO
    assert Money.from_cents(12345) == Money.of("123.45")


def test_comparisons_and_predicates():
    assert Money.of("1.00") < Money.of("1.01")
    assert Money.ZERO.is_zero()
    assert not Money.ZERO.is_positive()
    assert Money.of("0.01").is_positive()
    assert str(Money.of(5)) == "5.00"
