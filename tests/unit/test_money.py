"""
Unit tests for the Money value and currency scales.
"""

from decimal import Decimal

import pytest

from dj_billing.exceptions import ValidationError
from dj_billing.money import Money, currency_scale

# ============================================================================
# Boundary Conversion Tests
# ============================================================================


class TestFromDecimal:
    """Tests for Money.from_decimal()."""

    def test_zero_decimal_currency(self):
        """IDR has no minor digits: 100000 is 100000 minor units."""
        money = Money.from_decimal("100000", "IDR")
        assert money.minor == 100000
        assert money.currency == "IDR"

    def test_two_decimal_currency(self):
        """AUD amounts are held in cents."""
        assert Money.from_decimal(Decimal("15.25"), "AUD").minor == 1525

    def test_integer_accepted(self):
        assert Money.from_decimal(42, "AUD").minor == 4200

    def test_lowercase_currency_normalized(self):
        assert Money.from_decimal("1", "idr").currency == "IDR"

    def test_negative_amount(self):
        assert Money.from_decimal("-0.04", "AUD").minor == -4

    def test_float_rejected(self):
        """Floats never enter the ledger."""
        with pytest.raises(ValidationError):
            Money.from_decimal(0.1, "AUD")

    def test_bool_rejected(self):
        with pytest.raises(ValidationError):
            Money.from_decimal(True, "IDR")

    def test_none_rejected(self):
        with pytest.raises(ValidationError):
            Money.from_decimal(None, "IDR")

    def test_non_numeric_string_rejected(self):
        with pytest.raises(ValidationError):
            Money.from_decimal("abc", "IDR")

    @pytest.mark.parametrize("value", ["NaN", "Infinity", "-Infinity"])
    def test_non_finite_rejected(self, value):
        with pytest.raises(ValidationError):
            Money.from_decimal(value, "IDR")

    def test_excess_precision_rejected(self):
        """IDR cannot carry fractional rupiah."""
        with pytest.raises(ValidationError):
            Money.from_decimal("10.5", "IDR")

    def test_trailing_zero_fraction_accepted(self):
        assert Money.from_decimal("10.00", "IDR").minor == 10

    def test_unknown_currency_rejected(self):
        with pytest.raises(ValidationError):
            Money.from_decimal("1", "XYZ")

    def test_money_passthrough_same_currency(self):
        money = Money(500, "IDR")
        assert Money.from_decimal(money, "IDR") is money

    def test_money_passthrough_currency_mismatch(self):
        with pytest.raises(ValidationError):
            Money.from_decimal(Money(500, "IDR"), "AUD")


# ============================================================================
# Arithmetic Tests
# ============================================================================


class TestArithmetic:
    def test_addition_and_subtraction(self):
        a = Money(1000, "IDR")
        b = Money(250, "IDR")
        assert a + b == Money(1250, "IDR")
        assert a - b == Money(750, "IDR")
        assert -b == Money(-250, "IDR")
        assert abs(Money(-3, "IDR")) == Money(3, "IDR")

    def test_integer_multiplication(self):
        assert Money(1500, "AUD") * 3 == Money(4500, "AUD")
        assert 2 * Money(1500, "AUD") == Money(3000, "AUD")

    def test_multiplying_by_decimal_rejected(self):
        with pytest.raises(ValidationError):
            Money(1500, "AUD") * Decimal("1.5")

    def test_currency_mismatch_rejected(self):
        with pytest.raises(ValidationError):
            Money(1, "IDR") + Money(1, "AUD")
        with pytest.raises(ValidationError):
            Money(1, "IDR") < Money(1, "AUD")

    def test_comparisons(self):
        assert Money(1, "IDR") < Money(2, "IDR")
        assert Money(2, "IDR") >= Money(2, "IDR")
        assert Money(0, "IDR").is_zero
        assert Money(5, "IDR").is_positive
        assert Money(-5, "IDR").is_negative

    def test_minor_must_be_int(self):
        with pytest.raises(ValidationError):
            Money(Decimal("1"), "IDR")


class TestRepresentation:
    def test_as_dict_uses_fixed_point_string(self):
        assert Money(1525, "AUD").as_dict() == {"amount": "15.25", "currencyCode": "AUD"}

    def test_as_dict_zero_scale(self):
        assert Money(100000, "IDR").as_dict() == {"amount": "100000", "currencyCode": "IDR"}

    def test_to_decimal(self):
        assert Money(4, "AUD").to_decimal() == Decimal("0.04")

    def test_str(self):
        assert str(Money(-1525, "AUD")) == "-15.25 AUD"

    def test_currency_scale(self):
        assert currency_scale("IDR") == 0
        assert currency_scale("aud") == 2
