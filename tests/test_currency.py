"""
Test suite for money rounding

Every computed amount goes through round_money; these tests pin the rounding
mode and the parsing rules for caller-supplied amounts.
"""

import pytest
from decimal import Decimal

from payroll_core.currency import (
    round_money, to_decimal, within_tolerance, decimal_from_string, format_amount
)
from payroll_core.errors import ValidationError


class TestRoundMoney:
    """Test rounding to two decimal places"""

    def test_rounds_half_away_from_zero(self):
        """Test that .005 rounds up rather than to even"""
        assert round_money(Decimal('0.125')) == Decimal('0.13')
        assert round_money(Decimal('0.135')) == Decimal('0.14')
        assert round_money(Decimal('-0.125')) == Decimal('-0.13')

    def test_always_two_places(self):
        """Test that results carry exactly two decimal places"""
        assert str(round_money(5)) == "5.00"
        assert str(round_money("12.3")) == "12.30"

    def test_value_beyond_precision_rejected(self):
        """Test that a total too large to hold in cents is a validation error"""
        with pytest.raises(ValidationError):
            round_money("1e30")

    def test_float_input_goes_through_str(self):
        """Test that float drift does not leak into the result"""
        assert round_money(0.1 + 0.2) == Decimal('0.30')
        assert round_money(2.675) == Decimal('2.68')


class TestToDecimal:
    """Test conversion of caller-supplied amounts"""

    def test_accepts_numeric_types(self):
        assert to_decimal(10) == Decimal('10')
        assert to_decimal("33.335") == Decimal('33.335')
        assert to_decimal(Decimal('1.5')) == Decimal('1.5')

    def test_keeps_full_precision(self):
        """Test that to_decimal never rounds"""
        assert to_decimal("100.009") == Decimal('100.009')

    @pytest.mark.parametrize("value", ["abc", "", None, True, "NaN", "Infinity", [1]])
    def test_rejects_non_numbers(self, value):
        with pytest.raises(ValidationError):
            to_decimal(value)


class TestHelpers:
    """Test tolerance, parsing and display helpers"""

    def test_within_tolerance(self):
        assert within_tolerance(Decimal('100.009'), Decimal('100.00'))
        assert within_tolerance(Decimal('99.99'), Decimal('100.00'))
        assert not within_tolerance(Decimal('100.02'), Decimal('100.00'))

    def test_decimal_from_string_formats(self):
        """Test common user-entered formats"""
        assert decimal_from_string("$1,234.50") == Decimal('1234.50')
        assert decimal_from_string("1234,5") == Decimal('1234.5')
        assert decimal_from_string("1,234") == Decimal('1234')
        assert decimal_from_string(" 42 ") == Decimal('42')

    def test_decimal_from_string_rejects_empty(self):
        with pytest.raises(ValidationError):
            decimal_from_string("")

    def test_format_amount(self):
        assert format_amount(Decimal('1234.5'), "USD") == "USD 1,234.50"
