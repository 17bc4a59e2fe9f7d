"""
Test suite for currency module

Tests Money class, rounding to the minor unit and Decimal conversion.
All monetary calculations must use Decimal precision.
"""

import pytest
from decimal import Decimal

from loan_engine.currency import (
    Money, Currency, quantize_amount, to_decimal, decimal_from_string
)


class TestMoney:
    """Test Money class operations"""

    def test_money_creation(self):
        """Test Money object creation and rounding"""
        money = Money(Decimal('100.50'), Currency.KES)
        assert money.amount == Decimal('100.50')
        assert money.currency == Currency.KES

        # Rounded half up to 2 decimal places
        assert Money(Decimal('100.555'), Currency.KES).amount == Decimal('100.56')

        # UGX has no minor unit
        assert Money(Decimal('100.7'), Currency.UGX).amount == Decimal('101')

    def test_money_arithmetic(self):
        money1 = Money(Decimal('100.50'), Currency.KES)
        money2 = Money(Decimal('50.25'), Currency.KES)

        assert (money1 + money2).amount == Decimal('150.75')
        assert (money1 - money2).amount == Decimal('50.25')
        assert (money1 * Decimal('2')).amount == Decimal('201.00')
        assert (money1 / Decimal('3')).amount == Decimal('33.50')
        assert (-money1).amount == Decimal('-100.50')
        assert abs(Money(Decimal('-50'), Currency.KES)).amount == Decimal('50.00')

    def test_money_comparison(self):
        money1 = Money(Decimal('100.00'), Currency.KES)
        money2 = Money(Decimal('50.00'), Currency.KES)

        assert money1 == Money(Decimal('100'), Currency.KES)
        assert money1 != money2
        assert money2 < money1
        assert money1 >= money2

    def test_currency_mismatch(self):
        kes = Money(Decimal('100'), Currency.KES)
        ugx = Money(Decimal('100'), Currency.UGX)

        with pytest.raises(ValueError, match="Cannot add KES and UGX"):
            kes + ugx

        with pytest.raises(ValueError, match="Cannot compare"):
            kes < ugx

    def test_sign_checks(self):
        assert Money(Decimal('0'), Currency.KES).is_zero()
        assert Money(Decimal('0.01'), Currency.KES).is_positive()
        assert Money(Decimal('-0.01'), Currency.KES).is_negative()

    def test_to_string(self):
        assert Money(Decimal('20333.333'), Currency.KES).to_string() == "KES 20,333.33"
        assert Money(Decimal('1500000'), Currency.UGX).to_string() == "UGX 1,500,000"


class TestDecimalHelpers:
    """Test Decimal conversion and rounding helpers"""

    def test_quantize_amount(self):
        assert quantize_amount(Decimal('8333.335'), Currency.KES) == Decimal('8333.34')
        assert quantize_amount(Decimal('8333.5'), Currency.RWF) == Decimal('8334')
        assert Currency.KES.minor_unit == Decimal('0.01')

    def test_to_decimal(self):
        assert to_decimal(Decimal('1.10')) == Decimal('1.10')
        assert to_decimal(5) == Decimal('5')
        assert to_decimal("12.5") == Decimal('12.5')
        # Floats go through their string form
        assert to_decimal(0.1) == Decimal('0.1')

    def test_to_decimal_rejects_invalid(self):
        with pytest.raises(ValueError):
            to_decimal(True)

        with pytest.raises(ValueError, match="Cannot convert"):
            to_decimal("abc")

        with pytest.raises(ValueError):
            to_decimal(None)

    def test_to_decimal_rejects_non_finite(self):
        for value in ("NaN", "sNaN", "Infinity", "-Infinity", Decimal('NaN'), float('inf')):
            with pytest.raises(ValueError, match="finite number"):
                to_decimal(value)

    def test_decimal_from_string(self):
        assert decimal_from_string("KES 1,250.50") == Decimal('1250.50')
        assert decimal_from_string("1,250") == Decimal('1250')
        assert decimal_from_string("12,5") == Decimal('12.5')
        assert decimal_from_string("-300") == Decimal('-300')

    def test_decimal_from_string_invalid(self):
        with pytest.raises(ValueError, match="non-empty"):
            decimal_from_string("")

        with pytest.raises(ValueError):
            decimal_from_string("not a number")
