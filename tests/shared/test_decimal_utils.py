"""Tests for shared/decimal_utils.py - Exact amount arithmetic."""

from __future__ import annotations

from decimal import Decimal

import pytest

from bead.shared.decimal_utils import (
    AmountError,
    ada_to_lovelace,
    floor_int,
    floor_mul_div,
    lovelace_to_ada,
    round_decimal,
    safe_divide,
    to_decimal,
)


class TestToDecimal:
    def test_converts_via_string(self):
        """Floats go through str() so 0.1 stays 0.1."""
        assert to_decimal(0.1) == Decimal("0.1")
        assert to_decimal("5.25") == Decimal("5.25")
        assert to_decimal(7) == Decimal("7")

    @pytest.mark.parametrize("value", [None, "abc", float("nan"), float("inf")])
    def test_rejects_bad_values(self, value):
        """None, junk, NaN and infinities raise AmountError."""
        with pytest.raises(AmountError):
            to_decimal(value)


class TestRounding:
    def test_round_half_even(self):
        """Ties round to the even neighbour."""
        assert round_decimal(Decimal("0.125"), places=2) == Decimal("0.12")
        assert round_decimal(Decimal("0.135"), places=2) == Decimal("0.14")

    def test_default_places(self):
        """Default precision is eight places."""
        assert round_decimal(Decimal(2) / Decimal(7)) == Decimal("0.28571429")

    def test_floor_int(self):
        """floor_int rounds toward negative infinity."""
        assert floor_int(Decimal("5.999")) == 5
        assert floor_int(Decimal("-0.5")) == -1


class TestDivision:
    def test_safe_divide_zero(self):
        """Zero divisor returns the default."""
        assert safe_divide(Decimal(1), Decimal(0)) == Decimal("0")
        assert safe_divide(Decimal(1), Decimal(0), default=Decimal("1")) == Decimal("1")

    def test_floor_mul_div(self):
        """Integer floor of amount * num / den."""
        assert floor_mul_div(10, 30, 7) == 42
        assert floor_mul_div(70_000_000, 20_000_000, 70_000_000) == 20_000_000

    def test_floor_mul_div_rejects_zero_denominator(self):
        """A non-positive denominator raises."""
        with pytest.raises(AmountError):
            floor_mul_div(1, 1, 0)


class TestAdaConversion:
    def test_lovelace_to_ada(self):
        assert lovelace_to_ada(1_500_000) == Decimal("1.5")

    def test_ada_to_lovelace(self):
        assert ada_to_lovelace("2.5") == 2_500_000
        assert ada_to_lovelace(10) == 10_000_000

    def test_ada_to_lovelace_rejects_sub_lovelace(self):
        """Fractions below one lovelace are rejected."""
        with pytest.raises(AmountError):
            ada_to_lovelace("0.0000001")
