from decimal import Decimal

import pytest

from src.shared.utils.money import ZERO, round_money, sum_money, to_money


class TestRoundMoney:
    """Tests for round_money function."""

    def test_round_half_up(self):
        assert round_money(Decimal("10.125")) == Decimal("10.13")
        assert round_money(Decimal("10.124")) == Decimal("10.12")
        assert round_money("99.995") == Decimal("100.00")

    def test_float_goes_through_str(self):
        """0.1 + 0.2 is not 0.3 in binary; through str it rounds cleanly."""
        assert round_money(0.1 + 0.2) == Decimal("0.30")

    def test_int_gets_two_places(self):
        assert str(round_money(100)) == "100.00"
        assert str(round_money(0)) == "0.00"

    def test_negative_numbers(self):
        assert round_money(Decimal("-10.125")) == Decimal("-10.12")
        assert round_money(Decimal("-10.126")) == Decimal("-10.13")


class TestSumMoney:
    def test_empty_is_zero_decimal(self):
        total = sum_money([])
        assert total == ZERO
        assert isinstance(total, Decimal)

    def test_sums_exactly(self):
        values = [Decimal("0.10")] * 10
        assert sum_money(values) == Decimal("1.00")


class TestToMoney:
    def test_parses_strings_and_ints(self):
        assert to_money("1500") == Decimal("1500.00")
        assert to_money(250) == Decimal("250.00")
        assert to_money(Decimal("12.345")) == Decimal("12.35")

    def test_rejects_floats(self):
        with pytest.raises(TypeError):
            to_money(10.5)
