"""Tests for the Money, CommissionRate and AllocationShare value objects."""

from decimal import Decimal
from uuid import uuid4

import pytest

from settlement_kernel.db.types import round_money, to_decimal, validate_currency
from settlement_kernel.domain.values import AllocationShare, CommissionRate, Money


class TestMoney:

    def test_amount_is_decimal(self):
        m = Money.of("10.50", "ars")
        assert m.amount == Decimal("10.50")
        assert m.currency == "ARS"

    def test_same_currency_arithmetic(self):
        total = Money.of("10", "ARS") + Money.of("5", "ARS")
        assert total == Money.of("15", "ARS")
        assert (total - Money.of("15", "ARS")).is_positive is False

    def test_currency_mismatch(self):
        with pytest.raises(ValueError):
            Money.of("10", "ARS") + Money.of("10", "USD")

    def test_unknown_currency(self):
        with pytest.raises(ValueError):
            Money.of("10", "XXX")

    def test_rounded(self):
        assert Money.of("10.005", "ARS").rounded().amount == Decimal("10.01")


class TestCommissionRate:

    def test_from_percent(self):
        assert CommissionRate.from_percent("8").rate == Decimal("0.08")

    def test_out_of_range(self):
        with pytest.raises(ValueError):
            CommissionRate(Decimal("1.5"))

    def test_apply_rounds(self):
        assert CommissionRate.from_percent("8").apply(Decimal("12345")) == Decimal("987.60")


class TestAllocationShare:

    def test_percentage_of_budget(self):
        share = AllocationShare.of(uuid4(), Decimal("5000"), Decimal("15000"))
        assert share.percentage == Decimal("33.33")

    def test_budget_must_be_positive(self):
        with pytest.raises(ValueError):
            AllocationShare.of(uuid4(), Decimal("5000"), Decimal("0"))


class TestDecimalHelpers:

    def test_float_goes_through_str(self):
        assert to_decimal(0.1) == Decimal("0.1")

    @pytest.mark.parametrize("value", ["abc", "NaN", "Infinity"])
    def test_rejects_non_numbers(self, value):
        with pytest.raises(ValueError):
            to_decimal(value)

    def test_round_half_up(self):
        assert round_money(Decimal("2.345")) == Decimal("2.35")

    def test_validate_currency_normalizes(self):
        assert validate_currency(" usd ") == "USD"
