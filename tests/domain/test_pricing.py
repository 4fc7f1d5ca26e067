"""
Tests for price negotiation math: increase classification against the
highest price already paid, and the decrease unanimity rule.
"""

from decimal import Decimal
from uuid import uuid4

from settlement_kernel.domain.commission import CommissionProfile, PayerTier
from settlement_kernel.domain.pricing import (
    DecreaseOutcome,
    PriceChangeKind,
    decrease_credit,
    decrease_outcome,
    max_paid_price,
    plan_price_change,
)

FREE = CommissionProfile()


class TestPlanPriceChange:

    def test_increase_above_paid_price(self):
        plan = plan_price_change(Decimal("100000"), None, Decimal("150000"), FREE)
        assert plan.kind is PriceChangeKind.INCREASE_REQUIRES_PAYMENT
        assert plan.price_difference == Decimal("50000")
        assert plan.commission == Decimal("4000.00")
        assert plan.amount_required == Decimal("54000.00")

    def test_increase_charges_only_above_original(self):
        # Paid 150000 once, reduced to 120000, now back up to 160000.
        plan = plan_price_change(Decimal("120000"), Decimal("150000"), Decimal("160000"), FREE)
        assert plan.max_paid_price == Decimal("150000")
        assert plan.price_difference == Decimal("10000")
        assert plan.commission == Decimal("1000.00")
        assert plan.amount_required == Decimal("11000.00")

    def test_increase_within_paid_price_is_free(self):
        plan = plan_price_change(Decimal("120000"), Decimal("150000"), Decimal("140000"), FREE)
        assert plan.kind is PriceChangeKind.INCREASE_ALREADY_PAID
        assert plan.amount_required == Decimal("0")

    def test_decrease(self):
        plan = plan_price_change(Decimal("100000"), None, Decimal("80000"), FREE)
        assert plan.kind is PriceChangeKind.DECREASE
        assert plan.amount_required == Decimal("0")

    def test_unchanged(self):
        plan = plan_price_change(Decimal("100000"), None, Decimal("100000"), FREE)
        assert plan.kind is PriceChangeKind.UNCHANGED

    def test_commission_uses_payer_profile(self):
        plan = plan_price_change(
            Decimal("100000"), None, Decimal("200000"), CommissionProfile(tier=PayerTier.PRO)
        )
        assert plan.commission == Decimal("3000.00")

    def test_max_paid_price(self):
        assert max_paid_price(None, Decimal("10")) == Decimal("10")
        assert max_paid_price(Decimal("20"), Decimal("10")) == Decimal("20")


class TestDecreaseUnanimity:

    def test_pending_until_everyone_accepts(self):
        a, b = uuid4(), uuid4()
        assert decrease_outcome([a, b], [a], []) is DecreaseOutcome.PENDING

    def test_all_accept_applies(self):
        a, b = uuid4(), uuid4()
        assert decrease_outcome([a, b], [b, a], []) is DecreaseOutcome.APPLIED

    def test_single_rejection_cancels(self):
        workers = [uuid4() for _ in range(4)]
        outcome = decrease_outcome(workers, workers[:3], workers[3:])
        assert outcome is DecreaseOutcome.CANCELLED

    def test_rejection_wins_even_if_early(self):
        a, b = uuid4(), uuid4()
        assert decrease_outcome([a, b], [], [a]) is DecreaseOutcome.CANCELLED


class TestDecreaseCredit:

    def test_credit_is_the_difference(self):
        assert decrease_credit(Decimal("100000"), Decimal("80000")) == Decimal("20000.00")

    def test_never_negative(self):
        assert decrease_credit(Decimal("80000"), Decimal("100000")) == Decimal("0.00")
