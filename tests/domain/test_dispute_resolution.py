"""
Tests for dispute transitions and resolution planning.

Covers:
- The outcome table per resolution type
- Refund bound: refund <= amount - commission
- Partial refund validation
- Terminal dispute statuses
"""

from decimal import Decimal

import pytest

from settlement_kernel.domain.contract_lifecycle import ContractPaymentStatus, EscrowStatus
from settlement_kernel.domain.dispute_lifecycle import (
    DisputeStatus,
    ResolutionType,
    check_dispute_transition,
    plan_resolution,
    refundable_amount,
)
from settlement_kernel.exceptions import (
    InvalidAmountError,
    InvalidStateTransitionError,
    RefundExceedsRefundableError,
)


class TestRefundableAmount:

    def test_commission_is_never_refundable(self):
        assert refundable_amount(Decimal("50000"), Decimal("5000")) == Decimal("45000.00")

    def test_never_negative(self):
        assert refundable_amount(Decimal("100"), Decimal("500")) == Decimal("0")


class TestPlanResolution:

    def test_full_refund_excludes_commission(self):
        plan = plan_resolution(ResolutionType.FULL_REFUND, Decimal("50000"), Decimal("5000"))
        assert plan.refund_amount == Decimal("45000.00")
        assert plan.outcome.dispute_status is DisputeStatus.RESOLVED_REFUNDED
        assert plan.outcome.contract_payment_status is ContractPaymentStatus.REFUNDED
        assert plan.outcome.escrow_status is EscrowStatus.REFUNDED
        assert plan.moves_money_back

    def test_full_release_moves_nothing_back(self):
        plan = plan_resolution("full_release", Decimal("50000"), Decimal("5000"))
        assert plan.refund_amount == Decimal("0")
        assert plan.outcome.force_confirmations
        assert not plan.moves_money_back

    def test_partial_refund_within_bound(self):
        plan = plan_resolution(
            ResolutionType.PARTIAL_REFUND, Decimal("50000"), Decimal("5000"), refund_amount="20000"
        )
        assert plan.refund_amount == Decimal("20000.00")
        assert plan.outcome.dispute_status is DisputeStatus.RESOLVED_PARTIAL

    def test_partial_refund_at_bound(self):
        plan = plan_resolution(
            ResolutionType.PARTIAL_REFUND, Decimal("50000"), Decimal("5000"), refund_amount="45000"
        )
        assert plan.refund_amount == Decimal("45000.00")

    def test_partial_refund_above_bound(self):
        with pytest.raises(RefundExceedsRefundableError) as exc:
            plan_resolution(
                ResolutionType.PARTIAL_REFUND,
                Decimal("50000"),
                Decimal("5000"),
                refund_amount="45000.01",
                payment_id="p-1",
            )
        assert exc.value.refundable == Decimal("45000.00")

    @pytest.mark.parametrize("amount", [None, "0", "-10", "abc"])
    def test_partial_refund_needs_positive_amount(self, amount):
        with pytest.raises(InvalidAmountError):
            plan_resolution(
                ResolutionType.PARTIAL_REFUND, Decimal("50000"), Decimal("5000"), refund_amount=amount
            )

    def test_no_payment_means_no_refund(self):
        plan = plan_resolution(ResolutionType.FULL_REFUND, None, None)
        assert plan.refund_amount == Decimal("0")

    def test_no_action_ends_released_without_money_movement(self):
        plan = plan_resolution(ResolutionType.NO_ACTION, Decimal("50000"), Decimal("5000"))
        assert plan.outcome.dispute_status is DisputeStatus.RESOLVED_RELEASED
        assert plan.outcome.contract_payment_status is None
        assert plan.refund_amount == Decimal("0")


class TestDisputeTransitions:

    def test_open_to_in_review(self):
        assert check_dispute_transition("open", DisputeStatus.IN_REVIEW) is DisputeStatus.IN_REVIEW

    def test_awaiting_info_back_to_review(self):
        assert (
            check_dispute_transition(DisputeStatus.AWAITING_INFO, DisputeStatus.IN_REVIEW)
            is DisputeStatus.IN_REVIEW
        )

    @pytest.mark.parametrize(
        "status",
        [
            DisputeStatus.RESOLVED_RELEASED,
            DisputeStatus.RESOLVED_REFUNDED,
            DisputeStatus.RESOLVED_PARTIAL,
            DisputeStatus.CANCELLED,
        ],
    )
    def test_resolved_disputes_are_final(self, status):
        with pytest.raises(InvalidStateTransitionError):
            check_dispute_transition(status, DisputeStatus.IN_REVIEW)
