"""
Tests for worker allocation planning and worker removal.

Covers:
- sum(shares) <= price, with the error order unknown worker > floor > budget
- Percentages of the budget
- Even redistribution with the remainder on the last worker
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from settlement_kernel.domain.allocation import (
    plan_allocations,
    plan_worker_removal,
    split_evenly,
)
from settlement_kernel.domain.values import AllocationRequest, AllocationShare
from settlement_kernel.exceptions import (
    BelowMinimumAllocationError,
    BudgetExceededError,
    InvalidAmountError,
    UnknownWorkerError,
)

MINIMUM = Decimal("5000")


@pytest.fixture
def workers():
    return [uuid4(), uuid4(), uuid4()]


class TestPlanAllocations:

    def test_valid_plan(self, workers):
        a, b, _ = workers
        plan = plan_allocations(
            Decimal("20000"),
            workers,
            [AllocationRequest(a, Decimal("12000")), AllocationRequest(b, Decimal("8000"))],
            MINIMUM,
        )
        assert plan.allocated_total == Decimal("20000.00")
        assert plan.remaining_budget == Decimal("0.00")
        assert plan.share_for(a).percentage == Decimal("60.00")
        assert plan.share_for(b).percentage == Decimal("40.00")

    def test_partial_allocation_leaves_remaining_budget(self, workers):
        plan = plan_allocations(
            Decimal("30000"), workers, [AllocationRequest(workers[0], Decimal("10000"))], MINIMUM
        )
        assert plan.remaining_budget == Decimal("20000.00")

    def test_empty_allocation(self, workers):
        plan = plan_allocations(Decimal("30000"), workers, [], MINIMUM)
        assert plan.shares == ()
        assert plan.allocated_total == Decimal("0.00")

    def test_unknown_worker(self, workers):
        with pytest.raises(UnknownWorkerError):
            plan_allocations(
                Decimal("20000"), workers, [AllocationRequest(uuid4(), Decimal("6000"))], MINIMUM
            )

    def test_below_floor(self, workers):
        with pytest.raises(BelowMinimumAllocationError) as exc:
            plan_allocations(
                Decimal("20000"), workers, [AllocationRequest(workers[0], Decimal("4999"))], MINIMUM
            )
        assert exc.value.minimum == MINIMUM

    def test_over_budget(self, workers):
        a, b, _ = workers
        with pytest.raises(BudgetExceededError):
            plan_allocations(
                Decimal("20000"),
                workers,
                [AllocationRequest(a, Decimal("15000")), AllocationRequest(b, Decimal("6000"))],
                MINIMUM,
            )

    def test_unknown_worker_reported_before_floor(self, workers):
        with pytest.raises(UnknownWorkerError):
            plan_allocations(
                Decimal("20000"),
                workers,
                [AllocationRequest(workers[0], Decimal("10")), AllocationRequest(uuid4(), Decimal("6000"))],
                MINIMUM,
            )

    def test_duplicate_worker_rejected(self, workers):
        a = workers[0]
        with pytest.raises(InvalidAmountError):
            plan_allocations(
                Decimal("20000"),
                workers,
                [AllocationRequest(a, Decimal("6000")), AllocationRequest(a, Decimal("6000"))],
                MINIMUM,
            )


class TestSplitEvenly:

    def test_exact_split(self):
        assert split_evenly(Decimal("9000"), 3) == [Decimal("3000.00")] * 3

    def test_remainder_goes_to_last(self):
        pieces = split_evenly(Decimal("100"), 3)
        assert pieces == [Decimal("33.33"), Decimal("33.33"), Decimal("33.34")]
        assert sum(pieces) == Decimal("100")

    def test_no_parts(self):
        assert split_evenly(Decimal("100"), 0) == []


class TestWorkerRemoval:

    def _shares(self, price, amounts):
        return [AllocationShare.of(w, Decimal(a), price) for w, a in amounts]

    def test_redistribute_to_single_remaining_worker(self, workers):
        a, b, _ = workers
        price = Decimal("20000")
        plan = plan_worker_removal(price, self._shares(price, [(a, "12000"), (b, "8000")]), a, True)
        assert plan.freed_amount == Decimal("12000.00")
        assert plan.increases == {b: Decimal("12000.00")}
        assert plan.shares[0].amount == Decimal("20000.00")
        assert plan.allocated_total == Decimal("20000.00")
        assert plan.remaining_budget == Decimal("0.00")

    def test_without_redistribution_budget_is_freed(self, workers):
        a, b, _ = workers
        price = Decimal("20000")
        plan = plan_worker_removal(price, self._shares(price, [(a, "12000"), (b, "8000")]), a, False)
        assert plan.increases == {}
        assert plan.allocated_total == Decimal("8000.00")
        assert plan.remaining_budget == Decimal("12000.00")

    def test_uneven_redistribution_is_exact(self, workers):
        a, b, c = workers
        price = Decimal("30000")
        plan = plan_worker_removal(
            price, self._shares(price, [(a, "10000"), (b, "10000"), (c, "10000")]), a, True
        )
        assert plan.increases[b] + plan.increases[c] == Decimal("10000")
        assert plan.allocated_total == Decimal("30000.00")

    def test_removing_unallocated_worker_changes_nothing(self, workers):
        a, b, c = workers
        price = Decimal("20000")
        plan = plan_worker_removal(price, self._shares(price, [(a, "12000"), (b, "8000")]), c, True)
        assert plan.freed_amount == Decimal("0.00")
        assert plan.increases == {}
        assert plan.allocated_total == Decimal("20000.00")
