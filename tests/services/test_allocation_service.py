"""
Tests for AllocationService.

Covers:
- Allocation rewrite and contract repricing with history
- Validation before any write (no partial update)
- Worker removal with and without redistribution
- Permission and closed-job guards
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from settlement_kernel.domain.contract_lifecycle import ContractStatus
from settlement_kernel.domain.dtos import JobStatus
from settlement_kernel.exceptions import (
    BelowMinimumAllocationError,
    BudgetExceededError,
    InvalidStateTransitionError,
    PermissionDeniedError,
    UnknownWorkerError,
)
from settlement_kernel.models.contract import Contract


@pytest.fixture
def crew(make_job, make_contract):
    """A 30000 job with two workers on 10000 contracts each."""
    job = make_job(Decimal("30000"))
    first, second = uuid4(), uuid4()
    contracts = {
        first: make_contract(first, Decimal("10000"), job=job),
        second: make_contract(second, Decimal("10000"), job=job),
    }
    return job, first, second, contracts


class TestSetWorkerAllocations:

    def test_rewrites_ledger_and_reprices(self, allocation_service, crew, client_id, session):
        job, first, second, contracts = crew
        info = allocation_service.set_worker_allocations(
            job.id, [(first, "12000"), {"worker_id": str(second), "amount": "8000"}], actor_id=client_id
        )
        assert info.allocated_total == Decimal("20000")
        assert info.remaining_budget == Decimal("10000")
        assert info.allocation_for(first).percentage == Decimal("40.00")

        row = session.get(Contract, contracts[first].id)
        assert row.price == Decimal("12000")
        assert row.total_price == Decimal("13000")
        assert row.allocated_amount == Decimal("12000")
        assert [m.reason for m in row.price_modifications] == ["budget reallocation"]

    def test_allocations_keep_listed_order(self, allocation_service, crew, client_id):
        job, first, second, _ = crew
        info = allocation_service.set_worker_allocations(
            job.id, [(second, "6000"), (first, "6000")], actor_id=client_id
        )
        assert [s.worker_id for s in info.allocations] == [second, first]

    def test_second_rewrite_replaces_first(self, allocation_service, crew, client_id):
        job, first, second, _ = crew
        allocation_service.set_worker_allocations(job.id, [(first, "10000"), (second, "10000")], actor_id=client_id)
        info = allocation_service.set_worker_allocations(job.id, [(first, "25000")], actor_id=client_id)
        assert [s.worker_id for s in info.allocations] == [first]
        assert info.allocated_total == Decimal("25000")

    def test_over_budget_leaves_everything_untouched(self, allocation_service, crew, client_id, session):
        job, first, second, contracts = crew
        with pytest.raises(BudgetExceededError):
            allocation_service.set_worker_allocations(
                job.id, [(first, "20000"), (second, "15000")], actor_id=client_id
            )
        session.refresh(job)
        assert job.allocations == []
        assert job.allocated_total == Decimal("0")
        assert session.get(Contract, contracts[first].id).price == Decimal("10000")

    def test_below_floor(self, allocation_service, crew, client_id):
        job, first, _, _ = crew
        with pytest.raises(BelowMinimumAllocationError):
            allocation_service.set_worker_allocations(job.id, [(first, "4999")], actor_id=client_id)

    def test_unknown_worker(self, allocation_service, crew, client_id):
        job, _, _, _ = crew
        with pytest.raises(UnknownWorkerError):
            allocation_service.set_worker_allocations(job.id, [(uuid4(), "6000")], actor_id=client_id)

    def test_only_client(self, allocation_service, crew):
        job, first, _, _ = crew
        with pytest.raises(PermissionDeniedError):
            allocation_service.set_worker_allocations(job.id, [(first, "6000")], actor_id=first)

    def test_closed_job(self, allocation_service, crew, client_id):
        job, first, _, _ = crew
        job.status = JobStatus.COMPLETED
        with pytest.raises(InvalidStateTransitionError):
            allocation_service.set_worker_allocations(job.id, [(first, "6000")], actor_id=client_id)


class TestRemoveWorker:

    @pytest.fixture
    def allocated(self, allocation_service, crew, client_id):
        job, first, second, contracts = crew
        allocation_service.set_worker_allocations(
            job.id, [(first, "10000"), (second, "10000")], actor_id=client_id
        )
        return crew

    def test_redistribution_moves_share_to_remaining_worker(
        self, allocation_service, allocated, client_id, session
    ):
        job, first, second, contracts = allocated
        info = allocation_service.remove_worker(job.id, first, True, actor_id=client_id)

        assert info.selected_workers == (second,)
        assert info.allocation_for(second).amount == Decimal("20000")
        assert info.allocated_total == Decimal("20000")
        assert info.remaining_budget == Decimal("10000")

        removed = session.get(Contract, contracts[first].id)
        assert removed.status == ContractStatus.CANCELLED
        assert removed.cancellation_reason == "removed by client"

        kept = session.get(Contract, contracts[second].id)
        assert kept.price == Decimal("20000")
        assert kept.commission == Decimal("1600")
        assert [m.reason for m in kept.price_modifications][-1] == "budget redistribution"

    def test_without_redistribution_share_returns_to_budget(
        self, allocation_service, allocated, client_id, session
    ):
        job, first, second, contracts = allocated
        info = allocation_service.remove_worker(job.id, first, False, actor_id=client_id)
        assert info.allocated_total == Decimal("10000")
        assert info.remaining_budget == Decimal("20000")
        assert session.get(Contract, contracts[second].id).price == Decimal("10000")

    def test_even_split_remainder_goes_to_last_worker(
        self, allocation_service, make_job, make_contract, client_id
    ):
        job = make_job(Decimal("40000"))
        workers = [uuid4() for _ in range(4)]
        for worker in workers:
            make_contract(worker, Decimal("10000"), job=job)
        allocation_service.set_worker_allocations(
            job.id, [(workers[0], "10000.01")] + [(w, "6000") for w in workers[1:]], actor_id=client_id
        )
        info = allocation_service.remove_worker(job.id, workers[0], True, actor_id=client_id)
        amounts = [s.amount for s in info.allocations]
        assert amounts == [Decimal("9333.33"), Decimal("9333.33"), Decimal("9333.35")]
        assert sum(amounts) == Decimal("28000.01")

    def test_unknown_worker(self, allocation_service, allocated, client_id):
        job, _, _, _ = allocated
        with pytest.raises(UnknownWorkerError):
            allocation_service.remove_worker(job.id, uuid4(), True, actor_id=client_id)

    def test_only_client(self, allocation_service, allocated):
        job, first, second, _ = allocated
        with pytest.raises(PermissionDeniedError):
            allocation_service.remove_worker(job.id, first, True, actor_id=second)
